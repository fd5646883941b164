import unittest

from chtz.xml_parser import MinimalXmlParser, as_list, attr, first, iter_children, text_of


class TestMinimalXmlParser(unittest.TestCase):
    def setUp(self):
        self.parser = MinimalXmlParser()

    def test_attributes_text_and_repeated_tags(self):
        root = self.parser.parse(
            '<?xml version="1.0"?><w:p w:rsid="01"><w:r><w:t> a &amp; b </w:t></w:r>'
            '<w:r><w:t>c</w:t></w:r></w:p>'
        )
        p = first(root, 'w:p')
        self.assertEqual(attr(p, 'w:rsid'), '01')
        runs = as_list(p['w:r'])
        self.assertEqual(len(runs), 2)
        self.assertEqual(text_of(first(runs[0], 'w:t')), ' a & b ')
        self.assertEqual(self.parser.anomalies, [])

    def test_children_keep_document_order(self):
        root = self.parser.parse('<body><p>1</p><tbl/><p>2</p></body>')
        tags = [tag for tag, _ in iter_children(first(root, 'body'))]
        self.assertEqual(tags, ['p', 'tbl', 'p'])

    def test_empty_element_is_dict(self):
        root = self.parser.parse('<a><b/><c></c></a>')
        a = first(root, 'a')
        self.assertEqual(a['b'], {})
        self.assertEqual(a['c'], {})

    def test_whitespace_between_children_is_dropped(self):
        root = self.parser.parse('<a>\n  <b>x</b>\n</a>')
        self.assertNotIn('#text', first(root, 'a'))

    def test_cdata_and_quoted_gt_in_attribute(self):
        root = self.parser.parse('<a title="x > y"><![CDATA[<raw>]]></a>')
        a = first(root, 'a')
        self.assertEqual(attr(a, 'title'), 'x > y')
        self.assertEqual(text_of(a), '<raw>')

    def test_unclosed_tag_is_reported_not_lost(self):
        report = self.parser.parse_with_report('<a><b>text</b><c>tail')
        a = first(report['root'], 'a')
        self.assertEqual(text_of(first(a, 'b')), 'text')
        self.assertEqual(text_of(first(a, 'c')), 'tail')
        kinds = [anomaly['kind'] for anomaly in report['anomalies']]
        self.assertIn('unclosed-tag', kinds)

    def test_ancestor_close_recovers_structure(self):
        root = self.parser.parse('<a><b><c>x</b><d/></a>')
        a = first(root, 'a')
        self.assertIn('d', a)
        self.assertEqual(text_of(first(first(a, 'b'), 'c')), 'x')
        self.assertEqual(self.parser.anomalies[0]['kind'], 'unclosed-tag')
        self.assertEqual(self.parser.anomalies[0]['tag'], 'c')

    def test_stray_closing_tag(self):
        root = self.parser.parse('<a><b>1</b></x></a>')
        self.assertEqual(text_of(first(first(root, 'a'), 'b')), '1')
        self.assertEqual([a['kind'] for a in self.parser.anomalies], ['mismatched-close'])

    def test_accessors_tolerate_missing_nodes(self):
        self.assertIsNone(first(None, 'x'))
        self.assertEqual(attr(None, 'x', 'default'), 'default')
        self.assertEqual(text_of(None), '')
        self.assertEqual(list(iter_children(None)), [])
        self.assertEqual(as_list(None), [])


if __name__ == '__main__':
    unittest.main()
