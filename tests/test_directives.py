import unittest

from chtz.parser import (
    DEFAULT_EMPTY_SECTION_TEXT,
    DirectiveInterpreter,
    parse_directive_attributes,
    parse_function_table_content,
    parse_scenario_markdown,
    split_directives,
    split_image_url,
)


class TestSplitDirectives(unittest.TestCase):
    def test_markdown_and_directives_keep_order(self):
        segments = split_directives('# A\n\n:::terms\n| a | b |\n:::\n\nтекст\n')
        self.assertEqual([s['kind'] for s in segments], ['markdown', 'directive', 'markdown'])
        self.assertEqual(segments[1]['name'], 'terms')
        self.assertEqual(segments[1]['raw'], '| a | b |')

    def test_fenced_code_is_not_a_directive(self):
        segments = split_directives('```\n:::terms\n```\n')
        self.assertEqual([s['kind'] for s in segments], ['markdown'])

    def test_unterminated_directive_runs_to_end(self):
        segments = split_directives(':::note\nпервая\nвторая')
        self.assertEqual(segments[-1]['raw'], 'первая\nвторая')

    def test_attributes(self):
        attributes = parse_directive_attributes('{#func-1 .wide type="warning" level=2}')
        self.assertEqual(attributes, {'id': 'func-1', 'class': ['wide'], 'type': 'warning', 'level': '2'})


class TestFunctionTableContent(unittest.TestCase):
    def test_simple_and_multiline_values(self):
        raw = ('function: Approve request\r\n'
               'task: PROJ-42\r\n'
               'taskUrl: https://example.com/PROJ-42\r\n'
               'scenario: |\r\n'
               '  1. Open form\r\n'
               '  2. Click submit\r\n')
        data = parse_function_table_content(raw)
        self.assertEqual(data['function'], 'Approve request')
        self.assertEqual(data['task'], 'PROJ-42')
        self.assertEqual(data['taskUrl'], 'https://example.com/PROJ-42')
        self.assertEqual(data['scenario'], '1. Open form\n2. Click submit')

    def test_key_value_inside_multiline_is_content(self):
        data = parse_function_table_content('scenario:\n  step: one\n  - two\n')
        self.assertEqual(data['scenario'], 'step: one\n- two')
        self.assertEqual(data['function'], '')

    def test_multiline_ends_at_next_key(self):
        data = parse_function_table_content('function: |\n  Строка 1\n  Строка 2\ntask:\n  T-1\n')
        self.assertEqual(data['function'], 'Строка 1\nСтрока 2')
        self.assertEqual(data['task'], 'T-1')


class TestDirectiveInterpreter(unittest.TestCase):
    def setUp(self):
        self.interpreter = DirectiveInterpreter()

    def test_terms_table(self):
        record = self.interpreter.interpret('terms', {}, '| Термин | Определение |\n| --- | --- |\n| А | Б |')
        self.assertEqual(record['type'], 'terms')
        self.assertEqual(record['table'], {'headers': ['Термин', 'Определение'], 'rows': [['А', 'Б']]})

    def test_changes_without_table_uses_default_headers(self):
        record = self.interpreter.interpret('changes-table', {}, 'нет таблицы')
        self.assertEqual(record['type'], 'changes')
        self.assertEqual(record['table']['headers'], ['Как есть', 'Как будет'])
        self.assertEqual(record['table']['rows'], [])

    def test_function_table_takes_id(self):
        record = self.interpreter.interpret('function-table', {'id': 'f1'}, 'function: X')
        self.assertEqual((record['type'], record['id'], record['function']), ('function-table', 'f1', 'X'))

    def test_note_defaults_to_info(self):
        record = self.interpreter.interpret('note', {}, '  Текст  ')
        self.assertEqual(record, {'type': 'note', 'note_type': 'info', 'text': 'Текст'})

    def test_empty_section_and_unknown(self):
        self.assertEqual(self.interpreter.interpret('empty-section', {}, ''), {'type': 'empty-section', 'text': ''})
        self.assertEqual(self.interpreter.interpret('video', {}, ''), {'type': 'unknown', 'name': 'video'})
        self.assertTrue(DEFAULT_EMPTY_SECTION_TEXT)


class TestScenarioMarkdown(unittest.TestCase):
    def test_blocks(self):
        blocks = parse_scenario_markdown(
            '1. Открыть форму\n'
            '  - Поле **А**\n'
            '![Схема](images/a.png{width="50%"})\n'
            '| Поле | Значение |\n'
            '| --- | --- |\n'
            '| Статус | Новый |\n'
            'Итог'
        )
        self.assertEqual([b['type'] for b in blocks], ['numbered', 'bullet', 'image', 'table', 'text'])
        self.assertEqual(blocks[0]['number'], 1)
        self.assertEqual(blocks[1]['level'], 1)
        self.assertEqual(blocks[2]['url'], 'images/a.png')
        self.assertEqual(blocks[2]['attributes'], {'width': '50%'})
        self.assertEqual(blocks[3]['headers'], ['Поле', 'Значение'])
        self.assertEqual(blocks[3]['rows'], [['Статус', 'Новый']])

    def test_pipe_line_without_separator_is_text(self):
        blocks = parse_scenario_markdown('| просто текст |')
        self.assertEqual(blocks, [{'type': 'text', 'text': '| просто текст |'}])

    def test_image_attributes_inside_and_after_url_are_equal(self):
        inside = split_image_url('img.png{width="30%"}')
        after = split_image_url('img.png', '{width="30%"}')
        self.assertEqual(inside, after)
        self.assertEqual(inside, ('img.png', {'width': '30%'}))

    def test_percent_encoded_url(self):
        self.assertEqual(split_image_url('images/%D1%81.png')[0], 'images/с.png')


if __name__ == '__main__':
    unittest.main()
