import unittest

from chtz.md_builder import MdBuilder, YamlBuilder
from chtz.parser import parse_function_table_content, split_directives, split_front_matter


METADATA = {
    'shortName': 'Проект "Альфа" \\ этап 2',
    'consultant': {'name': 'Иванов И.И.', 'email': 'ivanov@example.com'},
    'organization': 'ООО «Ромашка»: филиал',
    'itSolutions': ['ЕСИС Заявки', '#1 решение'],
    'itSystems': [],
    'processKT': True,
    'processPDn': False,
    'createdDate': '15.01.2024',
}


class TestYamlBuilder(unittest.TestCase):
    def test_values_survive_yaml_parsing(self):
        front = YamlBuilder().build(METADATA, [{'version': '1.1', 'date': '16.01.2024',
                                                'comment': 'Строка 1\nСтрока 2', 'author': 'И.И.'}])
        data, body = split_front_matter(front + '\n')
        self.assertEqual(body, '')
        self.assertEqual(data['type'], 'chtz')
        self.assertEqual(data['version'], '1.0')
        self.assertEqual(data['metadata']['shortName'], METADATA['shortName'])
        self.assertEqual(data['metadata']['organization'], METADATA['organization'])
        self.assertEqual(data['metadata']['itSolutions'], METADATA['itSolutions'])
        self.assertEqual(data['metadata']['itSystems'], [])
        self.assertIs(data['metadata']['processKT'], True)
        self.assertEqual(data['metadata']['createdDate'], '15.01.2024')
        self.assertEqual(data['history'][0]['comment'], 'Строка 1\nСтрока 2')
        self.assertNotIn('relatedDocs', data)

    def test_key_order_and_defaults(self):
        front = YamlBuilder().build(METADATA, [], [{'name': 'ФТТ', 'version': 'v2', 'date': ''}])
        lines = front.split('\n')
        self.assertEqual(lines[:3], ['---', 'type: chtz', 'version: "1.0"'])
        self.assertLess(front.index('metadata:'), front.index('history:'))
        self.assertLess(front.index('history:'), front.index('relatedDocs:'))
        self.assertIn('comment: "Конвертировано из DOCX"', front)
        self.assertIn('  itSystems: []', lines)


class TestFunctionTableDirective(unittest.TestCase):
    SCENARIOS = [
        '1. Open form\n2. Click **submit**\n  - nested item\n- Notification is sent',
        'Первый абзац\n\nВторой абзац после пустой строки',
        '| Поле | Значение |\n| --- | --- |\n| Статус | Согласовано |\n\n![Схема](images/image1.png)',
        'function: внутри сценария\ntask: тоже текст',
    ]

    def test_scenario_is_preserved(self):
        for scenario in self.SCENARIOS:
            with self.subTest(scenario=scenario):
                markdown = MdBuilder.build_function_table({
                    'id': 'func-x', 'function': 'Функция', 'task': 'T-1',
                    'taskUrl': 'https://example.com/T-1', 'scenario': scenario,
                })
                segments = split_directives(markdown)
                self.assertEqual(len(segments), 1)
                self.assertEqual(segments[0]['attributes'], {'id': 'func-x'})
                data = parse_function_table_content(segments[0]['raw'])
                self.assertEqual(data['scenario'], scenario)
                self.assertEqual(data['taskUrl'], 'https://example.com/T-1')

    def test_optional_fields_are_omitted(self):
        markdown = MdBuilder.build_function_table({'function': 'Функция', 'scenario': ''})
        self.assertEqual(markdown, ':::function-table\nfunction: Функция\nscenario: |\n:::')


class TestMdBuilder(unittest.TestCase):
    def test_list_ordinals(self):
        items = [
            {'type': 'list-item', 'ordered': True, 'num_id': '2', 'level': 0, 'text': 'a'},
            {'type': 'list-item', 'ordered': True, 'num_id': '2', 'level': 0, 'text': '7. b'},
            {'type': 'list-item', 'ordered': False, 'num_id': '1', 'level': 1, 'text': '• c'},
            {'type': 'list-item', 'ordered': True, 'num_id': '2', 'level': 1, 'text': 'd'},
            {'type': 'list-item', 'ordered': True, 'num_id': '2', 'level': 0, 'text': 'e'},
            {'type': 'list-item', 'ordered': True, 'num_id': '5', 'level': 0, 'text': 'f'},
        ]
        self.assertEqual(MdBuilder.build_list(items), '1. a\n2. b\n  - c\n  1. d\n3. e\n1. f')

    def test_section(self):
        section = {
            'title': '1. Термины и определения',
            'level': 1,
            'content': [
                {'type': 'paragraph', 'text': 'Строка\nвторая'},
                {'type': 'list-item', 'ordered': False, 'num_id': '1', 'level': 0, 'text': 'один'},
                {'type': 'list-item', 'ordered': False, 'num_id': '1', 'level': 0, 'text': 'два'},
                {'type': 'table', 'table_type': 'terms',
                 'terms': [{'term': 'ЧТЗ', 'definition': 'Частное | ТЗ'}]},
                {'type': 'heading', 'level': 2, 'text': '1.1 Прочее'},
                {'type': 'empty-section', 'text': 'Раздел не применим.'},
                {'type': 'paragraph', 'text': '   '},
            ],
        }
        self.assertEqual(MdBuilder().build_section(section), '\n\n'.join([
            '# 1. Термины и определения',
            'Строка<br>вторая',
            '- один\n- два',
            ':::terms\n| Термин | Определение |\n| --- | --- |\n| ЧТЗ | Частное \\| ТЗ |\n:::',
            '## 1.1 Прочее',
            ':::empty-section\nРаздел не применим.\n:::',
        ]))

    def test_changes_and_regular_tables(self):
        builder = MdBuilder()
        changes = builder.build_table({'table_type': 'changes',
                                       'changes': [{'asIs': 'Почта', 'toBe': 'Система'}]})
        self.assertEqual(changes, ':::changes-table\n| Как есть | Как будет |\n| --- | --- |\n'
                                  '| Почта | Система |\n:::')
        regular = builder.build_table({'table_type': 'regular', 'rows': [['А', 'Б'], ['1']]})
        self.assertEqual(regular, '| А | Б |\n| --- | --- |\n| 1 |  |')
        self.assertEqual(builder.build_table({'table_type': 'regular', 'rows': []}), '')

    def test_document_ends_with_newline(self):
        markdown = MdBuilder().build({'metadata': METADATA, 'history': [], 'sections': [
            {'title': '1. Термины', 'level': 1, 'content': []}]})
        self.assertTrue(markdown.startswith('---\ntype: chtz\n'))
        self.assertTrue(markdown.endswith('---\n\n# 1. Термины\n'))


if __name__ == '__main__':
    unittest.main()
