import tempfile
import unittest
from pathlib import Path

from chtz.builders import FunctionTableEmitter
from chtz.document import BuildContext
from chtz.docx_reader import PackageReader
from chtz.package import RelationshipsManager
from chtz.recognizers import (
    ElementExtractor,
    FormattingRecognizer,
    FunctionTableRecognizer,
    MetadataRecognizer,
    RecognitionContext,
    RecognizerPipeline,
    SectionRecognizer,
    TableRecognizer,
    classify_table,
)
from chtz.styles import ChtzStyles
from tests.helpers import (
    cell,
    full_body,
    heading,
    make_docx,
    meta_table,
    paragraph,
    png_bytes,
    run,
    table,
    write_png,
)


def extract(body, relationships=None, media=None):
    package = PackageReader().read(make_docx(body, relationships, media))
    extractor = ElementExtractor(package['styles'], package['relations'], package['numbering'])
    return extractor.extract(package['body'])


def parsed_table(rows):
    return extract(table(rows))[0]


FUNCTION_ROWS = [
    ['Функция', '• Согласовать заявку'],
    ['№ задачи в реестре ФТТ', 'PROJ-1'],
    ['Сценарий', 'Шаг'],
]


class TestClassifyTable(unittest.TestCase):
    def test_each_table_gets_exactly_one_kind(self):
        cases = [
            (FUNCTION_ROWS, 'function'),
            ([['Термин', 'Определение'], ['ЧТЗ', 'Частное ТЗ']], 'terms'),
            ([['Сокращение/Термин', 'Расшифровка / Определение'], ['А', 'Б']], 'terms'),
            ([['Как есть', 'Как будет'], ['Почта', 'Система']], 'changes'),
            ([['Объект', 'Изменение'], ['Форма', 'Кнопка']], 'regular'),
            ([['Термин', 'Определение']], 'regular'),
            ([['Термин', 'Определение', 'Источник'], ['А', 'Б', 'В']], 'regular'),
        ]
        for rows, expected in cases:
            with self.subTest(expected=expected, header=rows[0]):
                parsed = parsed_table(rows)
                self.assertEqual(classify_table(parsed), expected)
                self.assertEqual(classify_table(parsed), classify_table(parsed))

    def test_table_recognizer_marks_records(self):
        record = TableRecognizer().recognize(parsed_table([['Объект', 'Изменение'], ['**Форма**', 'x']]),
                                             RecognitionContext())
        self.assertEqual(record['type'], 'table')
        self.assertEqual(record['table_type'], 'regular')
        self.assertEqual(record['rows'], [['Объект', 'Изменение'], ['**Форма**', 'x']])

    def test_terms_and_changes_skip_empty_rows(self):
        ctx = RecognitionContext()
        terms = TableRecognizer().recognize(
            parsed_table([['Термин', 'Определение'], ['ЧТЗ', 'Частное  ТЗ'], ['', '']]), ctx)
        self.assertEqual(terms['terms'], [{'term': 'ЧТЗ', 'definition': 'Частное ТЗ'}])
        changes = TableRecognizer().recognize(
            parsed_table([['Как есть', 'Как будет'], ['Почта', 'Система']]), ctx)
        self.assertEqual(changes['changes'], [{'asIs': 'Почта', 'toBe': 'Система'}])


class TestFormatting(unittest.TestCase):
    def test_adjacent_runs_are_merged(self):
        runs = [{'text': 'Жир', 'bold': True}, {'text': 'ный ', 'bold': True}, {'text': 'текст'}]
        self.assertEqual(FormattingRecognizer.format_runs(runs), '**Жирный** текст')

    def test_markers(self):
        cases = [
            ({'text': 'a', 'bold': True, 'italic': True}, '***a***'),
            ({'text': 'a', 'italic': True}, '*a*'),
            ({'text': 'a', 'bold': True, 'strike': True}, '~~**a**~~'),
            ({'text': ' ', 'bold': True}, ' '),
            ({'text': 'сайт', 'hyperlink': {'url': 'https://example.com'}}, '[сайт](https://example.com)'),
            ({'text': 'раздел', 'hyperlink': {'anchor': 'terms'}}, '[раздел](#terms)'),
        ]
        for run_record, expected in cases:
            with self.subTest(expected=expected):
                self.assertEqual(FormattingRecognizer.format_runs([run_record]), expected)

    def test_image_run(self):
        runs = [{'text': '', 'image': {'id': 'rId9', 'alt': 'Схема', 'filename': 'image1.png'}}]
        self.assertEqual(FormattingRecognizer.format_runs(runs, 'pics/'), '![Схема](pics/image1.png)')

    def test_list_helpers(self):
        self.assertTrue(FormattingRecognizer.is_numbered_item('1. Один'))
        self.assertFalse(FormattingRecognizer.is_numbered_item('• Пункт'))
        self.assertEqual(FormattingRecognizer.strip_list_marker('• Пункт'), 'Пункт')
        self.assertEqual(FormattingRecognizer.strip_list_marker('12. Пункт'), 'Пункт')


class TestElementExtractor(unittest.TestCase):
    def test_paragraph_runs_and_properties(self):
        body = paragraph(run('Жирный', bold=True) + '<w:r><w:t>A</w:t><w:tab/><w:t>B</w:t><w:br/></w:r>')
        element = extract(body)[0]
        self.assertEqual(element['text'], 'ЖирныйA\tB\n')
        self.assertTrue(element['runs'][0]['bold'])
        self.assertFalse(element['is_heading'])

    def test_toggle_values(self):
        element = extract(paragraph('<w:r><w:rPr><w:b w:val="0"/><w:i w:val="true"/></w:rPr>'
                                    '<w:t>x</w:t></w:r>'))[0]
        self.assertFalse(element['runs'][0]['bold'])
        self.assertTrue(element['runs'][0]['italic'])

    def test_heading_levels(self):
        elements = extract(heading('Раздел', 1) + heading('Подраздел', 2) + paragraph('x', style='21'))
        self.assertEqual([e['heading_level'] for e in elements], [1, 2, None])

    def test_heading_level_from_style_names(self):
        extractor = ElementExtractor(styles={'a1': {'name': 'Heading 3'}, '1': {'name': 'Normal'}})
        self.assertEqual(extractor.heading_level('a1'), 3)
        self.assertIsNone(extractor.heading_level('1'))

    def test_list_info(self):
        elements = extract(paragraph('Один', num_id='2') + paragraph('Пункт', num_id='1', level=1))
        self.assertEqual(elements[0]['list_info'], {'num_id': '2', 'level': 0, 'kind': 'ordered'})
        self.assertEqual(elements[1]['list_info'], {'num_id': '1', 'level': 1, 'kind': 'bullet'})

    def test_hyperlink_resolves_relationship(self):
        body = paragraph(f'<w:hyperlink r:id="rId5">{run("портал")}</w:hyperlink>')
        element = extract(body, {'rId5': ('hyperlink', 'https://portal.example.com')})[0]
        self.assertEqual(element['runs'][0]['hyperlink']['url'], 'https://portal.example.com')

    def test_drawing_image(self):
        drawing = (
            '<w:r><w:drawing><wp:inline><wp:docPr id="1" name="Рисунок 1" descr="Схема"/>'
            '<a:graphic><a:graphicData><pic:pic><pic:blipFill><a:blip r:embed="rId9"/>'
            '</pic:blipFill></pic:pic></a:graphicData></a:graphic></wp:inline></w:drawing></w:r>'
        )
        elements = extract(paragraph(drawing), {'rId9': ('image', 'media/image1.png')},
                           {'image1.png': png_bytes()})
        image = elements[0]['runs'][0]['image']
        self.assertEqual(image, {'id': 'rId9', 'alt': 'Схема', 'target': 'media/image1.png',
                                 'filename': 'image1.png'})
        self.assertEqual(FormattingRecognizer.format_runs(elements[0]['runs']), '![Схема](images/image1.png)')

    def test_content_controls_are_unwrapped(self):
        body = f'<w:sdt><w:sdtPr/><w:sdtContent>{paragraph("Внутри")}</w:sdtContent></w:sdt>'
        self.assertEqual(extract(body)[0]['text'], 'Внутри')

    def test_cell_span_and_text(self):
        element = extract('<w:tbl><w:tr><w:tc><w:tcPr><w:gridSpan w:val="4"/></w:tcPr>'
                          + paragraph('Раз') + paragraph('Два') + '</w:tc></w:tr></w:tbl>')[0]
        first_cell = element['rows'][0]['cells'][0]
        self.assertEqual(first_cell['grid_span'], 4)
        self.assertEqual(first_cell['text'], 'Раз\nДва')


class TestFunctionTable(unittest.TestCase):
    def scenario_cell(self):
        nested = table([['А', 'Б'], ['1', '2']])
        return cell(paragraph('Шаг один', num_id='2') + paragraph('Шаг два', num_id='2')
                    + paragraph('Пункт', num_id='1') + nested
                    + paragraph('Снова', num_id='2'))

    def test_recognize_function_table(self):
        function_cell = cell(paragraph('<w:bookmarkStart w:id="0" w:name="func-custom"/>'
                                       + run('• Согласовать заявку') + '<w:bookmarkEnd w:id="0"/>'))
        task_cell = cell(paragraph(f'<w:hyperlink r:id="rId5">{run("PROJ-1")}</w:hyperlink>'))
        body = ('<w:tbl><w:tblPr/>'
                f'<w:tr>{cell("Функция")}{function_cell}</w:tr>'
                f'<w:tr>{cell("№ задачи в реестре ФТТ")}{task_cell}</w:tr>'
                f'<w:tr>{cell("Сценарий")}{self.scenario_cell()}</w:tr>'
                '</w:tbl>')
        element = extract(body, {'rId5': ('hyperlink', 'https://tracker.example.com/PROJ-1')})[0]
        self.assertEqual(classify_table(element), 'function')

        record = FunctionTableRecognizer().recognize(element, RecognitionContext())
        self.assertEqual(record['id'], 'func-custom')
        self.assertEqual(record['function'], 'Согласовать заявку')
        self.assertEqual(record['task'], 'PROJ-1')
        self.assertEqual(record['taskUrl'], 'https://tracker.example.com/PROJ-1')
        self.assertEqual(record['scenario'], '\n'.join([
            '1. Шаг один',
            '2. Шаг два',
            '- Пункт',
            '| А | Б |',
            '| --- | --- |',
            '| 1 | 2 |',
            '1. Снова',
        ]))

    def test_bare_url_in_task(self):
        element = parsed_table([FUNCTION_ROWS[0],
                                ['№ задачи', 'PROJ-9 https://tracker.example.com/PROJ-9'],
                                FUNCTION_ROWS[2]])
        record = FunctionTableRecognizer().recognize(element, RecognitionContext())
        self.assertEqual(record['taskUrl'], 'https://tracker.example.com/PROJ-9')
        self.assertEqual(record['id'], 'func-согласовать-заявку')

    def test_generated_ids(self):
        recognizer = FunctionTableRecognizer()
        self.assertEqual(recognizer.generate_id('Согласовать заявку клиента быстро', ''),
                         'func-согласовать-заявку-клиента')
        self.assertEqual(recognizer.generate_id('Да', 'PROJ-7'), 'func-proj-7')
        self.assertEqual(recognizer.generate_id('', ''), 'func')

    def test_colliding_ids_get_suffixes(self):
        ctx = RecognitionContext()
        element = parsed_table(FUNCTION_ROWS)
        ids = [FunctionTableRecognizer().recognize(element, ctx)['id'] for _ in range(3)]
        self.assertEqual(ids, ['func-согласовать-заявку', 'func-согласовать-заявку-2',
                               'func-согласовать-заявку-3'])

    def test_scenario_image_keeps_its_place(self):
        with tempfile.TemporaryDirectory() as tmp:
            write_png(Path(tmp) / 'images' / 'pic.png')
            context = BuildContext(ChtzStyles.defaults(), RelationshipsManager(), images_dir=Path(tmp))
            xml = FunctionTableEmitter(context).build({
                'id': 'func-x',
                'function': 'Функция',
                'task': 'T-1',
                'taskUrl': 'https://example.com/T-1',
                'scenario': '1. Шаг один\n![Схема](images/pic.png){width="50%"}\n2. Шаг два',
            })
        relationships = {rel['id']: (rel['type'].rsplit('/', 1)[1], rel['target'])
                         for rel in context.relationships.relationships}
        element = extract(xml, relationships, {'image1.png': png_bytes()})[0]
        self.assertEqual(classify_table(element), 'function')

        record = FunctionTableRecognizer().recognize(element, RecognitionContext())
        self.assertEqual(record['scenario'].split('\n'),
                         ['1. Шаг один', '![Схема](images/image1.png)', '1. Шаг два'])
        self.assertEqual(record['taskUrl'], 'https://example.com/T-1')


class TestMetadataRecognizer(unittest.TestCase):
    def test_yes_no(self):
        for value, expected in (('Да', True), ('да', True), ('yes', True), (' ДА ', True),
                                ('Нет', False), ('', False), ('может быть', False)):
            with self.subTest(value=value):
                self.assertIs(MetadataRecognizer.parse_yes_no(value), expected)

    def test_main_and_history_tables(self):
        result = MetadataRecognizer().recognize(extract(full_body()))
        metadata = result['metadata']
        self.assertEqual(metadata['shortName'], 'Изменение')
        self.assertEqual(metadata['consultant'], {'name': 'Петров П.П.', 'email': 'petrov@example.com'})
        self.assertEqual(metadata['organization'], 'АО Пример')
        self.assertEqual(metadata['itSolutions'], ['Решение А', 'Решение Б'])
        self.assertEqual(metadata['itSystems'], ['Система 1', 'Система 2'])
        self.assertTrue(metadata['processKT'])
        self.assertFalse(metadata['processPDn'])
        self.assertEqual(metadata['createdDate'], '01.02.2024')
        self.assertEqual(result['history'], [{'version': '1.0', 'date': '01.02.2024',
                                              'comment': 'Создание', 'author': 'Петров'}])
        self.assertEqual(result['table_indices'], {0, 1})
        self.assertEqual(result['warnings'], [])

    def test_related_documents(self):
        related = table([['Название документа', 'Номер версии / Имя файла', 'Дата'],
                         ['ФТТ', 'ftt.docx', '01.01.2024']])
        result = MetadataRecognizer().recognize(extract(meta_table() + related + heading('1. Термины')))
        self.assertEqual(result['related_docs'], [{'name': 'ФТТ', 'version': 'ftt.docx',
                                                   'date': '01.01.2024'}])

    def test_missing_metadata_table(self):
        result = MetadataRecognizer().recognize(extract(heading('1. Термины') + paragraph('x')))
        self.assertEqual([w['code'] for w in result['warnings']], ['METADATA_TABLE_MISSING'])
        self.assertEqual(result['metadata']['shortName'], '')
        self.assertRegex(result['metadata']['createdDate'], r'^\d{2}\.\d{2}\.\d{4}$')
        self.assertEqual(result['history'][0]['comment'], 'Конвертировано из DOCX')

    def test_tables_after_first_heading_are_not_metadata(self):
        result = MetadataRecognizer().recognize(extract(heading('1. Термины') + meta_table()))
        self.assertEqual(result['table_indices'], set())


class TestSectionRecognizer(unittest.TestCase):
    def recognize(self, body):
        elements = extract(body)
        meta = MetadataRecognizer().recognize(elements)
        return SectionRecognizer().recognize(elements, meta['table_indices'], RecognitionContext())

    def test_known_sections(self):
        sections = self.recognize(full_body())
        self.assertEqual([s['id'] for s in sections], [
            'terms', 'background', 'changes', 'it-changes', 'integrations',
            'pdn', 'input-forms', 'output-forms', 'roles', 'appendix',
        ])
        first_item = sections[0]['content'][0]
        self.assertEqual((first_item['type'], first_item['text']), ('paragraph', 'Текст раздела.'))

    def test_subsection_tree(self):
        body = full_body({2: heading('2.1 Цель', 2) + paragraph('Текст')
                          + heading('2.1.1 Деталь', 3) + paragraph('Деталь')
                          + heading('2.2 Ситуация', 2)})
        background = self.recognize(body)[1]
        self.assertEqual(len(background['content']), 5)
        self.assertEqual([s['id'] for s in background['subsections']], ['background-1', 'background-2'])
        first_sub = background['subsections'][0]
        self.assertEqual(first_sub['title'], '2.1 Цель')
        self.assertEqual([item['text'] for item in first_sub['content']], ['Текст'])
        self.assertEqual(first_sub['subsections'][0]['id'], 'background-1-1')
        self.assertEqual([item['text'] for item in first_sub['subsections'][0]['content']], ['Деталь'])

    def test_unknown_and_duplicate_titles(self):
        sections = self.recognize(heading('Приложение А: схемы') + heading('Приложение А: схемы'))
        self.assertEqual([s['id'] for s in sections], ['приложение-а-схемы', 'приложение-а-схемы-2'])
        self.assertIsNone(sections[0]['known_type'])

    def test_headings_before_first_section_are_kept(self):
        sections = self.recognize(heading('Вступление', 2) + paragraph('потеряется') + heading('Раздел'))
        self.assertEqual(len(sections), 1)
        self.assertEqual(sections[0]['subsections'][0]['title'], 'Вступление')
        self.assertEqual(sections[0]['content'], [{'type': 'heading', 'level': 2, 'text': 'Вступление'}])

    def test_content_kinds(self):
        body = full_body({5: paragraph('Раздел не применим для данного документа.'),
                          9: paragraph('Руководитель', num_id='2') + paragraph('') + table(FUNCTION_ROWS)})
        sections = self.recognize(body)
        self.assertEqual(sections[4]['content'][0], {'type': 'empty-section',
                                                     'text': 'Раздел не применим для данного документа.'})
        roles = sections[8]['content']
        self.assertEqual([item['type'] for item in roles], ['list-item', 'table'])
        self.assertTrue(roles[0]['ordered'])
        self.assertEqual(roles[1]['table_type'], 'function')


class TestPipeline(unittest.TestCase):
    def test_recognize_package(self):
        package = PackageReader().read(make_docx(full_body(), media={'image1.png': png_bytes()}))
        result = RecognizerPipeline().recognize(package)
        self.assertEqual(set(result), {'metadata', 'history', 'related_docs', 'sections',
                                       'images', 'warnings'})
        self.assertEqual(len(result['sections']), 10)
        self.assertEqual(result['images'][0]['filename'], 'image1.png')
        self.assertEqual(result['images'][0]['content_type'], 'image/png')


if __name__ == '__main__':
    unittest.main()
