"""
Построители XML фрагментов document.xml.

ContentEmitter превращает AST mistune в параграфы, TableEmitter строит
таблицы (обычные, терминов, изменений, примечаний), FunctionTableEmitter -
таблицы функций со сценариями, ImageEmitter - встроенные изображения,
MetaTableEmitter - таблицы метаданных в начале документа.

Все построители получают один BuildContext на документ: через него
выделяются идентификаторы закладок, связей и изображений.
"""
import re
from typing import Dict, List, Any, Optional, Tuple

from PIL import Image

from .parser import (
    DEFAULT_EMPTY_SECTION_TEXT,
    parse_scenario_markdown,
    split_image_url,
    token_text,
)
from .xml_utils import ChtzXmlUtils as X


BR_RE = re.compile(r'<br\s*/?>', re.IGNORECASE)
INLINE_MARKDOWN_RE = re.compile(
    r'\[([^\]]+)\]\(([^)]+)\)'
    r'|\*\*\*([^*]+)\*\*\*'
    r'|\*\*([^*]+)\*\*'
    r'|\*([^*]+)\*'
    r'|~~([^~]+)~~'
)

NOTE_TYPES = ('info', 'warning', 'danger')

EMU_PER_PIXEL = 9525
CONTENT_WIDTH = 9500


def heading_bookmark_name(text: str, bookmark_id: int) -> str:
    """Имя закладки заголовка: нижний регистр, дефисы вместо пробелов, до 40 символов."""
    slug = re.sub(r'[^\w\s-]', '', text.lower()).strip()
    slug = re.sub(r'\s+', '-', slug)[:40]
    return slug or f'heading-{bookmark_id}'


def even_widths(columns: int, total: int = CONTENT_WIDTH) -> List[int]:
    columns = max(columns, 1)
    return [total // columns] * columns


def format_inline_markdown(text: str, context, base_style: Optional[Dict[str, Any]] = None) -> str:
    """
    Runs для строки с упрощённой разметкой: ссылки, ***, **, *, ~~.

    Используется для текста внутри директив, который не проходит через
    mistune.
    """
    base_style = dict(base_style or {})
    runs: List[str] = []
    position = 0
    for match in INLINE_MARKDOWN_RE.finditer(text):
        if match.start() > position:
            runs.append(X.text_run(text[position:match.start()], base_style))
        link_text, url, bold_italic, bold, italic, strike = match.groups()
        if link_text is not None:
            runs.append(link_xml(link_text.replace('**', ''), url.strip(), context, base_style))
        elif bold_italic is not None:
            runs.append(X.text_run(bold_italic, {**base_style, 'bold': True, 'italic': True}))
        elif bold is not None:
            runs.append(X.text_run(bold, {**base_style, 'bold': True}))
        elif italic is not None:
            runs.append(X.text_run(italic, {**base_style, 'italic': True}))
        else:
            runs.append(X.text_run(strike, {**base_style, 'strike': True}))
        position = match.end()
    if position < len(text):
        runs.append(X.text_run(text[position:], base_style))
    return "".join(runs)


def link_xml(text: str, url: str, context, style: Optional[Dict[str, Any]] = None) -> str:
    """Ссылка: #якорь - внутренняя, http/mailto - через связь, иначе оформленный текст."""
    color = context.styles['colors']['hyperlink']
    if url.startswith('#'):
        return X.internal_link(text, url[1:], style, color)
    if re.match(r'^(https?://|mailto:)', url, re.IGNORECASE):
        r_id = context.add_hyperlink(url)
        return X.hyperlink(text, r_id, style, color)
    return X.text_run(text, {**(style or {}), 'color': color, 'underline': True})


# ============================================================================
# ИЗОБРАЖЕНИЯ
# ============================================================================

class ImageEmitter:
    """Встроенные изображения wp:inline."""

    def __init__(self, context):
        self.context = context

    @staticmethod
    def pixels_to_emu(pixels: int) -> int:
        return int(round(pixels * EMU_PER_PIXEL))

    @staticmethod
    def parse_width_attribute(value: Optional[str], original: int, max_width: int) -> int:
        """
        Ширина изображения в пикселях.

        Args:
            value: '50%' (от max_width), '300px', '300' или None
            original: Исходная ширина изображения
            max_width: Максимальная ширина области текста

        Returns:
            int: Ширина, не больше max_width для значения по умолчанию
        """
        fallback = max(1, min(original, max_width))
        if not value:
            return fallback
        value = str(value).strip()
        percent = re.match(r'^(\d+(?:\.\d+)?)%$', value)
        if percent:
            return max(1, int(round(max_width * float(percent.group(1)) / 100)))
        pixels = re.match(r'^(\d+(?:\.\d+)?)(px)?$', value)
        if pixels:
            return max(1, int(round(float(pixels.group(1)))))
        return fallback

    def get_image_dimensions(self, path) -> Tuple[int, int]:
        """Размер изображения в пикселях, при ошибке чтения - размер по умолчанию."""
        try:
            with Image.open(path) as img:
                return img.size
        except (OSError, ValueError) as e:
            print(f"⚠️ Не удалось определить размер {path}: {e}")
            return tuple(self.context.default_image_size)

    def drawing_xml(self, r_id: str, width_px: int, height_px: int, doc_pr_id: int,
                    name: str, description: str) -> str:
        cx = self.pixels_to_emu(width_px)
        cy = self.pixels_to_emu(height_px)
        name = X.escape_xml(name)
        description = X.escape_xml(description)
        return (
            '<w:drawing>'
            '<wp:inline distT="0" distB="0" distL="0" distR="0">'
            f'<wp:extent cx="{cx}" cy="{cy}"/>'
            '<wp:effectExtent l="0" t="0" r="0" b="0"/>'
            f'<wp:docPr id="{doc_pr_id}" name="{name}" descr="{description}"/>'
            '<wp:cNvGraphicFramePr>'
            '<a:graphicFrameLocks xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main" noChangeAspect="1"/>'
            '</wp:cNvGraphicFramePr>'
            '<a:graphic xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main">'
            '<a:graphicData uri="http://schemas.openxmlformats.org/drawingml/2006/picture">'
            '<pic:pic xmlns:pic="http://schemas.openxmlformats.org/drawingml/2006/picture">'
            f'<pic:nvPicPr><pic:cNvPr id="0" name="{name}"/><pic:cNvPicPr/></pic:nvPicPr>'
            f'<pic:blipFill><a:blip r:embed="{r_id}"/><a:stretch><a:fillRect/></a:stretch></pic:blipFill>'
            '<pic:spPr>'
            f'<a:xfrm><a:off x="0" y="0"/><a:ext cx="{cx}" cy="{cy}"/></a:xfrm>'
            '<a:prstGeom prst="rect"><a:avLst/></a:prstGeom>'
            '</pic:spPr>'
            '</pic:pic>'
            '</a:graphicData>'
            '</a:graphic>'
            '</wp:inline>'
            '</w:drawing>'
        )

    def image_run(self, url: str, alt: str = '', attributes: Optional[Dict[str, str]] = None) -> str:
        """Run с изображением или текстовой заглушкой."""
        attributes = attributes or {}
        muted = {'italic': True, 'color': self.context.styles['colors']['muted']}

        if re.match(r'^(https?:|data:)', url, re.IGNORECASE):
            self.context.warn('IMAGE_NOT_FOUND', f'Внешние изображения не встраиваются: {url}')
            return X.text_run(f'[Изображение: {url}]', muted)

        descriptor = self.context.add_image(url)
        if descriptor is None:
            return X.text_run(f'[Изображение не найдено: {url}]', muted)

        original_width, original_height = self.get_image_dimensions(descriptor['source'])
        width = self.parse_width_attribute(attributes.get('width'), original_width,
                                           self.context.max_image_width)
        if attributes.get('height') and re.match(r'^\d+(px)?$', attributes['height']):
            height = int(attributes['height'].replace('px', ''))
        else:
            height = max(1, int(round(original_height * width / max(original_width, 1))))

        drawing = self.drawing_xml(descriptor['r_id'], width, height, self.context.next_doc_pr_id(),
                                   descriptor['name'], alt or descriptor['name'])
        return f'<w:r>{drawing}</w:r>'

    def image_paragraph(self, url: str, alt: str = '',
                        attributes: Optional[Dict[str, str]] = None) -> str:
        return X.paragraph(self.image_run(url, alt, attributes), {'align': 'center'})


# ============================================================================
# ТАБЛИЦЫ
# ============================================================================

class TableEmitter:
    """Примитивы таблиц и готовые таблицы терминов, изменений, примечаний."""

    def __init__(self, context):
        self.context = context
        self.styles = context.styles

    @property
    def header_run_style(self) -> Dict[str, Any]:
        return {'bold': True, 'color': self.styles['colors']['tableHeaderText']}

    def cell(self, content: str, options: Optional[Dict[str, Any]] = None) -> str:
        """
        Ячейка таблицы w:tc.

        Args:
            content: XML параграфов или runs (runs оборачиваются в w:p)
            options: width, span, v_merge, borders, shading, padding, v_align
        """
        options = options or {}
        tcpr = []
        if options.get('width'):
            tcpr.append(f'<w:tcW w:w="{options["width"]}" w:type="dxa"/>')
        if options.get('span', 1) > 1:
            tcpr.append(f'<w:gridSpan w:val="{options["span"]}"/>')
        if options.get('v_merge'):
            merge = options['v_merge']
            tcpr.append('<w:vMerge w:val="restart"/>' if merge == 'restart' else '<w:vMerge/>')
        if options.get('borders', True):
            color = options.get('border_color', self.styles['colors']['tableBorder'])
            tcpr.append('<w:tcBorders>' + "".join(
                f'<w:{side} w:val="single" w:sz="4" w:space="0" w:color="{color}"/>'
                for side in ('top', 'left', 'bottom', 'right')
            ) + '</w:tcBorders>')
        if options.get('shading'):
            tcpr.append(f'<w:shd w:val="clear" w:color="auto" w:fill="{options["shading"]}"/>')
        padding = options.get('padding')
        if padding:
            tcpr.append('<w:tcMar>' + "".join(
                f'<w:{side} w:w="{padding[side]}" w:type="dxa"/>'
                for side in ('top', 'left', 'bottom', 'right') if side in padding
            ) + '</w:tcMar>')
        tcpr.append(f'<w:vAlign w:val="{options.get("v_align", "top")}"/>')

        if not content or not content.lstrip().startswith(('<w:p', '<w:tbl')):
            content = X.paragraph(content or '')
        elif content.rstrip().endswith('</w:tbl>'):
            # ячейка должна заканчиваться параграфом
            content = content + '<w:p/>'
        return f'<w:tc><w:tcPr>{"".join(tcpr)}</w:tcPr>{content}</w:tc>'

    @staticmethod
    def row(cells: List[str], options: Optional[Dict[str, Any]] = None) -> str:
        options = options or {}
        trpr = []
        if options.get('header'):
            trpr.append('<w:tblHeader/>')
        if options.get('height'):
            trpr.append(f'<w:trHeight w:val="{options["height"]}"/>')
        trpr_xml = f'<w:trPr>{"".join(trpr)}</w:trPr>' if trpr else ''
        return f'<w:tr>{trpr_xml}{"".join(cells)}</w:tr>'

    def table(self, rows: List[str], widths: List[int], options: Optional[Dict[str, Any]] = None) -> str:
        """Таблица w:tbl шириной 100% с сеткой колонок."""
        options = options or {}
        border_color = options.get('border_color', self.styles['colors']['tableBorder'])
        margins = options.get('cell_margin', self.styles['table']['cellPadding'])
        borders = "".join(
            f'<w:{side} w:val="single" w:sz="4" w:space="0" w:color="{border_color}"/>'
            for side in ('top', 'left', 'bottom', 'right', 'insideH', 'insideV')
        )
        cell_margin = "".join(
            f'<w:{side} w:w="{margins[side]}" w:type="dxa"/>'
            for side in ('top', 'left', 'bottom', 'right')
        )
        grid = "".join(f'<w:gridCol w:w="{width}"/>' for width in widths)
        return (
            '<w:tbl>'
            f'<w:tblPr><w:tblStyle w:val="{self.styles["styleIds"]["tableGrid"]}"/>'
            f'<w:tblW w:w="{options.get("width", 5000)}" w:type="pct"/>'
            f'<w:tblBorders>{borders}</w:tblBorders>'
            '<w:tblLayout w:type="fixed"/>'
            f'<w:tblCellMar>{cell_margin}</w:tblCellMar>'
            '<w:tblLook w:val="04A0" w:firstRow="1" w:lastRow="0" w:firstColumn="1" '
            'w:lastColumn="0" w:noHBand="0" w:noVBand="1"/>'
            '</w:tblPr>'
            f'<w:tblGrid>{grid}</w:tblGrid>'
            f'{"".join(rows)}'
            '</w:tbl>'
        )

    def header_cell(self, runs: str, width: int, span: int = 1) -> str:
        return self.cell(X.paragraph(runs), {
            'width': width,
            'span': span,
            'shading': self.styles['colors']['tableHeaderBackground'],
        })

    def text_paragraphs(self, text: str, style: Optional[Dict[str, Any]] = None) -> str:
        """Текст ячейки: каждый фрагмент между <br> - отдельный параграф."""
        parts = BR_RE.split(text or '')
        return "".join(X.paragraph(X.text_run(part, style) if part else '') for part in parts)

    def data_table(self, header_runs: List[str], rows: List[List[str]],
                   widths: Optional[List[int]] = None) -> str:
        """
        Таблица с заголовком. Содержимое ячеек - готовые XML runs или параграфы.
        """
        columns = max([len(header_runs)] + [len(row) for row in rows] + [1])
        widths = widths or even_widths(columns)
        table_rows = []
        if header_runs:
            table_rows.append(self.row(
                [self.header_cell(runs, widths[i % len(widths)]) for i, runs in enumerate(header_runs)],
                {'header': True},
            ))
        for row in rows:
            cells = list(row) + [''] * (columns - len(row))
            table_rows.append(self.row(
                [self.cell(content, {'width': widths[i % len(widths)]})
                 for i, content in enumerate(cells[:columns])]
            ))
        return self.table(table_rows, widths)

    def simple_table(self, headers: List[str], rows: List[List[str]],
                     widths: Optional[List[int]] = None) -> str:
        """Таблица из строк текста, <br> в ячейке разбивает её на параграфы."""
        header_runs = [X.text_run(BR_RE.sub('\n', header), self.header_run_style) for header in headers]
        body = [[self.text_paragraphs(cell) for cell in row] for row in rows]
        return self.data_table(header_runs, body, widths)

    @staticmethod
    def _two_columns(rows: List[List[str]]) -> List[List[str]]:
        result = []
        for row in rows:
            cells = (list(row) + ['', ''])[:2]
            if any(cell.strip() for cell in cells):
                result.append(cells)
        return result

    def terms_table(self, table: Dict[str, Any]) -> str:
        rows = self._two_columns(table.get('rows', []))
        if not rows:
            return ''
        headers = table.get('headers') or ['Сокращение/Термин', 'Расшифровка / Определение']
        return self.simple_table(headers[:2], rows, [3000, 6500])

    def changes_table(self, table: Dict[str, Any]) -> str:
        rows = self._two_columns(table.get('rows', []))
        if not rows:
            return ''
        headers = table.get('headers') or ['Описание функции «Как есть»', 'Описание функции «Как будет»']
        return self.simple_table(headers[:2], rows, [4750, 4750])

    def note(self, note_type: str, text: str) -> str:
        """Примечание: таблица из одной ячейки с заливкой по типу из colors."""
        colors = self.styles['colors']
        if note_type not in NOTE_TYPES:
            note_type = 'info'
        background = colors[note_type]
        border = colors.get(f'{note_type}Border', background)
        paragraphs = "".join(
            X.paragraph(format_inline_markdown(line.strip(), self.context))
            for line in (text or '').split('\n') if line.strip()
        ) or X.paragraph()
        cell = self.cell(paragraphs, {
            'width': CONTENT_WIDTH,
            'shading': background,
            'border_color': border,
            'padding': {'top': 120, 'bottom': 120, 'left': 200, 'right': 200},
        })
        return self.table([self.row([cell])], [CONTENT_WIDTH], {'border_color': border})

    def empty_section(self, text: str = '') -> str:
        return X.paragraph(
            X.text_run(text or DEFAULT_EMPTY_SECTION_TEXT,
                       {'italic': True, 'color': self.styles['colors']['muted']}),
            {'style': self.styles['styleIds']['normal']},
        )


# ============================================================================
# ТАБЛИЦА ФУНКЦИИ
# ============================================================================

class FunctionTableEmitter:
    """Таблица функции: Функция, № задачи в реестре ФТТ, Сценарий."""

    LABEL_WIDTH = 1500
    CONTENT_WIDTH = 8000

    def __init__(self, context):
        self.context = context
        self.styles = context.styles
        self.tables = TableEmitter(context)
        self.images = ImageEmitter(context)

    def label_cell(self, label: str) -> str:
        return self.tables.cell(
            X.paragraph(X.text_run(label, self.tables.header_run_style)),
            {'width': self.LABEL_WIDTH, 'shading': self.styles['colors']['tableHeaderBackground'],
             'v_align': 'top'},
        )

    def content_cell(self, content: str) -> str:
        return self.tables.cell(content, {'width': self.CONTENT_WIDTH})

    def function_paragraph(self, record: Dict[str, Any]) -> str:
        runs = '<w:r><w:t xml:space="preserve">• </w:t></w:r>' + \
            format_inline_markdown(record.get('function', ''), self.context)
        anchor = record.get('id')
        if not anchor:
            return f'<w:p>{runs}</w:p>'
        bookmark_id = self.context.next_bookmark_id()
        name = self.context.unique_bookmark_name(anchor)
        return f'<w:p>{X.bookmark(bookmark_id, name, runs)}</w:p>'

    def task_paragraph(self, record: Dict[str, Any]) -> str:
        task = record.get('task', '')
        url = record.get('taskUrl', '')
        if url and re.match(r'^https?://', url, re.IGNORECASE):
            r_id = self.context.add_hyperlink(url)
            return X.paragraph(X.hyperlink(task or url, r_id, None, self.styles['colors']['hyperlink']))
        if task:
            return X.paragraph(format_inline_markdown(task, self.context))
        return '<w:p/>'

    def scenario_content(self, scenario: str) -> str:
        """XML сценария: параграфы, пункты списков, изображения и вложенные таблицы."""
        parts = []
        ids = self.styles['styleIds']
        numbering = self.styles['numberingIds']
        for block in parse_scenario_markdown(scenario):
            kind = block['type']
            if kind == 'numbered':
                parts.append(X.paragraph(
                    format_inline_markdown(block['text'], self.context),
                    {'style': ids['listParagraph'],
                     'numbering': {'num_id': numbering['decimal'], 'level': block['level']}},
                ))
            elif kind == 'bullet':
                parts.append(X.paragraph(
                    format_inline_markdown(block['text'], self.context),
                    {'style': ids['listParagraph'],
                     'numbering': {'num_id': numbering['bullet'], 'level': block['level']}},
                ))
            elif kind == 'image':
                parts.append(self.images.image_paragraph(block['url'], block['alt'], block['attributes']))
            elif kind == 'table':
                columns = max([len(block['headers'])] + [len(row) for row in block['rows']] + [1])
                parts.append(self.tables.simple_table(
                    block['headers'], block['rows'], even_widths(columns, self.CONTENT_WIDTH - 300)))
            else:
                parts.append(X.paragraph(format_inline_markdown(block['text'], self.context)))
        return "".join(parts) or '<w:p/>'

    def build(self, record: Dict[str, Any]) -> str:
        rows = [
            self.tables.row([self.label_cell('Функция'),
                             self.content_cell(self.function_paragraph(record))]),
            self.tables.row([self.label_cell('№ задачи в реестре ФТТ'),
                             self.content_cell(self.task_paragraph(record))]),
            self.tables.row([self.label_cell('Сценарий'),
                             self.content_cell(self.scenario_content(record.get('scenario', '')))]),
        ]
        return self.tables.table(rows, [self.LABEL_WIDTH, self.CONTENT_WIDTH])


# ============================================================================
# ТАБЛИЦЫ МЕТАДАННЫХ
# ============================================================================

class MetaTableEmitter:
    """Шапка ЧТЗ: общее описание, история изменений, связанные документы."""

    META_WIDTHS = [2500, 4500, 1000, 2500]
    HISTORY_WIDTHS = [1000, 1500, 5000, 2000]
    RELATED_WIDTHS = [5500, 2500, 1500]

    def __init__(self, context):
        self.context = context
        self.tables = TableEmitter(context)

    def _label(self, text: str, width: int) -> str:
        return self.tables.cell(X.paragraph(X.text_run(text, {'bold': True})), {'width': width})

    def _value(self, text: str, width: int, span: int = 1) -> str:
        return self.tables.cell(X.paragraph(X.text_run(text) if text else ''),
                                {'width': width, 'span': span})

    def meta_table(self, metadata: Dict[str, Any]) -> str:
        w = self.META_WIDTHS
        value_width = w[1] + w[2] + w[3]
        consultant = metadata.get('consultant') or {}

        def field(label: str, value: str) -> str:
            return self.tables.row([self._label(label, w[0]), self._value(value, value_width, 3)])

        rows = [
            self.tables.row([self.tables.header_cell(
                X.text_run('Общее описание изменения', self.tables.header_run_style), sum(w), 4)],
                {'header': True}),
            field('Краткое название изменения:', metadata.get('shortName', '')),
            self.tables.row([
                self._label('Консультант:', w[0]),
                self._value(consultant.get('name', ''), w[1]),
                self._label('E-mail:', w[2]),
                self._value(consultant.get('email', ''), w[3]),
            ]),
            field('Наименование организации Заказчика:', metadata.get('organization', '')),
            field('Наименование ИТ-решений (ЕСИС):', ', '.join(metadata.get('itSolutions') or [])),
            field('Наименование ИТ-систем (ЕСИС):', ', '.join(metadata.get('itSystems') or [])),
            field('Планируется обработка данных КТ:', 'Да' if metadata.get('processKT') else 'Нет'),
            field('Планируется обработка данных ПДн:', 'Да' if metadata.get('processPDn') else 'Нет'),
            field('Дата создания ЧТЗ:', metadata.get('createdDate', '')),
        ]
        return self.tables.table(rows, w)

    def history_table(self, history: List[Dict[str, Any]]) -> str:
        title = X.paragraph(X.text_run('История изменений:', {'bold': True}),
                            {'spacing': {'before': 240, 'after': 120}})
        rows = [[entry.get('version', ''), entry.get('date', ''),
                 entry.get('comment', ''), entry.get('author', '')] for entry in history]
        table = self.tables.simple_table(['Версия', 'Дата', 'Комментарий', 'Автор'], rows,
                                         self.HISTORY_WIDTHS)
        return title + table

    def related_docs_table(self, related_docs: List[Dict[str, Any]]) -> str:
        if not related_docs:
            return ''
        title = X.paragraph(X.text_run('Связанные документы', {'bold': True}),
                            {'spacing': {'before': 240, 'after': 60}})
        subtitle = X.paragraph(X.text_run('(этот документ должен читаться вместе с):',
                                          {'italic': True}))
        rows = [[doc.get('name', ''), doc.get('version', ''), doc.get('date', '')]
                for doc in related_docs]
        table = self.tables.simple_table(
            ['Название документа', 'Номер версии / Имя файла', 'Дата'], rows, self.RELATED_WIDTHS)
        return title + subtitle + table


# ============================================================================
# СОДЕРЖИМОЕ MARKDOWN
# ============================================================================

class ContentEmitter:
    """Преобразование блоков AST mistune и директив в XML."""

    def __init__(self, context):
        self.context = context
        self.styles = context.styles
        self.tables = TableEmitter(context)
        self.functions = FunctionTableEmitter(context)
        self.images = ImageEmitter(context)

    def render_blocks(self, blocks: List[Dict[str, Any]]) -> str:
        return "\n".join(xml for xml in (self.render_block(block) for block in blocks) if xml)

    def render_block(self, token: Dict[str, Any], props: Optional[Dict[str, Any]] = None) -> str:
        kind = token.get('type')
        if kind == 'heading':
            return self.heading(token)
        if kind == 'paragraph' or kind == 'block_text':
            return self.paragraph(token.get('children', []), props)
        if kind == 'list':
            return self.list(token, 0)
        if kind == 'block_code':
            return self.code_block(token.get('raw', ''))
        if kind == 'block_quote':
            quote_props = {'indent': {'left': 720}}
            return "".join(self.render_block(child, quote_props) for child in token.get('children', []))
        if kind == 'table':
            return self.table(token)
        if kind == 'thematic_break':
            return X.paragraph('', {'style': self.styles['styleIds']['normal']})
        if kind == 'directive':
            return self.directive(token['directive'])
        return ''

    # ------------------------------------------------------------------------
    # Inline
    # ------------------------------------------------------------------------

    def inline(self, tokens: List[Dict[str, Any]], style: Optional[Dict[str, Any]] = None) -> str:
        style = style or {}
        parts = []
        for index, token in enumerate(tokens):
            kind = token.get('type')
            if kind == 'text':
                raw = token.get('raw', '')
                if index > 0 and tokens[index - 1].get('type') == 'image':
                    raw = re.sub(r'^\s*\{[^}]*\}', '', raw)
                if raw:
                    parts.append(X.text_run(raw, style))
            elif kind == 'strong':
                parts.append(self.inline(token.get('children', []), {**style, 'bold': True}))
            elif kind == 'emphasis':
                parts.append(self.inline(token.get('children', []), {**style, 'italic': True}))
            elif kind == 'strikethrough':
                parts.append(self.inline(token.get('children', []), {**style, 'strike': True}))
            elif kind == 'codespan':
                parts.append(X.text_run(token.get('raw', ''),
                                        {**style, 'font': self.styles['fonts']['code'], 'size': 20}))
            elif kind == 'link':
                url = split_image_url(token.get('attrs', {}).get('url', ''))[0]
                parts.append(link_xml(token_text(token.get('children', [])), url, self.context, style))
            elif kind == 'image':
                url, attributes = self._image_source(tokens, index)
                parts.append(self.images.image_run(url, token_text(token.get('children', [])), attributes))
            elif kind == 'linebreak':
                parts.append('<w:r><w:br/></w:r>')
            elif kind == 'softbreak':
                parts.append(X.text_run(' ', style))
            elif kind == 'inline_html':
                if BR_RE.fullmatch(token.get('raw', '').strip()):
                    parts.append('<w:r><w:br/></w:r>')
                else:
                    parts.append(X.text_run(token.get('raw', ''), style))
            else:
                text = token_text(token)
                if text:
                    parts.append(X.text_run(text, style))
        return "".join(parts)

    @staticmethod
    def _image_source(tokens: List[Dict[str, Any]], index: int) -> Tuple[str, Dict[str, str]]:
        """Адрес и атрибуты изображения, атрибуты могут идти текстом следом."""
        token = tokens[index]
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        trailing = ''
        if following and following.get('type') == 'text' \
                and following.get('raw', '').lstrip().startswith('{'):
            trailing = following['raw'].strip()
        return split_image_url(token.get('attrs', {}).get('url', ''), trailing)

    # ------------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------------

    def heading(self, token: Dict[str, Any]) -> str:
        level = token.get('attrs', {}).get('level', 1)
        text = token_text(token.get('children', []))
        style_key = f'heading{min(max(level, 1), 5)}'
        style_id = self.styles['styleIds'].get(style_key, self.styles['styleIds']['heading3'])

        bookmark_id = self.context.next_bookmark_id()
        name = self.context.unique_bookmark_name(heading_bookmark_name(text, bookmark_id))
        self.context.stats['headings'] += 1

        content = X.bookmark(bookmark_id, name, self.inline(token.get('children', [])))
        return X.paragraph(content, {'style': style_id, 'keep_next': True})

    @staticmethod
    def _lone_image(children: List[Dict[str, Any]]) -> Optional[int]:
        """Индекс изображения, если кроме него в параграфе только пробелы и {атрибуты}."""
        image_index = None
        for index, child in enumerate(children):
            kind = child.get('type')
            if kind == 'image' and image_index is None:
                image_index = index
            elif kind == 'text' and not child.get('raw', '').strip():
                continue
            elif kind == 'text' and image_index == index - 1 \
                    and re.fullmatch(r'\s*\{[^}]*\}\s*', child.get('raw', '')):
                continue
            else:
                return None
        return image_index

    def paragraph(self, children: List[Dict[str, Any]], props: Optional[Dict[str, Any]] = None) -> str:
        index = self._lone_image(children)
        if index is not None:
            url, attributes = self._image_source(children, index)
            alt = token_text(children[index].get('children', []))
            return self.images.image_paragraph(url, alt, attributes)
        if props is None:
            props = {'style': self.styles['styleIds']['normal']}
        return X.paragraph(self.inline(children), props)

    def list(self, token: Dict[str, Any], level: int) -> str:
        ordered = token.get('attrs', {}).get('ordered', False)
        num_id = self.styles['numberingIds']['decimal' if ordered else 'bullet']
        props = {
            'style': self.styles['styleIds']['listParagraph'],
            'numbering': {'num_id': num_id, 'level': level},
        }
        parts = []
        for item in token.get('children', []):
            for child in item.get('children', []):
                kind = child.get('type')
                if kind in ('block_text', 'paragraph'):
                    parts.append(X.paragraph(self.inline(child.get('children', [])), props))
                elif kind == 'list':
                    parts.append(self.list(child, level + 1))
                else:
                    parts.append(self.render_block(child))
        return "".join(parts)

    def code_block(self, code: str) -> str:
        style = {'font': self.styles['fonts']['code'], 'size': 20}
        lines = code.rstrip('\n').split('\n')
        return "".join(
            X.paragraph(X.text_run(line, style) if line else '',
                        {'spacing': {'before': 0, 'after': 0}})
            for line in lines
        )

    def table(self, token: Dict[str, Any]) -> str:
        header: List[str] = []
        rows: List[List[str]] = []
        header_style = self.tables.header_run_style
        for part in token.get('children', []):
            if part.get('type') == 'table_head':
                for cell in part.get('children', []):
                    cells = cell.get('children', []) if cell.get('type') == 'table_row' else [cell]
                    header.extend(self.inline(c.get('children', []), header_style) for c in cells)
            elif part.get('type') == 'table_body':
                for row in part.get('children', []):
                    rows.append([X.paragraph(self.inline(cell.get('children', [])))
                                 for cell in row.get('children', [])])
        return self.tables.data_table(header, rows) + '<w:p/>'

    # ------------------------------------------------------------------------
    # Directives
    # ------------------------------------------------------------------------

    def directive(self, record: Dict[str, Any]) -> str:
        kind = record.get('type')
        if kind == 'terms':
            xml = self.tables.terms_table(record['table'])
        elif kind == 'changes':
            xml = self.tables.changes_table(record['table'])
        elif kind == 'function-table':
            xml = self.functions.build(record)
        elif kind == 'note':
            xml = self.tables.note(record.get('note_type', 'info'), record.get('text', ''))
        elif kind == 'empty-section':
            return self.tables.empty_section(record.get('text', ''))
        else:
            self.context.warn('DIRECTIVE_UNKNOWN', f"Неизвестная директива: {record.get('name')}")
            return ''
        return xml + '<w:p/>' if xml else ''
