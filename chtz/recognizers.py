"""
Распознавание структуры ЧТЗ в разобранном DOCX.

Конвейер:
    ElementExtractor     - параграфы и таблицы тела в порядке документа;
    MetadataRecognizer   - таблицы общего описания, истории, связанных документов;
    SectionRecognizer    - разделы по заголовкам первого уровня;
    TableRecognizer      - таблицы функций, терминов, изменений, обычные;
    FormattingRecognizer - runs в inline Markdown.

Классификация таблиц выполняется одной функцией classify_table, её
используют и распознаватель разделов, и распознаватель таблиц.
"""
import re
from datetime import datetime
from pathlib import PurePosixPath
from typing import Dict, List, Any, Optional

from .parser import build_pipe_table
from .styles import DEFAULT_STYLES, is_heading_name
from .xml_parser import as_list, attr, first, iter_children, text_of


HEADING_STYLE_RE = re.compile(r'^(?:Heading)?([1-9])$', re.IGNORECASE)
LEADING_BULLET_RE = re.compile(r'^[•●\-–—]\s*')


def collapse_whitespace(text: str) -> str:
    return re.sub(r'\s+', ' ', text or '').strip()


def today() -> str:
    return datetime.now().strftime('%d.%m.%Y')


# ============================================================================
# ИЗВЛЕЧЕНИЕ ЭЛЕМЕНТОВ
# ============================================================================

class ElementExtractor:
    """Плоский список параграфов и таблиц из w:body."""

    RUN_CONTAINERS = ('w:smartTag', 'w:fldSimple', 'w:ins', 'w:customXml')

    def __init__(self, styles: Optional[Dict[str, Dict[str, Any]]] = None,
                 relations: Optional[Dict[str, Dict[str, Any]]] = None,
                 numbering: Optional[Dict[str, Dict[int, str]]] = None,
                 numbering_ids: Optional[Dict[str, str]] = None):
        self.styles = styles or {}
        self.relations = relations or {}
        self.numbering = numbering or {}
        self.numbering_ids = numbering_ids or DEFAULT_STYLES['numberingIds']

    def extract(self, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._blocks(body)

    def _blocks(self, container: Dict[str, Any]) -> List[Dict[str, Any]]:
        elements = []
        for tag, node in iter_children(container):
            if tag == 'w:p':
                elements.append(self.paragraph(node))
            elif tag == 'w:tbl':
                elements.append(self.table(node))
            elif tag == 'w:sdt':
                elements.extend(self._blocks(first(node, 'w:sdtContent') or {}))
        return elements

    # ------------------------------------------------------------------------
    # Параграфы
    # ------------------------------------------------------------------------

    def heading_level(self, style_id: Optional[str]) -> Optional[int]:
        """Уровень заголовка по идентификатору стиля или его имени в styles.xml."""
        if not style_id:
            return None
        style = self.styles.get(style_id)
        if style:
            return is_heading_name(style.get('name', ''))
        match = HEADING_STYLE_RE.match(style_id)
        return int(match.group(1)) if match else None

    def list_info(self, ppr: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        num_pr = first(ppr, 'w:numPr')
        if num_pr is None:
            return None
        num_id = attr(first(num_pr, 'w:numId'), 'w:val')
        if not num_id or num_id == '0':
            return None
        try:
            level = int(attr(first(num_pr, 'w:ilvl'), 'w:val', '0'))
        except ValueError:
            level = 0

        levels = self.numbering.get(num_id)
        if levels:
            fmt = levels.get(level, levels.get(0, 'decimal'))
            kind = 'bullet' if fmt in ('bullet', 'none') else 'ordered'
        else:
            kind = 'ordered' if num_id == self.numbering_ids.get('decimal') else 'bullet'
        return {'num_id': num_id, 'level': level, 'kind': kind}

    def paragraph(self, node: Dict[str, Any]) -> Dict[str, Any]:
        ppr = first(node, 'w:pPr')
        style = attr(first(ppr, 'w:pStyle'), 'w:val')
        bookmarks: List[str] = []
        runs = self._runs(node, None, bookmarks)
        level = self.heading_level(style)
        return {
            'type': 'paragraph',
            'text': "".join(run['text'] for run in runs),
            'style': style,
            'runs': runs,
            'is_heading': level is not None,
            'heading_level': level,
            'list_info': self.list_info(ppr),
            'bookmarks': bookmarks,
        }

    def _runs(self, container: Dict[str, Any], hyperlink: Optional[Dict[str, Any]],
              bookmarks: List[str]) -> List[Dict[str, Any]]:
        runs = []
        for tag, node in iter_children(container):
            if tag == 'w:r':
                runs.append(self.run(node, hyperlink))
            elif tag == 'w:hyperlink':
                r_id = attr(node, 'r:id')
                link = {
                    'r_id': r_id,
                    'anchor': attr(node, 'w:anchor'),
                    'url': self.relations.get(r_id, {}).get('target') if r_id else None,
                }
                runs.extend(self._runs(node, link, bookmarks))
            elif tag in self.RUN_CONTAINERS:
                runs.extend(self._runs(node, hyperlink, bookmarks))
            elif tag == 'w:sdt':
                runs.extend(self._runs(first(node, 'w:sdtContent') or {}, hyperlink, bookmarks))
            elif tag == 'w:bookmarkStart':
                name = attr(node, 'w:name')
                if name:
                    bookmarks.append(name)
        return runs

    @staticmethod
    def _toggle(rpr: Optional[Dict[str, Any]], tag: str) -> bool:
        node = first(rpr, tag)
        if node is None:
            return False
        return attr(node, 'w:val', 'true') not in ('0', 'false', 'none')

    def run(self, node: Dict[str, Any], hyperlink: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        rpr = first(node, 'w:rPr')
        pieces: List[str] = []
        image = None
        for tag, child in iter_children(node):
            if tag == 'w:t':
                pieces.append(text_of(child))
            elif tag == 'w:tab':
                pieces.append('\t')
            elif tag == 'w:br':
                if attr(child, 'w:type') != 'page':
                    pieces.append('\n')
            elif tag == 'w:cr':
                pieces.append('\n')
            elif tag == 'w:noBreakHyphen':
                pieces.append('-')
            elif tag == 'w:drawing':
                image = image or self.drawing_image(child)
            elif tag == 'mc:AlternateContent':
                image = image or self._alternate_content_image(child)
            elif tag == 'w:pict':
                image = image or self._vml_image(child)

        return {
            'text': "".join(pieces),
            'bold': self._toggle(rpr, 'w:b'),
            'italic': self._toggle(rpr, 'w:i'),
            'underline': self._toggle(rpr, 'w:u'),
            'strike': self._toggle(rpr, 'w:strike'),
            'hyperlink': hyperlink,
            'image': image,
        }

    def _image_record(self, r_id: Optional[str], alt: str) -> Optional[Dict[str, Any]]:
        if not r_id:
            return None
        target = self.relations.get(r_id, {}).get('target', '')
        return {
            'id': r_id,
            'alt': alt or '',
            'target': target,
            'filename': PurePosixPath(target).name if target else '',
        }

    def drawing_image(self, drawing: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Изображение из w:drawing: wp:inline|wp:anchor > a:graphic > ... > a:blip."""
        container = first(drawing, 'wp:inline') or first(drawing, 'wp:anchor')
        if container is None:
            return None
        doc_pr = first(container, 'wp:docPr')
        alt = attr(doc_pr, 'descr') or attr(doc_pr, 'name') or ''
        graphic_data = first(first(container, 'a:graphic'), 'a:graphicData')
        blip = first(first(first(graphic_data, 'pic:pic'), 'pic:blipFill'), 'a:blip')
        return self._image_record(attr(blip, 'r:embed'), alt)

    def _alternate_content_image(self, node: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for branch in ('mc:Choice', 'mc:Fallback'):
            for option in as_list(node.get(branch)):
                drawing = first(option, 'w:drawing')
                if drawing is not None:
                    image = self.drawing_image(drawing)
                    if image:
                        return image
                pict = first(option, 'w:pict')
                if pict is not None:
                    image = self._vml_image(pict)
                    if image:
                        return image
        return None

    def _vml_image(self, pict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        shape = first(pict, 'v:shape')
        data = first(shape, 'v:imagedata')
        return self._image_record(attr(data, 'r:id'), attr(data, 'o:title', ''))

    # ------------------------------------------------------------------------
    # Таблицы
    # ------------------------------------------------------------------------

    def table(self, node: Dict[str, Any]) -> Dict[str, Any]:
        rows = []
        for tag, row in iter_children(node):
            if tag != 'w:tr':
                continue
            cells = []
            for cell_tag, cell in iter_children(row):
                if cell_tag == 'w:tc':
                    cells.append(self.cell(cell))
                elif cell_tag == 'w:sdt':
                    for tc in as_list((first(cell, 'w:sdtContent') or {}).get('w:tc')):
                        cells.append(self.cell(tc))
            rows.append({'cells': cells})

        width = attr(first(first(node, 'w:tblPr'), 'w:tblW'), 'w:w')
        return {'type': 'table', 'rows': rows, 'properties': {'width': width}}

    def cell(self, node: Dict[str, Any]) -> Dict[str, Any]:
        blocks = self._blocks(node)
        paragraphs = [block for block in blocks if block['type'] == 'paragraph']
        tcpr = first(node, 'w:tcPr')
        try:
            span = int(attr(first(tcpr, 'w:gridSpan'), 'w:val', '1'))
        except ValueError:
            span = 1
        return {
            'paragraphs': paragraphs,
            'tables': [block for block in blocks if block['type'] == 'table'],
            'blocks': blocks,
            'text': "\n".join(p['text'] for p in paragraphs),
            'grid_span': span,
        }


# ============================================================================
# ФОРМАТИРОВАНИЕ
# ============================================================================

class FormattingRecognizer:
    """Runs в inline Markdown: **, *, ~~, ссылки и изображения."""

    @staticmethod
    def wrap(text: str, bold: bool, italic: bool, strike: bool) -> str:
        """Оборачивает текст маркерами, пробелы по краям остаются снаружи."""
        if not text.strip():
            return text
        lead = text[:len(text) - len(text.lstrip())]
        trail = text[len(text.rstrip()):]
        core = text.strip()
        if bold and italic:
            core = f"***{core}***"
        elif bold:
            core = f"**{core}**"
        elif italic:
            core = f"*{core}*"
        if strike:
            core = f"~~{core}~~"
        return f"{lead}{core}{trail}"

    @staticmethod
    def link_target(run: Dict[str, Any]) -> Optional[str]:
        link = run.get('hyperlink')
        if not link:
            return None
        if link.get('url'):
            return link['url']
        if link.get('anchor'):
            return f"#{link['anchor']}"
        return None

    @classmethod
    def format_runs(cls, runs: List[Dict[str, Any]], images_dir: str = 'images') -> str:
        """
        Собирает Markdown из runs параграфа.

        Соседние runs с одинаковым форматированием и ссылкой объединяются
        до оборачивания, поэтому '**a****b**' не возникает.
        """
        segments: List[Dict[str, Any]] = []
        for run in runs:
            if run.get('image'):
                segments.append({'image': run['image']})
            if not run.get('text'):
                continue
            key = (bool(run.get('bold')), bool(run.get('italic')), bool(run.get('strike')),
                   cls.link_target(run))
            if segments and segments[-1].get('key') == key:
                segments[-1]['text'] += run['text']
            else:
                segments.append({'key': key, 'text': run['text']})

        parts = []
        for segment in segments:
            if 'image' in segment:
                image = segment['image']
                name = image.get('filename') or image.get('id', '')
                parts.append(f"![{image.get('alt', '')}]({images_dir.rstrip('/')}/{name})")
                continue
            bold, italic, strike, link = segment['key']
            text = cls.wrap(segment['text'], bold, italic, strike)
            if link:
                lead = text[:len(text) - len(text.lstrip())]
                trail = text[len(text.rstrip()):]
                text = f"{lead}[{text.strip()}]({link}){trail}"
            parts.append(text)
        return "".join(parts)

    @staticmethod
    def is_numbered_item(text: str) -> bool:
        return bool(re.match(r'^\d+\.\s', text or ''))

    @staticmethod
    def strip_list_marker(text: str) -> str:
        return re.sub(r'^(\d+\.|[•●\-–—])\s+', '', text or '')


# ============================================================================
# КОНТЕКСТ РАСПОЗНАВАНИЯ
# ============================================================================

class RecognitionContext:
    """Состояние одной обратной конвертации: занятые идентификаторы и предупреждения."""

    def __init__(self, images_dir: str = 'images'):
        self.images_dir = images_dir
        self.warnings: List[Dict[str, str]] = []
        self._ids = set()

    def unique_id(self, base: str) -> str:
        candidate = base
        suffix = 2
        while candidate in self._ids:
            candidate = f"{base}-{suffix}"
            suffix += 1
        self._ids.add(candidate)
        return candidate

    def warn(self, code: str, message: str) -> None:
        self.warnings.append({'code': code, 'message': message, 'severity': 'warning'})


# ============================================================================
# ТАБЛИЦЫ
# ============================================================================

def _first_row_labels(table: Dict[str, Any]) -> List[str]:
    rows = table.get('rows', [])
    if not rows:
        return []
    return [cell['text'].strip().lower() for cell in rows[0]['cells']]


def _is_two_column(table: Dict[str, Any]) -> bool:
    rows = table.get('rows', [])
    return len(rows) >= 2 and len(rows[0]['cells']) == 2


class FunctionTableRecognizer:
    """Таблица функции: строки 'Функция', '№ задачи', 'Сценарий'."""

    TASK_NUMBER_RE = re.compile(r'[A-Z]+-\d+')
    MARKDOWN_LINK_RE = re.compile(r'\[([^\]]+)\]\((https?://[^)\s]+)\)')
    BARE_URL_RE = re.compile(r'(https?://\S+)')

    def get_type(self) -> str:
        return 'function'

    def can_recognize(self, table: Dict[str, Any]) -> bool:
        rows = table.get('rows', [])
        if len(rows) < 3 or len(rows[0]['cells']) != 2:
            return False
        labels = [row['cells'][0]['text'].strip().lower() if row['cells'] else '' for row in rows[:3]]
        return labels[0] == 'функция' and 'задач' in labels[1] and labels[2] == 'сценарий'

    @staticmethod
    def _cell(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return row['cells'][1] if len(row['cells']) > 1 else None

    @staticmethod
    def _formatted(cell: Optional[Dict[str, Any]], ctx: RecognitionContext) -> str:
        if cell is None:
            return ''
        return "\n".join(FormattingRecognizer.format_runs(p['runs'], ctx.images_dir)
                         for p in cell['paragraphs'])

    def generate_id(self, function_text: str, task: str) -> str:
        """func-<три слова длиннее трёх букв>, иначе func-<номер задачи>, иначе func."""
        words = re.sub(r'[^\w\s]', ' ', function_text.lower()).split()
        long_words = [word for word in words if len(word) > 3][:3]
        if long_words:
            return 'func-' + '-'.join(long_words)
        match = self.TASK_NUMBER_RE.search(task or '')
        if match:
            return 'func-' + match.group(0).lower()
        return 'func'

    def scenario_markdown(self, cell: Optional[Dict[str, Any]], ctx: RecognitionContext) -> str:
        """
        Markdown сценария из блоков ячейки в порядке документа.

        Нумерация пунктов восстанавливается по порядку: 1., 2., ...
        и сбрасывается, когда список прерывается обычным параграфом.
        """
        if cell is None:
            return ''
        lines: List[str] = []
        counters: Dict[tuple, int] = {}
        for block in cell['blocks']:
            if block['type'] == 'table':
                counters = {}
                lines.extend(nested_table_markdown(block))
                continue

            text = FormattingRecognizer.format_runs(block['runs'], ctx.images_dir).strip()
            if not text:
                continue
            info = block.get('list_info')
            if info is None:
                counters = {}
                lines.append(text)
                continue

            indent = '  ' * info['level']
            if info['kind'] == 'ordered':
                key = (info['num_id'], info['level'])
                counters = {k: v for k, v in counters.items() if k[1] <= info['level']}
                counters[key] = counters.get(key, 0) + 1
                lines.append(f"{indent}{counters[key]}. {FormattingRecognizer.strip_list_marker(text)}")
            else:
                lines.append(f"{indent}- {LEADING_BULLET_RE.sub('', text)}")
        return "\n".join(lines)

    def recognize(self, table: Dict[str, Any], ctx: RecognitionContext) -> Dict[str, Any]:
        rows = table['rows']
        function_cell = self._cell(rows[0])
        task_cell = self._cell(rows[1])

        function = collapse_whitespace(LEADING_BULLET_RE.sub('', self._formatted(function_cell, ctx).strip()))
        plain_function = LEADING_BULLET_RE.sub('', function_cell['text'].strip()) if function_cell else ''

        task_text = collapse_whitespace(self._formatted(task_cell, ctx))
        task, task_url = task_text, ''
        link = self.MARKDOWN_LINK_RE.search(task_text)
        if link:
            task, task_url = link.group(1).strip(), link.group(2)
        else:
            bare = self.BARE_URL_RE.search(task_text)
            if bare:
                task_url = bare.group(1)

        bookmarks = [name for p in (function_cell or {}).get('paragraphs', [])
                     for name in p.get('bookmarks', []) if not name.startswith('_')]
        base_id = bookmarks[0] if bookmarks else self.generate_id(plain_function, task)

        return {
            'table_type': 'function',
            'id': ctx.unique_id(base_id),
            'function': function,
            'task': task,
            'taskUrl': task_url,
            'scenario': self.scenario_markdown(self._cell(rows[2]), ctx),
        }


class TermsTableRecognizer:
    """Двухколоночная таблица терминов и определений."""

    TERM_HEADERS = ('термин', 'сокращение', 'аббревиатура')
    DEFINITION_HEADERS = ('определение', 'расшифровка', 'описание')

    def get_type(self) -> str:
        return 'terms'

    def can_recognize(self, table: Dict[str, Any]) -> bool:
        if not _is_two_column(table):
            return False
        first_label, second_label = _first_row_labels(table)[:2]
        return any(h in first_label for h in self.TERM_HEADERS) and \
            any(h in second_label for h in self.DEFINITION_HEADERS)

    @staticmethod
    def pairs(table: Dict[str, Any]) -> List[tuple]:
        result = []
        for row in table['rows'][1:]:
            cells = [collapse_whitespace(cell['text']) for cell in row['cells']]
            cells = (cells + ['', ''])[:2]
            if cells[0] or cells[1]:
                result.append(tuple(cells))
        return result

    def recognize(self, table: Dict[str, Any], ctx: RecognitionContext) -> Dict[str, Any]:
        return {
            'table_type': 'terms',
            'terms': [{'term': term, 'definition': definition}
                      for term, definition in self.pairs(table)],
        }


class ChangesTableRecognizer:
    """Двухколоночная таблица 'Как есть' / 'Как будет'."""

    AS_IS_HEADERS = ('как есть', 'текущее', 'было')
    TO_BE_HEADERS = ('как будет', 'новое', 'стало', 'планируется')

    def get_type(self) -> str:
        return 'changes'

    def can_recognize(self, table: Dict[str, Any]) -> bool:
        if not _is_two_column(table):
            return False
        first_label, second_label = _first_row_labels(table)[:2]
        return any(h in first_label for h in self.AS_IS_HEADERS) and \
            any(h in second_label for h in self.TO_BE_HEADERS)

    def recognize(self, table: Dict[str, Any], ctx: RecognitionContext) -> Dict[str, Any]:
        return {
            'table_type': 'changes',
            'changes': [{'asIs': as_is, 'toBe': to_be}
                        for as_is, to_be in TermsTableRecognizer.pairs(table)],
        }


TABLE_RECOGNIZERS = (FunctionTableRecognizer(), TermsTableRecognizer(), ChangesTableRecognizer())


def classify_table(table: Dict[str, Any]) -> str:
    """
    Тип таблицы: function, terms, changes или regular.

    Проверки идут в фиксированном порядке, первая подошедшая побеждает.
    """
    for recognizer in TABLE_RECOGNIZERS:
        if recognizer.can_recognize(table):
            return recognizer.get_type()
    return 'regular'


def nested_table_markdown(table: Dict[str, Any], indent: str = '') -> List[str]:
    """Вложенная таблица как pipe-таблица, параграфы ячейки через <br>."""
    rows = [
        ["\n".join(p['text'].strip() for p in cell['paragraphs']) for cell in row['cells']]
        for row in table.get('rows', [])
    ]
    if not rows:
        return []
    return build_pipe_table(rows[0], rows[1:], indent)


class TableRecognizer:
    """Выбирает распознаватель по classify_table."""

    def __init__(self):
        self.recognizers = {recognizer.get_type(): recognizer for recognizer in TABLE_RECOGNIZERS}

    def recognize(self, table: Dict[str, Any], ctx: RecognitionContext) -> Dict[str, Any]:
        kind = classify_table(table)
        if kind in self.recognizers:
            record = self.recognizers[kind].recognize(table, ctx)
        else:
            record = self.regular(table, ctx)
        record['type'] = 'table'
        return record

    @staticmethod
    def regular(table: Dict[str, Any], ctx: RecognitionContext) -> Dict[str, Any]:
        rows = []
        for index, row in enumerate(table.get('rows', [])):
            cells = []
            for cell in row['cells']:
                if index == 0:
                    cells.append("\n".join(p['text'].strip() for p in cell['paragraphs']))
                else:
                    cells.append("\n".join(
                        FormattingRecognizer.format_runs(p['runs'], ctx.images_dir).strip()
                        for p in cell['paragraphs']))
            rows.append(cells)
        return {'table_type': 'regular', 'rows': rows}


# ============================================================================
# МЕТАДАННЫЕ
# ============================================================================

class MetadataRecognizer:
    """Таблицы шапки до первого заголовка первого уровня."""

    @staticmethod
    def parse_yes_no(value: str) -> bool:
        return (value or '').strip().lower() in ('да', 'yes')

    @staticmethod
    def parse_list(value: str) -> List[str]:
        return [item.strip() for item in re.split(r'[,\n]', value or '') if item.strip()]

    @staticmethod
    def classify(table: Dict[str, Any]) -> Optional[str]:
        rows = table.get('rows', [])
        if not rows or not rows[0]['cells']:
            return None
        first_cell = rows[0]['cells'][0]['text'].strip().lower()
        if 'общее описание' in first_cell:
            return 'main'
        if 'версия' in first_cell and len(rows[0]['cells']) >= 3:
            return 'history'
        if 'название документа' in first_cell or 'связанные документы' in first_cell:
            return 'related'
        return None

    def parse_main(self, table: Dict[str, Any]) -> Dict[str, Any]:
        metadata = {
            'shortName': '',
            'consultant': {'name': '', 'email': ''},
            'organization': '',
            'itSolutions': [],
            'itSystems': [],
            'processKT': False,
            'processPDn': False,
            'createdDate': '',
        }
        for row in table['rows'][1:]:
            cells = row['cells']
            if len(cells) < 2:
                continue
            label = cells[0]['text'].strip().lower()
            value = cells[1]['text'].strip()

            if 'краткое название' in label:
                metadata['shortName'] = value
            elif 'консультант' in label:
                metadata['consultant']['name'] = value
                if len(cells) >= 4:
                    metadata['consultant']['email'] = cells[3]['text'].strip()
            elif 'организации заказчика' in label:
                metadata['organization'] = value
            elif 'ит-решени' in label:
                metadata['itSolutions'] = self.parse_list(value)
            elif 'ит-систем' in label:
                metadata['itSystems'] = self.parse_list(value)
            elif 'данных кт' in label:
                metadata['processKT'] = self.parse_yes_no(value)
            elif 'данных пдн' in label:
                metadata['processPDn'] = self.parse_yes_no(value)
            elif 'дата создания' in label:
                metadata['createdDate'] = value

        metadata['createdDate'] = metadata['createdDate'] or today()
        return metadata

    @staticmethod
    def parse_history(table: Dict[str, Any]) -> List[Dict[str, str]]:
        history = []
        for row in table['rows'][1:]:
            cells = [cell['text'].strip() for cell in row['cells']]
            if len(cells) < 3 or not any(cells):
                continue
            history.append({
                'version': cells[0],
                'date': cells[1],
                'comment': cells[2],
                'author': cells[3] if len(cells) > 3 else '',
            })
        return history

    @staticmethod
    def parse_related(table: Dict[str, Any]) -> List[Dict[str, str]]:
        related = []
        for row in table['rows'][1:]:
            cells = [cell['text'].strip() for cell in row['cells']]
            if len(cells) < 2 or not cells[0]:
                continue
            related.append({
                'name': cells[0],
                'version': cells[1],
                'date': cells[2] if len(cells) > 2 else '',
            })
        return related

    def recognize(self, elements: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Returns:
            Dict: metadata, history, related_docs, table_indices, warnings
        """
        result: Dict[str, Any] = {
            'metadata': None,
            'history': [],
            'related_docs': [],
            'table_indices': set(),
            'warnings': [],
        }

        for index, element in enumerate(elements):
            if element['type'] == 'paragraph' and element['is_heading'] \
                    and element['heading_level'] == 1:
                break
            if element['type'] != 'table':
                continue
            kind = self.classify(element)
            if kind == 'main' and result['metadata'] is None:
                result['metadata'] = self.parse_main(element)
            elif kind == 'history':
                result['history'] = self.parse_history(element)
            elif kind == 'related':
                result['related_docs'] = self.parse_related(element)
            else:
                continue
            result['table_indices'].add(index)

        if result['metadata'] is None:
            result['warnings'].append({
                'code': 'METADATA_TABLE_MISSING',
                'message': 'Таблица "Общее описание изменения" не найдена, метаданные заполнены по умолчанию',
                'severity': 'warning',
            })
            result['metadata'] = self.parse_main({'rows': []})

        if not result['history']:
            result['history'] = [{
                'version': '1.0',
                'date': today(),
                'comment': 'Конвертировано из DOCX',
                'author': '',
            }]
        return result


# ============================================================================
# РАЗДЕЛЫ
# ============================================================================

KNOWN_SECTIONS = [
    (re.compile(r'^1\.\s*Термины', re.IGNORECASE), 'terms'),
    (re.compile(r'^2\.\s*Исходные данные', re.IGNORECASE), 'background'),
    (re.compile(r'^3\.\s*Изменение функционала', re.IGNORECASE), 'changes'),
    (re.compile(r'^4\.\s*Описание изменений в ИТ', re.IGNORECASE), 'it-changes'),
    (re.compile(r'^5\.\s*Описание изменений в интеграционных', re.IGNORECASE), 'integrations'),
    (re.compile(r'^6\.\s*Описание изменений.*ПДн', re.IGNORECASE), 'pdn'),
    (re.compile(r'^7\.\s*Входные формы', re.IGNORECASE), 'input-forms'),
    (re.compile(r'^8\.\s*Выходные формы', re.IGNORECASE), 'output-forms'),
    (re.compile(r'^9\.\s*Описание изменений в ролевой', re.IGNORECASE), 'roles'),
    (re.compile(r'^10\.\s*Приложения', re.IGNORECASE), 'appendix'),
]

EMPTY_SECTION_PATTERNS = [
    re.compile(r'не применим', re.IGNORECASE),
    re.compile(r'не требуется', re.IGNORECASE),
    re.compile(r'отсутствуют', re.IGNORECASE),
    re.compile(r'нет изменений', re.IGNORECASE),
]


class SectionRecognizer:
    """Разделы документа по заголовкам первого уровня."""

    def __init__(self, table_recognizer: Optional[TableRecognizer] = None):
        self.tables = table_recognizer or TableRecognizer()

    @staticmethod
    def section_id(title: str) -> Optional[str]:
        for pattern, section_id in KNOWN_SECTIONS:
            if pattern.search(title):
                return section_id
        return None

    @staticmethod
    def fallback_id(title: str) -> str:
        slug = re.sub(r'[^\w\s]', '', title.lower()).strip()
        return re.sub(r'\s+', '-', slug)[:30] or 'section'

    @staticmethod
    def is_empty_section(text: str) -> bool:
        return any(pattern.search(text) for pattern in EMPTY_SECTION_PATTERNS)

    def content_element(self, element: Dict[str, Any], ctx: RecognitionContext) -> Optional[Dict[str, Any]]:
        if element['type'] == 'table':
            return self.tables.recognize(element, ctx)

        if element['is_heading']:
            text = element['text'].strip()
            return {'type': 'heading', 'level': element['heading_level'], 'text': text} if text else None

        formatted = FormattingRecognizer.format_runs(element['runs'], ctx.images_dir).strip()
        if not formatted:
            return None

        info = element.get('list_info')
        if info is not None:
            return {
                'type': 'list-item',
                'level': info['level'],
                'ordered': info['kind'] == 'ordered',
                'num_id': info['num_id'],
                'text': formatted,
                'runs': element['runs'],
            }
        if self.is_empty_section(element['text']):
            return {'type': 'empty-section', 'text': element['text'].strip()}
        return {'type': 'paragraph', 'text': formatted, 'runs': element['runs']}

    @staticmethod
    def _attach(section: Dict[str, Any], stack: List[Dict[str, Any]], item: Dict[str, Any]) -> None:
        """Добавляет элемент в плоское содержимое раздела и в дерево подразделов."""
        section['content'].append(item)
        if item['type'] == 'heading':
            node = {'id': '', 'title': item['text'], 'level': item['level'],
                    'content': [], 'subsections': []}
            while stack and stack[-1]['level'] >= item['level']:
                stack.pop()
            parent = stack[-1] if stack else section
            node['id'] = f"{parent['id']}-{len(parent['subsections']) + 1}"
            parent['subsections'].append(node)
            stack.append(node)
        elif stack:
            stack[-1]['content'].append(item)

    def recognize(self, elements: List[Dict[str, Any]], skip_indices=(),
                  ctx: Optional[RecognitionContext] = None) -> List[Dict[str, Any]]:
        ctx = ctx or RecognitionContext()
        sections: List[Dict[str, Any]] = []
        used_ids = set()
        pending_headings: List[Dict[str, Any]] = []
        current: Optional[Dict[str, Any]] = None
        stack: List[Dict[str, Any]] = []

        for index, element in enumerate(elements):
            if index in skip_indices:
                continue

            if element['type'] == 'paragraph' and element['is_heading'] \
                    and element['heading_level'] == 1:
                title = element['text'].strip()
                known = self.section_id(title)
                base_id = known or self.fallback_id(title)
                section_id, suffix = base_id, 2
                while section_id in used_ids:
                    section_id = f"{base_id}-{suffix}"
                    suffix += 1
                used_ids.add(section_id)

                current = {
                    'id': section_id,
                    'title': title,
                    'level': 1,
                    'known_type': known,
                    'content': [],
                    'subsections': [],
                }
                sections.append(current)
                stack = []
                for heading in pending_headings:
                    self._attach(current, stack, heading)
                pending_headings = []
                continue

            item = self.content_element(element, ctx)
            if item is None:
                continue
            if current is None:
                if item['type'] == 'heading':
                    pending_headings.append(item)
                continue
            self._attach(current, stack, item)

        return sections


# ============================================================================
# КОНВЕЙЕР
# ============================================================================

class RecognizerPipeline:
    """Полное распознавание разобранного пакета."""

    def __init__(self, images_dir: str = 'images'):
        self.images_dir = images_dir

    def recognize(self, package: Dict[str, Any]) -> Dict[str, Any]:
        extractor = ElementExtractor(package.get('styles'), package.get('relations'),
                                     package.get('numbering'))
        elements = extractor.extract(package['body'])
        ctx = RecognitionContext(self.images_dir)

        meta = MetadataRecognizer().recognize(elements)
        sections = SectionRecognizer(TableRecognizer()).recognize(
            elements, meta['table_indices'], ctx)

        return {
            'metadata': meta['metadata'],
            'history': meta['history'],
            'related_docs': meta['related_docs'],
            'sections': sections,
            'images': package.get('images', []),
            'warnings': meta['warnings'] + ctx.warnings,
        }
