"""
Разбор Markdown документа ЧТЗ.

Документ состоит из YAML front matter, обычного Markdown и директив
вида ``:::name{attrs} ... :::``. Front matter разбирается PyYAML,
Markdown - mistune в режиме AST, директивы - собственным
интерпретатором, который работает с исходным текстом блока.
"""
import re
import textwrap
from datetime import date, datetime
from typing import Dict, List, Any, Optional, Tuple
from urllib.parse import unquote

import mistune
import yaml

from .errors import YamlValidationError


_markdown = mistune.create_markdown(renderer="ast", plugins=["table", "strikethrough"])


def tokenize(text: str) -> List[Dict[str, Any]]:
    """Разбирает Markdown в список блочных токенов mistune."""
    return _markdown(text)


def token_text(token: Any) -> str:
    """Плоский текст токена или списка токенов без разметки."""
    if isinstance(token, list):
        return "".join(token_text(item) for item in token)
    if not isinstance(token, dict):
        return str(token or "")
    kind = token.get("type")
    if kind in ("linebreak", "softbreak"):
        return "\n" if kind == "linebreak" else " "
    if kind == "inline_html":
        return "\n" if re.match(r'^<br\s*/?>$', token.get("raw", ""), re.IGNORECASE) else ""
    if "children" in token:
        return token_text(token["children"])
    return token.get("raw", token.get("text", ""))


# ============================================================================
# YAML FRONT MATTER
# ============================================================================

FRONT_MATTER_RE = re.compile(r'^\ufeff?---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|$)', re.DOTALL)
DATE_RE = re.compile(r'^\d{2}\.\d{2}\.\d{4}$')

VALIDATION_HINTS = {
    'type': 'Добавьте в начало front matter строку: type: chtz',
    'metadata': 'Добавьте блок metadata с полями shortName, consultant и organization',
    'metadata.shortName': 'Укажите краткое название изменения: metadata.shortName',
    'metadata.consultant.name': 'Укажите ФИО консультанта: metadata.consultant.name',
    'metadata.organization': 'Укажите наименование организации заказчика: metadata.organization',
    'metadata.createdDate': 'Дата должна быть в формате ДД.ММ.ГГГГ, например 15.01.2024',
}


def today() -> str:
    return datetime.now().strftime('%d.%m.%Y')


def split_front_matter(text: str) -> Tuple[Dict[str, Any], str]:
    """
    Отделяет YAML front matter от тела документа.

    Returns:
        Tuple: (данные front matter, тело Markdown)
    """
    match = FRONT_MATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise YamlValidationError(f'Некорректный YAML в front matter: {e}', None) from e
    body = text[match.end():]
    return (data if isinstance(data, dict) else {}), body


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.strftime('%d.%m.%Y')
    return str(value)


def validate_front_matter(data: Dict[str, Any]) -> None:
    """
    Проверяет обязательные поля front matter.

    Raises:
        YamlValidationError: При первом найденном нарушении
    """
    if not data:
        raise YamlValidationError(
            'YAML front matter не найден. Убедитесь, что файл начинается с ---', None)

    if not data.get('type'):
        raise YamlValidationError('Отсутствует обязательное поле: type', 'type')
    if data['type'] != 'chtz':
        raise YamlValidationError(
            f'Неверный тип документа: "{data["type"]}". Ожидается "chtz"', 'type')

    metadata = data.get('metadata')
    if not isinstance(metadata, dict):
        raise YamlValidationError('Отсутствует обязательный блок: metadata', 'metadata')

    if not metadata.get('shortName'):
        raise YamlValidationError(
            'Отсутствует обязательное поле: metadata.shortName', 'metadata.shortName')

    consultant = metadata.get('consultant')
    if not isinstance(consultant, dict) or not consultant.get('name'):
        raise YamlValidationError(
            'Отсутствует обязательное поле: metadata.consultant.name', 'metadata.consultant.name')

    if not metadata.get('organization'):
        raise YamlValidationError(
            'Отсутствует обязательное поле: metadata.organization', 'metadata.organization')

    created = metadata.get('createdDate')
    if created and not DATE_RE.match(_stringify(created)):
        raise YamlValidationError(
            f'Неверный формат даты: "{_stringify(created)}". Ожидается ДД.ММ.ГГГГ',
            'metadata.createdDate')

    history = data.get('history') or []
    if not isinstance(history, list):
        raise YamlValidationError('Поле history должно быть списком', 'history')
    for index, entry in enumerate(history):
        if not isinstance(entry, dict) or not entry.get('version'):
            raise YamlValidationError(
                f'Запись истории {index + 1}: отсутствует version', f'history[{index}].version')
        if not entry.get('date'):
            raise YamlValidationError(
                f'Запись истории {index + 1}: отсутствует date', f'history[{index}].date')

    related = data.get('relatedDocs') or []
    if not isinstance(related, list):
        raise YamlValidationError('Поле relatedDocs должно быть списком', 'relatedDocs')
    for index, doc in enumerate(related):
        if not isinstance(doc, dict) or not doc.get('name'):
            raise YamlValidationError(
                f'Связанный документ {index + 1}: отсутствует name', f'relatedDocs[{index}].name')


def _as_string_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [_stringify(item) for item in value if item is not None]
    return [_stringify(value)]


def normalize_front_matter(data: Dict[str, Any]) -> Dict[str, Any]:
    """Заполняет значения по умолчанию и приводит типы полей."""
    metadata = data.get('metadata') or {}
    consultant = metadata.get('consultant') or {}

    return {
        'type': data.get('type', 'chtz'),
        'version': _stringify(data.get('version') or '1.0'),
        'metadata': {
            'shortName': _stringify(metadata.get('shortName')),
            'consultant': {
                'name': _stringify(consultant.get('name')),
                'email': _stringify(consultant.get('email')),
            },
            'organization': _stringify(metadata.get('organization')),
            'itSolutions': _as_string_list(metadata.get('itSolutions')),
            'itSystems': _as_string_list(metadata.get('itSystems')),
            'processKT': bool(metadata.get('processKT', False)),
            'processPDn': bool(metadata.get('processPDn', False)),
            'createdDate': _stringify(metadata.get('createdDate')) or today(),
        },
        'history': [
            {
                'version': _stringify(entry.get('version')),
                'date': _stringify(entry.get('date')),
                'comment': _stringify(entry.get('comment')),
                'author': _stringify(entry.get('author')),
            }
            for entry in (data.get('history') or [])
        ],
        'relatedDocs': [
            {
                'name': _stringify(doc.get('name')),
                'version': _stringify(doc.get('version')),
                'date': _stringify(doc.get('date')),
            }
            for doc in (data.get('relatedDocs') or [])
        ],
    }


def format_validation_error(error: YamlValidationError) -> str:
    """Сообщение об ошибке с подсказкой по исправлению."""
    message = f"❌ Ошибка в YAML front matter: {error}"
    hint = VALIDATION_HINTS.get(error.field or '')
    if hint:
        message += f"\n💡 {hint}"
    return message


# ============================================================================
# ТАБЛИЦЫ MARKDOWN
# ============================================================================

TABLE_SEPARATOR_RE = re.compile(r'^\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?$')


def is_table_separator(line: str) -> bool:
    """Строка-разделитель заголовка таблицы: | --- | :---: |"""
    line = line.strip()
    return bool(line) and '-' in line and bool(TABLE_SEPARATOR_RE.match(line))


def parse_table_row(line: str) -> List[str]:
    """Разбивает строку таблицы на ячейки, учитывая экранированный '|'."""
    line = line.strip()
    if line.startswith('|'):
        line = line[1:]
    if line.endswith('|') and not line.endswith('\\|'):
        line = line[:-1]
    cells = re.split(r'(?<!\\)\|', line)
    return [cell.strip().replace('\\|', '|') for cell in cells]


def parse_markdown_table(lines: List[str]) -> Dict[str, Any]:
    """
    Разбирает строки pipe-таблицы.

    Returns:
        Dict: {headers, rows}
    """
    rows = [line for line in lines if line.strip()]
    if not rows:
        return {'headers': [], 'rows': []}
    headers = parse_table_row(rows[0])
    body = rows[1:]
    if body and is_table_separator(body[0]):
        body = body[1:]
    return {'headers': headers, 'rows': [parse_table_row(row) for row in body]}


def escape_table_cell(text: str) -> str:
    """Текст ячейки pipe-таблицы: '|' экранируется, переводы строк - <br>."""
    text = (text or '').replace('|', '\\|')
    return '<br>'.join(part.strip() for part in text.split('\n'))


def build_pipe_table(headers: List[str], rows: List[List[str]], indent: str = '') -> List[str]:
    """Строки pipe-таблицы с разделителем '| --- |'."""
    columns = max([len(headers)] + [len(row) for row in rows] + [1])
    headers = list(headers) + [''] * (columns - len(headers))
    lines = [
        indent + '| ' + ' | '.join(escape_table_cell(cell) for cell in headers) + ' |',
        indent + '| ' + ' | '.join('---' for _ in headers) + ' |',
    ]
    for row in rows:
        cells = list(row) + [''] * (columns - len(row))
        lines.append(indent + '| ' + ' | '.join(escape_table_cell(cell) for cell in cells) + ' |')
    return lines


def table_from_tokens(tokens: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Первая таблица в AST mistune как {headers, rows} с плоским текстом ячеек."""
    for token in tokens:
        if token.get('type') != 'table':
            continue
        headers: List[str] = []
        rows: List[List[str]] = []
        for part in token.get('children', []):
            if part.get('type') == 'table_head':
                for cell in part.get('children', []):
                    if cell.get('type') == 'table_row':
                        headers.extend(token_text(c).strip() for c in cell.get('children', []))
                    else:
                        headers.append(token_text(cell).strip())
            elif part.get('type') == 'table_body':
                for row in part.get('children', []):
                    rows.append([token_text(c).strip() for c in row.get('children', [])])
        return {'headers': headers, 'rows': rows}
    return None


# ============================================================================
# ИЗОБРАЖЕНИЯ
# ============================================================================

IMAGE_LINE_RE = re.compile(r'^!\[([^\]]*)\]\(([^)]+)\)(\{[^}]+\})?$')
URL_ATTRS_RE = re.compile(r'^(.+?)\{(.+?)\}$')
ATTR_PAIR_RE = re.compile(r'([\w-]+)="([^"]+)"')


def parse_image_attributes(source: str) -> Dict[str, str]:
    """Атрибуты вида width="50%" height="200" из фигурных скобок."""
    return {key: value for key, value in ATTR_PAIR_RE.findall(source or '')}


def split_image_url(url: str, trailing: str = '') -> Tuple[str, Dict[str, str]]:
    """
    Отделяет атрибуты изображения от адреса.

    Атрибуты допускаются внутри скобок ``(img.png{width="50%"})`` и
    сразу после них ``(img.png){width="50%"}``, результат одинаков.
    """
    url = unquote(url or '').strip()
    attributes: Dict[str, str] = {}
    match = URL_ATTRS_RE.match(url)
    if match:
        url = match.group(1).strip()
        attributes.update(parse_image_attributes(match.group(2)))
    if trailing:
        attributes.update(parse_image_attributes(trailing))
    return url, attributes


# ============================================================================
# ДИРЕКТИВЫ
# ============================================================================

DIRECTIVE_OPEN_RE = re.compile(r'^:::\s*([A-Za-z][\w-]*)\s*(\{[^}]*\})?\s*$')
DIRECTIVE_CLOSE_RE = re.compile(r'^:::\s*$')
FENCE_RE = re.compile(r'^\s*(```|~~~)')

FUNCTION_MULTILINE_RE = re.compile(r'^([A-Za-z0-9_]+):\s*\|?\s*$')
FUNCTION_SIMPLE_RE = re.compile(r'^([A-Za-z0-9_]+):\s*(.+)$')

KNOWN_DIRECTIVES = ('terms', 'changes-table', 'function-table', 'note', 'empty-section')
DEFAULT_TERMS_HEADERS = ['Термин', 'Определение']
DEFAULT_CHANGES_HEADERS = ['Как есть', 'Как будет']
DEFAULT_EMPTY_SECTION_TEXT = 'Раздел не применим для данного документа.'


def parse_directive_attributes(source: Optional[str]) -> Dict[str, Any]:
    """
    Разбирает атрибуты директивы ``{#id .class key="value" key2=value}``.
    """
    attributes: Dict[str, Any] = {}
    if not source:
        return attributes
    inner = source.strip()
    if inner.startswith('{') and inner.endswith('}'):
        inner = inner[1:-1]

    for match in re.finditer(r'([\w-]+)\s*=\s*"([^"]*)"|([\w-]+)\s*=\s*([^\s"]+)|#([\w-]+)|\.([\w-]+)', inner):
        if match.group(1):
            attributes[match.group(1)] = match.group(2)
        elif match.group(3):
            attributes[match.group(3)] = match.group(4)
        elif match.group(5):
            attributes['id'] = match.group(5)
        elif match.group(6):
            attributes.setdefault('class', []).append(match.group(6))
    return attributes


def split_directives(body: str) -> List[Dict[str, Any]]:
    """
    Делит тело документа на сегменты Markdown и директив.

    Строки внутри блоков кода не считаются директивами. Незакрытая
    директива продолжается до конца текста.

    Returns:
        List: [{kind: 'markdown', text} | {kind: 'directive', name, attributes, raw}]
    """
    segments: List[Dict[str, Any]] = []
    buffer: List[str] = []
    directive: Optional[Dict[str, Any]] = None
    directive_lines: List[str] = []
    in_fence = False

    def flush_markdown():
        if buffer and "".join(buffer).strip():
            segments.append({'kind': 'markdown', 'text': "\n".join(buffer)})
        buffer.clear()

    for line in body.replace('\r\n', '\n').replace('\r', '\n').split('\n'):
        if directive is not None:
            if DIRECTIVE_CLOSE_RE.match(line):
                directive['raw'] = "\n".join(directive_lines)
                segments.append(directive)
                directive = None
                directive_lines = []
            else:
                directive_lines.append(line)
            continue

        if FENCE_RE.match(line):
            in_fence = not in_fence
            buffer.append(line)
            continue

        match = None if in_fence else DIRECTIVE_OPEN_RE.match(line)
        if match:
            flush_markdown()
            directive = {
                'kind': 'directive',
                'name': match.group(1),
                'attributes': parse_directive_attributes(match.group(2)),
            }
        else:
            buffer.append(line)

    if directive is not None:
        directive['raw'] = "\n".join(directive_lines)
        segments.append(directive)
    flush_markdown()
    return segments


def parse_function_table_content(raw: str) -> Dict[str, str]:
    """
    Разбирает тело директивы function-table построчно.

    ``key:`` или ``key: |`` открывает многострочное значение, оно
    накапливается до следующего такого ключа или конца блока.
    ``key: value`` задаёт однострочное значение, но только вне
    многострочного. Многострочное значение сдвигается влево на общий
    отступ и обрезается по краям.
    """
    result = {'function': '', 'task': '', 'taskUrl': '', 'scenario': ''}
    text = (raw or '').replace('\r\n', '\n').replace('\r', '\n')

    current_key: Optional[str] = None
    current_lines: List[str] = []

    def finish():
        if current_key is not None:
            result[current_key] = textwrap.dedent("\n".join(current_lines)).strip()

    for line in text.split('\n'):
        multiline = FUNCTION_MULTILINE_RE.match(line)
        if multiline:
            finish()
            current_key = multiline.group(1)
            current_lines = []
            continue

        if current_key is None:
            simple = FUNCTION_SIMPLE_RE.match(line)
            if simple:
                result[simple.group(1)] = simple.group(2).strip()
            continue

        current_lines.append(line)

    finish()
    return result


class DirectiveInterpreter:
    """Превращает директиву в запись, понятную построителям таблиц."""

    def interpret(self, name: str, attributes: Dict[str, Any], raw: str) -> Dict[str, Any]:
        if name == 'terms':
            return {'type': 'terms', 'table': self._extract_table(raw, DEFAULT_TERMS_HEADERS)}
        if name in ('changes-table', 'changes'):
            return {'type': 'changes', 'table': self._extract_table(raw, DEFAULT_CHANGES_HEADERS)}
        if name == 'function-table':
            data = parse_function_table_content(raw)
            data.update({'type': 'function-table', 'id': attributes.get('id', '')})
            return data
        if name == 'note':
            return {
                'type': 'note',
                'note_type': attributes.get('type', 'info'),
                'text': (raw or '').strip(),
            }
        if name == 'empty-section':
            text = token_text(tokenize(raw)).strip() if (raw or '').strip() else ''
            return {'type': 'empty-section', 'text': text}
        return {'type': 'unknown', 'name': name}

    @staticmethod
    def _extract_table(raw: str, default_headers: List[str]) -> Dict[str, Any]:
        table = table_from_tokens(tokenize(raw or ''))
        if table is None:
            return {'headers': list(default_headers), 'rows': []}
        if not any(table['headers']):
            table['headers'] = list(default_headers)
        return table


# ============================================================================
# СЦЕНАРИЙ ФУНКЦИИ
# ============================================================================

NUMBERED_RE = re.compile(r'^(\s*)(\d+)\.\s+(.+)$')
BULLET_RE = re.compile(r'^(\s*)[-*]\s+(.+)$')


def parse_scenario_markdown(text: str) -> List[Dict[str, Any]]:
    """
    Разбирает упрощённый Markdown сценария в список блоков.

    Поддерживаются текст, нумерованные и маркированные пункты (уровень
    по отступу в два пробела), изображения и pipe-таблицы.
    """
    blocks: List[Dict[str, Any]] = []
    lines = (text or '').replace('\r\n', '\n').split('\n')
    index = 0

    while index < len(lines):
        line = lines[index]
        stripped = line.strip()
        if not stripped:
            index += 1
            continue

        if stripped.startswith('|'):
            lookahead = index + 1
            while lookahead < len(lines) and not lines[lookahead].strip():
                lookahead += 1
            if lookahead < len(lines) and is_table_separator(lines[lookahead]):
                table_lines = [stripped]
                index = lookahead
                while index < len(lines) and lines[index].strip().startswith('|'):
                    table_lines.append(lines[index].strip())
                    index += 1
                table = parse_markdown_table(table_lines)
                table['type'] = 'table'
                blocks.append(table)
                continue

        image = IMAGE_LINE_RE.match(stripped)
        if image:
            url, attributes = split_image_url(image.group(2), image.group(3) or '')
            blocks.append({'type': 'image', 'alt': image.group(1), 'url': url,
                           'attributes': attributes})
            index += 1
            continue

        numbered = NUMBERED_RE.match(line)
        if numbered:
            blocks.append({'type': 'numbered', 'number': int(numbered.group(2)),
                           'level': len(numbered.group(1)) // 2, 'text': numbered.group(3).strip()})
            index += 1
            continue

        bullet = BULLET_RE.match(line)
        if bullet:
            blocks.append({'type': 'bullet', 'level': len(bullet.group(1)) // 2,
                           'text': bullet.group(2).strip()})
            index += 1
            continue

        blocks.append({'type': 'text', 'text': stripped})
        index += 1

    return blocks


# ============================================================================
# ДОКУМЕНТ
# ============================================================================

def _slug(text: str, limit: int) -> str:
    slug = re.sub(r'[^\w\s-]', '', text.lower())
    return re.sub(r'\s+', '-', slug.strip())[:limit]


def _walk_tokens(tokens: List[Dict[str, Any]]):
    for token in tokens or []:
        if not isinstance(token, dict):
            continue
        yield token, tokens
        children = token.get('children')
        if isinstance(children, list):
            yield from _walk_tokens(children)


def extract_images(blocks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Изображения документа, включая изображения в сценариях функций."""
    images = []
    for block in blocks:
        if block.get('type') == 'directive':
            record = block['directive']
            if record.get('type') == 'function-table':
                for item in parse_scenario_markdown(record.get('scenario', '')):
                    if item['type'] == 'image':
                        images.append({'url': item['url'], 'alt': item['alt'],
                                       'attributes': item['attributes']})
            continue
        for token, siblings in _walk_tokens([block]):
            if token.get('type') != 'image':
                continue
            position = siblings.index(token)
            following = siblings[position + 1] if position + 1 < len(siblings) else None
            trailing = ''
            if following and following.get('type') == 'text' \
                    and following.get('raw', '').lstrip().startswith('{'):
                trailing = following['raw']
            url, attributes = split_image_url(token.get('attrs', {}).get('url', ''), trailing)
            images.append({'url': url, 'alt': token_text(token.get('children', [])),
                           'attributes': attributes})
    return images


def extract_links(blocks: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Внешние ссылки (http/https) документа."""
    links = []
    for block in blocks:
        if block.get('type') == 'directive':
            continue
        for token, _ in _walk_tokens([block]):
            if token.get('type') == 'link':
                url = unquote(token.get('attrs', {}).get('url', ''))
                if url.startswith(('http://', 'https://')):
                    links.append({'url': url, 'text': token_text(token.get('children', []))})
    return links


def extract_headings(blocks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    headings = []
    for block in blocks:
        if block.get('type') == 'heading':
            text = token_text(block.get('children', []))
            headings.append({'level': block.get('attrs', {}).get('level', 1),
                             'text': text, 'id': _slug(text, 50)})
    return headings


def parse_document(text: str) -> Dict[str, Any]:
    """
    Разбирает Markdown документ ЧТЗ.

    Args:
        text: Содержимое .md файла

    Returns:
        Dict: type, version, metadata, history, related_docs, blocks,
              images, links, headings

    Raises:
        YamlValidationError: Если front matter отсутствует или некорректен
    """
    data, body = split_front_matter(text)
    validate_front_matter(data)
    front = normalize_front_matter(data)

    interpreter = DirectiveInterpreter()
    blocks: List[Dict[str, Any]] = []
    for segment in split_directives(body):
        if segment['kind'] == 'markdown':
            blocks.extend(token for token in tokenize(segment['text'])
                          if token.get('type') != 'blank_line')
        else:
            record = interpreter.interpret(segment['name'], segment['attributes'], segment['raw'])
            blocks.append({'type': 'directive', 'name': segment['name'], 'directive': record})

    return {
        'type': front['type'],
        'version': front['version'],
        'metadata': front['metadata'],
        'history': front['history'],
        'related_docs': front['relatedDocs'],
        'blocks': blocks,
        'images': extract_images(blocks),
        'links': extract_links(blocks),
        'headings': extract_headings(blocks),
    }
