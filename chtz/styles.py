"""
Таблица стилей документа и конфигурация конвертера.

Таблица стилей - словарь, который получают все построители XML:
идентификаторы стилей параграфов, номера списков, геометрия страницы,
цвета, шрифты и отступы ячеек. Значения по умолчанию соответствуют
корпоративному шаблону ЧТЗ, идентификаторы можно уточнить по шаблону
DOCX, а любые значения переопределить в YAML конфигурации.
"""
import copy
import io
import re
import zipfile
from pathlib import Path
from typing import Dict, List, Any, Optional, Union

import yaml

from .errors import ConfigError
from .xml_parser import MinimalXmlParser, as_list, attr, first, iter_children


# ============================================================================
# СТИЛИ ПО УМОЛЧАНИЮ
# ============================================================================

DEFAULT_STYLES: Dict[str, Any] = {
    'styleIds': {
        'heading1': '1',
        'heading2': '2',
        'heading3': '3',
        'heading4': '4',
        'heading5': '5',
        'normal': 'a',
        'title': 'af6',
        'listParagraph': 'aff2',
        'hyperlink': 'aff5',
        'tableGrid': 'afa',
        'quote': '21',
        'intenseQuote': 'a6',
        'toc1': '12',
        'toc2': '24',
        'toc3': '32',
    },
    'numberingIds': {
        'bullet': '1',
        'decimal': '2',
    },
    'page': {
        'width': 11906,
        'height': 16838,
        'margins': {
            'top': 1134,
            'bottom': 1134,
            'left': 1701,
            'right': 850,
            'header': 708,
            'footer': 708,
        },
    },
    'colors': {
        'accent': '0072C6',
        'headerBackground': '0072C6',
        'tableHeaderBackground': '0072C6',
        'tableHeaderText': 'FFFFFF',
        'tableBorder': '000000',
        'hyperlink': '0563C1',
        'warning': 'FFF3CD',
        'warningBorder': 'FFECB5',
        'danger': 'F8D7DA',
        'info': 'D1ECF1',
        'muted': '808080',
    },
    'fonts': {
        'heading': 'Arial',
        'body': 'Times New Roman',
        'code': 'Courier New',
    },
    'table': {
        'cellPadding': {
            'top': 80,
            'bottom': 80,
            'left': 120,
            'right': 120,
        },
    },
}

# Имена стилей в styles.xml шаблона, по которым ищутся их идентификаторы
STYLE_NAMES: Dict[str, List[str]] = {
    'heading1': ['heading 1'],
    'heading2': ['heading 2'],
    'heading3': ['heading 3'],
    'heading4': ['heading 4'],
    'heading5': ['heading 5'],
    'normal': ['normal'],
    'title': ['title'],
    'listParagraph': ['list paragraph'],
    'hyperlink': ['hyperlink'],
    'tableGrid': ['table grid'],
    'quote': ['quote'],
    'intenseQuote': ['intense quote'],
    'toc1': ['toc 1'],
    'toc2': ['toc 2'],
    'toc3': ['toc 3'],
}

DEFAULT_CONFIG: Dict[str, Any] = {
    'template': None,
    'images_dir': None,
    'image': {
        'max_width': 550,
        'default_size': [400, 300],
    },
    'reverse': {
        'images_dir': 'images',
        'strict': False,
    },
    'styles': {},
}

CONFIG_FILENAME = "chtz.yaml"


# ============================================================================
# КОНФИГУРАЦИЯ
# ============================================================================

def deep_update(target: Dict, source: Dict) -> Dict:
    """Рекурсивно обновляет словарь."""
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            deep_update(target[key], value)
        else:
            target[key] = value
    return target


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Загружает конфигурацию из YAML файла поверх значений по умолчанию.

    Args:
        config_path: Путь к YAML файлу, None - только значения по умолчанию

    Returns:
        Dict: Итоговая конфигурация
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path is None:
        return config

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Файл конфигурации не найден: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Некорректный YAML в {config_path}: {e}") from e

    if data is None:
        return config
    if not isinstance(data, dict):
        raise ConfigError(f"Конфигурация {config_path} должна быть словарём")

    return deep_update(config, data)


def find_config(input_path: Path) -> Optional[Path]:
    """Ищет chtz.yaml рядом с входным файлом."""
    candidate = Path(input_path).parent / CONFIG_FILENAME
    return candidate if candidate.exists() else None


# ============================================================================
# СТИЛИ ШАБЛОНА
# ============================================================================

class ChtzStyles:
    """Загрузка таблицы стилей из шаблона и конфигурации."""

    @staticmethod
    def defaults() -> Dict[str, Any]:
        return copy.deepcopy(DEFAULT_STYLES)

    @classmethod
    def load(cls, template: Union[Path, bytes, None] = None,
             overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Собирает таблицу стилей: значения по умолчанию, затем
        идентификаторы из шаблона, затем переопределения конфигурации.
        """
        styles = cls.defaults()
        if template is not None:
            deep_update(styles, cls.extract_from_template(template))
        if overrides:
            deep_update(styles, copy.deepcopy(overrides))
        return styles

    @classmethod
    def extract_from_template(cls, template: Union[Path, bytes]) -> Dict[str, Any]:
        """
        Извлекает идентификаторы стилей и списков из DOCX шаблона.

        При любой ошибке выводит предупреждение и возвращает пустой
        словарь, чтобы остались значения по умолчанию.
        """
        try:
            source = io.BytesIO(template) if isinstance(template, bytes) else str(template)
            with zipfile.ZipFile(source) as zf:
                names = set(zf.namelist())
                styles_xml = zf.read('word/styles.xml').decode('utf-8') \
                    if 'word/styles.xml' in names else ""
                numbering_xml = zf.read('word/numbering.xml').decode('utf-8') \
                    if 'word/numbering.xml' in names else ""
        except (OSError, zipfile.BadZipFile, KeyError, UnicodeDecodeError) as e:
            print(f"⚠️ Не удалось прочитать стили шаблона: {e}")
            return {}

        result: Dict[str, Any] = {}
        style_ids = cls.parse_style_ids(styles_xml)
        if style_ids:
            result['styleIds'] = style_ids
        numbering_ids = cls.parse_numbering_ids(numbering_xml)
        if numbering_ids:
            result['numberingIds'] = numbering_ids
        return result

    @staticmethod
    def parse_style_ids(styles_xml: str) -> Dict[str, str]:
        """Находит идентификаторы стилей по их именам (без учёта регистра)."""
        if not styles_xml:
            return {}
        by_name: Dict[str, str] = {}
        for style_id, style in read_style_table(styles_xml).items():
            if style["name"]:
                by_name.setdefault(style["name"].strip().lower(), style_id)

        found = {}
        for key, names in STYLE_NAMES.items():
            for name in names:
                if name in by_name:
                    found[key] = by_name[name]
                    break
        return found

    @staticmethod
    def parse_numbering_ids(numbering_xml: str) -> Dict[str, str]:
        """Находит numId маркированного и нумерованного списков по формату уровня 0."""
        if not numbering_xml:
            return {}
        formats = parse_numbering_formats(numbering_xml)
        found: Dict[str, str] = {}
        for num_id, levels in formats.items():
            fmt = levels.get(0)
            if fmt == 'bullet' and 'bullet' not in found:
                found['bullet'] = num_id
            elif fmt == 'decimal' and 'decimal' not in found:
                found['decimal'] = num_id
        return found


def parse_numbering_formats(numbering_xml: str) -> Dict[str, Dict[int, str]]:
    """
    Разбирает numbering.xml в словарь numId -> {ilvl: numFmt}.

    Переопределения w:lvlOverride не учитываются.
    """
    if not numbering_xml:
        return {}
    root = MinimalXmlParser().parse(numbering_xml)
    numbering = first(root, 'w:numbering')
    if numbering is None:
        return {}

    abstract_formats: Dict[str, Dict[int, str]] = {}
    for abstract in as_list(numbering.get('w:abstractNum')):
        levels = {}
        for lvl in as_list(abstract.get('w:lvl')):
            try:
                ilvl = int(attr(lvl, 'w:ilvl', '0'))
            except ValueError:
                continue
            levels[ilvl] = attr(first(lvl, 'w:numFmt'), 'w:val', 'decimal')
        abstract_formats[attr(abstract, 'w:abstractNumId', '')] = levels

    result: Dict[str, Dict[int, str]] = {}
    for num in as_list(numbering.get('w:num')):
        abstract_id = attr(first(num, 'w:abstractNumId'), 'w:val')
        result[attr(num, 'w:numId', '')] = abstract_formats.get(abstract_id, {})
    return result


STYLE_DEFINITION_KEYS: Dict[str, Any] = {
    'default': False,
    'based_on': None,
    'next': None,
    'ppr': None,
    'rpr': None,
    'tblpr': None,
}


def style_definitions(styles: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Описание стилей для styles.xml шаблона по умолчанию."""
    ids = styles['styleIds']
    fonts = styles['fonts']
    colors = styles['colors']
    normal = ids['normal']

    def heading(level: int, size: int) -> Dict[str, Any]:
        return {
            'type': 'paragraph', 'id': ids[f'heading{level}'], 'name': f'heading {level}',
            'based_on': normal, 'next': normal,
            'ppr': (f'<w:keepNext/><w:spacing w:before="240" w:after="120"/>'
                    f'<w:outlineLvl w:val="{level - 1}"/>'),
            'rpr': (f'<w:rFonts w:ascii="{fonts["heading"]}" w:hAnsi="{fonts["heading"]}" '
                    f'w:cs="{fonts["heading"]}"/><w:b/><w:sz w:val="{size}"/><w:szCs w:val="{size}"/>'),
        }

    definitions = [
        {'type': 'paragraph', 'id': normal, 'name': 'Normal', 'default': True},
        heading(1, 32), heading(2, 28), heading(3, 26), heading(4, 24), heading(5, 24),
        {'type': 'paragraph', 'id': ids['title'], 'name': 'Title', 'based_on': normal,
         'ppr': '<w:jc w:val="center"/>', 'rpr': '<w:b/><w:sz w:val="36"/><w:szCs w:val="36"/>'},
        {'type': 'paragraph', 'id': ids['listParagraph'], 'name': 'List Paragraph',
         'based_on': normal, 'ppr': '<w:ind w:left="720"/><w:contextualSpacing/>'},
        {'type': 'character', 'id': ids['hyperlink'], 'name': 'Hyperlink',
         'rpr': f'<w:color w:val="{colors["hyperlink"]}"/><w:u w:val="single"/>'},
        {'type': 'table', 'id': ids['tableGrid'], 'name': 'Table Grid',
         'tblpr': ('<w:tblBorders><w:top w:val="single" w:sz="4" w:space="0" w:color="auto"/>'
                   '<w:left w:val="single" w:sz="4" w:space="0" w:color="auto"/>'
                   '<w:bottom w:val="single" w:sz="4" w:space="0" w:color="auto"/>'
                   '<w:right w:val="single" w:sz="4" w:space="0" w:color="auto"/>'
                   '<w:insideH w:val="single" w:sz="4" w:space="0" w:color="auto"/>'
                   '<w:insideV w:val="single" w:sz="4" w:space="0" w:color="auto"/></w:tblBorders>')},
        {'type': 'paragraph', 'id': ids['quote'], 'name': 'Quote', 'based_on': normal,
         'ppr': '<w:ind w:left="720"/>', 'rpr': '<w:i/>'},
        {'type': 'paragraph', 'id': ids['intenseQuote'], 'name': 'Intense Quote', 'based_on': normal,
         'ppr': '<w:ind w:left="864" w:right="864"/>',
         'rpr': f'<w:i/><w:color w:val="{colors["accent"]}"/>'},
    ]
    for level in (1, 2, 3):
        definitions.append({
            'type': 'paragraph', 'id': ids[f'toc{level}'], 'name': f'toc {level}',
            'based_on': normal, 'next': normal,
            'ppr': f'<w:ind w:left="{(level - 1) * 240}"/>',
        })
    # styles.xml.j2 рендерится со StrictUndefined, поэтому все ключи обязательны
    return [dict(STYLE_DEFINITION_KEYS, **definition) for definition in definitions]


def read_style_table(styles_xml: str) -> Dict[str, Dict[str, Any]]:
    """
    Разбирает styles.xml в словарь styleId -> {name, type, based_on}.
    """
    table: Dict[str, Dict[str, Any]] = {}
    if not styles_xml:
        return table
    root = MinimalXmlParser().parse(styles_xml)
    for tag, style in iter_children(first(root, 'w:styles')):
        if tag != 'w:style':
            continue
        style_id = attr(style, 'w:styleId')
        if not style_id:
            continue
        table[style_id] = {
            'name': attr(first(style, 'w:name'), 'w:val', ''),
            'type': attr(style, 'w:type', ''),
            'based_on': attr(first(style, 'w:basedOn'), 'w:val'),
        }
    return table


def is_heading_name(name: str) -> Optional[int]:
    """Уровень заголовка по имени стиля вида 'heading N'."""
    match = re.match(r'^heading\s*(\d+)$', (name or '').strip(), re.IGNORECASE)
    return int(match.group(1)) if match else None
