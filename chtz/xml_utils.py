"""
Примитивы WordprocessingML: экранирование, runs, параграфы, ссылки, закладки.

Все функции возвращают готовые XML фрагменты строками, документ
собирается из списка таких фрагментов.
"""
from pathlib import Path
from typing import Dict, List, Any, Optional, Tuple

import jinja2


TEMPLATES_DIR = Path(__file__).parent / "templates"

# Пространства имён корневого элемента w:document
NAMESPACES: List[Tuple[str, str]] = [
    ("wpc", "http://schemas.microsoft.com/office/word/2010/wordprocessingCanvas"),
    ("mc", "http://schemas.openxmlformats.org/markup-compatibility/2006"),
    ("o", "urn:schemas-microsoft-com:office:office"),
    ("r", "http://schemas.openxmlformats.org/officeDocument/2006/relationships"),
    ("m", "http://schemas.openxmlformats.org/officeDocument/2006/math"),
    ("v", "urn:schemas-microsoft-com:vml"),
    ("wp14", "http://schemas.microsoft.com/office/word/2010/wordprocessingDrawing"),
    ("wp", "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"),
    ("w10", "urn:schemas-microsoft-com:office:word"),
    ("w", "http://schemas.openxmlformats.org/wordprocessingml/2006/main"),
    ("w14", "http://schemas.microsoft.com/office/word/2010/wordml"),
    ("wpg", "http://schemas.microsoft.com/office/word/2010/wordprocessingGroup"),
    ("wpi", "http://schemas.microsoft.com/office/word/2010/wordprocessingInk"),
    ("wne", "http://schemas.microsoft.com/office/word/2006/wordml"),
    ("wps", "http://schemas.microsoft.com/office/word/2010/wordprocessingShape"),
]

_env: Optional[jinja2.Environment] = None


def get_template_env() -> jinja2.Environment:
    """Возвращает окружение Jinja2 для XML шаблонов пакета."""
    global _env
    if _env is None:
        _env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(TEMPLATES_DIR)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=jinja2.StrictUndefined,
        )
    return _env


def render_template(name: str, **context: Any) -> str:
    return get_template_env().get_template(name).render(**context)


# ============================================================================
# БАЗОВЫЕ ЭЛЕМЕНТЫ
# ============================================================================

class ChtzXmlUtils:
    """Построение фрагментов document.xml."""

    @staticmethod
    def escape_xml(text: Any) -> str:
        """Экранирует специальные XML символы."""
        if not isinstance(text, str):
            return str(text) if text is not None else ""

        return (text
                .replace('&', '&amp;')
                .replace('<', '&lt;')
                .replace('>', '&gt;')
                .replace('"', '&quot;')
                .replace("'", '&apos;'))

    @classmethod
    def w_text(cls, text: str) -> str:
        """Элемент w:t, пробелы по краям сохраняются через xml:space."""
        escaped = cls.escape_xml(text)
        if text != text.strip():
            return f'<w:t xml:space="preserve">{escaped}</w:t>'
        return f'<w:t>{escaped}</w:t>'

    @staticmethod
    def run_properties(style: Optional[Dict[str, Any]] = None) -> str:
        """
        Формирует w:rPr в порядке, требуемом схемой.

        Args:
            style: font, bold, italic, strike, color, size (полупункты), underline

        Returns:
            str: XML w:rPr или пустая строка
        """
        if not style:
            return ""

        props = []
        if style.get('font'):
            font = style['font']
            props.append(f'<w:rFonts w:ascii="{font}" w:hAnsi="{font}" w:cs="{font}"/>')
        if style.get('bold'):
            props.append('<w:b/>')
        if style.get('italic'):
            props.append('<w:i/>')
        if style.get('strike'):
            props.append('<w:strike/>')
        if style.get('color'):
            props.append(f'<w:color w:val="{style["color"]}"/>')
        if style.get('size'):
            props.append(f'<w:sz w:val="{style["size"]}"/><w:szCs w:val="{style["size"]}"/>')
        if style.get('underline'):
            props.append('<w:u w:val="single"/>')

        return f'<w:rPr>{"".join(props)}</w:rPr>' if props else ""

    @classmethod
    def text_run(cls, text: str, style: Optional[Dict[str, Any]] = None) -> str:
        """Run с текстом. Переводы строк превращаются в w:br."""
        rpr = cls.run_properties(style)
        pieces = []
        for index, line in enumerate(str(text).split('\n')):
            if index > 0:
                pieces.append('<w:br/>')
            if line:
                pieces.append(cls.w_text(line))
        return f'<w:r>{rpr}{"".join(pieces)}</w:r>'

    @staticmethod
    def paragraph(content: str = "", props: Optional[Dict[str, Any]] = None) -> str:
        """
        Параграф w:p. Свойства пишутся в порядке схемы:
        pStyle, keepNext, pageBreakBefore, numPr, spacing, ind, jc.
        """
        props = props or {}
        ppr = []

        if props.get('style'):
            ppr.append(f'<w:pStyle w:val="{props["style"]}"/>')
        if props.get('keep_next'):
            ppr.append('<w:keepNext/>')
        if props.get('page_break_before'):
            ppr.append('<w:pageBreakBefore/>')

        numbering = props.get('numbering')
        if numbering:
            ppr.append(
                f'<w:numPr><w:ilvl w:val="{numbering.get("level", 0)}"/>'
                f'<w:numId w:val="{numbering["num_id"]}"/></w:numPr>'
            )

        spacing = props.get('spacing')
        if spacing:
            attrs = ''.join(
                f' w:{name}="{spacing[key]}"'
                for key, name in (('before', 'before'), ('after', 'after'), ('line', 'line'))
                if spacing.get(key) is not None
            )
            ppr.append(f'<w:spacing{attrs}/>')

        indent = props.get('indent')
        if indent:
            attrs = ''.join(
                f' w:{name}="{indent[key]}"'
                for key, name in (('left', 'left'), ('right', 'right'),
                                  ('hanging', 'hanging'), ('first_line', 'firstLine'))
                if indent.get(key) is not None
            )
            ppr.append(f'<w:ind{attrs}/>')

        align = props.get('align')
        if align:
            ppr.append(f'<w:jc w:val="{"both" if align == "justify" else align}"/>')

        ppr_xml = f'<w:pPr>{"".join(ppr)}</w:pPr>' if ppr else ""
        return f'<w:p>{ppr_xml}{content}</w:p>'

    @staticmethod
    def page_break() -> str:
        return '<w:p><w:r><w:br w:type="page"/></w:r></w:p>'

    # ========================================================================
    # ССЫЛКИ И ЗАКЛАДКИ
    # ========================================================================

    @classmethod
    def hyperlink(cls, text: str, r_id: str, style: Optional[Dict[str, Any]] = None,
                  color: str = "0563C1") -> str:
        """Внешняя гиперссылка через связь r:id."""
        run_style = dict(style or {})
        run_style.update({'color': color, 'underline': True})
        return f'<w:hyperlink r:id="{r_id}">{cls.text_run(text, run_style)}</w:hyperlink>'

    @classmethod
    def internal_link(cls, text: str, anchor: str, style: Optional[Dict[str, Any]] = None,
                      color: str = "0563C1") -> str:
        """Ссылка на закладку внутри документа."""
        run_style = dict(style or {})
        run_style.update({'color': color, 'underline': True})
        return (f'<w:hyperlink w:anchor="{cls.escape_xml(anchor)}">'
                f'{cls.text_run(text, run_style)}</w:hyperlink>')

    @classmethod
    def bookmark(cls, bookmark_id: int, name: str, content: str = "") -> str:
        return (f'<w:bookmarkStart w:id="{bookmark_id}" w:name="{cls.escape_xml(name)}"/>'
                f'{content}<w:bookmarkEnd w:id="{bookmark_id}"/>')

    # ========================================================================
    # ДОКУМЕНТ
    # ========================================================================

    @staticmethod
    def render_document(body: str, page: Dict[str, Any]) -> str:
        """Оборачивает тело в w:document с секцией страницы."""
        return render_template("document.xml.j2", namespaces=NAMESPACES, body=body, page=page)
