"""Общие заготовки тестов: образец документа, сборка DOCX в памяти, PNG."""
import io
import shutil
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

from PIL import Image

REPO_ROOT = Path(__file__).resolve().parents[2]
FIXTURES_DIR = REPO_ROOT / "tests" / "fixtures"
SAMPLE_MD = FIXTURES_DIR / "sample.md"

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
REL_BASE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"

SECTION_TITLES = [
    "1. Термины и определения",
    "2. Исходные данные задания",
    "3. Изменение функционала системы",
    "4. Описание изменений в ИТ-системе",
    "5. Описание изменений в интеграционных механизмах",
    "6. Описание изменений, состава обрабатываемых ПДн",
    "7. Входные формы",
    "8. Выходные формы",
    "9. Описание изменений в ролевой модели",
    "10. Приложения",
]


def write_png(path: Path, size=(40, 20)) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, (0, 114, 198)).save(path, format="PNG")
    return path


def png_bytes(size=(4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


def prepare_sample(directory: Path) -> Path:
    """Копирует образец документа и создаёт его изображение images/form.png."""
    directory = Path(directory)
    target = directory / "sample.md"
    shutil.copy(SAMPLE_MD, target)
    write_png(directory / "images" / "form.png", (200, 100))
    return target


# ============================================================================
# DOCX В ПАМЯТИ
# ============================================================================

def run(text: str, bold: bool = False, italic: bool = False, strike: bool = False) -> str:
    props = ""
    if bold:
        props += "<w:b/>"
    if italic:
        props += "<w:i/>"
    if strike:
        props += "<w:strike/>"
    rpr = f"<w:rPr>{props}</w:rPr>" if props else ""
    return f'<w:r>{rpr}<w:t xml:space="preserve">{text}</w:t></w:r>'


def paragraph(content: str = "", style: Optional[str] = None, num_id: Optional[str] = None,
              level: int = 0) -> str:
    """Параграф; content без '<' считается текстом одного run."""
    if content and not content.startswith("<"):
        content = run(content)
    ppr = ""
    if style:
        ppr += f'<w:pStyle w:val="{style}"/>'
    if num_id:
        ppr += f'<w:numPr><w:ilvl w:val="{level}"/><w:numId w:val="{num_id}"/></w:numPr>'
    ppr_xml = f"<w:pPr>{ppr}</w:pPr>" if ppr else ""
    return f"<w:p>{ppr_xml}{content}</w:p>"


def heading(text: str, level: int = 1) -> str:
    return paragraph(text, style=str(level))


def cell(content: str) -> str:
    """Ячейка: строка текста (абзацы через '\\n') или готовый XML."""
    if not content.startswith("<"):
        content = "".join(paragraph(line) for line in content.split("\n"))
    return f"<w:tc><w:tcPr/>{content or '<w:p/>'}</w:tc>"


def table(rows: List[List[str]]) -> str:
    body = "".join("<w:tr>" + "".join(cell(value) for value in row) + "</w:tr>" for row in rows)
    return f"<w:tbl><w:tblPr/>{body}</w:tbl>"


NUMBERING_XML = (
    f'<w:numbering xmlns:w="{W_NS}">'
    '<w:abstractNum w:abstractNumId="0"><w:lvl w:ilvl="0"><w:numFmt w:val="bullet"/></w:lvl></w:abstractNum>'
    '<w:abstractNum w:abstractNumId="1"><w:lvl w:ilvl="0"><w:numFmt w:val="decimal"/></w:lvl></w:abstractNum>'
    '<w:num w:numId="1"><w:abstractNumId w:val="0"/></w:num>'
    '<w:num w:numId="2"><w:abstractNumId w:val="1"/></w:num>'
    '</w:numbering>'
)


def relationships_xml(relationships: Dict[str, tuple]) -> str:
    items = []
    for r_id, (kind, target) in relationships.items():
        mode = ' TargetMode="External"' if kind == "hyperlink" else ""
        items.append(f'<Relationship Id="{r_id}" Type="{REL_BASE}/{kind}" Target="{target}"{mode}/>')
    return ('<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
            + "".join(items) + "</Relationships>")


def make_docx(body: str, relationships: Optional[Dict[str, tuple]] = None,
              media: Optional[Dict[str, bytes]] = None, numbering: Optional[str] = NUMBERING_XML,
              styles: Optional[str] = None, document: Optional[str] = None) -> bytes:
    """
    Собирает DOCX из XML тела документа.

    Args:
        body: Содержимое w:body
        relationships: rId -> (тип, target), например ('hyperlink', 'https://...')
        media: имя файла в word/media -> данные
        document: Полный document.xml вместо построенного из body
    """
    if document is None:
        document = (f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
                    f'<w:document xmlns:w="{W_NS}" xmlns:r="{R_NS}"><w:body>{body}</w:body></w:document>')
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("[Content_Types].xml",
                    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types"/>')
        zf.writestr("word/document.xml", document)
        zf.writestr("word/_rels/document.xml.rels", relationships_xml(relationships or {}))
        if numbering:
            zf.writestr("word/numbering.xml", numbering)
        if styles:
            zf.writestr("word/styles.xml", styles)
        for name, data in (media or {}).items():
            zf.writestr(f"word/media/{name}", data)
    return buffer.getvalue()


def meta_table(short_name: str = "Изменение", consultant: str = "Петров П.П.",
               email: str = "petrov@example.com", organization: str = "АО Пример",
               created: str = "01.02.2024") -> str:
    return table([
        ["Общее описание изменения"],
        ["Краткое название изменения:", short_name],
        ["Консультант:", consultant, "E-mail:", email],
        ["Наименование организации Заказчика:", organization],
        ["Наименование ИТ-решений (ЕСИС):", "Решение А, Решение Б"],
        ["Наименование ИТ-систем (ЕСИС):", "Система 1\nСистема 2"],
        ["Планируется обработка данных КТ:", "Да"],
        ["Планируется обработка данных ПДн:", "Нет"],
        ["Дата создания ЧТЗ:", created],
    ])


def history_table() -> str:
    return table([
        ["Версия", "Дата", "Комментарий", "Автор"],
        ["1.0", "01.02.2024", "Создание", "Петров"],
    ])


def full_body(content_by_section: Optional[Dict[int, str]] = None, skip=()) -> str:
    """Тело с метаданными и десятью разделами, номера в skip пропускаются."""
    content_by_section = content_by_section or {}
    parts = [meta_table(), history_table()]
    for number, title in enumerate(SECTION_TITLES, 1):
        if number in skip:
            continue
        parts.append(heading(title))
        parts.append(content_by_section.get(number, paragraph("Текст раздела.")))
    return "".join(parts)
