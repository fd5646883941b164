"""
Сборка DOCX пакета на основе шаблона.

Связи document.xml.rels загружаются из шаблона до построения документа,
новые идентификаторы выделяются одним счётчиком после максимального
существующего rIdN, поэтому document.xml сразу содержит итоговые rId.
"""
import io
import re
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, List, Any, Optional

from .errors import TemplateError
from .styles import ChtzStyles, style_definitions
from .xml_parser import MinimalXmlParser, as_list, attr, first
from .xml_utils import ChtzXmlUtils, render_template


RELATIONSHIP_BASE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"

RELATIONSHIP_TYPES = {
    'hyperlink': f"{RELATIONSHIP_BASE}/hyperlink",
    'image': f"{RELATIONSHIP_BASE}/image",
    'header': f"{RELATIONSHIP_BASE}/header",
    'footer': f"{RELATIONSHIP_BASE}/footer",
    'styles': f"{RELATIONSHIP_BASE}/styles",
    'numbering': f"{RELATIONSHIP_BASE}/numbering",
    'settings': f"{RELATIONSHIP_BASE}/settings",
    'webSettings': f"{RELATIONSHIP_BASE}/webSettings",
    'fontTable': f"{RELATIONSHIP_BASE}/fontTable",
    'footnotes': f"{RELATIONSHIP_BASE}/footnotes",
    'endnotes': f"{RELATIONSHIP_BASE}/endnotes",
    'theme': f"{RELATIONSHIP_BASE}/theme",
}

IMAGE_CONTENT_TYPES = {
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'gif': 'image/gif',
    'bmp': 'image/bmp',
    'tif': 'image/tiff',
    'tiff': 'image/tiff',
}

DOCUMENT_PART = 'word/document.xml'
DOCUMENT_RELS_PART = 'word/_rels/document.xml.rels'
CONTENT_TYPES_PART = '[Content_Types].xml'


def image_content_type(extension: str) -> str:
    return IMAGE_CONTENT_TYPES.get(extension.lower().lstrip('.'), 'image/png')


# ============================================================================
# СВЯЗИ ДОКУМЕНТА
# ============================================================================

class RelationshipsManager:
    """Связи word/document.xml с выделением rId и дедупликацией по адресу."""

    def __init__(self, existing: Optional[List[Dict[str, Any]]] = None):
        self.relationships: List[Dict[str, Any]] = []
        self._by_target: Dict[tuple, str] = {}
        self._next_id = 1
        for rel in existing or []:
            self._register(rel)

    def _register(self, rel: Dict[str, Any]) -> None:
        self.relationships.append(rel)
        match = re.match(r'^rId(\d+)$', rel['id'])
        if match:
            self._next_id = max(self._next_id, int(match.group(1)) + 1)
        self._by_target.setdefault((rel['type'], rel['target']), rel['id'])

    @classmethod
    def from_xml(cls, xml: str) -> 'RelationshipsManager':
        """Загружает связи из document.xml.rels шаблона."""
        root = MinimalXmlParser().parse(xml)
        existing = []
        for rel in as_list((first(root, 'Relationships') or {}).get('Relationship')):
            if not attr(rel, 'Id'):
                continue
            existing.append({
                'id': attr(rel, 'Id'),
                'type': attr(rel, 'Type', ''),
                'target': attr(rel, 'Target', ''),
                'target_mode': attr(rel, 'TargetMode'),
            })
        return cls(existing)

    @classmethod
    def with_base(cls) -> 'RelationshipsManager':
        """Стандартный набор связей для пакета без document.xml.rels."""
        manager = cls()
        for kind, target in (('numbering', 'numbering.xml'), ('styles', 'styles.xml'),
                             ('settings', 'settings.xml'), ('webSettings', 'webSettings.xml'),
                             ('fontTable', 'fontTable.xml'), ('footnotes', 'footnotes.xml'),
                             ('endnotes', 'endnotes.xml'), ('theme', 'theme/theme1.xml')):
            manager.add(kind, target)
        return manager

    def next_id(self) -> str:
        r_id = f"rId{self._next_id}"
        self._next_id += 1
        return r_id

    def add(self, kind: str, target: str, target_mode: Optional[str] = None) -> str:
        """
        Добавляет связь и возвращает её rId.

        Гиперссылки и изображения с одинаковым адресом получают один rId.
        """
        rel_type = RELATIONSHIP_TYPES.get(kind, kind)
        key = (rel_type, target)
        if kind in ('hyperlink', 'image') and key in self._by_target:
            return self._by_target[key]
        rel = {'id': self.next_id(), 'type': rel_type, 'target': target, 'target_mode': target_mode}
        self._register(rel)
        return rel['id']

    def add_hyperlink(self, url: str) -> str:
        return self.add('hyperlink', url, 'External')

    def add_image(self, target: str) -> str:
        return self.add('image', target)

    def get(self, r_id: str) -> Optional[Dict[str, Any]]:
        for rel in self.relationships:
            if rel['id'] == r_id:
                return rel
        return None

    def to_xml(self) -> str:
        return render_template("document.xml.rels.j2", relationships=self.relationships)


# ============================================================================
# ШАБЛОН ПО УМОЛЧАНИЮ
# ============================================================================

def build_default_template_parts(styles: Optional[Dict[str, Any]] = None) -> Dict[str, bytes]:
    """Части минимального DOCX шаблона со стилями ЧТЗ."""
    styles = styles or ChtzStyles.defaults()
    rels = RelationshipsManager()
    rels.add('styles', 'styles.xml')
    rels.add('numbering', 'numbering.xml')
    rels.add('settings', 'settings.xml')

    parts = {
        CONTENT_TYPES_PART: render_template("content_types.xml.j2"),
        '_rels/.rels': render_template("package.rels.j2"),
        DOCUMENT_PART: ChtzXmlUtils.render_document("", styles['page']),
        DOCUMENT_RELS_PART: rels.to_xml(),
        'word/styles.xml': render_template(
            "styles.xml.j2", styles=style_definitions(styles), fonts=styles['fonts']),
        'word/numbering.xml': render_template(
            "numbering.xml.j2", levels=9, bullets=['•', '◦', '▪'], bullet_font='Arial',
            bullet_num_id=styles['numberingIds']['bullet'],
            decimal_num_id=styles['numberingIds']['decimal']),
        'word/settings.xml': render_template("settings.xml.j2"),
    }
    return {name: content.encode('utf-8') for name, content in parts.items()}


def build_default_template(output_path: Optional[Path] = None) -> bytes:
    """
    Создаёт шаблон DOCX по умолчанию.

    Args:
        output_path: Куда сохранить шаблон, None - только вернуть байты

    Returns:
        bytes: Содержимое .docx
    """
    data = zip_parts(build_default_template_parts())
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(data)
    return data


def zip_parts(parts: Dict[str, bytes]) -> bytes:
    """Упаковывает части в zip, [Content_Types].xml идёт первым."""
    buffer = io.BytesIO()
    names = sorted(parts, key=lambda name: (name != CONTENT_TYPES_PART, name))
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
        for name in names:
            zf.writestr(name, parts[name])
    return buffer.getvalue()


# ============================================================================
# СБОРКА ПАКЕТА
# ============================================================================

class PackageAssembler:
    """Заменяет document.xml и связи в шаблоне, добавляет изображения."""

    def __init__(self, template_path: Optional[Path] = None, verbose: bool = False):
        self.template_path = Path(template_path) if template_path else None
        self.verbose = verbose
        self.parts: Dict[str, bytes] = {}

    def load_template(self) -> Dict[str, bytes]:
        """Читает все части шаблона (или шаблона по умолчанию)."""
        if self.template_path is None:
            self.parts = build_default_template_parts()
            return self.parts

        if not self.template_path.exists():
            raise TemplateError(f"Шаблон не найден: {self.template_path}")
        try:
            with zipfile.ZipFile(self.template_path) as zf:
                self.parts = {name: zf.read(name) for name in zf.namelist() if not name.endswith('/')}
        except zipfile.BadZipFile as e:
            raise TemplateError(f"Шаблон не является DOCX архивом: {self.template_path}") from e

        if DOCUMENT_PART not in self.parts:
            raise TemplateError(f"В шаблоне нет {DOCUMENT_PART}: {self.template_path}")
        if self.verbose:
            print(f"📄 Шаблон: {self.template_path} ({len(self.parts)} частей)")
        return self.parts

    def relationships(self) -> RelationshipsManager:
        rels_xml = self.parts.get(DOCUMENT_RELS_PART)
        if rels_xml is None:
            return RelationshipsManager.with_base()
        return RelationshipsManager.from_xml(rels_xml.decode('utf-8'))

    def next_media_index(self) -> int:
        """Номер для следующего word/media/imageN после изображений шаблона."""
        numbers = [int(match.group(1)) for match in
                   (re.match(r'^word/media/image(\d+)\.', name) for name in self.parts) if match]
        return max(numbers, default=0) + 1

    @staticmethod
    def update_content_types(xml: str, extensions: List[str]) -> str:
        """Добавляет Default для расширений изображений, которых нет в шаблоне."""
        present = {ext.lower() for ext in re.findall(r'<Default\s+Extension="([^"]+)"', xml)}
        additions = []
        for ext in extensions:
            ext = ext.lower()
            if ext in present:
                continue
            present.add(ext)
            additions.append(f'<Default Extension="{ext}" ContentType="{image_content_type(ext)}"/>')
        if not additions:
            return xml
        return xml.replace('</Types>', "".join(additions) + '</Types>')

    def assemble(self, document_xml: str, relationships: RelationshipsManager,
                 images: List[Dict[str, Any]], output_path: Path) -> Path:
        """
        Собирает итоговый .docx.

        Args:
            document_xml: Полный word/document.xml
            relationships: Связи с уже выделенными rId
            images: Описания изображений из BuildContext
            output_path: Путь к результату

        Returns:
            Path: Путь к созданному файлу
        """
        if not self.parts:
            self.load_template()

        with tempfile.TemporaryDirectory(prefix='chtz-') as tmpdir:
            tmp_path = Path(tmpdir)

            for name, data in self.parts.items():
                target = tmp_path / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)

            (tmp_path / DOCUMENT_PART).write_text(document_xml, encoding='utf-8')
            rels_path = tmp_path / DOCUMENT_RELS_PART
            rels_path.parent.mkdir(parents=True, exist_ok=True)
            rels_path.write_text(relationships.to_xml(), encoding='utf-8')

            media_dir = tmp_path / 'word' / 'media'
            for image in images:
                media_dir.mkdir(parents=True, exist_ok=True)
                shutil.copy2(image['source'], media_dir / image['media_name'])
                if self.verbose:
                    print(f"   🖼  {image['source']} -> word/media/{image['media_name']}")

            content_types = tmp_path / CONTENT_TYPES_PART
            if content_types.exists():
                xml = content_types.read_text(encoding='utf-8')
                xml = self.update_content_types(xml, [image['extension'] for image in images])
                content_types.write_text(xml, encoding='utf-8')

            files = {
                path.relative_to(tmp_path).as_posix(): path.read_bytes()
                for path in tmp_path.rglob('*') if path.is_file()
            }
            data = zip_parts(files)

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(data)
        if self.verbose:
            print(f"📦 Размер DOCX архива: {len(data)} байт")
        return output_path
