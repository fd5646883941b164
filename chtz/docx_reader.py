"""
Чтение DOCX пакета для обратной конвертации.
"""
import io
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, List, Any, Union

from .errors import DocxFormatError
from .styles import parse_numbering_formats, read_style_table
from .xml_parser import MinimalXmlParser, as_list, attr, first


MEDIA_CONTENT_TYPES = {
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'gif': 'image/gif',
    'bmp': 'image/bmp',
    'tif': 'image/tiff',
    'tiff': 'image/tiff',
    'emf': 'image/x-emf',
    'wmf': 'image/x-wmf',
}

REL_HYPERLINK = "/hyperlink"
REL_IMAGE = "/image"


class PackageReader:
    """Извлекает из DOCX тело документа, стили, связи, нумерацию и изображения."""

    def __init__(self):
        self.anomalies: List[Dict[str, Any]] = []

    def read(self, source: Union[str, Path, bytes]) -> Dict[str, Any]:
        """
        Читает DOCX.

        Returns:
            Dict: body, styles, relations, numbering, images, anomalies

        Raises:
            DocxFormatError: Повреждённый архив, нет document.xml, w:document или w:body
        """
        self.anomalies = []
        try:
            stream = io.BytesIO(source) if isinstance(source, bytes) else str(source)
            with zipfile.ZipFile(stream) as zf:
                entries = {name: zf.read(name) for name in zf.namelist() if not name.endswith('/')}
        except zipfile.BadZipFile as e:
            raise DocxFormatError(f"Файл не является корректным DOCX: {e}") from e

        if 'word/document.xml' not in entries:
            raise DocxFormatError('Файл не является корректным DOCX: отсутствует word/document.xml')

        parser = MinimalXmlParser()
        root = parser.parse(entries['word/document.xml'].decode('utf-8'))
        self.anomalies.extend(dict(a, part='word/document.xml') for a in parser.anomalies)

        document = first(root, 'w:document')
        if document is None:
            raise DocxFormatError('Некорректная структура DOCX: отсутствует w:document')
        body = first(document, 'w:body')
        if body is None:
            raise DocxFormatError('Некорректная структура DOCX: отсутствует w:body')

        return {
            'body': body,
            'styles': read_style_table(self._text(entries, 'word/styles.xml')),
            'relations': self.read_relations(self._text(entries, 'word/_rels/document.xml.rels')),
            'numbering': parse_numbering_formats(self._text(entries, 'word/numbering.xml')),
            'images': self.read_images(entries),
            'anomalies': list(self.anomalies),
        }

    @staticmethod
    def _text(entries: Dict[str, bytes], name: str) -> str:
        data = entries.get(name)
        return data.decode('utf-8') if data else ''

    def read_relations(self, xml: str) -> Dict[str, Dict[str, Any]]:
        """Связи rId -> {type: image|hyperlink|other, target, target_mode}."""
        relations: Dict[str, Dict[str, Any]] = {}
        if not xml:
            return relations
        parser = MinimalXmlParser()
        root = parser.parse(xml)
        self.anomalies.extend(dict(a, part='word/_rels/document.xml.rels') for a in parser.anomalies)
        for rel in as_list((first(root, 'Relationships') or {}).get('Relationship')):
            rel_type = attr(rel, 'Type', '')
            if rel_type.endswith(REL_IMAGE):
                kind = 'image'
            elif rel_type.endswith(REL_HYPERLINK):
                kind = 'hyperlink'
            else:
                kind = 'other'
            relations[attr(rel, 'Id', '')] = {
                'type': kind,
                'target': attr(rel, 'Target', ''),
                'target_mode': attr(rel, 'TargetMode'),
            }
        return relations

    @staticmethod
    def read_images(entries: Dict[str, bytes]) -> List[Dict[str, Any]]:
        images = []
        for name, data in entries.items():
            if not name.startswith('word/media/'):
                continue
            filename = PurePosixPath(name).name
            extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
            images.append({
                'id': name,
                'filename': filename,
                'content_type': MEDIA_CONTENT_TYPES.get(extension, 'application/octet-stream'),
                'data': data,
            })
        return images
