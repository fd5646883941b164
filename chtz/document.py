"""
Сборка word/document.xml из разобранного Markdown документа.
"""
import re
from pathlib import Path
from typing import Dict, List, Any, Optional

from .builders import ContentEmitter, MetaTableEmitter
from .package import RelationshipsManager
from .xml_utils import ChtzXmlUtils as X


class BuildContext:
    """
    Состояние одной сборки документа.

    Счётчики закладок и docPr, связи гиперссылок и изображений,
    предупреждения и статистика. Одинаковый URL или путь к изображению
    получает один и тот же rId.
    """

    def __init__(self, styles: Dict[str, Any], relationships: RelationshipsManager,
                 images_dir: Optional[Path] = None, max_image_width: int = 550,
                 default_image_size=(400, 300), media_start: int = 1, verbose: bool = False):
        self.styles = styles
        self.relationships = relationships
        self.images_dir = Path(images_dir) if images_dir else Path('.')
        self.max_image_width = max_image_width
        self.default_image_size = tuple(default_image_size)
        self.verbose = verbose

        self.images: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, str]] = []
        self.stats = {'headings': 0, 'images': 0, 'hyperlinks': 0}

        self._bookmark_id = 0
        self._doc_pr_id = 0
        self._media_index = media_start
        self._bookmark_names = set()
        self._hyperlinks = set()
        self._image_cache: Dict[str, Dict[str, Any]] = {}

    def next_bookmark_id(self) -> int:
        self._bookmark_id += 1
        return self._bookmark_id

    def next_doc_pr_id(self) -> int:
        self._doc_pr_id += 1
        return self._doc_pr_id

    def unique_bookmark_name(self, name: str) -> str:
        candidate = name
        suffix = 2
        while candidate in self._bookmark_names:
            candidate = f"{name}-{suffix}"
            suffix += 1
        self._bookmark_names.add(candidate)
        return candidate

    def warn(self, code: str, message: str) -> None:
        self.warnings.append({'code': code, 'message': message, 'severity': 'warning'})

    def add_hyperlink(self, url: str) -> str:
        r_id = self.relationships.add_hyperlink(url)
        if url not in self._hyperlinks:
            self._hyperlinks.add(url)
            self.stats['hyperlinks'] += 1
        return r_id

    def resolve_image_path(self, url: str) -> Optional[Path]:
        """Путь к файлу изображения относительно каталога изображений."""
        path = Path(url)
        candidates = [path] if path.is_absolute() else [self.images_dir / url]
        if not path.is_absolute() and url.startswith('images/'):
            candidates.append(self.images_dir / url[len('images/'):])
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def add_image(self, url: str) -> Optional[Dict[str, Any]]:
        """
        Регистрирует изображение для копирования в word/media.

        Returns:
            Dict: source, media_name, r_id, name, extension или None,
                  если файл не найден
        """
        clean = re.sub(r'\{[^}]*\}$', '', url or '').strip()
        if clean in self._image_cache:
            return self._image_cache[clean]

        source = self.resolve_image_path(clean)
        if source is None:
            print(f"⚠️ Изображение не найдено: {clean}")
            self.warn('IMAGE_NOT_FOUND', f"Изображение не найдено: {clean}")
            return None

        extension = source.suffix.lower().lstrip('.') or 'png'
        media_name = f"image{self._media_index}.{extension}"
        self._media_index += 1

        descriptor = {
            'source': source,
            'media_name': media_name,
            'r_id': self.relationships.add_image(f"media/{media_name}"),
            'name': source.name,
            'extension': extension,
        }
        self.images.append(descriptor)
        self._image_cache[clean] = descriptor
        self.stats['images'] += 1
        if self.verbose:
            print(f"   🖼  {clean} -> {descriptor['r_id']}")
        return descriptor


class DocumentAssembler:
    """Порядок документа: метаданные, история, связанные документы, разрыв страницы, содержимое."""

    def __init__(self, context: BuildContext):
        self.context = context
        self.meta = MetaTableEmitter(context)
        self.content = ContentEmitter(context)

    def build_body(self, document: Dict[str, Any]) -> str:
        parts = [
            self.meta.meta_table(document['metadata']),
            '<w:p/>',
            self.meta.history_table(document['history']),
            '<w:p/>',
        ]
        related = self.meta.related_docs_table(document.get('related_docs') or [])
        if related:
            parts.extend([related, '<w:p/>'])
        parts.append(X.page_break())
        parts.append(self.content.render_blocks(document['blocks']))
        return "\n".join(parts)

    def build(self, document: Dict[str, Any]) -> str:
        """Полный word/document.xml."""
        return X.render_document(self.build_body(document), self.context.styles['page'])
