"""
Обратная конвертация DOCX -> Markdown.
"""
import difflib
import json
import traceback
from pathlib import Path
from typing import Dict, List, Any, Union

from .docx_reader import PackageReader
from .md_builder import MdBuilder
from .recognizers import RecognizerPipeline
from .validator import DocumentValidator


IDENTICAL_MESSAGE = 'Документы идентичны ✓'


class ReverseConverter:
    """
    DOCX -> Markdown: чтение пакета, распознавание, проверка, сборка.

    Args:
        extract_images: Возвращать изображения из word/media
        images_dir: Каталог изображений в ссылках Markdown
        strict: Ошибки проверки прерывают конвертацию
        verbose: Печатать ход конвертации
    """

    def __init__(self, extract_images: bool = True, images_dir: str = 'images',
                 strict: bool = False, verbose: bool = False):
        self.extract_images = extract_images
        self.images_dir = images_dir
        self.strict = strict
        self.verbose = verbose
        self.warnings: List[Dict[str, Any]] = []

    def log(self, message: str) -> None:
        if self.verbose:
            print(f"   {message}")

    def convert(self, source: Union[str, Path, bytes]) -> Dict[str, Any]:
        """
        Returns:
            Dict: success, markdown, metadata, history, related_docs, sections,
                  images, warnings, stats или success: False, error, stack, warnings
        """
        self.warnings = []
        try:
            self.log("📖 Чтение DOCX...")
            package = PackageReader().read(source)
            for anomaly in package['anomalies']:
                self.warnings.append({
                    'code': 'XML_RECOVERED',
                    'message': f"{anomaly.get('part', '')}: {anomaly['message']} "
                               f"(позиция {anomaly['position']})",
                    'severity': 'warning',
                })

            self.log("🔍 Распознавание структуры...")
            recognized = RecognizerPipeline(self.images_dir).recognize(package)
            self.warnings.extend(recognized['warnings'])

            self.log("🔧 Проверка структуры...")
            validation = DocumentValidator(self.strict).validate(recognized)
            self.warnings.extend(validation['warnings'])
            if not validation['valid']:
                if self.strict:
                    details = "\n".join(f"  ❌ [{e['code']}] {e['message']}" for e in validation['errors'])
                    raise ValueError(f"Валидация документа не прошла:\n{details}")
                self.warnings.extend(validation['errors'])

            self.log("📝 Генерация Markdown...")
            markdown = MdBuilder().build(recognized)

            images = package['images'] if self.extract_images else []
            return {
                'success': True,
                'markdown': markdown,
                'metadata': recognized['metadata'],
                'history': recognized['history'],
                'related_docs': recognized['related_docs'],
                'sections': recognized['sections'],
                'images': images,
                'warnings': self.warnings,
                'stats': {
                    'sections': len(recognized['sections']),
                    'images': len(images),
                    'tables': self.count_tables(recognized['sections']),
                },
            }
        except Exception as e:
            return {
                'success': False,
                'error': str(e),
                'stack': traceback.format_exc(),
                'warnings': self.warnings,
            }

    @staticmethod
    def count_tables(sections: List[Dict[str, Any]]) -> int:
        return sum(1 for section in sections for item in section.get('content', [])
                   if item.get('type') == 'table')

    def save_images(self, images: List[Dict[str, Any]], output_dir) -> List[Path]:
        """Записывает изображения в каталог, возвращает пути файлов."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        saved = []
        for image in images:
            path = output_dir / image['filename']
            path.write_bytes(image['data'])
            saved.append(path)
            self.log(f"🖼  Сохранено изображение: {path}")
        return saved

    @staticmethod
    def to_json(result: Dict[str, Any]) -> str:
        """Результат конвертации в JSON, двоичные данные изображений заменяются размером."""
        data = dict(result)
        data.pop('stack', None)
        data['images'] = [
            {'filename': image.get('filename'),
             'content_type': image.get('content_type'),
             'size': len(image.get('data') or b'')}
            for image in result.get('images', [])
        ]
        return json.dumps(data, ensure_ascii=False, indent=2)

    @staticmethod
    def diff(original: str, converted: str, context_lines: int = 3, stats: bool = False):
        """
        Unified diff двух Markdown документов.

        Returns:
            str или Dict {diff, stats{lines_added, lines_removed, lines_changed, identical}}
        """
        old_lines = original.splitlines()
        new_lines = converted.splitlines()

        statistics = {'lines_added': 0, 'lines_removed': 0, 'lines_changed': 0,
                      'identical': original == converted}
        matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag in ('insert', 'replace'):
                statistics['lines_added'] += j2 - j1
            if tag in ('delete', 'replace'):
                statistics['lines_removed'] += i2 - i1
        statistics['lines_changed'] = statistics['lines_added'] + statistics['lines_removed']

        if statistics['identical']:
            output = IDENTICAL_MESSAGE
        else:
            output = "\n".join(difflib.unified_diff(
                old_lines, new_lines,
                fromfile='Оригинал', tofile='Конвертированный',
                n=context_lines, lineterm=''))

        if stats:
            return {'diff': output, 'stats': statistics}
        return output
