"""
Генерация DOCX из Markdown документа ЧТЗ.
"""
import traceback
from pathlib import Path
from typing import Dict, Any, Optional

from .document import BuildContext, DocumentAssembler
from .package import PackageAssembler
from .parser import parse_document
from .styles import ChtzStyles, find_config, load_config


def generate(input_path, output_path=None, template_path=None, images_dir=None,
             config_path=None, verbose: bool = False) -> Dict[str, Any]:
    """
    Создаёт .docx из .md файла.

    Args:
        input_path: Путь к Markdown документу
        output_path: Путь к результату, по умолчанию рядом с входным файлом
        template_path: DOCX шаблон, по умолчанию из конфигурации или встроенный
        images_dir: Каталог изображений, по умолчанию каталог входного файла
        config_path: YAML конфигурация, по умолчанию chtz.yaml рядом с входным файлом
        verbose: Печатать ход сборки

    Returns:
        Dict: {success, output_path, stats, warnings} или {success: False, error, stack}
    """
    try:
        input_path = Path(input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Файл не найден: {input_path}")

        config_file = config_path or find_config(input_path)
        config = load_config(config_file)
        if template_path is None and config.get('template'):
            template_path = Path(config['template'])
            if not template_path.is_absolute():
                template_path = Path(config_file).parent / template_path
        images_dir = Path(images_dir or config.get('images_dir') or input_path.parent)
        output_path = Path(output_path) if output_path else input_path.with_suffix('.docx')

        if verbose:
            print(f"📖 Чтение: {input_path}")
        document = parse_document(input_path.read_text(encoding='utf-8'))
        if verbose:
            print(f"🔍 Блоков: {len(document['blocks'])}, заголовков: {len(document['headings'])}")

        assembler = PackageAssembler(template_path, verbose)
        assembler.load_template()
        styles = ChtzStyles.load(Path(template_path) if template_path else None,
                                 config.get('styles'))
        relationships = assembler.relationships()

        context = BuildContext(
            styles,
            relationships,
            images_dir=images_dir,
            max_image_width=config['image']['max_width'],
            default_image_size=config['image']['default_size'],
            media_start=assembler.next_media_index(),
            verbose=verbose,
        )
        if verbose:
            print("🔧 Построение document.xml...")
        document_xml = DocumentAssembler(context).build(document)

        assembler.assemble(document_xml, relationships, context.images, output_path)
        if verbose:
            print(f"✅ Сохранено: {output_path}")

        return {
            'success': True,
            'output_path': str(output_path),
            'stats': dict(context.stats),
            'warnings': context.warnings,
        }
    except Exception as e:
        return {'success': False, 'error': str(e), 'stack': traceback.format_exc()}


def validate(input_path) -> Dict[str, Any]:
    """
    Проверяет Markdown документ без генерации DOCX.

    Returns:
        Dict: {valid, metadata, stats{headings, images, links}} или {valid: False, error}
    """
    try:
        document = parse_document(Path(input_path).read_text(encoding='utf-8'))
        return {
            'valid': True,
            'metadata': document['metadata'],
            'stats': {
                'headings': len(document['headings']),
                'images': len(document['images']),
                'links': len(document['links']),
            },
        }
    except Exception as e:
        return {'valid': False, 'error': str(e), 'error_type': type(e).__name__,
                'field': getattr(e, 'field', None)}
