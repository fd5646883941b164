"""
chtz - конвертер документов ЧТЗ между Markdown и DOCX.

    generate(input_path)             Markdown -> DOCX
    validate(input_path)             проверка Markdown без генерации
    ReverseConverter().convert(docx) DOCX -> Markdown
"""
from .converter import ReverseConverter
from .errors import ChtzError, ConfigError, DocxFormatError, TemplateError, YamlValidationError
from .generator import generate, validate
from .package import build_default_template
from .parser import parse_document

__version__ = "1.0.0"

__all__ = [
    'generate',
    'validate',
    'parse_document',
    'build_default_template',
    'ReverseConverter',
    'ChtzError',
    'ConfigError',
    'DocxFormatError',
    'TemplateError',
    'YamlValidationError',
]
