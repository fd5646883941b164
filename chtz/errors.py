"""
Исключения конвертера ЧТЗ.
"""
from typing import Optional


class ChtzError(Exception):
    """Базовая ошибка конвертера."""


class YamlValidationError(ChtzError):
    """Ошибка валидации YAML front matter с указанием поля."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DocxFormatError(ChtzError):
    """Файл не является корректным DOCX пакетом."""


class ConfigError(ChtzError):
    """Ошибка загрузки конфигурации."""


class TemplateError(ChtzError):
    """Шаблон DOCX не найден или повреждён."""
