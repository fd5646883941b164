"""
Проверка распознанного документа ЧТЗ.
"""
import re
from typing import Dict, List, Any, Optional

from .parser import DATE_RE


REQUIRED_SECTIONS = [
    (re.compile(r'^\d+\.\s*(Термины и определения|Глоссарий)', re.IGNORECASE),
     '1. Термины и определения'),
    (re.compile(r'^\d+\.\s*Исходные данные задания', re.IGNORECASE),
     '2. Исходные данные задания'),
    (re.compile(r'^\d+\.\s*Изменение функционала системы', re.IGNORECASE),
     '3. Изменение функционала системы'),
    (re.compile(r'^\d+\.\s*Описание изменений в ИТ[- ]?системе', re.IGNORECASE),
     '4. Описание изменений в ИТ-системе'),
    (re.compile(r'^\d+\.\s*Описание изменений в интеграционных механизмах', re.IGNORECASE),
     '5. Описание изменений в интеграционных механизмах'),
    (re.compile(r'^\d+\.\s*Описание изменений.*ПДн', re.IGNORECASE),
     '6. Описание изменений, состава обрабатываемых ПДн'),
    (re.compile(r'^\d+\.\s*Входные формы', re.IGNORECASE), '7. Входные формы'),
    (re.compile(r'^\d+\.\s*Выходные формы', re.IGNORECASE), '8. Выходные формы'),
    (re.compile(r'^\d+\.\s*Описание изменений в ролевой модели', re.IGNORECASE),
     '9. Описание изменений в ролевой модели'),
    (re.compile(r'^\d+\.\s*Приложени[яе]', re.IGNORECASE), '10. Приложения'),
]

BACKGROUND_RE = re.compile(r'^\d+\.\s*Исходные данные задания', re.IGNORECASE)


class DocumentValidator:
    """
    Валидатор структуры ЧТЗ.

    В строгом режиме отсутствие обязательных полей, истории и разделов -
    ошибки, иначе предупреждения. Пустые изображения - всегда ошибки.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.errors: List[Dict[str, str]] = []
        self.warnings: List[Dict[str, str]] = []

    def validate(self, recognized: Dict[str, Any]) -> Dict[str, Any]:
        """
        Args:
            recognized: Результат RecognizerPipeline.recognize

        Returns:
            Dict: {valid, errors, warnings}
        """
        self.errors = []
        self.warnings = []

        self.validate_metadata(recognized.get('metadata'))
        self.validate_history(recognized.get('history'))
        self.validate_sections(recognized.get('sections'))
        self.validate_images(recognized.get('images'))

        return {
            'valid': not self.errors,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
        }

    def add_error(self, code: str, message: str, **extra) -> None:
        self.errors.append({'code': code, 'message': message, 'severity': 'error', **extra})

    def add_warning(self, code: str, message: str, **extra) -> None:
        self.warnings.append({'code': code, 'message': message, 'severity': 'warning', **extra})

    def _structural(self, code: str, strict_message: str, message: str, **extra) -> None:
        if self.strict:
            self.add_error(code, strict_message, **extra)
        else:
            self.add_warning(code, message, **extra)

    # ========================================================================
    # МЕТАДАННЫЕ И ИСТОРИЯ
    # ========================================================================

    def validate_metadata(self, metadata: Optional[Dict[str, Any]]) -> None:
        if not metadata:
            self.add_error('METADATA_MISSING', 'Метаданные документа отсутствуют')
            return

        required = {
            'shortName': 'Краткое название (shortName)',
            'organization': 'Организация (organization)',
            'createdDate': 'Дата создания (createdDate)',
        }
        for field, label in required.items():
            if not str(metadata.get(field) or '').strip():
                self._structural('METADATA_REQUIRED_FIELD',
                                 f'Не заполнено обязательное поле: {label}',
                                 f'Рекомендуется заполнить поле: {label}')

        consultant = metadata.get('consultant')
        if not consultant:
            self._structural('METADATA_CONSULTANT_MISSING',
                             'Информация о консультанте отсутствует',
                             'Рекомендуется указать консультанта')
        else:
            if not (consultant.get('name') or '').strip():
                self._structural('METADATA_CONSULTANT_NAME',
                                 'Не указано имя консультанта',
                                 'Рекомендуется указать имя консультанта')
            if not (consultant.get('email') or '').strip():
                self.add_warning('METADATA_CONSULTANT_EMAIL', 'Не указан email консультанта')

        created = (metadata.get('createdDate') or '').strip()
        if created and not DATE_RE.match(created):
            self._structural('METADATA_DATE_FORMAT',
                             f'Дата создания имеет неверный формат: {created} (ожидается ДД.ММ.ГГГГ)',
                             f'Дата создания имеет нестандартный формат: {created} (ожидается ДД.ММ.ГГГГ)')

    def validate_history(self, history: Optional[List[Dict[str, Any]]]) -> None:
        if not history:
            self._structural('HISTORY_MISSING',
                             'История изменений документа отсутствует',
                             'Рекомендуется добавить историю изменений')
            return

        for index, entry in enumerate(history, 1):
            if not (entry.get('version') or '').strip():
                self.add_warning('HISTORY_VERSION_MISSING', f'Запись истории #{index}: не указана версия')
            if not (entry.get('date') or '').strip():
                self.add_warning('HISTORY_DATE_MISSING', f'Запись истории #{index}: не указана дата')
            if not (entry.get('comment') or '').strip():
                self.add_warning('HISTORY_COMMENT_MISSING', f'Запись истории #{index}: не указан комментарий')

    # ========================================================================
    # РАЗДЕЛЫ
    # ========================================================================

    def validate_sections(self, sections: Optional[List[Dict[str, Any]]]) -> None:
        if not sections:
            self._structural('SECTIONS_MISSING', 'Разделы документа отсутствуют',
                             'Разделы документа не найдены')
            return

        titles = [section.get('title', '') for section in sections if section.get('level', 1) == 1]
        missing = [name for pattern, name in REQUIRED_SECTIONS
                   if not any(pattern.search(title) for title in titles)]
        if missing:
            listing = "\n  - ".join(missing)
            self._structural('SECTIONS_REQUIRED_MISSING',
                             f'Отсутствуют обязательные разделы ({len(missing)}):\n  - {listing}',
                             f'Не найдены обязательные разделы ({len(missing)}):\n  - {listing}',
                             missing=missing)

        for section in sections:
            if BACKGROUND_RE.search(section.get('title', '')) and not section.get('subsections'):
                self.add_warning(
                    'SECTION_NO_SUBSECTIONS',
                    f'Раздел "{section["title"]}" обычно содержит подразделы '
                    f'(2.1 Бизнес-цель, 2.2 Текущая ситуация и т.д.)')

    # ========================================================================
    # ИЗОБРАЖЕНИЯ
    # ========================================================================

    def validate_images(self, images: Optional[List[Dict[str, Any]]]) -> None:
        for index, image in enumerate(images or [], 1):
            filename = image.get('filename')
            if not filename:
                self.add_warning('IMAGE_NO_FILENAME', f'Изображение #{index}: отсутствует имя файла')
            if not image.get('content_type'):
                self.add_warning('IMAGE_NO_CONTENT_TYPE',
                                 f'Изображение "{filename}": не определён тип содержимого')
            if not image.get('data'):
                self.add_error('IMAGE_EMPTY', f'Изображение "{filename}": нет данных')

    def print_report(self) -> bool:
        """Выводит отчёт о валидации."""
        if self.errors:
            print("❌ Ошибки валидации:")
            for error in self.errors:
                print(f"   - [{error['code']}] {error['message']}")

        if self.warnings:
            print("⚠️  Предупреждения:")
            for warning in self.warnings:
                print(f"   - [{warning['code']}] {warning['message']}")

        return not self.errors
