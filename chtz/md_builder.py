"""
Сборка Markdown документа ЧТЗ из результата распознавания.
"""
from typing import Dict, List, Any, Optional

from .parser import (
    DEFAULT_CHANGES_HEADERS,
    DEFAULT_TERMS_HEADERS,
    build_pipe_table,
    today,
)
from .recognizers import FormattingRecognizer, LEADING_BULLET_RE


class YamlBuilder:
    """YAML front matter с фиксированным порядком ключей."""

    @staticmethod
    def escape(value: Any) -> str:
        text = '' if value is None else str(value)
        return text.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')

    def quoted(self, value: Any) -> str:
        return f'"{self.escape(value)}"'

    def _string_list(self, key: str, values: List[str]) -> List[str]:
        if not values:
            return [f'  {key}: []']
        return [f'  {key}:'] + [f'    - {self.quoted(value)}' for value in values]

    def build(self, metadata: Dict[str, Any], history: Optional[List[Dict[str, Any]]] = None,
              related_docs: Optional[List[Dict[str, Any]]] = None) -> str:
        metadata = metadata or {}
        consultant = metadata.get('consultant') or {}

        lines = [
            '---',
            'type: chtz',
            'version: "1.0"',
            '',
            'metadata:',
            f"  shortName: {self.quoted(metadata.get('shortName', ''))}",
            '  consultant:',
            f"    name: {self.quoted(consultant.get('name', ''))}",
            f"    email: {self.quoted(consultant.get('email', ''))}",
            f"  organization: {self.quoted(metadata.get('organization', ''))}",
        ]
        lines.extend(self._string_list('itSolutions', metadata.get('itSolutions') or []))
        lines.extend(self._string_list('itSystems', metadata.get('itSystems') or []))
        lines.append(f"  processKT: {'true' if metadata.get('processKT') else 'false'}")
        lines.append(f"  processPDn: {'true' if metadata.get('processPDn') else 'false'}")
        lines.append(f"  createdDate: {self.quoted(metadata.get('createdDate', ''))}")

        lines.extend(['', 'history:'])
        entries = history or [{'version': '1.0', 'date': today(),
                               'comment': 'Конвертировано из DOCX', 'author': ''}]
        for entry in entries:
            lines.append(f"  - version: {self.quoted(entry.get('version') or '1.0')}")
            lines.append(f"    date: {self.quoted(entry.get('date', ''))}")
            lines.append(f"    comment: {self.quoted(entry.get('comment', ''))}")
            lines.append(f"    author: {self.quoted(entry.get('author', ''))}")

        if related_docs:
            lines.extend(['', 'relatedDocs:'])
            for doc in related_docs:
                lines.append(f"  - name: {self.quoted(doc.get('name', ''))}")
                lines.append(f"    version: {self.quoted(doc.get('version', ''))}")
                lines.append(f"    date: {self.quoted(doc.get('date', ''))}")

        lines.append('---')
        return "\n".join(lines)


class MdBuilder:
    """
    Markdown из распознанного документа.

    Таблицы терминов, изменений и функций выводятся директивами
    ``:::terms``, ``:::changes-table``, ``:::function-table{#id}``,
    остальные таблицы - обычными pipe-таблицами. Подряд идущие пункты
    списка собираются в один блок.
    """

    def __init__(self):
        self.yaml = YamlBuilder()

    def build(self, doc: Dict[str, Any]) -> str:
        parts = [self.yaml.build(doc.get('metadata') or {}, doc.get('history'),
                                 doc.get('related_docs'))]
        for section in doc.get('sections', []):
            parts.append(self.build_section(section))
        return "\n\n".join(parts) + "\n"

    def build_section(self, section: Dict[str, Any]) -> str:
        parts = [f"{'#' * section.get('level', 1)} {section['title']}"]

        content = section.get('content', [])
        index = 0
        while index < len(content):
            element = content[index]
            if element['type'] == 'list-item':
                run = []
                while index < len(content) and content[index]['type'] == 'list-item':
                    run.append(content[index])
                    index += 1
                parts.append(self.build_list(run))
                continue
            built = self.build_element(element)
            if built:
                parts.append(built)
            index += 1

        return "\n\n".join(parts)

    def build_element(self, element: Dict[str, Any]) -> Optional[str]:
        kind = element['type']
        if kind == 'paragraph':
            return self.build_paragraph(element)
        if kind == 'heading':
            return f"{'#' * element['level']} {element['text']}"
        if kind == 'table':
            return self.build_table(element)
        if kind == 'empty-section':
            return f":::empty-section\n{element['text']}\n:::"
        return None

    @staticmethod
    def build_paragraph(paragraph: Dict[str, Any]) -> Optional[str]:
        text = (paragraph.get('text') or '').strip()
        if not text:
            return None
        return "<br>".join(line.strip() for line in text.split('\n'))

    @staticmethod
    def build_list(items: List[Dict[str, Any]]) -> str:
        """Пункты списка с порядковыми номерами, отступ - два пробела на уровень."""
        lines = []
        counters: Dict[tuple, int] = {}
        for item in items:
            level = item.get('level', 0)
            indent = '  ' * level
            text = item['text'].strip().replace('\n', '<br>')
            if item.get('ordered'):
                counters = {key: value for key, value in counters.items() if key[1] <= level}
                key = (item.get('num_id'), level)
                counters[key] = counters.get(key, 0) + 1
                if FormattingRecognizer.is_numbered_item(text):
                    text = FormattingRecognizer.strip_list_marker(text)
                lines.append(f"{indent}{counters[key]}. {text}")
            else:
                lines.append(f"{indent}- {LEADING_BULLET_RE.sub('', text)}")
        return "\n".join(lines)

    # ========================================================================
    # ТАБЛИЦЫ
    # ========================================================================

    def build_table(self, table: Dict[str, Any]) -> str:
        kind = table.get('table_type')
        if kind == 'terms':
            rows = [[item['term'], item['definition']] for item in table.get('terms', [])]
            return self._directive('terms', build_pipe_table(DEFAULT_TERMS_HEADERS, rows))
        if kind == 'changes':
            rows = [[item['asIs'], item['toBe']] for item in table.get('changes', [])]
            return self._directive('changes-table', build_pipe_table(DEFAULT_CHANGES_HEADERS, rows))
        if kind == 'function':
            return self.build_function_table(table)
        return self.build_regular_table(table)

    @staticmethod
    def _directive(name: str, lines: List[str]) -> str:
        return "\n".join([f":::{name}"] + lines + [":::"])

    @staticmethod
    def build_function_table(table: Dict[str, Any]) -> str:
        """
        Директива function-table.

        Каждая строка сценария получает ровно два пробела отступа, пустые
        строки остаются пустыми, поэтому parse_function_table_content
        возвращает сценарий без изменений.
        """
        table_id = table.get('id') or ''
        lines = [f":::function-table{{#{table_id}}}" if table_id else ":::function-table"]
        for key in ('function', 'task', 'taskUrl'):
            value = (table.get(key) or '').strip()
            if value:
                lines.append(f"{key}: {value}")
        lines.append('scenario: |')
        scenario = table.get('scenario') or ''
        for line in scenario.split('\n') if scenario else []:
            lines.append(f"  {line}" if line.strip() else '')
        lines.append(':::')
        return "\n".join(lines)

    @staticmethod
    def build_regular_table(table: Dict[str, Any]) -> str:
        rows = table.get('rows') or []
        if not rows:
            return ''
        return "\n".join(build_pipe_table(rows[0], rows[1:]))
