"""
Минимальный XML парсер для частей DOCX пакета.

Результат разбора - дерево словарей:
    - атрибуты хранятся под ключами с префиксом ``@_``;
    - дочерние элементы доступны по имени тега, повторяющиеся теги
      превращаются в список;
    - ``__children__`` хранит все дочерние элементы в порядке документа
      как список словарей ``{tag: element}``;
    - текст хранится под ключом ``#text`` без обрезки пробелов.

Некорректная разметка не прерывает разбор: каждое восстановление
записывается в ``anomalies``.
"""
import html
import re
from typing import Dict, List, Any, Iterator, Optional, Tuple


ATTRIBUTE_PREFIX = "@_"
CHILDREN_KEY = "__children__"
TEXT_KEY = "#text"

_PROLOG_RE = re.compile(r'<\?xml.*?\?>', re.DOTALL)
_COMMENT_RE = re.compile(r'<!--.*?-->', re.DOTALL)
_DOCTYPE_RE = re.compile(r'<!DOCTYPE[^>]*>', re.IGNORECASE)
_ATTR_RE = re.compile(r'([^\s=/]+)\s*=\s*(?:"([^"]*)"|\'([^\']*)\')')


class MinimalXmlParser:
    """Рекурсивный разборщик XML без внешних зависимостей."""

    def __init__(self):
        self.anomalies: List[Dict[str, Any]] = []
        self._open_tags: List[str] = []

    def parse(self, xml_text: str) -> Dict[str, Any]:
        """
        Разбирает XML строку в дерево словарей.

        Args:
            xml_text: Содержимое XML части

        Returns:
            Dict: Корневой узел, корневой элемент доступен по имени тега
        """
        self.anomalies = []
        self._open_tags = []

        xml = self._strip_prolog(xml_text or "")
        root: Dict[str, Any] = {CHILDREN_KEY: []}
        pos = 0

        while pos < len(xml):
            lt = xml.find('<', pos)
            if lt == -1:
                self._note_stray_text(xml[pos:], pos)
                break
            self._note_stray_text(xml[pos:lt], pos)

            if xml.startswith('</', lt):
                gt = xml.find('>', lt)
                end = len(xml) if gt == -1 else gt + 1
                self._anomaly("mismatched-close", xml[lt + 2:end - 1].strip(), lt,
                              "Закрывающий тег без открывающего")
                pos = end
                continue
            if xml.startswith('<?', lt) or xml.startswith('<!', lt):
                gt = xml.find('>', lt)
                pos = len(xml) if gt == -1 else gt + 1
                continue

            tag, element, pos = self.parse_element(xml, lt)
            if tag:
                self._append_child(root, tag, element)

        return root

    def parse_with_report(self, xml_text: str) -> Dict[str, Any]:
        """Разбирает XML и возвращает дерево вместе со списком аномалий."""
        root = self.parse(xml_text)
        return {"root": root, "anomalies": list(self.anomalies)}

    # ========================================================================
    # РАЗБОР ЭЛЕМЕНТОВ
    # ========================================================================

    def parse_element(self, xml: str, pos: int) -> Tuple[str, Dict[str, Any], int]:
        """
        Разбирает элемент, начинающийся с '<' в позиции pos.

        Returns:
            Tuple: (имя тега, элемент, позиция после элемента)
        """
        gt = self._find_tag_end(xml, pos)
        if gt == -1:
            self._anomaly("unterminated-tag", xml[pos + 1:pos + 40], pos,
                          "Открывающий тег не завершён")
            gt = len(xml)
            inner = xml[pos + 1:]
        else:
            inner = xml[pos + 1:gt]

        self_closing = inner.rstrip().endswith('/')
        if self_closing:
            inner = inner.rstrip()[:-1]

        parts = inner.strip().split(None, 1)
        if not parts:
            return "", {}, gt + 1
        tag = parts[0]
        element: Dict[str, Any] = self._parse_attributes(parts[1] if len(parts) > 1 else "")

        if self_closing or gt >= len(xml):
            return tag, element, gt + 1

        element[CHILDREN_KEY] = []
        text_parts: List[str] = []
        self._open_tags.append(tag)
        pos = gt + 1

        while True:
            lt = xml.find('<', pos)
            if lt == -1:
                text_parts.append(html.unescape(xml[pos:]))
                self._anomaly("unclosed-tag", tag, pos, f"Тег <{tag}> не закрыт до конца документа")
                pos = len(xml)
                break

            if lt > pos:
                text_parts.append(html.unescape(xml[pos:lt]))

            if xml.startswith('<![CDATA[', lt):
                end = xml.find(']]>', lt)
                if end == -1:
                    text_parts.append(xml[lt + 9:])
                    pos = len(xml)
                else:
                    text_parts.append(xml[lt + 9:end])
                    pos = end + 3
                continue

            if xml.startswith('<?', lt) or xml.startswith('<!', lt):
                gt = xml.find('>', lt)
                pos = len(xml) if gt == -1 else gt + 1
                continue

            if xml.startswith('</', lt):
                gt = xml.find('>', lt)
                end = len(xml) if gt == -1 else gt + 1
                closing = xml[lt + 2:end - 1].strip()
                if closing == tag:
                    pos = end
                    break
                if closing in self._open_tags[:-1]:
                    # закрывается предок: текущий элемент завершаем без потребления тега
                    self._anomaly("unclosed-tag", tag, lt,
                                  f"Тег <{tag}> закрыт неявно тегом </{closing}>")
                    pos = lt
                    break
                self._anomaly("mismatched-close", closing, lt,
                              f"Лишний закрывающий тег </{closing}> внутри <{tag}>")
                pos = end
                continue

            child_tag, child, pos = self.parse_element(xml, lt)
            if child_tag:
                self._append_child(element, child_tag, child)

        self._open_tags.pop()

        text = "".join(text_parts)
        if text and (not element[CHILDREN_KEY] or text.strip()):
            element[TEXT_KEY] = text
        if not element[CHILDREN_KEY]:
            del element[CHILDREN_KEY]

        return tag, element, pos

    # ========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ МЕТОДЫ
    # ========================================================================

    @staticmethod
    def _strip_prolog(xml: str) -> str:
        xml = _PROLOG_RE.sub('', xml)
        xml = _COMMENT_RE.sub('', xml)
        return _DOCTYPE_RE.sub('', xml)

    @staticmethod
    def _find_tag_end(xml: str, pos: int) -> int:
        """Ищет '>' конца тега с учётом кавычек в атрибутах."""
        quote = None
        for index in range(pos + 1, len(xml)):
            char = xml[index]
            if quote:
                if char == quote:
                    quote = None
            elif char in ('"', "'"):
                quote = char
            elif char == '>':
                return index
            elif char == '<':
                return -1
        return -1

    @staticmethod
    def _parse_attributes(source: str) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {}
        for match in _ATTR_RE.finditer(source):
            value = match.group(2) if match.group(2) is not None else match.group(3)
            attributes[ATTRIBUTE_PREFIX + match.group(1)] = html.unescape(value)
        return attributes

    @staticmethod
    def _append_child(parent: Dict[str, Any], tag: str, element: Dict[str, Any]) -> None:
        if tag in parent:
            existing = parent[tag]
            if isinstance(existing, list):
                existing.append(element)
            else:
                parent[tag] = [existing, element]
        else:
            parent[tag] = element
        parent.setdefault(CHILDREN_KEY, []).append({tag: element})

    def _note_stray_text(self, text: str, pos: int) -> None:
        if text.strip():
            self._anomaly("stray-text", "", pos, "Текст вне корневого элемента")

    def _anomaly(self, kind: str, tag: str, position: int, message: str) -> None:
        self.anomalies.append({
            "kind": kind,
            "tag": tag,
            "position": position,
            "message": message,
        })


# ============================================================================
# ДОСТУП К УЗЛАМ
# ============================================================================

def as_list(value: Any) -> List[Any]:
    """Приводит значение узла к списку."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def first(node: Optional[Dict[str, Any]], tag: str) -> Optional[Dict[str, Any]]:
    """Первый дочерний элемент с тегом или None."""
    if not isinstance(node, dict):
        return None
    items = as_list(node.get(tag))
    return items[0] if items else None


def attr(node: Optional[Dict[str, Any]], name: str, default: Any = None) -> Any:
    if not isinstance(node, dict):
        return default
    return node.get(ATTRIBUTE_PREFIX + name, default)


def text_of(node: Optional[Dict[str, Any]]) -> str:
    if not isinstance(node, dict):
        return ""
    return node.get(TEXT_KEY, "")


def iter_children(node: Optional[Dict[str, Any]]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Дочерние элементы в порядке документа как пары (тег, элемент)."""
    if not isinstance(node, dict):
        return
    for entry in node.get(CHILDREN_KEY, []):
        for tag, element in entry.items():
            yield tag, element
