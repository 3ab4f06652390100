"""Rich-text message markup as a typed document tree.

Messages travel as editor HTML. Mention chips and slash-command chips are
``<span>`` elements distinguished by ``data-type``::

    <span data-type="mention" data-id="channel:<id>">#general</span>
    <span data-type="slash-command" data-id="command-summarize"
          data-label="/summarize" data-category="command"
          data-body="Summarize the conversation">/summarize</span>

``parse()`` turns the HTML into a tree of ``TextNode``, ``ElementNode``,
``MentionNode`` and ``CommandNode`` so callers never pattern-match on raw
markup.
"""

import html
import re
from dataclasses import dataclass, field
from enum import Enum
from html.parser import HTMLParser
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

MENTION_TYPE = "mention"
COMMAND_TYPE = "slash-command"

_VOID_TAGS = {"br", "hr", "img", "input", "meta", "link", "area", "base", "col", "embed", "source", "wbr"}
_BLOCK_TAGS = {"p", "div", "li", "ul", "ol", "blockquote", "pre", "h1", "h2", "h3", "h4", "h5", "h6", "tr"}


class EntityCategory(str, Enum):
    """Kinds of entity a mention chip can reference."""

    CHANNEL = "channel"
    AGENT_SESSION = "agent-session"
    PERSON = "person"
    APP = "app"

    @classmethod
    def from_wire(cls, value: str) -> Optional["EntityCategory"]:
        """Map a data-id prefix to a category. Unknown prefixes return None."""
        return _WIRE_ALIASES.get(value.strip().lower())

    @property
    def wire(self) -> str:
        """Prefix used in mention ``data-id`` attributes."""
        return _WIRE_NAMES[self]

    @property
    def sigil(self) -> str:
        return "#" if self is EntityCategory.CHANNEL else "@"


_WIRE_ALIASES = {
    "channel": EntityCategory.CHANNEL,
    "agent": EntityCategory.AGENT_SESSION,
    "agent-session": EntityCategory.AGENT_SESSION,
    "people": EntityCategory.PERSON,
    "person": EntityCategory.PERSON,
    "app": EntityCategory.APP,
}

_WIRE_NAMES = {
    EntityCategory.CHANNEL: "channel",
    EntityCategory.AGENT_SESSION: "agent",
    EntityCategory.PERSON: "people",
    EntityCategory.APP: "app",
}


@dataclass
class TextNode:
    text: str


@dataclass
class ElementNode:
    tag: str
    attrs: Dict[str, Optional[str]] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)


@dataclass
class MentionNode:
    """A mention chip.

    ``category`` is None when the ``data-id`` prefix is not recognised; such
    chips still render as text but never resolve to context.
    """

    data_id: str
    text: str
    category: Optional[EntityCategory]
    entity_id: str
    attrs: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def label(self) -> str:
        """Chip text without its leading sigil."""
        return re.sub(r"^[@#]", "", self.text)

    @property
    def key(self) -> Optional[Tuple[EntityCategory, str]]:
        if self.category is None or not self.entity_id:
            return None
        return self.category, self.entity_id


@dataclass
class CommandNode:
    """A slash-command or skill chip carrying an optional instruction body."""

    command_id: str
    label: str
    category: str
    body: str
    text: str
    attrs: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def skill_name(self) -> Optional[str]:
        if self.command_id.startswith("skill-"):
            return self.command_id[len("skill-") :]
        return None


Node = Union[TextNode, ElementNode, MentionNode, CommandNode]


class Document:
    """Parsed message markup."""

    def __init__(self, children: Optional[List[Node]] = None):
        self.children: List[Node] = children or []

    def walk(self) -> Iterator[Node]:
        """Depth-first iteration over every node."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            if isinstance(node, ElementNode):
                stack.extend(reversed(node.children))

    def mentions(self) -> List[MentionNode]:
        return [n for n in self.walk() if isinstance(n, MentionNode)]

    def commands(self) -> List[CommandNode]:
        return [n for n in self.walk() if isinstance(n, CommandNode)]

    def remove(self, predicate: Callable[[Node], bool]) -> int:
        """Remove every node matching ``predicate``. Returns the number removed."""
        return _remove_from(self.children, predicate)

    def text(self) -> str:
        """Plain text content. Block elements and line breaks become newlines."""
        parts: List[str] = []
        _collect_text(self.children, parts)
        text = "".join(parts)
        text = re.sub(r"[ \t]*\n[ \t]*", "\n", text)
        return re.sub(r"\n{3,}", "\n\n", text).strip()


def _remove_from(nodes: List[Node], predicate: Callable[[Node], bool]) -> int:
    removed = 0
    kept: List[Node] = []
    for node in nodes:
        if predicate(node):
            removed += 1
            continue
        if isinstance(node, ElementNode):
            removed += _remove_from(node.children, predicate)
        kept.append(node)
    nodes[:] = kept
    return removed


def _collect_text(nodes: List[Node], parts: List[str]) -> None:
    for node in nodes:
        if isinstance(node, TextNode):
            parts.append(node.text)
        elif isinstance(node, (MentionNode, CommandNode)):
            parts.append(node.text)
        elif isinstance(node, ElementNode):
            if node.tag == "br":
                parts.append("\n")
                continue
            block = node.tag in _BLOCK_TAGS
            if block and parts and not parts[-1].endswith("\n"):
                parts.append("\n")
            _collect_text(node.children, parts)
            if block:
                parts.append("\n")


class _DocumentBuilder(HTMLParser):
    """Builds a Document from HTML events.

    Chip spans are collected as leaf nodes: any markup nested inside a chip
    contributes only its text.
    """

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root: List[Node] = []
        self._stack: List[ElementNode] = []
        self._chip_attrs: Optional[Dict[str, Optional[str]]] = None
        self._chip_text: List[str] = []
        self._chip_depth = 0

    def _append(self, node: Node) -> None:
        if self._stack:
            self._stack[-1].children.append(node)
        else:
            self.root.append(node)

    def handle_starttag(self, tag, attrs):
        attr_map = dict(attrs)
        if self._chip_attrs is not None:
            if tag not in _VOID_TAGS:
                self._chip_depth += 1
            return
        if tag == "span" and attr_map.get("data-type") in (MENTION_TYPE, COMMAND_TYPE):
            self._chip_attrs = attr_map
            self._chip_text = []
            self._chip_depth = 0
            return
        element = ElementNode(tag=tag, attrs=attr_map)
        self._append(element)
        if tag not in _VOID_TAGS:
            self._stack.append(element)

    def handle_startendtag(self, tag, attrs):
        attr_map = dict(attrs)
        if self._chip_attrs is None and tag == "span" and attr_map.get("data-type") in (MENTION_TYPE, COMMAND_TYPE):
            self._chip_attrs = attr_map
            self._chip_text = []
            self._finish_chip()
            return
        if self._chip_attrs is not None:
            return
        self._append(ElementNode(tag=tag, attrs=attr_map))

    def handle_endtag(self, tag):
        if self._chip_attrs is not None:
            if self._chip_depth == 0 and tag == "span":
                self._finish_chip()
            elif tag not in _VOID_TAGS:
                self._chip_depth = max(0, self._chip_depth - 1)
            return
        for index in range(len(self._stack) - 1, -1, -1):
            if self._stack[index].tag == tag:
                del self._stack[index:]
                return

    def handle_data(self, data):
        if self._chip_attrs is not None:
            self._chip_text.append(data)
        else:
            self._append(TextNode(data))

    def _finish_chip(self) -> None:
        attrs = self._chip_attrs or {}
        text = "".join(self._chip_text)
        self._chip_attrs = None
        self._chip_text = []
        self._chip_depth = 0
        self._append(_make_chip(attrs, text))

    def close(self):
        super().close()
        # Unterminated chip at end of input
        if self._chip_attrs is not None:
            self._finish_chip()


def _make_chip(attrs: Dict[str, Optional[str]], text: str) -> Node:
    if attrs.get("data-type") == MENTION_TYPE:
        data_id = attrs.get("data-id") or ""
        prefix, sep, entity_id = data_id.partition(":")
        category = EntityCategory.from_wire(prefix) if sep and prefix else None
        return MentionNode(
            data_id=data_id,
            text=text,
            category=category,
            entity_id=entity_id if category else "",
            attrs=attrs,
        )
    return CommandNode(
        command_id=attrs.get("data-id") or "",
        label=(attrs.get("data-label") or text).strip(),
        category=attrs.get("data-category") or "command",
        body=(attrs.get("data-body") or "").strip(),
        text=text,
        attrs=attrs,
    )


def parse(markup: str) -> Document:
    """Parse message markup into a Document."""
    builder = _DocumentBuilder()
    builder.feed(markup)
    builder.close()
    return Document(builder.root)


def strip_markup(content: str) -> str:
    """Plain text of a stored message, with metadata markers removed."""
    from huddle.annotations import strip_metadata

    return parse(strip_metadata(content)).text()


def mention_markup(category: EntityCategory, entity_id: str, label: str) -> str:
    """Markup for a mention chip."""
    data_id = html.escape(f"{category.wire}:{entity_id}", quote=True)
    return f'<span data-type="{MENTION_TYPE}" data-id="{data_id}">{html.escape(category.sigil + label)}</span>'


def command_markup(command_id: str, label: str, body: str = "", category: str = "command") -> str:
    """Markup for a slash-command or skill chip."""
    attrs = {
        "data-type": COMMAND_TYPE,
        "data-id": command_id,
        "data-label": label,
        "data-category": category,
        "data-body": body,
    }
    rendered = " ".join(f'{key}="{html.escape(value, quote=True)}"' for key, value in attrs.items())
    return f"<span {rendered}>{html.escape(label)}</span>"
