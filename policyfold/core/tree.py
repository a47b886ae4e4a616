from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError, XMLParser

from .errors import StructuralError

XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"

_ATTR_ESCAPES = {'"': "&quot;", "\n": "&#10;", "\r": "&#13;", "\t": "&#9;"}


class NodeKind(str, Enum):
    ELEMENT = "element"
    TEXT = "text"
    COMMENT = "comment"


@dataclass
class Node:
    """One slot in the document arena.

    Elements carry a qualified tag (``prefix:local`` or ``local``) and an
    ordered attribute mapping that also holds namespace declarations
    (``xmlns``/``xmlns:p``). Text and comment nodes carry ``value``.
    """

    kind: NodeKind
    tag: str = ""
    attrib: Dict[str, str] = field(default_factory=dict)
    value: str = ""
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)


def local_name(tag: str) -> str:
    return tag.rpartition(":")[2]


def tag_prefix(tag: str) -> str:
    prefix, sep, _ = tag.rpartition(":")
    return prefix if sep else ""


def _escape_text(value: str) -> str:
    return value.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attr(value: str) -> str:
    out = _escape_text(value)
    for ch, rep in _ATTR_ESCAPES.items():
        out = out.replace(ch, rep)
    return out


class DocumentTree:
    """Arena-backed XML tree.

    Nodes live in ``nodes`` and refer to each other by index: ``parent`` is the
    owning element, ``children`` the ordered child indices. Reparenting only
    edits these index fields, so subtrees can be moved between policies without
    copying.

    Detached nodes stay in the arena but are unreachable from ``root``; every
    query walks from a live index, so detached subtrees are invisible.
    """

    def __init__(self) -> None:
        self.nodes: List[Node] = []
        self.root: Optional[int] = None

    # -- construction -----------------------------------------------------

    def _add(self, node: Node) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def new_element(self, tag: str, attrib: Optional[Dict[str, str]] = None) -> int:
        return self._add(Node(kind=NodeKind.ELEMENT, tag=tag, attrib=dict(attrib or {})))

    def new_text(self, value: str) -> int:
        return self._add(Node(kind=NodeKind.TEXT, value=value))

    def new_comment(self, value: str) -> int:
        return self._add(Node(kind=NodeKind.COMMENT, value=value))

    def new_text_element(self, tag: str, text: str) -> int:
        index = self.new_element(tag)
        self.append(index, self.new_text(text))
        return index

    # -- structure edits --------------------------------------------------

    def detach(self, index: int) -> Tuple[Optional[int], int]:
        """Unlink ``index`` from its parent.

        Returns ``(old_parent, old_position)`` so a caller can undo the move
        with :meth:`insert`.
        """

        node = self.nodes[index]
        parent = node.parent
        if parent is None:
            return None, -1
        siblings = self.nodes[parent].children
        position = siblings.index(index)
        del siblings[position]
        node.parent = None
        return parent, position

    def insert(self, parent: int, position: int, child: int) -> None:
        self.detach(child)
        self.nodes[parent].children.insert(position, child)
        self.nodes[child].parent = parent

    def append(self, parent: int, child: int) -> None:
        self.detach(child)
        self.nodes[parent].children.append(child)
        self.nodes[child].parent = parent

    def insert_after(self, sibling: int, child: int) -> None:
        parent = self.nodes[sibling].parent
        if parent is None:
            raise ValueError("cannot insert next to a detached node")
        self.detach(child)
        position = self.nodes[parent].children.index(sibling) + 1
        self.nodes[parent].children.insert(position, child)
        self.nodes[child].parent = parent

    def clone(self, index: int, *, deep: bool = True) -> int:
        """Copy a node into a new detached slot.

        A shallow clone of an element keeps its tag and attributes but no
        children (no text either).
        """

        src = self.nodes[index]
        copy = self._add(Node(kind=src.kind, tag=src.tag, attrib=dict(src.attrib), value=src.value))
        if deep:
            for child in src.children:
                self.append(copy, self.clone(child, deep=True))
        return copy

    # -- navigation -------------------------------------------------------

    def node(self, index: int) -> Node:
        return self.nodes[index]

    def parent(self, index: int) -> Optional[int]:
        return self.nodes[index].parent

    def is_element(self, index: int) -> bool:
        return self.nodes[index].kind is NodeKind.ELEMENT

    def is_attached(self, index: int) -> bool:
        current: Optional[int] = index
        while current is not None:
            if current == self.root:
                return True
            current = self.nodes[current].parent
        return False

    def is_descendant(self, index: int, ancestor: int) -> bool:
        """True if ``index`` is ``ancestor`` or lies below it."""

        current: Optional[int] = index
        while current is not None:
            if current == ancestor:
                return True
            current = self.nodes[current].parent
        return False

    def ancestors(self, index: int) -> Iterator[int]:
        current = self.nodes[index].parent
        while current is not None:
            yield current
            current = self.nodes[current].parent

    def children(self, index: int) -> List[int]:
        return list(self.nodes[index].children)

    def element_children(self, index: int) -> List[int]:
        return [c for c in self.nodes[index].children if self.nodes[c].kind is NodeKind.ELEMENT]

    def iter_elements(self, index: Optional[int] = None) -> Iterator[int]:
        """Pre-order walk over ``index`` (default: root) and its element descendants."""

        start = self.root if index is None else index
        if start is None:
            return
        stack = [start]
        while stack:
            current = stack.pop()
            node = self.nodes[current]
            if node.kind is not NodeKind.ELEMENT:
                continue
            yield current
            stack.extend(reversed(node.children))

    def local_name(self, index: int) -> str:
        return local_name(self.nodes[index].tag)

    def find_child(self, index: int, name: str) -> Optional[int]:
        for child in self.element_children(index):
            if self.local_name(child) == name:
                return child
        return None

    def find_all(self, name: str, within: Optional[int] = None) -> List[int]:
        return [i for i in self.iter_elements(within) if self.local_name(i) == name]

    # -- attributes and text ----------------------------------------------

    def get(self, index: int, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.nodes[index].attrib.get(name, default)

    def set(self, index: int, name: str, value: str) -> None:
        self.nodes[index].attrib[name] = value

    def has(self, index: int, name: str) -> bool:
        return name in self.nodes[index].attrib

    def text(self, index: int) -> str:
        """Concatenated direct text children of an element."""

        node = self.nodes[index]
        if node.kind is not NodeKind.ELEMENT:
            return node.value
        return "".join(
            self.nodes[c].value for c in node.children if self.nodes[c].kind is NodeKind.TEXT
        )

    def set_text(self, index: int, value: str) -> None:
        node = self.nodes[index]
        for child in [c for c in node.children if self.nodes[c].kind is NodeKind.TEXT]:
            self.detach(child)
        self.insert(index, 0, self.new_text(value))

    # -- serialization ----------------------------------------------------

    def _open_tag(self, node: Node, *, close: bool) -> str:
        parts = [node.tag]
        parts.extend(f'{name}="{_escape_attr(value)}"' for name, value in node.attrib.items())
        return "<" + " ".join(parts) + ("/>" if close else ">")

    def to_string(self, index: Optional[int] = None) -> str:
        """Compact serialization (no added whitespace) of a subtree."""

        start = self.root if index is None else index
        if start is None:
            return ""
        out: List[str] = []
        self._write_compact(start, out)
        return "".join(out)

    def _write_compact(self, index: int, out: List[str]) -> None:
        node = self.nodes[index]
        if node.kind is NodeKind.TEXT:
            out.append(_escape_text(node.value))
            return
        if node.kind is NodeKind.COMMENT:
            out.append(f"<!--{node.value}-->")
            return
        if not node.children:
            out.append(self._open_tag(node, close=True))
            return
        out.append(self._open_tag(node, close=False))
        for child in node.children:
            self._write_compact(child, out)
        out.append(f"</{node.tag}>")

    def byte_size(self, index: Optional[int] = None) -> int:
        """UTF-8 length of the compact serialization, recomputed on every call."""

        return len(self.to_string(index).encode("utf-8"))

    def to_pretty_string(self, index: Optional[int] = None, *, indentation: str = "  ") -> str:
        """Indented serialization.

        Elements holding only text stay on one line, whitespace-only text is
        never emitted, and text inside mixed content gets its own line.
        """

        start = self.root if index is None else index
        if start is None:
            return ""
        lines: List[str] = []
        self._write_pretty(start, 0, indentation, lines)
        return "\n".join(lines) + "\n"

    def _write_pretty(self, index: int, depth: int, indentation: str, lines: List[str]) -> None:
        node = self.nodes[index]
        pad = indentation * depth
        if node.kind is NodeKind.TEXT:
            value = node.value.strip()
            if value:
                lines.append(pad + _escape_text(value))
            return
        if node.kind is NodeKind.COMMENT:
            lines.append(f"{pad}<!--{node.value}-->")
            return
        if not node.children:
            lines.append(pad + self._open_tag(node, close=True))
            return
        if all(self.nodes[c].kind is NodeKind.TEXT for c in node.children):
            text = "".join(self.nodes[c].value for c in node.children)
            lines.append(f"{pad}{self._open_tag(node, close=False)}{_escape_text(text)}</{node.tag}>")
            return
        lines.append(pad + self._open_tag(node, close=False))
        for child in node.children:
            self._write_pretty(child, depth + 1, indentation, lines)
        lines.append(f"{pad}</{node.tag}>")


class _ArenaBuilder:
    """Parser target that writes straight into a :class:`DocumentTree`.

    Expanded ``{uri}local`` names are mapped back to the prefixes declared in
    the source so that namespace declarations and qualified names round-trip.
    """

    def __init__(self) -> None:
        self._tree = DocumentTree()
        self._stack: List[int] = []
        self._scopes: List[Dict[str, str]] = [{"xml": XML_NAMESPACE}]
        self._pending_ns: List[Tuple[str, str]] = []
        self._text: List[str] = []

    def start_ns(self, prefix: str, uri: str) -> None:
        self._pending_ns.append((prefix, uri))

    def start(self, tag: str, attrib: Dict[str, str]) -> None:
        self._flush_text()
        scope = dict(self._scopes[-1])
        attributes: Dict[str, str] = {}
        for prefix, uri in self._pending_ns:
            scope[prefix] = uri
            attributes["xmlns:" + prefix if prefix else "xmlns"] = uri
        self._pending_ns = []
        self._scopes.append(scope)

        for name, value in attrib.items():
            attributes[self._qualify(name, scope, attribute=True)] = value

        index = self._tree.new_element(self._qualify(tag, scope, attribute=False), attributes)
        if self._stack:
            self._tree.append(self._stack[-1], index)
        else:
            self._tree.root = index
        self._stack.append(index)

    def end(self, tag: str) -> None:
        self._flush_text()
        self._stack.pop()
        self._scopes.pop()

    def data(self, text: str) -> None:
        self._text.append(text)

    def comment(self, text: str) -> None:
        self._flush_text()
        # comments outside the root element are dropped
        if self._stack:
            self._tree.append(self._stack[-1], self._tree.new_comment(text))

    def close(self) -> DocumentTree:
        return self._tree

    def _flush_text(self) -> None:
        if not self._text:
            return
        text = "".join(self._text)
        self._text = []
        if self._stack and text.strip():
            self._tree.append(self._stack[-1], self._tree.new_text(text))

    @staticmethod
    def _qualify(name: str, scope: Dict[str, str], *, attribute: bool) -> str:
        if not name.startswith("{"):
            return name
        uri, _, local = name[1:].partition("}")
        if not attribute and scope.get("") == uri:
            return local
        for prefix, bound in reversed(list(scope.items())):
            if prefix and bound == uri:
                return f"{prefix}:{local}"
        return local


def parse_document(text: str) -> DocumentTree:
    """Parse XML text into a :class:`DocumentTree`.

    Security notes:
    - Parsing goes through defusedxml: entity declarations and external
      references are rejected.
    """

    builder = _ArenaBuilder()
    parser = XMLParser(target=builder)
    try:
        parser.feed(text.encode("utf-8"))
        tree = parser.close()
    except (ParseError, DefusedXmlException) as e:
        raise StructuralError(f"Invalid policy set xml: {e}") from e
    if tree.root is None:
        raise StructuralError("Invalid policy set xml: no root element")
    return tree
