"""Block-node document model shared by every pagination component.

A document is an ordered tuple of block nodes. Offsets follow the usual
rich-text position arithmetic: a text node counts one per character, a leaf
block (rule, image) counts one, and every other node counts its content plus
an opening and a closing token. Offset 0 is before the first block and
``Document.size`` is after the last one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence, Tuple

TEXT = "text"
PARAGRAPH = "paragraph"
HEADING = "heading"

INLINE_TYPES = frozenset({TEXT, "hardBreak"})
LEAF_TYPES = frozenset({"horizontalRule", "image", "hardBreak"})
LIST_TYPES = frozenset({"bulletList", "orderedList"})


@dataclass(frozen=True)
class BlockNode:
    """One node of a document tree; ``attrs['id']`` is its stable identity."""

    type: str
    attrs: Mapping[str, Any] = field(default_factory=dict)
    content: Tuple["BlockNode", ...] = ()
    text: str | None = None

    @property
    def id(self) -> str | None:
        return self.attrs.get("id")

    @property
    def is_block(self) -> bool:
        return self.type not in INLINE_TYPES

    @property
    def size(self) -> int:
        return node_size(self)


@dataclass(frozen=True)
class Document:
    """Ordered sequence of top-level block nodes."""

    content: Tuple[BlockNode, ...] = ()

    @property
    def child_count(self) -> int:
        return len(self.content)

    @property
    def size(self) -> int:
        return sum(node_size(n) for n in self.content)

    def __iter__(self) -> Iterator[BlockNode]:
        return iter(self.content)


def node_size(node: BlockNode) -> int:
    """Return the number of offsets ``node`` occupies."""
    if node.type == TEXT:
        return len(node.text or "")
    if node.type in LEAF_TYPES and not node.content:
        return 1
    return 2 + sum(node_size(c) for c in node.content)


def new_node_id() -> str:
    return f"node-{uuid.uuid4().hex[:12]}"


def text_node(text: str) -> BlockNode:
    return BlockNode(TEXT, text=text)


def paragraph(text: str = "", node_id: str | None = None, **attrs: Any) -> BlockNode:
    """Build a paragraph; empty ``text`` yields an empty paragraph."""
    merged = {**attrs, **({"id": node_id} if node_id else {})}
    return BlockNode(PARAGRAPH, merged, (text_node(text),) if text else ())


def heading(text: str, level: int = 1, node_id: str | None = None) -> BlockNode:
    attrs: dict[str, Any] = {"level": level, **({"id": node_id} if node_id else {})}
    return BlockNode(HEADING, attrs, (text_node(text),) if text else ())


def bullet_list(items: Sequence[str], node_id: str | None = None) -> BlockNode:
    entries = tuple(BlockNode("listItem", {}, (paragraph(t),)) for t in items)
    return BlockNode("bulletList", {"id": node_id} if node_id else {}, entries)


def empty_document() -> Document:
    """The placeholder used whenever a document would otherwise be empty."""
    return Document((BlockNode(PARAGRAPH),))


# ---------------------------------------------------------------------------
# Traversal


def descendants(doc: Document) -> Iterator[Tuple[BlockNode, int, int]]:
    """Yield ``(node, position, depth)`` for every node in document order."""

    def walk(nodes: Sequence[BlockNode], start: int, depth: int):
        pos = start
        for node in nodes:
            yield node, pos, depth
            if node.content:
                yield from walk(node.content, pos + 1, depth + 1)
            pos += node_size(node)

    return walk(doc.content, 0, 0)


def top_level_offsets(doc: Document) -> list[int]:
    """Start offset of each top-level node, plus the document size at the end."""
    offsets = [0]
    for node in doc.content:
        offsets.append(offsets[-1] + node_size(node))
    return offsets


def resolve(doc: Document, pos: int) -> list[Tuple[BlockNode, int]]:
    """Return the chain of ``(node, start)`` whose content contains ``pos``.

    The chain runs from the outermost block to the innermost one; it is empty
    when ``pos`` sits between top-level blocks.
    """
    chain: list[Tuple[BlockNode, int]] = []
    nodes: Sequence[BlockNode] = doc.content
    start = 0
    while True:
        hit = None
        cursor = start
        for node in nodes:
            size = node_size(node)
            if node.type != TEXT and cursor < pos < cursor + size and size > 1:
                hit = (node, cursor)
                break
            cursor += size
        if hit is None:
            return chain
        chain.append(hit)
        nodes, start = hit[0].content, hit[1] + 1


# ---------------------------------------------------------------------------
# Text and emptiness


def text_content(node: BlockNode | Document) -> str:
    if isinstance(node, Document):
        return "".join(text_content(n) for n in node.content)
    if node.type == TEXT:
        return node.text or ""
    return "".join(text_content(c) for c in node.content)


def has_actual_content(doc: Document) -> bool:
    """True when the document holds any non-whitespace text."""
    return bool(text_content(doc).strip())


def is_really_empty(doc: Document) -> bool:
    """True for a document with no nodes or only one blank paragraph."""
    if has_actual_content(doc):
        return False
    if doc.child_count == 0:
        return True
    if doc.child_count == 1:
        first = doc.content[0]
        return first.type == PARAGRAPH and not text_content(first)
    return False


# ---------------------------------------------------------------------------
# Identity


def assign_node_ids(
    doc: Document, id_factory: Callable[[], str] = new_node_id
) -> Document:
    """Give every block node without an id a fresh one; keep existing ids."""

    def stamp(node: BlockNode) -> BlockNode:
        children = tuple(stamp(c) for c in node.content)
        attrs = node.attrs
        if node.is_block and not attrs.get("id"):
            attrs = {**attrs, "id": id_factory()}
        if attrs is node.attrs and children == node.content:
            return node
        return replace(node, attrs=attrs, content=children)

    return Document(tuple(stamp(n) for n in doc.content))


def node_ids(nodes: Iterable[BlockNode]) -> list[str | None]:
    return [n.id for n in nodes]


# ---------------------------------------------------------------------------
# Serialization


def node_to_dict(node: BlockNode) -> dict[str, Any]:
    data: dict[str, Any] = {"type": node.type}
    if node.attrs:
        data["attrs"] = dict(node.attrs)
    if node.content:
        data["content"] = [node_to_dict(c) for c in node.content]
    if node.text is not None:
        data["text"] = node.text
    return data


def node_from_dict(data: Mapping[str, Any]) -> BlockNode:
    if not isinstance(data, Mapping) or not isinstance(data.get("type"), str):
        raise ValueError(f"not a node: {data!r}")
    return BlockNode(
        type=data["type"],
        attrs=dict(data.get("attrs") or {}),
        content=tuple(node_from_dict(c) for c in data.get("content") or ()),
        text=data.get("text"),
    )


def document_to_dict(doc: Document) -> dict[str, Any]:
    return {"type": "doc", "content": [node_to_dict(n) for n in doc.content]}


def document_from_dict(data: Mapping[str, Any] | Sequence[Any]) -> Document:
    """Accept ``{"type": "doc", "content": [...]}`` or a bare node list."""
    if isinstance(data, Mapping):
        if data.get("type", "doc") != "doc":
            raise ValueError(f"expected a doc, got {data.get('type')!r}")
        items = data.get("content") or ()
    else:
        items = data
    return Document(tuple(node_from_dict(n) for n in items))
