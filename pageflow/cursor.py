"""Cursor bookkeeping across page splits, merges and deletions."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import JumpRule
from .document import PARAGRAPH, Document, descendants, resolve, top_level_offsets

logger = logging.getLogger(__name__)

START_POSITION = 1
AT_START_LIMIT = 2


@dataclass(frozen=True)
class CursorState:
    """A cursor offset; meaningful only against one document snapshot."""

    offset: int
    document_size: int

    def restore(self, new_size: int) -> int:
        """Carry this offset over to a document of ``new_size``."""
        return restore_cursor(self.offset, new_size)


@dataclass(frozen=True)
class CursorAnalysis:
    cursor_position: int
    split_position: int
    cursor_in_first_part: bool
    should_preserve_cursor: bool


def split_position(doc: Document, split_point: int) -> int:
    """Offset at which ``split_point`` falls, measured from the first content slot."""
    offsets = top_level_offsets(doc)
    return START_POSITION + offsets[min(split_point, doc.child_count)]


def analyze_cursor_position(doc: Document, cursor: int, split_point: int) -> CursorAnalysis:
    """Locate the cursor relative to a split boundary."""
    position = split_position(doc, split_point)
    in_first = cursor <= position
    return CursorAnalysis(
        cursor_position=cursor,
        split_position=position,
        cursor_in_first_part=in_first,
        should_preserve_cursor=in_first,
    )


def restore_cursor(position: int, new_size: int) -> int:
    """Clamp ``position`` into ``[1, new_size - 1]``."""
    upper = new_size - 1
    lower = min(START_POSITION, max(upper, 0))
    return max(lower, min(position, upper))


def relocate_cursor(position: int, split_at: int, new_size: int) -> int:
    """Map a cursor in the overflow part onto the page that received it.

    The overflow nodes become the head of the next page, so the cursor keeps
    its distance from the split boundary.
    """
    boundary = split_at - START_POSITION
    return restore_cursor(position - boundary, new_size)


def end_position(doc: Document) -> int:
    return restore_cursor(doc.size - 1, doc.size)


def is_cursor_in_last_paragraph(doc: Document, cursor: int) -> bool:
    """True when the innermost block holding ``cursor`` is the last paragraph."""
    chain = resolve(doc, cursor)
    if not chain:
        return False
    node, start = chain[-1]
    if node.type != PARAGRAPH:
        return False
    paragraphs = [pos for n, pos, _ in descendants(doc) if n.type == PARAGRAPH]
    return bool(paragraphs) and paragraphs[-1] == start


def is_cursor_at_last_node(doc: Document, cursor: int, fraction: float = 0.7) -> bool:
    """True when ``cursor`` sits in the trailing part of the last top-level node."""
    if doc.child_count == 0:
        return False
    offsets = top_level_offsets(doc)
    start, end = offsets[-2] + START_POSITION, offsets[-1] + START_POSITION
    if not start <= cursor <= end:
        return False
    return cursor - start > doc.content[-1].size * fraction


def should_jump_to_next_page(
    doc: Document,
    cursor: int,
    rule: JumpRule = JumpRule.LAST_LINE,
    fraction: float = 0.7,
) -> bool:
    """Decide whether focus should follow overflow onto the next page."""
    at_last_line = is_cursor_in_last_paragraph(doc, cursor)
    if rule is JumpRule.LAST_NODE_AND_LINE:
        return at_last_line and is_cursor_at_last_node(doc, cursor, fraction)
    return at_last_line


def is_deleting_at_start(current_size: int, previous_size: int, position: int) -> bool:
    """True when content shrank while the cursor sits at the page start."""
    return current_size < previous_size and position <= AT_START_LIMIT
