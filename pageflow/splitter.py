"""Split and merge documents on top-level block boundaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

from .document import BlockNode, Document, empty_document

logger = logging.getLogger(__name__)

# (minimum node count exclusive, nodes moved to the next page)
SPLIT_STEPS: Tuple[Tuple[int, int], ...] = ((20, 3), (10, 2), (0, 1))


@dataclass(frozen=True)
class SplitResult:
    """Nodes that stay on the page and nodes that move on."""

    kept: Document
    overflow: Tuple[BlockNode, ...]


def calculate_split_point(node_count: int) -> int:
    """Return how many leading nodes stay on an overflowing page.

    Larger pages shed more nodes per pass so they converge within the
    auto-pagination attempt cap. At least one node is always kept.
    """
    if node_count < 1:
        raise ValueError(f"node_count must be >= 1, got {node_count}")
    moved = next(n for floor, n in SPLIT_STEPS if node_count > floor)
    return max(1, node_count - moved)


def split_document(doc: Document, split_point: int) -> SplitResult:
    """Nodes ``[0, split_point)`` are kept, the rest overflow.

    An empty kept part is replaced by a single empty paragraph so the page
    never holds a structurally empty document.
    """
    if not 0 <= split_point <= doc.child_count:
        raise ValueError(
            f"split point {split_point} outside [0, {doc.child_count}]"
        )
    head, tail = doc.content[:split_point], doc.content[split_point:]
    kept = Document(head) if head else empty_document()
    logger.debug(
        "split %d nodes at %d: kept=%d overflow=%d",
        doc.child_count,
        split_point,
        len(head),
        len(tail),
    )
    return SplitResult(kept=kept, overflow=tuple(tail))


def merge_documents(
    prefix: Iterable[BlockNode], suffix: Iterable[BlockNode]
) -> Document:
    """Concatenate two node sequences into one document, order preserved."""
    return Document((*prefix, *suffix))


def split_nodes_by_count(
    nodes: Sequence[BlockNode], count: int
) -> Tuple[Tuple[BlockNode, ...], Tuple[BlockNode, ...]]:
    """Return the first ``count`` nodes and the remainder."""
    return tuple(nodes[:count]), tuple(nodes[count:])

