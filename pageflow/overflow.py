"""Overflow detection and upward-merge sizing for a single page."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .config import DEFAULT_CONFIG, PageConfig
from .document import HEADING, LIST_TYPES, PARAGRAPH, BlockNode, Document, descendants

logger = logging.getLogger(__name__)

NodeMeasure = Callable[[str], Optional[float]]

# Rough per-type heights used when nothing better is known.
TYPE_HEIGHT_ESTIMATES: Dict[str, int] = {PARAGRAPH: 40, HEADING: 60}
LIST_ITEM_ESTIMATE = 30
DEFAULT_TYPE_ESTIMATE = 50


@dataclass(frozen=True)
class OverflowState:
    has_overflow: bool
    actual_height: float


@dataclass(frozen=True)
class NodeSummary:
    id: str
    type: str
    position: int


@dataclass(frozen=True)
class MergeDecision:
    can_merge: bool
    nodes_to_merge: int


def check_overflow(actual_height: float, config: PageConfig = DEFAULT_CONFIG) -> OverflowState:
    """Compare a measured content height against the page capacity."""
    has_overflow = actual_height > config.overflow_threshold
    if has_overflow:
        logger.debug(
            "overflow: height=%.1fpx threshold=%dpx",
            actual_height,
            config.overflow_threshold,
        )
    return OverflowState(has_overflow=has_overflow, actual_height=actual_height)


def extract_node_data(doc: Document) -> List[NodeSummary]:
    """Summaries of every block that carries an id, in document order."""
    return [
        NodeSummary(id=node.id, type=node.type, position=pos)
        for node, pos, _ in descendants(doc)
        if node.is_block and node.id
    ]


def top_level_summaries(doc: Document) -> List[NodeSummary]:
    """Summaries of the top-level blocks only; these are what a merge moves."""
    summaries, pos = [], 0
    for node in doc.content:
        summaries.append(NodeSummary(id=node.id or "", type=node.type, position=pos))
        pos += node.size
    return summaries


def estimate_node_height(node: BlockNode) -> int:
    """Per-type height guess for a block that cannot be measured."""
    if node.type in LIST_TYPES:
        return LIST_ITEM_ESTIMATE * max(1, len(node.content))
    return TYPE_HEIGHT_ESTIMATES.get(node.type, DEFAULT_TYPE_ESTIMATE)


def can_merge_upward(
    current_height: float,
    next_nodes: Sequence[NodeSummary],
    measure: NodeMeasure | None = None,
    config: PageConfig = DEFAULT_CONFIG,
) -> MergeDecision:
    """Decide how many leading nodes of the next page fit on this one.

    Each node is measured individually; an unmeasurable node counts as
    ``config.fallback_node_height``. Walking stops at the first node that
    would overflow the remaining space.
    """
    remaining = config.content_max_height - current_height - config.merge_buffer
    if remaining <= 0 or not next_nodes:
        return MergeDecision(False, 0)

    total, count = 0.0, 0
    for summary in next_nodes:
        measured = measure(summary.id) if measure and summary.id else None
        total += measured if measured is not None else config.fallback_node_height
        if total > remaining:
            break
        count += 1
    logger.debug(
        "merge check: remaining=%.1fpx fits=%d/%d", remaining, count, len(next_nodes)
    )
    return MergeDecision(count > 0, count)


# ---------------------------------------------------------------------------
# Diagnostics


def debug_overflow_trigger(
    actual_height: float, config: PageConfig = DEFAULT_CONFIG
) -> Dict[str, Any]:
    """Explain why a page is or is not considered overflowing."""
    threshold = config.overflow_threshold
    overflowing = actual_height > threshold
    remaining = threshold - actual_height
    return {
        "measurements": {
            "content_height": actual_height,
            "configured_max_height": config.content_max_height,
            "buffer": config.overflow_buffer,
            "effective_threshold": threshold,
            "remaining_space": remaining,
        },
        "status": {
            "is_overflowing": overflowing,
            "utilization_percent": round(actual_height / threshold * 100),
            "message": (
                f"overflow: {actual_height:g}px exceeds {threshold}px"
                if overflowing
                else f"ok: {remaining:g}px left"
            ),
        },
    }


def debug_merge_analysis(
    current_height: float,
    next_nodes: Sequence[NodeSummary],
    measure: NodeMeasure | None = None,
    config: PageConfig = DEFAULT_CONFIG,
) -> Dict[str, Any]:
    """Explain the upward-merge decision for the given page state."""
    remaining = config.content_max_height - current_height
    effective = remaining - config.merge_buffer
    result = can_merge_upward(current_height, next_nodes, measure, config)
    reason = (
        f"no space left ({effective:g}px <= 0)"
        if effective <= 0
        else "next page is empty"
        if not next_nodes
        else f"can merge {result.nodes_to_merge} node(s)"
        if result.can_merge
        else "first node of the next page is too tall"
    )
    return {
        "input": {
            "current_height": current_height,
            "next_page_nodes": len(next_nodes),
            "configured_max_height": config.content_max_height,
        },
        "calculations": {
            "remaining_space": remaining,
            "buffer": config.merge_buffer,
            "effective_space": effective,
            "can_merge": result.can_merge,
            "nodes_to_merge": result.nodes_to_merge,
        },
        "reason": reason,
        "nodes": [
            {"index": i + 1, "id": n.id, "type": n.type}
            for i, n in enumerate(_head(next_nodes, 3))
        ],
    }


def _head(items: Iterable[NodeSummary], n: int) -> List[NodeSummary]:
    return [item for _, item in zip(range(n), items)]
