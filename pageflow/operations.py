"""Offloadable document operations, keyed by task kind.

Each operation maps a JSON-compatible payload to a JSON-compatible result.
The worker and the inline fallback run the very same registered callables,
so both paths compute identical results for identical payloads.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Protocol, runtime_checkable

from .document import (
    HEADING,
    LIST_TYPES,
    PARAGRAPH,
    document_from_dict,
    document_to_dict,
    node_from_dict,
    node_to_dict,
)
from .overflow import estimate_node_height
from .splitter import (
    calculate_split_point,
    merge_documents,
    split_document,
    split_nodes_by_count,
)

Payload = Mapping[str, Any]


class TaskKind(str, Enum):
    SPLIT_DOCUMENT = "SPLIT_DOCUMENT"
    MERGE_CONTENT = "MERGE_CONTENT"
    ANALYZE_NODES = "ANALYZE_NODES"
    CALCULATE_SPLIT_POINT = "CALCULATE_SPLIT_POINT"


@runtime_checkable
class Operation(Protocol):
    kind: TaskKind

    def __call__(self, payload: Payload) -> Dict[str, Any]:
        """Execute the operation."""
        ...


_REGISTRY: Mapping[TaskKind, Operation] = MappingProxyType({})


def register(op: Operation) -> Operation:
    """Add ``op`` under its kind, replacing any earlier registration."""
    global _REGISTRY
    _REGISTRY = MappingProxyType({**dict(_REGISTRY), op.kind: op})
    return op


def run_operation(kind: TaskKind | str, payload: Payload) -> Dict[str, Any]:
    """Execute the operation registered for ``kind`` on ``payload``."""
    try:
        op = _REGISTRY[TaskKind(kind)]
    except (KeyError, ValueError):
        raise KeyError(f"unknown operation: {kind}") from None
    return op(payload)


def registry() -> Dict[TaskKind, Operation]:
    """Snapshot of the registered operations."""
    return dict(_REGISTRY)


class _SplitDocument:
    kind = TaskKind.SPLIT_DOCUMENT

    def __call__(self, payload: Payload) -> Dict[str, Any]:
        result = split_document(
            document_from_dict(payload["doc"]), int(payload["split_point"])
        )
        return {
            "kept": document_to_dict(result.kept),
            "overflow": [node_to_dict(n) for n in result.overflow],
        }


class _MergeContent:
    kind = TaskKind.MERGE_CONTENT

    def __call__(self, payload: Payload) -> Dict[str, Any]:
        merged = merge_documents(
            (node_from_dict(n) for n in payload["first_nodes"]),
            (node_from_dict(n) for n in payload["second_nodes"]),
        )
        return {"doc": document_to_dict(merged)}


class _AnalyzeNodes:
    kind = TaskKind.ANALYZE_NODES

    def __call__(self, payload: Payload) -> Dict[str, Any]:
        doc = document_from_dict(payload["doc"])
        nodes = [
            {"index": i, "id": node.id, "type": node.type}
            for i, node in enumerate(doc.content)
        ]
        types = [node.type for node in doc.content]
        stats = {
            "total_nodes": doc.child_count,
            "paragraphs": types.count(PARAGRAPH),
            "headings": types.count(HEADING),
            "lists": sum(1 for t in types if t in LIST_TYPES),
            "estimated_height": sum(estimate_node_height(n) for n in doc.content),
        }
        return {"nodes": nodes, "stats": stats}


class _CalculateSplitPoint:
    kind = TaskKind.CALCULATE_SPLIT_POINT

    def __call__(self, payload: Payload) -> Dict[str, Any]:
        point = calculate_split_point(int(payload["node_count"]))
        raw_nodes = payload.get("nodes")
        split_nodes = None
        if raw_nodes is not None:
            first, second = split_nodes_by_count(
                [node_from_dict(n) for n in raw_nodes], point
            )
            split_nodes = {
                "first": [node_to_dict(n) for n in first],
                "second": [node_to_dict(n) for n in second],
            }
        return {"split_point": point, "split_nodes": split_nodes}


split_document_op = register(_SplitDocument())
merge_content_op = register(_MergeContent())
analyze_nodes_op = register(_AnalyzeNodes())
calculate_split_point_op = register(_CalculateSplitPoint())
