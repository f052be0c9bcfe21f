from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence

from pageflow.document import Document, node_ids, paragraph
from pageflow.pool import PageDescriptor


def make_paragraphs(n: int, text: str = "x", prefix: str = "n") -> Document:
    """``n`` paragraphs with ids ``{prefix}0`` .. ``{prefix}{n-1}``."""
    return Document(tuple(paragraph(text, node_id=f"{prefix}{i}") for i in range(n)))


def uniform_heights(doc: Document, height: float) -> Dict[str, float]:
    return {node.id: height for node in doc if node.id}


def page_ids(page: PageDescriptor) -> list[Optional[str]]:
    return node_ids(page.surface.get_document())


def flatten(ids: Iterable[Sequence[Optional[str]]]) -> list[Optional[str]]:
    return [i for page in ids for i in page]
