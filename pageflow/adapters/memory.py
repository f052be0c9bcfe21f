"""In-memory editing surface and layout probe.

These stand in for a real rendering surface: documents live in memory,
node heights come from a lookup table with a per-type estimate as default,
and a page is "mounted" while it is visible in the pool.
"""

from __future__ import annotations

import logging
from itertools import count
from typing import Callable, Dict, List, Mapping, Optional

from pageflow.document import (
    BlockNode,
    Document,
    assign_node_ids,
    empty_document,
    new_node_id,
)
from pageflow.errors import MeasurementUnavailable
from pageflow.overflow import estimate_node_height
from pageflow.pool import PagePool
from pageflow.surface import Selection, SurfaceHandlers

logger = logging.getLogger(__name__)

COMMANDS: Mapping[str, str] = {"toggleBold": "bold", "toggleItalic": "italic"}


class MemorySurface:
    """Holds one document, a cursor, and a few flags a real editor would have."""

    def __init__(
        self,
        surface_id: str,
        content: Optional[Document],
        handlers: SurfaceHandlers,
        factory: "MemorySurfaceFactory",
    ) -> None:
        self.surface_id = surface_id
        self._handlers = handlers
        self._factory = factory
        self._doc = assign_node_ids(content or empty_document(), factory.id_factory)
        self._selection = Selection(1, 1)
        self.editable = True
        self.destroyed = False
        self.marks: set[str] = set()
        self.executed: List[str] = []

    def __repr__(self) -> str:
        return f"MemorySurface({self.surface_id!r}, nodes={self._doc.child_count})"

    @property
    def focused(self) -> bool:
        return self._factory.focused is self

    # -- surface protocol ---------------------------------------------------

    def get_document(self) -> Document:
        return self._doc

    def set_document(self, doc: Document) -> None:
        self._doc = assign_node_ids(doc, self._factory.id_factory)
        self.set_selection(self._selection.from_)

    def get_selection(self) -> Selection:
        return self._selection

    def set_selection(self, offset: int) -> None:
        clamped = max(0, min(offset, self._doc.size))
        self._selection = Selection(clamped, clamped)

    def set_editable(self, editable: bool) -> None:
        self.editable = editable

    def focus(self) -> None:
        self._factory.focused = self

    def execute(self, command: str) -> bool:
        mark = COMMANDS.get(command)
        if mark is None:
            return False
        self.marks ^= {mark}
        self.executed.append(command)
        return True

    def is_active(self, mark: str) -> bool:
        return mark in self.marks

    def destroy(self) -> None:
        self.destroyed = True
        if self._factory.focused is self:
            self._factory.focused = None

    # -- user input ---------------------------------------------------------

    def edit(self, doc: Document, cursor: int | None = None) -> None:
        """Replace the content as a user edit would, then report the change."""
        self._doc = assign_node_ids(doc, self._factory.id_factory)
        self.set_selection(self._selection.from_ if cursor is None else cursor)
        self._factory.focused = self
        self._handlers.on_content_changed(self)

    def append(self, node: BlockNode) -> None:
        """Type a new block at the end and leave the cursor inside it."""
        doc = Document((*self._doc.content, node))
        self.edit(doc, cursor=doc.size - 1)

    def click(self, offset: int) -> None:
        self.set_selection(offset)
        self._factory.focused = self
        self._handlers.on_selection_changed(self)


class MemorySurfaceFactory:
    def __init__(self, id_factory: Callable[[], str] = new_node_id) -> None:
        self.id_factory = id_factory
        self.surfaces: List[MemorySurface] = []
        self.focused: Optional[MemorySurface] = None
        self._ids = count(1)

    def create(self, initial_content: Optional[Document], handlers: SurfaceHandlers) -> MemorySurface:
        surface = MemorySurface(f"surface-{next(self._ids)}", initial_content, handlers, self)
        self.surfaces.append(surface)
        return surface


class MemoryLayoutProbe:
    """Measures pages of ``pool`` by summing per-node heights."""

    def __init__(
        self,
        pool: PagePool,
        heights: Mapping[str, float] | None = None,
        estimate: Callable[[BlockNode], float] = estimate_node_height,
    ) -> None:
        self._pool = pool
        self.heights: Dict[str, float] = dict(heights or {})
        self._estimate = estimate

    def node_height(self, node: BlockNode) -> float:
        if node.id is not None and node.id in self.heights:
            return self.heights[node.id]
        return self._estimate(node)

    def measure_container(self, page_id: str) -> float:
        page = self._pool.get(page_id)
        if page is None or not page.is_visible:
            raise MeasurementUnavailable(f"page {page_id} is not mounted")
        return sum(self.node_height(n) for n in page.surface.get_document())

    def measure_node(self, node_id: str) -> Optional[float]:
        for page in self._pool.visible_pages():
            for node in page.surface.get_document():
                if node.id == node_id:
                    return self.node_height(node)
        return None
