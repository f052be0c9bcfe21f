"""Pre-provisioned page surfaces and their visibility lifecycle."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional

from .config import DEFAULT_CONFIG, PageConfig
from .document import empty_document
from .surface import EditingSurface, SurfaceFactory, SurfaceHandlers

logger = logging.getLogger(__name__)


class PageState(str, Enum):
    STABLE = "stable"
    OVERFLOWING = "overflowing"
    AUTO_PAGINATING = "auto_paginating"
    MERGE_CANDIDATE = "merge_candidate"
    MERGING = "merging"


def _page_id() -> str:
    return f"page-{uuid.uuid4().hex[:12]}"


@dataclass(eq=False)
class PageDescriptor:
    """Mutable bookkeeping for one pooled page surface."""

    surface: EditingSurface
    id: str = field(default_factory=_page_id)
    is_visible: bool = False
    is_preloaded: bool = True
    has_overflow: bool = False
    content_height: float = 0.0
    is_auto_paginating: bool = False
    pagination_count: int = 0
    state: PageState = PageState.STABLE
    generation: int = 0

    @property
    def surface_id(self) -> str:
        return self.surface.surface_id

    def touch(self) -> int:
        """Bump the content generation; pending results for older ones are stale."""
        self.generation += 1
        return self.generation

    def reset_pagination(self) -> None:
        self.is_auto_paginating = False
        self.pagination_count = 0
        self.state = PageState.STABLE


def should_expand(visible_count: int, pool_size: int, config: PageConfig = DEFAULT_CONFIG) -> bool:
    """Grow ahead of the visible frontier rather than after exhaustion."""
    return (
        visible_count >= config.expand_threshold
        and visible_count + config.expand_count > pool_size
    )


class PagePool:
    """Ordered page descriptors; the visible ones always form a prefix."""

    def __init__(self, factory: SurfaceFactory, config: PageConfig = DEFAULT_CONFIG) -> None:
        self._factory = factory
        self._config = config
        self._pages: List[PageDescriptor] = []
        self._handlers: Optional[SurfaceHandlers] = None

    def __len__(self) -> int:
        return len(self._pages)

    def __iter__(self) -> Iterator[PageDescriptor]:
        return iter(list(self._pages))

    @property
    def pages(self) -> List[PageDescriptor]:
        return list(self._pages)

    @property
    def visible_count(self) -> int:
        return sum(1 for p in self._pages if p.is_visible)

    def get(self, page_id: str) -> Optional[PageDescriptor]:
        return next((p for p in self._pages if p.id == page_id), None)

    def find_by_surface(self, surface: EditingSurface) -> Optional[PageDescriptor]:
        return next((p for p in self._pages if p.surface is surface), None)

    def create(self, count: int, handlers: SurfaceHandlers | None = None) -> List[PageDescriptor]:
        """Allocate ``count`` inactive pages; the very first page of an empty pool is shown."""
        if handlers is not None:
            self._handlers = handlers
        if self._handlers is None:
            raise ValueError("surface handlers are required for the first create()")
        was_empty = not self._pages
        created = [self._new_page() for _ in range(count)]
        self._pages.extend(created)
        if was_empty and created:
            self.activate(created[0])
        logger.debug("created %d pages, pool size %d", count, len(self._pages))
        return created

    def _new_page(self) -> PageDescriptor:
        surface = self._factory.create(empty_document(), self._handlers)
        surface.set_editable(False)
        return PageDescriptor(surface=surface)

    def expand(self) -> List[PageDescriptor]:
        """Append ``expand_count`` more inactive pages."""
        created = [self._new_page() for _ in range(self._config.expand_count)]
        self._pages.extend(created)
        logger.info("expanded page pool to %d", len(self._pages))
        return created

    def expand_if_needed(self) -> bool:
        if should_expand(self.visible_count, len(self._pages), self._config):
            self.expand()
            return True
        return False

    def next_available(self) -> Optional[PageDescriptor]:
        return next((p for p in self._pages if not p.is_visible), None)

    def activate(self, page: PageDescriptor) -> None:
        """Show ``page`` as the next visible page and make it editable."""
        if page.is_visible:
            page.surface.set_editable(True)
            return
        self._pages.remove(page)
        self._pages.insert(self.visible_count, page)
        page.is_visible = True
        page.surface.set_editable(True)
        page.touch()
        logger.info("activated %s, visible pages: %d", page.id, self.visible_count)

    def activate_next(self) -> PageDescriptor:
        """Activate the first spare page, growing the pool when none is left."""
        page = self.next_available()
        if page is None:
            logger.warning("page pool exhausted at %d pages, expanding now", len(self._pages))
            self.expand()
            page = self.next_available()
        if page is None:
            raise RuntimeError("page pool expansion produced no spare page")
        self.activate(page)
        return page

    def deactivate(self, page: PageDescriptor) -> None:
        """Clear and hide ``page`` and move it behind every visible page."""
        page.surface.set_document(empty_document())
        page.surface.set_editable(False)
        page.is_visible = False
        page.has_overflow = False
        page.content_height = 0.0
        page.reset_pagination()
        page.touch()
        self._pages.remove(page)
        self._pages.append(page)
        logger.info("deactivated %s, visible pages: %d", page.id, self.visible_count)

    def visible_pages(self, max_count: int | None = None) -> List[PageDescriptor]:
        visible = [p for p in self._pages if p.is_visible]
        return visible[:max_count] if max_count is not None else visible

    def teardown(self) -> None:
        for page in self._pages:
            page.surface.destroy()
        self._pages = []


def get_visible_pages(pool: PagePool, max_count: int | None = None) -> List[PageDescriptor]:
    return pool.visible_pages(max_count)
