"""Pagination state machine tying detection, splitting, merging and focus together.

All document and pool mutation happens on the thread that owns the
orchestrator. Surface callbacks only queue work on the deferred queue; the
host drains it with :meth:`PaginationOrchestrator.run_pending` once layout
has settled. Per page the flow is::

    MutationApplied -> LayoutSettled -> OverflowChecked -> ActionDecided

and the action is a split (overflow), an upward merge (spare room) or
nothing. Splits run on the offloader; a finished split comes back through
the deferred queue and is dropped if its page changed in the meantime. Every
split attempt counts toward a per-page cap, so a page that can never fit
stops paginating instead of looping. :meth:`run_until_idle` also waits for
outstanding splits.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

from .config import DEFAULT_CONFIG, PageConfig
from .cursor import (
    CursorState,
    analyze_cursor_position,
    end_position,
    is_deleting_at_start,
    relocate_cursor,
    restore_cursor,
    should_jump_to_next_page,
)
from .document import BlockNode, Document, empty_document, has_actual_content, is_really_empty
from .errors import MeasurementUnavailable
from .offload import Offloader
from .overflow import can_merge_upward, check_overflow, top_level_summaries
from .pool import PageDescriptor, PagePool, PageState, should_expand
from .scheduling import DeferredQueue, PaginationPhase
from .splitter import SplitResult, calculate_split_point, merge_documents, split_nodes_by_count
from .surface import EditingSurface, LayoutProbe, SurfaceHandlers

logger = logging.getLogger(__name__)

# pages larger than this get a background node analysis after a split
BACKGROUND_ANALYSIS_MIN_NODES = 10


def _noop() -> None:
    return None


def _log_analysis(future: "Future[Dict[str, Any]]") -> None:
    exc = future.exception()
    if exc is not None:
        logger.warning("background analysis failed: %s", exc)
        return
    stats = future.result()["stats"]
    logger.debug(
        "background analysis: %d nodes, %d paragraphs, %d headings, %d lists, ~%.0fpx",
        stats["total_nodes"],
        stats["paragraphs"],
        stats["headings"],
        stats["lists"],
        stats["estimated_height"],
    )


class PaginationOrchestrator:
    """Keeps a multi-page document paginated as its pages are edited."""

    def __init__(
        self,
        pool: PagePool,
        probe: LayoutProbe,
        offloader: Optional[Offloader] = None,
        config: PageConfig = DEFAULT_CONFIG,
        scheduler: Optional[DeferredQueue] = None,
        settle: Callable[[], None] = _noop,
    ) -> None:
        self._pool = pool
        self._probe = probe
        self._offloader = offloader or Offloader(channel_factory=None, timeout=config.task_timeout)
        self._config = config
        self._scheduler = scheduler or DeferredQueue(config.max_scheduler_rounds)
        self._settle = settle
        self._current_index = 0
        self._previous_sizes: Dict[str, int] = {}
        self._phases: Dict[str, PaginationPhase] = {}
        self._in_flight: Dict[str, "Future[SplitResult]"] = {}
        self._handlers = SurfaceHandlers(
            on_content_changed=self.handle_content_changed,
            on_selection_changed=self.handle_selection_changed,
        )

    # -- views --------------------------------------------------------------

    @property
    def pool(self) -> PagePool:
        return self._pool

    @property
    def offloader(self) -> Offloader:
        return self._offloader

    @property
    def scheduler(self) -> DeferredQueue:
        return self._scheduler

    @property
    def visible_pages(self) -> List[PageDescriptor]:
        return self._pool.visible_pages()

    @property
    def visible_page_count(self) -> int:
        return self._pool.visible_count

    @property
    def current_page_index(self) -> int:
        return self._current_index

    @property
    def current_page(self) -> Optional[PageDescriptor]:
        pages = self.visible_pages
        return pages[self._current_index] if 0 <= self._current_index < len(pages) else None

    @property
    def current_surface(self) -> Optional[EditingSurface]:
        page = self.current_page
        return page.surface if page else None

    def phase_of(self, page: PageDescriptor) -> PaginationPhase:
        return self._phases.get(page.id, PaginationPhase.IDLE)

    # -- lifecycle ----------------------------------------------------------

    def initialize(self, initial_document: Optional[Document] = None) -> None:
        """Preload the page pool, load ``initial_document`` and queue the first check."""
        if self._config.offload:
            self._offloader.initialize()
        self._pool.create(self._config.initial_preload_count, self._handlers)
        first = self.visible_pages[0]
        self._current_index = 0
        self._write(first, initial_document or empty_document())
        first.surface.focus()
        first.surface.set_selection(1)
        self._defer_check(first)
        logger.info("pagination initialized with %d pooled pages", len(self._pool))

    def run_pending(self) -> int:
        """Drain deferred work; call once layout has settled."""
        return self._scheduler.run_pending()

    def run_until_idle(self, timeout: Optional[float] = None) -> int:
        """Drain deferred work and wait for outstanding background splits.

        Returns the number of tasks run. With ``timeout`` the wait gives up
        after that many seconds and leaves the remaining splits outstanding.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        ran = self.run_pending()
        while self._in_flight:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                logger.warning("%d background splits still outstanding", len(self._in_flight))
                break
            if self._scheduler.wait_for_work(remaining):
                ran += self.run_pending()
        return ran

    def teardown(self) -> None:
        self._scheduler.clear()
        self._in_flight.clear()
        self._pool.teardown()
        self._offloader.shutdown()
        self._previous_sizes.clear()
        self._phases.clear()

    # -- surface events -----------------------------------------------------

    def handle_content_changed(self, surface: EditingSurface) -> None:
        page = self._pool.find_by_surface(surface)
        if page is None or not page.is_visible:
            return
        page.touch()
        self._set_phase(page, PaginationPhase.MUTATION_APPLIED)
        self._scheduler.defer(
            lambda: self._after_content_change(page.id), key=("content", page.id)
        )

    def handle_selection_changed(self, surface: EditingSurface) -> None:
        page = self._pool.find_by_surface(surface)
        if page is None or not page.is_visible:
            return
        index = self._index_of(page)
        if index != self._current_index:
            logger.debug("selection moved to page %d", index + 1)
            self._current_index = index

    def _after_content_change(self, page_id: str) -> None:
        page = self._pool.get(page_id)
        if page is None or not page.is_visible:
            return
        self._settle()
        self._set_phase(page, PaginationPhase.LAYOUT_SETTLED)
        index = self._index_of(page)
        self._current_index = index

        doc = page.surface.get_document()
        previous = self._previous_sizes.get(page.surface_id, 0)
        self._previous_sizes[page.surface_id] = doc.size
        cursor = page.surface.get_selection().from_

        if index > 0 and is_deleting_at_start(doc.size, previous, cursor) and has_actual_content(doc):
            logger.debug("deletion at start of page %d, moving to previous page", index + 1)
            self._focus_page_end(index - 1)
            return

        if index > 0 and self.visible_page_count > 1 and is_really_empty(doc):
            logger.debug("page %d is empty, removing it", index + 1)
            self._remove_page(page)
            return

        self.check_page_overflow(index)

    # -- overflow -----------------------------------------------------------

    def check_page_overflow(self, index: int, cascade: bool = False) -> None:
        """Measure page ``index`` and split or merge as needed.

        Only the focused page splits unless ``cascade`` is set, which is used
        for pages that just received pushed-down content.
        """
        pages = self.visible_pages
        if not 0 <= index < len(pages):
            return
        page = pages[index]
        try:
            height = self._probe.measure_container(page.id)
        except MeasurementUnavailable as exc:
            logger.debug("skipping overflow check for page %d: %s", index + 1, exc)
            return
        state = check_overflow(height, self._config)
        page.has_overflow = state.has_overflow
        page.content_height = state.actual_height
        self._set_phase(page, PaginationPhase.OVERFLOW_CHECKED)
        logger.debug(
            "page %d: height=%.1f overflow=%s", index + 1, height, state.has_overflow
        )

        if state.has_overflow:
            page.state = PageState.OVERFLOWING
            if index != self._current_index and not cascade:
                return
            if page.pagination_count >= self._config.max_pagination_attempts:
                logger.warning(
                    "page %d paginated %d times without fitting, auto-pagination stopped",
                    index + 1,
                    page.pagination_count,
                )
                return
            if page.is_auto_paginating:
                return
            page.is_auto_paginating = True
            page.state = PageState.AUTO_PAGINATING
            self._set_phase(page, PaginationPhase.ACTION_DECIDED)
            generation = page.generation
            self._scheduler.defer(
                lambda: self._handle_overflow(page.id, generation), key=("overflow", page.id)
            )
            return

        page.reset_pagination()
        self._set_phase(page, PaginationPhase.ACTION_DECIDED)
        self._check_for_upward_merge(index, state.actual_height)

    def _handle_overflow(self, page_id: str, generation: int) -> None:
        page = self._pool.get(page_id)
        if page is None or not page.is_visible or page.generation != generation:
            logger.debug("discarding stale overflow handling for %s", page_id)
            if page is not None:
                page.is_auto_paginating = False
            return
        if not page.has_overflow:
            page.is_auto_paginating = False
            return

        index = self._index_of(page)
        doc = page.surface.get_document()
        cursor = page.surface.get_selection().from_
        split_point = calculate_split_point(doc.child_count)
        page.pagination_count += 1
        logger.debug(
            "splitting page %d: %d nodes, keeping %d (attempt %d)",
            index + 1,
            doc.child_count,
            split_point,
            page.pagination_count,
        )
        future = self._offloader.submit_split(doc, split_point)
        self._in_flight[page_id] = future

        def apply() -> None:
            self._apply_split(page_id, generation, doc, cursor, split_point, future)

        if future.done():
            apply()
            return
        future.add_done_callback(lambda _f: self._scheduler.defer(apply, key=("split", page_id)))

    def _apply_split(
        self,
        page_id: str,
        generation: int,
        doc: Document,
        cursor: int,
        split_point: int,
        future: "Future[SplitResult]",
    ) -> None:
        """Write a finished split back, unless the page changed meanwhile."""
        self._in_flight.pop(page_id, None)
        page = self._pool.get(page_id)
        if page is None:
            return
        page.is_auto_paginating = False
        if not page.is_visible or page.generation != generation:
            logger.debug("page %s changed while splitting, discarding result", page_id)
            if page.is_visible:
                self._defer_check(page)
            return
        result = future.result()

        index = self._index_of(page)
        if not result.overflow:
            logger.warning(
                "page %d holds a single block taller than the page, nothing to move (attempt %d)",
                index + 1,
                page.pagination_count,
            )
            return

        analysis = analyze_cursor_position(doc, cursor, split_point)
        self._write(page, result.kept)
        is_current = index == self._current_index
        jump = (
            is_current
            and not analysis.cursor_in_first_part
            and should_jump_to_next_page(
                doc, cursor, self._config.jump_rule, self._config.last_node_fraction
            )
        )
        if is_current and not jump:
            page.surface.focus()
            page.surface.set_selection(restore_cursor(cursor, result.kept.size))

        target = self._push_overflow(index, result.overflow)
        if jump:
            self._current_index = self._index_of(target)
            target.surface.focus()
            target.surface.set_selection(
                relocate_cursor(cursor, analysis.split_position, target.surface.get_document().size)
            )
            logger.debug("cursor followed overflow to page %d", self._current_index + 1)
        self._defer_check(page, cascade=True)
        self._analyze_in_background(doc)

    def _analyze_in_background(self, doc: Document) -> None:
        if doc.child_count <= BACKGROUND_ANALYSIS_MIN_NODES or not self._offloader.ready:
            return
        self._offloader.submit_analysis(doc).add_done_callback(_log_analysis)

    def _push_overflow(self, from_index: int, overflow: tuple[BlockNode, ...]) -> PageDescriptor:
        """Put ``overflow`` at the head of the next page, activating one if needed."""
        pages = self.visible_pages
        next_index = from_index + 1
        if next_index < len(pages):
            target = pages[next_index]
            existing = target.surface.get_document()
            held = self._capture_cursor(target)
            tail = () if is_really_empty(existing) else existing.content
            merged = merge_documents(overflow, tail)
            logger.debug("inserting %d nodes into page %d", len(overflow), next_index + 1)
            self._write(target, merged)
            if next_index == self._current_index:
                pushed = merged.size - sum(n.size for n in tail)
                target.surface.set_selection(restore_cursor(held.offset + pushed, merged.size))
        else:
            logger.debug("new page for %d overflow nodes", len(overflow))
            target = self._activate_next_page(merge_documents((), overflow))
        self._defer_check(target, cascade=True)
        return target

    # -- upward merge -------------------------------------------------------

    def _check_for_upward_merge(self, index: int, current_height: float) -> None:
        pages = self.visible_pages
        next_index = index + 1
        if next_index >= len(pages):
            return
        page, nxt = pages[index], pages[next_index]
        next_doc = nxt.surface.get_document()
        if is_really_empty(next_doc):
            return
        page.state = PageState.MERGE_CANDIDATE
        decision = can_merge_upward(
            current_height, top_level_summaries(next_doc), self._probe.measure_node, self._config
        )
        if not decision.can_merge:
            page.state = PageState.STABLE
            return
        self._merge_next_page_content(index, next_index, decision.nodes_to_merge)

    def _merge_next_page_content(self, index: int, next_index: int, count: int) -> None:
        pages = self.visible_pages
        page, nxt = pages[index], pages[next_index]
        page.state = PageState.MERGING
        is_current = index == self._current_index
        saved = self._capture_cursor(page)

        moved, remaining = split_nodes_by_count(nxt.surface.get_document().content, count)
        merged = merge_documents(page.surface.get_document().content, moved)
        self._write(page, merged)
        if is_current:
            page.surface.focus()
            page.surface.set_selection(saved.restore(merged.size))
        logger.debug("merged %d nodes from page %d into page %d", count, next_index + 1, index + 1)

        if remaining:
            donor = self._capture_cursor(nxt)
            self._write(nxt, merge_documents((), remaining))
            if next_index == self._current_index:
                shifted = CursorState(donor.offset - sum(n.size for n in moved), donor.document_size)
                nxt.surface.set_selection(shifted.restore(nxt.surface.get_document().size))
            self._defer_check(nxt)
        else:
            logger.debug("page %d emptied by merge", next_index + 1)
            self._remove_page(nxt)
        page.state = PageState.STABLE
        self._defer_check(page)

    # -- page management ----------------------------------------------------

    def _activate_next_page(self, content: Document, move_cursor: bool = False) -> PageDescriptor:
        page = self._pool.activate_next()
        self._write(page, content)
        if should_expand(self._pool.visible_count, len(self._pool), self._config):
            self._scheduler.defer(self._pool.expand_if_needed, key="expand")
        if move_cursor:
            self._current_index = self._index_of(page)
            page.surface.focus()
            page.surface.set_selection(1)
        return page

    def _remove_page(self, page: PageDescriptor) -> None:
        """Deactivate ``page`` and keep the focused index pointing at a live page."""
        index = self._index_of(page)
        was_current = index == self._current_index
        self._pool.deactivate(page)
        self._previous_sizes.pop(page.surface_id, None)
        if was_current:
            self._focus_page_end(max(0, index - 1))
        elif self._current_index > index:
            self._current_index -= 1

    def _focus_page_end(self, index: int) -> None:
        pages = self.visible_pages
        index = max(0, min(index, len(pages) - 1))
        self._current_index = index
        surface = pages[index].surface
        surface.focus()
        surface.set_selection(end_position(surface.get_document()))

    def add_page(self) -> PageDescriptor:
        """Append a blank page and move focus to it."""
        return self._activate_next_page(empty_document(), move_cursor=True)

    def delete_page(self) -> bool:
        """Remove the focused page unless it is the only one."""
        if self.visible_page_count <= 1:
            return False
        page = self.current_page
        if page is None:
            return False
        self._pool.deactivate(page)
        self._previous_sizes.pop(page.surface_id, None)
        self._current_index = min(self._current_index, self.visible_page_count - 1)
        surface = self.current_surface
        if surface is not None:
            surface.focus()
        return True

    def set_current_page(self, index: int) -> None:
        if not 0 <= index < self.visible_page_count:
            raise IndexError(f"page index {index} out of range")
        previous, self._current_index = self._current_index, index
        page = self.visible_pages[index]
        page.surface.focus()
        if previous != index:
            self._defer_check(page)

    def execute_command(self, command: str) -> bool:
        surface = self.current_surface
        if surface is None:
            return False
        surface.focus()
        return surface.execute(command)

    def is_active(self, mark: str) -> bool:
        surface = self.current_surface
        return bool(surface and surface.is_active(mark))

    def reset_pagination_count(self, index: Optional[int] = None) -> None:
        pages = self.visible_pages
        targets = pages if index is None else pages[index : index + 1]
        for page in targets:
            page.reset_pagination()

    # -- helpers ------------------------------------------------------------

    def _write(self, page: PageDescriptor, doc: Document) -> None:
        page.surface.set_document(doc)
        page.touch()
        self._previous_sizes[page.surface_id] = page.surface.get_document().size

    def _capture_cursor(self, page: PageDescriptor) -> CursorState:
        return CursorState(page.surface.get_selection().from_, page.surface.get_document().size)

    def _defer_check(self, page: PageDescriptor, cascade: bool = False) -> None:
        page_id = page.id

        def check() -> None:
            target = self._pool.get(page_id)
            if target is None or not target.is_visible:
                return
            self._settle()
            self._set_phase(target, PaginationPhase.LAYOUT_SETTLED)
            self.check_page_overflow(self._index_of(target), cascade=cascade)

        self._scheduler.defer(check, key=("check", page_id, cascade))

    def _index_of(self, page: PageDescriptor) -> int:
        return next(i for i, p in enumerate(self.visible_pages) if p is page)

    def _set_phase(self, page: PageDescriptor, phase: PaginationPhase) -> None:
        self._phases[page.id] = phase
