from __future__ import annotations

import sys
from dataclasses import dataclass
from itertools import count
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from pageflow.adapters.memory import MemoryLayoutProbe, MemorySurfaceFactory  # noqa: E402
from pageflow.config import DEFAULT_CONFIG, PageConfig  # noqa: E402
from pageflow.document import Document, node_ids  # noqa: E402
from pageflow.offload import Offloader  # noqa: E402
from pageflow.orchestrator import PaginationOrchestrator  # noqa: E402
from pageflow.pool import PageDescriptor, PagePool  # noqa: E402
from pageflow.surface import SurfaceHandlers  # noqa: E402


def _counter_ids(prefix: str = "auto") -> Callable[[], str]:
    ticks = count(1)
    return lambda: f"{prefix}-{next(ticks)}"


@dataclass
class Harness:
    orchestrator: PaginationOrchestrator
    probe: MemoryLayoutProbe
    factory: MemorySurfaceFactory
    pool: PagePool

    @property
    def pages(self) -> list[PageDescriptor]:
        return self.orchestrator.visible_pages

    def ids(self) -> list[list[Optional[str]]]:
        return [node_ids(p.surface.get_document()) for p in self.pages]

    def heights(self) -> list[float]:
        return [self.probe.measure_container(p.id) for p in self.pages]

    def settle(self) -> int:
        return self.orchestrator.run_until_idle(timeout=10)


@pytest.fixture
def config() -> PageConfig:
    return DEFAULT_CONFIG


@pytest.fixture
def factory() -> MemorySurfaceFactory:
    return MemorySurfaceFactory(id_factory=_counter_ids())


@pytest.fixture
def handlers() -> SurfaceHandlers:
    return SurfaceHandlers(
        on_content_changed=lambda _s: None, on_selection_changed=lambda _s: None
    )


@pytest.fixture
def pool(factory: MemorySurfaceFactory, config: PageConfig) -> PagePool:
    return PagePool(factory, config)


@pytest.fixture
def inline_offloader() -> Offloader:
    return Offloader(channel_factory=None)


@pytest.fixture
def harness() -> Iterator[Callable[..., Harness]]:
    """Builder for a fully wired orchestrator over in-memory collaborators."""
    built: list[Harness] = []

    def build(
        document: Document | None = None,
        heights: Mapping[str, float] | None = None,
        config: PageConfig = DEFAULT_CONFIG,
        offloader: Offloader | None = None,
    ) -> Harness:
        factory = MemorySurfaceFactory(id_factory=_counter_ids())
        pool = PagePool(factory, config)
        probe = MemoryLayoutProbe(pool, heights)
        orchestrator = PaginationOrchestrator(
            pool, probe, offloader or Offloader(channel_factory=None), config
        )
        orchestrator.initialize(document)
        h = Harness(orchestrator, probe, factory, pool)
        built.append(h)
        return h

    yield build
    for h in built:
        h.orchestrator.teardown()
