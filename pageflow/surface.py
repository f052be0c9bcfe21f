"""Collaborator interfaces the pagination engine drives but does not implement."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable

from .document import Document


@dataclass(frozen=True)
class Selection:
    from_: int
    to: int


@dataclass(frozen=True)
class SurfaceHandlers:
    """Callbacks a surface invokes for user-driven changes."""

    on_content_changed: Callable[["EditingSurface"], None]
    on_selection_changed: Callable[["EditingSurface"], None]


@runtime_checkable
class EditingSurface(Protocol):
    """One rich-text editing surface holding a single page's document."""

    surface_id: str

    def get_document(self) -> Document:
        ...

    def set_document(self, doc: Document) -> None:
        """Replace the content without emitting a content-changed event."""
        ...

    def get_selection(self) -> Selection:
        ...

    def set_selection(self, offset: int) -> None:
        ...

    def set_editable(self, editable: bool) -> None:
        ...

    def focus(self) -> None:
        ...

    def execute(self, command: str) -> bool:
        """Run a formatting command; False when the command is unknown."""
        ...

    def is_active(self, mark: str) -> bool:
        ...

    def destroy(self) -> None:
        ...


class SurfaceFactory(Protocol):
    def create(
        self, initial_content: Optional[Document], handlers: SurfaceHandlers
    ) -> EditingSurface:
        ...


@runtime_checkable
class LayoutProbe(Protocol):
    """Rendered geometry lookups.

    ``measure_container`` raises ``MeasurementUnavailable`` when the page is
    not mounted; ``measure_node`` returns None for an unknown node.
    """

    def measure_container(self, page_id: str) -> float:
        ...

    def measure_node(self, node_id: str) -> Optional[float]:
        ...
