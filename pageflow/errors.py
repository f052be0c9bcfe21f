"""Failure kinds raised inside the pagination engine."""

from __future__ import annotations


class PaginationError(Exception):
    """Base class for engine failures."""


class SerializationFailure(PaginationError):
    """A document or payload could not be made transferable."""


class ChannelUnavailable(PaginationError):
    """No background channel exists or it failed to initialize."""


class TaskTimeout(PaginationError):
    """An offloaded task did not answer before its deadline."""

    def __init__(self, correlation_id: str, kind: str, timeout: float) -> None:
        super().__init__(f"task {correlation_id} ({kind}) timed out after {timeout:.1f}s")
        self.correlation_id = correlation_id
        self.kind = kind
        self.timeout = timeout


class ChannelFault(PaginationError):
    """The channel reported a failure or crashed."""


class MeasurementUnavailable(PaginationError):
    """The layout surface for a page or node is not mounted."""
