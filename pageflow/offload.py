"""Background task offloading with transparent inline fallback.

Callers submit ``(kind, payload)`` and get a future back; the payload is
serialized into a ``WorkerRequest`` and posted to a channel, and the reply is
matched back by correlation id. Submitting never waits for the worker.
Whenever the channel cannot deliver (absent, failed to start, timed out,
faulted, or the payload is not serializable) the same registered operation
runs inline and completes the future, so callers never see a
channel-specific error.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol, Sequence, TypeVar

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from .document import (
    BlockNode,
    Document,
    document_from_dict,
    document_to_dict,
    node_from_dict,
    node_to_dict,
)
from .errors import ChannelFault, ChannelUnavailable, SerializationFailure, TaskTimeout
from .operations import TaskKind, run_operation
from .splitter import SplitResult
from .worker import WorkerRequest, WorkerResponse, handle_message

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

T = TypeVar("T")

_CHANNEL_ERRORS = (SerializationFailure, ChannelUnavailable, TaskTimeout, ChannelFault)


class TaskState(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    CHANNEL_ERROR = "channel_error"
    FALLBACK_EXECUTED = "fallback_executed"


@dataclass
class WorkerTask:
    correlation_id: str
    kind: TaskKind
    payload: Mapping[str, Any]
    state: TaskState = TaskState.PENDING
    future: "Future[Dict[str, Any]]" = field(default_factory=Future, repr=False)
    timer: Optional[threading.Timer] = field(default=None, repr=False)


@dataclass
class OffloadStats:
    dispatched: int = 0
    resolved: int = 0
    fallbacks: int = 0
    timeouts: int = 0
    faults: int = 0


class WorkerChannel(Protocol):
    """Message transport to a background worker."""

    def start(
        self,
        on_message: Callable[[str], None],
        on_error: Callable[[BaseException], None],
    ) -> None:
        ...

    def post(self, message: str) -> None:
        ...

    def terminate(self) -> None:
        ...


class ThreadWorkerChannel:
    """Channel backed by a single background thread running ``handler``."""

    def __init__(self, handler: Callable[[str], str] = handle_message, max_workers: int = 1) -> None:
        self._handler = handler
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._on_message: Callable[[str], None] = lambda _raw: None
        self._on_error: Callable[[BaseException], None] = lambda _exc: None

    def start(self, on_message, on_error) -> None:
        self._on_message, self._on_error = on_message, on_error
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="pageflow-worker"
        )

    def post(self, message: str) -> None:
        if self._executor is None:
            raise ChannelUnavailable("worker thread not started")
        self._executor.submit(self._handler, message).add_done_callback(self._deliver)

    def _deliver(self, fut: "Future[str]") -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self._on_error(exc)
        else:
            self._on_message(fut.result())

    def terminate(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


class Offloader:
    """Owns one worker channel and its correlation map."""

    def __init__(
        self,
        channel_factory: Optional[Callable[[], WorkerChannel]] = ThreadWorkerChannel,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._channel_factory = channel_factory
        self._timeout = timeout
        self._channel: Optional[WorkerChannel] = None
        self._pending: Dict[str, WorkerTask] = {}
        self._lock = threading.Lock()
        self._ready = False
        self.stats = OffloadStats()

    @property
    def ready(self) -> bool:
        return self._ready and self._channel is not None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def initialize(self) -> bool:
        """Start (or restart) the channel; False leaves the offloader inline-only."""
        if self._channel is not None:
            self._channel.terminate()
            self._channel = None
        if self._channel_factory is None:
            logger.debug("no background channel configured, running inline")
            self._ready = False
            return False
        try:
            channel = self._channel_factory()
            channel.start(self._on_message, self._on_error)
        except Exception as exc:  # any start-up failure means inline mode
            logger.warning("background channel failed to start, running inline: %s", exc)
            self._ready = False
            return False
        self._channel = channel
        self._ready = True
        logger.info("background channel ready")
        return True

    def shutdown(self) -> None:
        self._fail_pending(ChannelFault("channel shutting down"))
        if self._channel is not None:
            self._channel.terminate()
            self._channel = None
        self._ready = False

    # -- dispatch -----------------------------------------------------------

    def submit(self, kind: TaskKind | str, payload: Mapping[str, Any]) -> "Future[Dict[str, Any]]":
        """Start ``kind`` on the worker and return its future without waiting.

        When the worker cannot take the task the operation runs inline and the
        returned future is already done.
        """
        kind = TaskKind(kind)
        try:
            task = self._dispatch(kind, payload)
        except _CHANNEL_ERRORS as exc:
            return _completed(lambda: self._fallback(kind, payload, exc))
        result: "Future[Dict[str, Any]]" = Future()
        task.future.add_done_callback(lambda fut: self._settle(task, fut, result))
        return result

    def run(self, kind: TaskKind | str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Run ``kind`` and wait for its result; blocks the calling thread."""
        return self.submit(kind, payload).result()

    def _dispatch(self, kind: TaskKind, payload: Mapping[str, Any]) -> WorkerTask:
        channel = self._channel
        if not self._ready or channel is None:
            raise ChannelUnavailable("background channel not ready")
        task = WorkerTask(correlation_id=f"task-{uuid.uuid4().hex}", kind=kind, payload=payload)
        message = _encode(task)
        task.timer = threading.Timer(self._timeout, self._expire, args=(task.correlation_id,))
        task.timer.daemon = True
        with self._lock:
            self._pending[task.correlation_id] = task
        self.stats.dispatched += 1
        task.timer.start()
        try:
            channel.post(message)
        except Exception as exc:
            self._forget(task, TaskState.CHANNEL_ERROR)
            raise ChannelFault(f"post failed: {exc}") from exc
        return task

    def _settle(
        self,
        task: WorkerTask,
        fut: "Future[Dict[str, Any]]",
        result: "Future[Dict[str, Any]]",
    ) -> None:
        exc = fut.exception()
        if exc is None:
            task.state = TaskState.RESOLVED
            self.stats.resolved += 1
            result.set_result(fut.result())
            return
        if isinstance(exc, _CHANNEL_ERRORS):
            reason: Exception = exc
            task.state = TaskState.FALLBACK_EXECUTED
            _complete(result, lambda: self._fallback(task.kind, task.payload, reason))
            return
        result.set_exception(exc)

    def _fallback(self, kind: TaskKind, payload: Mapping[str, Any], reason: Exception) -> Dict[str, Any]:
        log = logger.debug if isinstance(reason, ChannelUnavailable) else logger.warning
        log("running %s inline: %s", kind.value, reason)
        self.stats.fallbacks += 1
        return run_operation(kind, payload)

    def _forget(self, task: WorkerTask, state: TaskState) -> None:
        with self._lock:
            self._pending.pop(task.correlation_id, None)
        _cancel_timer(task)
        task.state = state

    def _expire(self, correlation_id: str) -> None:
        with self._lock:
            task = self._pending.pop(correlation_id, None)
        if task is None:
            return
        task.state = TaskState.TIMED_OUT
        self.stats.timeouts += 1
        task.future.set_exception(TaskTimeout(correlation_id, task.kind.value, self._timeout))

    # -- channel callbacks (worker thread) ----------------------------------

    def _on_message(self, raw: str) -> None:
        try:
            response = WorkerResponse.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("discarding malformed worker response: %s", exc.errors()[:1])
            return
        with self._lock:
            task = self._pending.pop(response.id, None)
        if task is None:
            logger.warning("no pending task for response %s (%s)", response.id, response.type)
            return
        _cancel_timer(task)
        if response.success:
            task.future.set_result(response.payload or {})
        else:
            task.state = TaskState.CHANNEL_ERROR
            task.future.set_exception(ChannelFault(response.error or "worker task failed"))

    def _on_error(self, exc: BaseException) -> None:
        logger.warning("background channel fault: %s", exc)
        self._ready = False
        self.stats.faults += 1
        self._fail_pending(ChannelFault(str(exc) or type(exc).__name__))

    def _fail_pending(self, error: ChannelFault) -> None:
        with self._lock:
            tasks = list(self._pending.values())
            self._pending.clear()
        for task in tasks:
            _cancel_timer(task)
            task.state = TaskState.CHANNEL_ERROR
            if not task.future.done():
                task.future.set_exception(error)

    # -- typed operations ---------------------------------------------------

    def _submit_decoded(
        self,
        kind: TaskKind,
        payload: Mapping[str, Any],
        decode: Callable[[Mapping[str, Any]], T],
    ) -> "Future[T]":
        decoded: "Future[T]" = Future()

        def finish(fut: "Future[Dict[str, Any]]") -> None:
            exc = fut.exception()
            if exc is not None:
                decoded.set_exception(exc)
                return
            try:
                value = decode(fut.result())
            except (KeyError, TypeError, ValueError) as bad:
                reason = ChannelFault(f"bad result: {bad}")
                _complete(decoded, lambda: decode(self._fallback(kind, payload, reason)))
                return
            decoded.set_result(value)

        self.submit(kind, payload).add_done_callback(finish)
        return decoded

    def submit_split(self, doc: Document, split_point: int) -> "Future[SplitResult]":
        payload = {"doc": document_to_dict(doc), "split_point": split_point}
        return self._submit_decoded(TaskKind.SPLIT_DOCUMENT, payload, _decode_split)

    def submit_analysis(self, doc: Document) -> "Future[Dict[str, Any]]":
        return self._submit_decoded(
            TaskKind.ANALYZE_NODES, {"doc": document_to_dict(doc)}, _decode_analysis
        )

    def split_document(self, doc: Document, split_point: int) -> SplitResult:
        return self.submit_split(doc, split_point).result()

    def merge_content(self, first: Iterable[BlockNode], second: Iterable[BlockNode]) -> Document:
        payload = {
            "first_nodes": [node_to_dict(n) for n in first],
            "second_nodes": [node_to_dict(n) for n in second],
        }
        return self._submit_decoded(TaskKind.MERGE_CONTENT, payload, _decode_merge).result()

    def analyze_nodes(self, doc: Document) -> Dict[str, Any]:
        return self.submit_analysis(doc).result()

    def calculate_split_point(self, node_count: int, nodes: Sequence[BlockNode] | None = None) -> int:
        payload: Dict[str, Any] = {"node_count": node_count}
        if nodes is not None:
            payload["nodes"] = [node_to_dict(n) for n in nodes]
        future = self._submit_decoded(TaskKind.CALCULATE_SPLIT_POINT, payload, _decode_split_point)
        return future.result()


def _complete(future: "Future[T]", compute: Callable[[], T]) -> None:
    try:
        value = compute()
    except Exception as exc:
        future.set_exception(exc)
        return
    future.set_result(value)


def _completed(compute: Callable[[], T]) -> "Future[T]":
    future: "Future[T]" = Future()
    _complete(future, compute)
    return future


def _cancel_timer(task: WorkerTask) -> None:
    if task.timer is not None:
        task.timer.cancel()


def _encode(task: WorkerTask) -> str:
    try:
        return WorkerRequest(
            id=task.correlation_id, type=task.kind, payload=dict(task.payload)
        ).model_dump_json()
    except (PydanticSerializationError, ValidationError, TypeError, ValueError) as exc:
        raise SerializationFailure(f"{task.kind.value} payload is not transferable: {exc}") from exc


def _decode_split(result: Mapping[str, Any]) -> SplitResult:
    return SplitResult(
        kept=document_from_dict(result["kept"]),
        overflow=tuple(node_from_dict(n) for n in result["overflow"]),
    )


def _decode_merge(result: Mapping[str, Any]) -> Document:
    return document_from_dict(result["doc"])


def _decode_split_point(result: Mapping[str, Any]) -> int:
    return int(result["split_point"])


def _decode_analysis(result: Mapping[str, Any]) -> Dict[str, Any]:
    if not isinstance(result.get("nodes"), list) or not isinstance(result.get("stats"), dict):
        raise ValueError("analysis result lacks nodes/stats")
    return dict(result)
