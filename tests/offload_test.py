import threading
import time

import pytest

from pageflow.document import BlockNode, Document, node_ids, paragraph
from pageflow.errors import ChannelUnavailable
from pageflow.offload import Offloader, ThreadWorkerChannel
from pageflow.operations import TaskKind
from pageflow.splitter import calculate_split_point, split_document
from pageflow.worker import WorkerResponse, handle_message
from tests.helpers import make_paragraphs


class _BrokenChannel:
    def start(self, on_message, on_error) -> None:
        raise ChannelUnavailable("no worker support here")

    def post(self, message: str) -> None:  # pragma: no cover - never started
        raise AssertionError("post on a channel that never started")

    def terminate(self) -> None:
        pass


def _slow_handler(delay: float):
    def handle(raw: str) -> str:
        time.sleep(delay)
        return handle_message(raw)

    return handle


def _crashing_handler(raw: str) -> str:
    raise RuntimeError("worker crashed")


@pytest.fixture
def threaded():
    offloader = Offloader()
    assert offloader.initialize()
    yield offloader
    offloader.shutdown()


def test_inline_split_matches_direct_split(inline_offloader) -> None:
    doc = make_paragraphs(25)
    assert not inline_offloader.initialize()
    assert inline_offloader.split_document(doc, 22) == split_document(doc, 22)
    assert inline_offloader.stats.fallbacks == 1


def test_failed_channel_start_falls_back_to_inline() -> None:
    offloader = Offloader(channel_factory=_BrokenChannel)
    assert not offloader.initialize()
    assert not offloader.ready
    doc = make_paragraphs(12)
    assert offloader.split_document(doc, 9) == split_document(doc, 9)


def test_worker_round_trip(threaded) -> None:
    doc = make_paragraphs(25)
    assert threaded.ready
    assert threaded.split_document(doc, 22) == split_document(doc, 22)
    assert threaded.calculate_split_point(25) == calculate_split_point(25)
    merged = threaded.merge_content(doc.content[:2], doc.content[2:4])
    assert node_ids(merged.content) == ["n0", "n1", "n2", "n3"]
    assert threaded.stats.resolved == 3
    assert threaded.stats.fallbacks == 0
    assert threaded.pending_count == 0


def test_worker_and_inline_analysis_agree(threaded, inline_offloader) -> None:
    doc = Document((paragraph("a", node_id="p"), BlockNode("heading", {"id": "h", "level": 1})))
    assert threaded.analyze_nodes(doc) == inline_offloader.analyze_nodes(doc)


def test_timeout_falls_back_and_discards_late_reply(caplog) -> None:
    offloader = Offloader(
        channel_factory=lambda: ThreadWorkerChannel(handler=_slow_handler(0.3)),
        timeout=0.05,
    )
    offloader.initialize()
    doc = make_paragraphs(5)
    try:
        assert offloader.split_document(doc, 4) == split_document(doc, 4)
        assert offloader.stats.timeouts == 1
        assert offloader.stats.fallbacks == 1
        assert offloader.pending_count == 0
        time.sleep(0.5)
        assert "no pending task" in caplog.text
    finally:
        offloader.shutdown()


def test_channel_fault_falls_back_and_can_restart() -> None:
    offloader = Offloader(channel_factory=lambda: ThreadWorkerChannel(handler=_crashing_handler))
    offloader.initialize()
    doc = make_paragraphs(4)
    try:
        assert offloader.split_document(doc, 3) == split_document(doc, 3)
        assert offloader.stats.faults == 1
        assert not offloader.ready
        assert offloader.initialize()
        assert offloader.ready
    finally:
        offloader.shutdown()


def test_unserializable_payload_runs_inline(threaded) -> None:
    blob = object()
    doc = Document((paragraph("a", node_id="a", blob=blob), paragraph("b", node_id="b")))
    result = threaded.split_document(doc, 1)
    assert result.kept.content[0].attrs["blob"] is blob
    assert threaded.stats.dispatched == 0
    assert threaded.stats.fallbacks == 1


def test_worker_error_surfaces_from_inline_rerun(threaded) -> None:
    with pytest.raises(ValueError):
        threaded.split_document(make_paragraphs(2), 5)
    assert threaded.stats.fallbacks == 1


def test_run_accepts_kind_names(inline_offloader) -> None:
    result = inline_offloader.run("CALCULATE_SPLIT_POINT", {"node_count": 11})
    assert result["split_point"] == 9


def test_unknown_response_is_ignored(threaded, caplog) -> None:
    threaded._on_message(
        WorkerResponse(id="task-unknown", type="SPLIT_DOCUMENT", success=True, payload={}).model_dump_json()
    )
    threaded._on_message("not json")
    assert "no pending task" in caplog.text
    assert "malformed" in caplog.text


def test_shutdown_fails_pending_tasks() -> None:
    gate = threading.Event()

    def blocked(raw: str) -> str:
        gate.wait(2)
        return handle_message(raw)

    offloader = Offloader(channel_factory=lambda: ThreadWorkerChannel(handler=blocked), timeout=5)
    offloader.initialize()
    results = []
    caller = threading.Thread(
        target=lambda: results.append(offloader.run(TaskKind.CALCULATE_SPLIT_POINT, {"node_count": 3}))
    )
    caller.start()
    deadline = time.monotonic() + 2
    while offloader.pending_count == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    offloader.shutdown()
    gate.set()
    caller.join(2)
    assert results == [{"split_point": 2, "split_nodes": None}]
    assert offloader.stats.fallbacks == 1


def test_submit_returns_before_worker_answers() -> None:
    gate = threading.Event()

    def blocked(raw: str) -> str:
        gate.wait(2)
        return handle_message(raw)

    offloader = Offloader(channel_factory=lambda: ThreadWorkerChannel(handler=blocked), timeout=5)
    offloader.initialize()
    doc = make_paragraphs(12)
    try:
        future = offloader.submit_split(doc, 10)
        assert not future.done()
        assert offloader.pending_count == 1
        gate.set()
        assert future.result(timeout=2) == split_document(doc, 10)
        assert offloader.stats.resolved == 1
    finally:
        gate.set()
        offloader.shutdown()


def test_inline_submit_is_already_done(inline_offloader) -> None:
    future = inline_offloader.submit(TaskKind.CALCULATE_SPLIT_POINT, {"node_count": 25})
    assert future.done()
    assert future.result()["split_point"] == 22
