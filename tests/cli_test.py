import json

from typer.testing import CliRunner

from pageflow.cli import app
from pageflow.document import document_to_dict
from tests.helpers import make_paragraphs, uniform_heights

runner = CliRunner()


def _write_doc(tmp_path, count: int = 25, height: float = 45):
    doc = make_paragraphs(count)
    path = tmp_path / "doc.json"
    path.write_text(
        json.dumps({**document_to_dict(doc), "heights": uniform_heights(doc, height)})
    )
    return path


def test_simulate_writes_pages(tmp_path) -> None:
    out = tmp_path / "pages.json"
    result = runner.invoke(app, ["simulate", str(_write_doc(tmp_path)), "--out", str(out)])
    assert result.exit_code == 0, result.output
    pages = json.loads(out.read_text())
    assert [p["page"] for p in pages] == [1, 2]
    assert pages[0]["nodes"] == [f"n{i}" for i in range(20)]
    assert pages[1]["height"] == 225


def test_simulate_inline_matches_worker(tmp_path) -> None:
    source = _write_doc(tmp_path, count=50)
    a, b = tmp_path / "a.json", tmp_path / "b.json"
    assert runner.invoke(app, ["simulate", str(source), "--out", str(a)]).exit_code == 0
    assert (
        runner.invoke(app, ["simulate", str(source), "--out", str(b), "--no-offload"]).exit_code
        == 0
    )
    assert json.loads(a.read_text()) == json.loads(b.read_text())


def test_simulate_accepts_bare_node_list(tmp_path) -> None:
    path = tmp_path / "nodes.json"
    path.write_text(json.dumps([{"type": "paragraph", "content": [{"type": "text", "text": "hi"}]}]))
    out = tmp_path / "pages.json"
    result = runner.invoke(app, ["simulate", str(path), "--out", str(out)])
    assert result.exit_code == 0, result.output
    pages = json.loads(out.read_text())
    assert len(pages) == 1
    assert pages[0]["height"] == 40


def test_simulate_reports_bad_input(tmp_path) -> None:
    path = tmp_path / "bad.json"
    path.write_text('"just a string"')
    result = runner.invoke(app, ["simulate", str(path)])
    assert result.exit_code == 1
    assert "error:" in result.output


def test_simulate_missing_file_fails(tmp_path) -> None:
    result = runner.invoke(app, ["simulate", str(tmp_path / "missing.json")])
    assert result.exit_code != 0


def test_inspect_shows_capacity(tmp_path) -> None:
    cfg = tmp_path / "pageflow.yaml"
    cfg.write_text("merge_buffer: 30\n")
    result = runner.invoke(app, ["inspect", "--config", str(cfg)])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["content_max_height"] == 943
    assert data["overflow_threshold"] == 933
    assert data["merge_buffer"] == 30
