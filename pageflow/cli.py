from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable, Mapping
from importlib import import_module
from pathlib import Path
from typing import Any, cast

from pageflow.adapters.memory import MemoryLayoutProbe, MemorySurfaceFactory
from pageflow.config import PageConfig, load_config
from pageflow.document import Document, assign_node_ids, document_from_dict, node_ids
from pageflow.offload import Offloader
from pageflow.orchestrator import PaginationOrchestrator
from pageflow.pool import PagePool

typer = cast(Any, import_module("typer"))

logger = logging.getLogger(__name__)


def _exit_with_error(exc: Exception) -> None:
    """Print ``exc`` to stderr and exit with status 1."""
    print(f"error: {exc}", file=sys.stderr)
    raise typer.Exit(1)


def _safe(func: Callable[[], None]) -> None:
    """Invoke ``func`` and exit non-zero on any exception."""
    try:
        func()
    except typer.Exit:
        raise
    except Exception as exc:
        _exit_with_error(exc)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_input(path: Path) -> tuple[Document, dict[str, float]]:
    """Read ``{"content": [...], "heights": {...}}`` or a bare node list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, Mapping):
        heights = {str(k): float(v) for k, v in (data.get("heights") or {}).items()}
        return document_from_dict(data), heights
    if isinstance(data, list):
        return document_from_dict(data), {}
    raise ValueError(f"{path} must hold a document object or a list of nodes")


def paginate(
    doc: Document,
    heights: Mapping[str, float],
    config: PageConfig,
) -> list[dict[str, Any]]:
    """Paginate ``doc`` with in-memory surfaces and report each visible page."""
    factory = MemorySurfaceFactory()
    pool = PagePool(factory, config)
    probe = MemoryLayoutProbe(pool, heights)
    orchestrator = PaginationOrchestrator(
        pool,
        probe,
        Offloader(timeout=config.task_timeout),
        config,
    )
    orchestrator.initialize(assign_node_ids(doc))
    try:
        orchestrator.run_until_idle()
        return [
            {
                "page": number,
                "nodes": node_ids(page.surface.get_document()),
                "height": probe.measure_container(page.id),
            }
            for number, page in enumerate(orchestrator.visible_pages, start=1)
        ]
    finally:
        orchestrator.teardown()


def _config_from(path: Path | None, no_offload: bool) -> PageConfig:
    overrides = {"offload": False} if no_offload else None
    return load_config(path if path is not None else "pageflow.yaml", overrides)


def _run_simulate(
    input_path: Path,
    config_path: Path | None,
    out: Path | None,
    no_offload: bool,
    verbose: bool,
) -> None:
    _configure_logging(verbose)
    config = _config_from(config_path, no_offload)
    doc, heights = _load_input(input_path)
    pages = paginate(doc, heights, config)
    rendered = json.dumps(pages, indent=2)
    if out is not None:
        out.write_text(rendered + "\n", encoding="utf-8")
        logger.info("wrote %d pages to %s", len(pages), out)
    print(rendered)


def _run_inspect(config_path: Path | None) -> None:
    config = _config_from(config_path, False)
    print(
        json.dumps(
            {
                **config.model_dump(mode="json"),
                "content_max_height": config.content_max_height,
                "overflow_threshold": config.overflow_threshold,
            },
            indent=2,
        )
    )


app = typer.Typer(add_completion=False, no_args_is_help=True)


@app.command()
def simulate(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    config_path: Path | None = typer.Option(None, "--config"),
    out: Path | None = typer.Option(None, "--out"),
    no_offload: bool = typer.Option(False, "--no-offload"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Paginate a JSON document and print the resulting pages."""
    _safe(lambda: _run_simulate(input_path, config_path, out, no_offload, verbose))


@app.command()
def inspect(config_path: Path | None = typer.Option(None, "--config")) -> None:
    """Print the resolved configuration."""
    _safe(lambda: _run_inspect(config_path))


if __name__ == "__main__":
    app()
