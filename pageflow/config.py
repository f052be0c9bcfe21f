from __future__ import annotations

import os
import pathlib
import warnings
from enum import Enum
from functools import reduce
from importlib import import_module
from typing import Any, Dict, Iterable, Mapping, cast

from pydantic import BaseModel, ConfigDict, Field

yaml = cast(Any, import_module("yaml"))

ENV_PREFIX = "PAGEFLOW__"


class JumpRule(str, Enum):
    """How to decide that focus follows overflow onto the next page."""

    LAST_LINE = "last_line"
    LAST_NODE_AND_LINE = "last_node_and_line"


class PageConfig(BaseModel):
    """Page geometry, pool sizing and pagination tunables."""

    model_config = ConfigDict(frozen=True)

    page_height: int = Field(1123, gt=0)
    page_width: int = Field(794, gt=0)
    page_margin: int = Field(60, ge=0)
    footer_reserve: int = Field(40, ge=0)
    safety_buffer: int = Field(20, ge=0)

    initial_preload_count: int = Field(5, ge=1)
    expand_threshold: int = Field(4, ge=1)
    expand_count: int = Field(5, ge=1)

    max_pagination_attempts: int = Field(3, ge=1)
    overflow_buffer: int = Field(10, ge=0)
    merge_buffer: int = Field(20, ge=0)
    fallback_node_height: int = Field(80, gt=0)

    task_timeout: float = Field(10.0, gt=0)
    offload: bool = True

    jump_rule: JumpRule = JumpRule.LAST_LINE
    last_node_fraction: float = Field(0.7, ge=0, le=1)
    max_scheduler_rounds: int = Field(1000, ge=1)

    @property
    def content_max_height(self) -> int:
        """Usable content height; 943px with the default A4 geometry."""
        return (
            self.page_height
            - 2 * self.page_margin
            - self.footer_reserve
            - self.safety_buffer
        )

    @property
    def overflow_threshold(self) -> int:
        return self.content_max_height - self.overflow_buffer


DEFAULT_CONFIG = PageConfig()
CONTENT_MAX_HEIGHT = DEFAULT_CONFIG.content_max_height


def _read_yaml(path: str | os.PathLike | None) -> Dict[str, Any]:
    """Parse the YAML config file; an unset or absent path yields no settings."""
    if not path:
        return {}
    p = pathlib.Path(path)
    if not p.exists():
        return {}
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise TypeError("pageflow.yaml must contain a top-level mapping")
    return data


def _env_overrides() -> Dict[str, Any]:
    """Collect ``PAGEFLOW__<FIELD>`` variables, parsing each value as YAML."""
    out: Dict[str, Any] = {}
    for k, v in os.environ.items():
        if not k.startswith(ENV_PREFIX):
            continue
        key = k[len(ENV_PREFIX):].lower()
        try:
            val = yaml.safe_load(v)
        except yaml.YAMLError:
            val = v
        out[key] = val
    return out


def _warn_unknown_options(opts: Iterable[str]) -> None:
    """Emit a warning when options name fields the config does not have."""

    unknown = [key for key in opts if key not in PageConfig.model_fields]
    if unknown:
        warnings.warn(
            f"Unknown config options: {', '.join(sorted(unknown))}",
            stacklevel=3,
        )


def load_config(
    path: str | os.PathLike | None = "pageflow.yaml",
    overrides: Mapping[str, Any] | None = None,
) -> PageConfig:
    """Load YAML + env/CLI overrides into a validated PageConfig."""
    sources: Iterable[Mapping[str, Any]] = (
        d for d in (_read_yaml(path), _env_overrides(), overrides) if d
    )
    merged: Dict[str, Any] = reduce(lambda acc, d: {**acc, **d}, sources, {})
    _warn_unknown_options(merged)
    known = {k: v for k, v in merged.items() if k in PageConfig.model_fields}
    return PageConfig.model_validate(known)
