"""Worker side of the background channel: one JSON request in, one JSON response out."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from .operations import TaskKind, run_operation

logger = logging.getLogger(__name__)


class WorkerRequest(BaseModel):
    id: str
    type: TaskKind
    payload: Dict[str, Any] = Field(default_factory=dict)


class WorkerResponse(BaseModel):
    id: str
    type: str
    success: bool
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def handle_message(raw: str) -> str:
    """Decode a request, run its operation and encode exactly one response."""
    try:
        request = WorkerRequest.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("rejecting malformed worker request: %s", exc.errors()[:1])
        return WorkerResponse(
            id=_request_id(raw), type="UNKNOWN", success=False, error=str(exc)
        ).model_dump_json()

    try:
        result = run_operation(request.type, request.payload)
    except Exception as exc:  # reported back to the caller, never raised
        logger.debug("worker task %s failed: %s", request.id, exc)
        return WorkerResponse(
            id=request.id, type=request.type.value, success=False, error=str(exc)
        ).model_dump_json()
    return WorkerResponse(
        id=request.id, type=request.type.value, success=True, payload=result
    ).model_dump_json()


class _LooseRequest(BaseModel):
    id: str = ""


def _request_id(raw: str) -> str:
    """Best-effort id extraction so even a bad request gets a correlated reply."""
    try:
        return _LooseRequest.model_validate_json(raw).id
    except ValidationError:
        return ""
