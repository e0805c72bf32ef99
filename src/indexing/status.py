"""
Typed view of the backend's GET /api/status payload.

    {"status": "indexing", "percent": 40, "step": "...", "phase": "...",
     "details": {"thread_count": .., "message_count": .., "pdf_count": ..},
     "error": "..."}

Unknown status strings are rejected instead of being mapped to a default.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from src.indexing.errors import StatusParseError
from src.indexing.state import IndexingStats

DEFAULT_STEP = "Processing..."
DEFAULT_ERROR = "Indexing failed"
CANCELLED_ERROR = "Indexing cancelled"

# the backend reports these while the job is still running
_IN_PROGRESS = ("indexing", "pending", "vectorizing")


@dataclass(frozen=True)
class Indexing:
    percent: int
    step: str = DEFAULT_STEP
    phase: Optional[str] = None
    stats: Optional[IndexingStats] = None


@dataclass(frozen=True)
class Completed:
    stats: Optional[IndexingStats] = None


@dataclass(frozen=True)
class Errored:
    message: str = DEFAULT_ERROR


@dataclass(frozen=True)
class NotFound:
    pass


StatusSnapshot = Union[Indexing, Completed, Errored, NotFound]


def _parse_percent(raw: Any) -> int:
    if raw is None or raw == "":
        return 0
    try:
        value = int(float(raw))
    except (TypeError, ValueError) as e:
        raise StatusParseError(f"percent is not numeric: {raw!r}") from e
    return max(0, min(100, value))


def _parse_stats(raw: Any) -> Optional[IndexingStats]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise StatusParseError(f"details is not an object: {raw!r}")
    try:
        return IndexingStats.from_dict(raw)
    except (TypeError, ValueError) as e:
        raise StatusParseError(f"details has non-numeric counts: {raw!r}") from e


def parse_status_payload(payload: Any) -> StatusSnapshot:
    if not isinstance(payload, dict):
        raise StatusParseError(f"status payload is not an object: {type(payload).__name__}")
    status = payload.get("status")
    if not isinstance(status, str) or not status:
        raise StatusParseError("status payload has no status field")

    if status in _IN_PROGRESS:
        return Indexing(
            percent=_parse_percent(payload.get("percent")),
            step=payload.get("step") or DEFAULT_STEP,
            phase=payload.get("phase"),
            stats=_parse_stats(payload.get("details")),
        )
    if status == "completed":
        return Completed(stats=_parse_stats(payload.get("details")))
    if status == "error":
        return Errored(message=payload.get("error") or DEFAULT_ERROR)
    if status == "cancelled":
        return Errored(message=payload.get("error") or CANCELLED_ERROR)
    if status == "not_found":
        return NotFound()
    raise StatusParseError(f"unknown indexing status {status!r}")
