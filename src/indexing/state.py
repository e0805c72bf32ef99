"""
Indexing state model and status machine for one project's indexing job.
States: indexing -> completed | error  (terminal states are immutable)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from src.indexing.errors import InvalidTransitionError

STARTING_STEP = "Starting project indexing..."
COMPLETED_STEP = "All done! Your project is ready."
FAILED_STEP = "Indexing failed"
TIMED_OUT_MESSAGE = "Indexing timed out"


class IndexingStatus(str, Enum):
    indexing = "indexing"
    completed = "completed"
    error = "error"


@dataclass(frozen=True)
class IndexingStats:
    thread_count: int = 0
    message_count: int = 0
    pdf_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "thread_count": self.thread_count,
            "message_count": self.message_count,
            "pdf_count": self.pdf_count,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional[IndexingStats]:
        if not data:
            return None
        return cls(
            thread_count=int(data.get("thread_count") or 0),
            message_count=int(data.get("message_count") or 0),
            pdf_count=int(data.get("pdf_count") or 0),
        )


@dataclass
class IndexingState:
    project_id: str
    project_name: str
    status: IndexingStatus = IndexingStatus.indexing
    percent: int = 0
    current_step: str = STARTING_STEP
    stats: Optional[IndexingStats] = None
    started_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    error: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    @classmethod
    def initial(cls, project_id: str, project_name: str, now: Optional[float] = None) -> IndexingState:
        ts = time.time() if now is None else now
        return cls(
            project_id=project_id,
            project_name=project_name,
            status=IndexingStatus.indexing,
            percent=0,
            current_step=STARTING_STEP,
            started_at=ts,
            updated_at=ts,
        )

    def is_terminal(self) -> bool:
        return self.status in (IndexingStatus.completed, IndexingStatus.error)

    def _require_indexing(self, target: str) -> None:
        if self.is_terminal():
            raise InvalidTransitionError(
                f"project {self.project_id!r}: cannot move {self.status.value} -> {target}"
            )

    def with_progress(
        self,
        percent: int,
        step: str,
        stats: Optional[IndexingStats] = None,
        now: Optional[float] = None,
    ) -> IndexingState:
        """New snapshot with server-reported progress; stats carry forward when the poll had none."""
        self._require_indexing("indexing")
        return replace(
            self,
            percent=max(0, min(100, int(percent))),
            current_step=step,
            stats=stats if stats is not None else self.stats,
            updated_at=time.time() if now is None else now,
        )

    def complete(self, stats: Optional[IndexingStats] = None, now: Optional[float] = None) -> IndexingState:
        self._require_indexing(IndexingStatus.completed.value)
        ts = time.time() if now is None else now
        return replace(
            self,
            status=IndexingStatus.completed,
            percent=100,
            current_step=COMPLETED_STEP,
            stats=stats if stats is not None else self.stats,
            completed_at=ts,
            error=None,
            updated_at=ts,
        )

    def fail(self, message: str, now: Optional[float] = None) -> IndexingState:
        self._require_indexing(IndexingStatus.error.value)
        return replace(
            self,
            status=IndexingStatus.error,
            current_step=FAILED_STEP,
            error=message,
            updated_at=time.time() if now is None else now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "status": self.status.value,
            "percent": self.percent,
            "current_step": self.current_step,
            "stats": self.stats.to_dict() if self.stats else None,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IndexingState:
        status = data.get("status", "indexing")
        started_at = float(data.get("started_at", time.time()))
        return cls(
            project_id=str(data["project_id"]),
            project_name=str(data.get("project_name", "")),
            status=IndexingStatus(status) if isinstance(status, str) else status,
            percent=int(data.get("percent", 0)),
            current_step=str(data.get("current_step", "")),
            stats=IndexingStats.from_dict(data.get("stats")),
            started_at=started_at,
            completed_at=float(data["completed_at"]) if data.get("completed_at") is not None else None,
            error=data.get("error"),
            updated_at=float(data.get("updated_at", started_at)),
        )
