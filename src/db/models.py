"""
SQLModel table definitions.

JSON columns stay as TEXT with Python-side serialization so SQLite and
PostgreSQL are both supported transparently.
"""

import json
import time
from typing import Any, Dict, Optional

from sqlalchemy import Column, Float, Index, Integer, Text
from sqlmodel import Field, SQLModel


def _now_ts() -> float:
    return time.time()


class IndexingStateRow(SQLModel, table=True):
    """Last known state of a project's indexing job (one row per project)."""

    __tablename__ = "indexing_states"
    __table_args__ = (
        Index("idx_indexing_states_status", "status"),
        Index("idx_indexing_states_started_at", "started_at"),
    )

    project_id: str = Field(primary_key=True)
    project_name: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    status: str = Field(default="indexing", sa_column=Column(Text, nullable=False, server_default="indexing"))
    percent: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    current_step: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    stats_json: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    started_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
    completed_at: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))
    updated_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))

    def get_stats(self) -> Optional[Dict[str, Any]]:
        if not self.stats_json:
            return None
        try:
            return json.loads(self.stats_json)
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        d = self.model_dump()
        d["stats"] = self.get_stats()
        d.pop("stats_json", None)
        return d
