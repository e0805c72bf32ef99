"""
Durable store for IndexingState: one row per project_id, whole-record replace.

Two backends:
- SqlStateStore: SQLModel table indexing_states (default, data/tracker.db)
- RedisStateStore: one JSON document per key indexing:state:<project_id>
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import redis
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from config.settings import settings
from src.db.engine import get_engine
from src.db.models import IndexingStateRow
from src.indexing.errors import StateStoreError
from src.indexing.state import TIMED_OUT_MESSAGE, IndexingState, IndexingStats, IndexingStatus
from src.log import get_logger

logger = get_logger(__name__)

KEY_STATE_PREFIX = "indexing:state:"
SET_STATE_IDS = "indexing:state_ids"


class IndexingStateStore(ABC):
    """Keyed table project_id -> IndexingState; every method is safe to call from any thread."""

    @abstractmethod
    def save(self, state: IndexingState) -> None:
        ...

    @abstractmethod
    def load(self, project_id: str) -> Optional[IndexingState]:
        """None means no row for project_id."""

    @abstractmethod
    def load_all(self) -> List[IndexingState]:
        """All rows, newest job first."""

    @abstractmethod
    def clear(self, project_id: str) -> bool:
        """Delete one row; returns False when there was nothing to delete."""

    @abstractmethod
    def ping(self) -> None:
        """Raise StateStoreError when the backing store is unreachable."""


# ── SQL ──────────────────────────────────────────────────────────────────────

def _row_from_state(row: IndexingStateRow, state: IndexingState) -> IndexingStateRow:
    row.project_name = state.project_name
    row.status = state.status.value
    row.percent = state.percent
    row.current_step = state.current_step
    row.stats_json = json.dumps(state.stats.to_dict()) if state.stats else None
    row.error = state.error
    row.started_at = state.started_at
    row.completed_at = state.completed_at
    row.updated_at = state.updated_at
    return row


def _state_from_row(row: IndexingStateRow) -> IndexingState:
    return IndexingState(
        project_id=row.project_id,
        project_name=row.project_name,
        status=IndexingStatus(row.status),
        percent=int(row.percent),
        current_step=row.current_step,
        stats=IndexingStats.from_dict(row.get_stats()),
        started_at=float(row.started_at),
        completed_at=float(row.completed_at) if row.completed_at is not None else None,
        error=row.error,
        updated_at=float(row.updated_at),
    )


class SqlStateStore(IndexingStateStore):
    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def save(self, state: IndexingState) -> None:
        try:
            with Session(self.engine) as session:
                row = session.get(IndexingStateRow, state.project_id)
                if row is None:
                    row = IndexingStateRow(project_id=state.project_id)
                session.add(_row_from_state(row, state))
                session.commit()
        except SQLAlchemyError as e:
            raise StateStoreError(f"save failed for project {state.project_id!r}: {e}") from e

    def load(self, project_id: str) -> Optional[IndexingState]:
        try:
            with Session(self.engine) as session:
                row = session.get(IndexingStateRow, project_id)
                return _state_from_row(row) if row else None
        except SQLAlchemyError as e:
            raise StateStoreError(f"load failed for project {project_id!r}: {e}") from e

    def load_all(self) -> List[IndexingState]:
        try:
            with Session(self.engine) as session:
                stmt = select(IndexingStateRow).order_by(IndexingStateRow.started_at.desc())
                rows = session.exec(stmt).all()
                return [_state_from_row(r) for r in rows]
        except SQLAlchemyError as e:
            raise StateStoreError(f"load_all failed: {e}") from e

    def clear(self, project_id: str) -> bool:
        try:
            with Session(self.engine) as session:
                row = session.get(IndexingStateRow, project_id)
                if row is None:
                    return False
                session.delete(row)
                session.commit()
                return True
        except SQLAlchemyError as e:
            raise StateStoreError(f"clear failed for project {project_id!r}: {e}") from e

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StateStoreError(f"database unavailable: {e}") from e


# ── Redis ────────────────────────────────────────────────────────────────────

def _state_key(project_id: str) -> str:
    return f"{KEY_STATE_PREFIX}{project_id}"


def _decode_state(project_id: str, raw: str) -> IndexingState:
    try:
        return IndexingState.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise StateStoreError(f"unreadable state for project {project_id!r}: {e}") from e


class RedisStateStore(IndexingStateStore):
    """Sync Redis client; no TTL, rows live until cleared."""

    def __init__(self, redis_url: Optional[str] = None, client=None):
        self._url = redis_url or settings.store.redis_url
        self._client = client

    def _ensure_client(self):
        if self._client is None:
            try:
                self._client = redis.from_url(self._url, decode_responses=True)
                self._client.ping()
            except redis.RedisError as e:
                self._client = None
                logger.warning("[RedisStateStore] Redis connect failed: %s", e)
                raise StateStoreError(f"redis unavailable: {e}") from e
        return self._client

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def save(self, state: IndexingState) -> None:
        client = self._ensure_client()
        try:
            with client.pipeline() as pipe:
                pipe.set(_state_key(state.project_id), json.dumps(state.to_dict(), ensure_ascii=False))
                pipe.sadd(SET_STATE_IDS, state.project_id)
                pipe.execute()
        except redis.RedisError as e:
            raise StateStoreError(f"save failed for project {state.project_id!r}: {e}") from e

    def load(self, project_id: str) -> Optional[IndexingState]:
        try:
            raw = self._ensure_client().get(_state_key(project_id))
        except redis.RedisError as e:
            raise StateStoreError(f"load failed for project {project_id!r}: {e}") from e
        if not raw:
            return None
        return _decode_state(project_id, raw)

    def load_all(self) -> List[IndexingState]:
        client = self._ensure_client()
        states = []
        try:
            project_ids = client.smembers(SET_STATE_IDS)
            docs = [(pid, client.get(_state_key(pid))) for pid in project_ids]
        except redis.RedisError as e:
            raise StateStoreError(f"load_all failed: {e}") from e
        for project_id, raw in docs:
            if not raw:
                continue
            try:
                states.append(_decode_state(project_id, raw))
            except StateStoreError as e:
                # one corrupt document must not hide every other job
                logger.warning("[RedisStateStore] skipping row: %s", e)
        states.sort(key=lambda s: s.started_at, reverse=True)
        return states

    def clear(self, project_id: str) -> bool:
        client = self._ensure_client()
        try:
            with client.pipeline() as pipe:
                pipe.delete(_state_key(project_id))
                pipe.srem(SET_STATE_IDS, project_id)
                deleted, _ = pipe.execute()
        except redis.RedisError as e:
            raise StateStoreError(f"clear failed for project {project_id!r}: {e}") from e
        return bool(deleted)

    def ping(self) -> None:
        try:
            self._ensure_client().ping()
        except redis.RedisError as e:
            raise StateStoreError(f"redis unavailable: {e}") from e


# ── Stale rows / listing ─────────────────────────────────────────────────────

def expire_if_stale(
    store: IndexingStateStore,
    state: IndexingState,
    now: Optional[float] = None,
    stale_after_seconds: Optional[float] = None,
) -> IndexingState:
    """Rewrite an indexing row nobody has updated for stale_after_seconds to a timeout error.

    Only pass rows no live coordinator owns: such a row belongs to a tracker
    that died with its process, and nothing will ever finish it.
    """
    if state.status != IndexingStatus.indexing:
        return state
    now = time.time() if now is None else now
    threshold = settings.tracker.stale_after_seconds if stale_after_seconds is None else stale_after_seconds
    if now - state.updated_at <= threshold:
        return state
    expired = state.fail(TIMED_OUT_MESSAGE, now=now)
    store.save(expired)
    logger.info(
        "[state_store] project_id=%s silent for %.0fs, marked timed out",
        state.project_id, now - state.updated_at,
    )
    return expired


def reconcile_stale_states(
    store: IndexingStateStore,
    now: Optional[float] = None,
    stale_after_seconds: Optional[float] = None,
) -> int:
    """Expire every stale indexing row; run at startup, before any job is tracked."""
    now = time.time() if now is None else now
    count = 0
    for state in store.load_all():
        if expire_if_stale(store, state, now=now, stale_after_seconds=stale_after_seconds) is not state:
            count += 1
    if count:
        logger.warning("[state_store] marked %d stale indexing state(s) as timed out", count)
    return count


def visible_states(
    states: Iterable[IndexingState],
    now: Optional[float] = None,
    completed_visible_seconds: Optional[float] = None,
) -> List[IndexingState]:
    """Rows worth showing: running jobs, failures (until dismissed), and recent completions."""
    now = time.time() if now is None else now
    window = settings.tracker.completed_visible_seconds if completed_visible_seconds is None else completed_visible_seconds
    out = []
    for state in states:
        if state.status == IndexingStatus.completed:
            if state.completed_at is None or now - state.completed_at > window:
                continue
        out.append(state)
    return out


_store: Optional[IndexingStateStore] = None


def get_state_store() -> IndexingStateStore:
    global _store
    if _store is None:
        if settings.store.backend == "redis":
            _store = RedisStateStore(settings.store.redis_url)
        else:
            _store = SqlStateStore()
    return _store
