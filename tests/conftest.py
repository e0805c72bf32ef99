"""
Shared fixtures: scripted backend, temporary SQLite store, in-memory Redis stand-in.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import TrackerSettings  # noqa: E402
from src.db.engine import create_db_engine, init_db  # noqa: E402
from src.indexing.events import EventBus  # noqa: E402
from src.indexing.state_store import SqlStateStore  # noqa: E402
from src.indexing.status import NotFound  # noqa: E402


class FakeBackend:
    """
    Scripted stand-in for IndexingBackendClient.

    statuses: consumed one per get_status call, the last one repeats. An
    Exception instance is raised instead of returned.
    launch_after: seconds until start_indexing resolves; None blocks until cancelled.
    """

    def __init__(
        self,
        statuses=(),
        *,
        launch_after: Optional[float] = None,
        launch_error: Optional[Exception] = None,
        launch_body: Optional[Dict[str, Any]] = None,
        status_delay: float = 0.0,
        cancel_error: Optional[Exception] = None,
    ):
        self._statuses: List[Any] = list(statuses) or [NotFound()]
        self.launch_after = launch_after
        self.launch_error = launch_error
        self.launch_body = launch_body if launch_body is not None else {"status": "completed"}
        self.status_delay = status_delay
        self.cancel_error = cancel_error
        self.started: List[str] = []
        self.status_calls: List[str] = []
        self.cancelled: List[str] = []
        self.closed = False

    async def start_indexing(self, project_name: str) -> Dict[str, Any]:
        self.started.append(project_name)
        if self.launch_after is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(self.launch_after)
        if self.launch_error is not None:
            raise self.launch_error
        return dict(self.launch_body)

    async def get_status(self, project_id: str):
        self.status_calls.append(project_id)
        if self.status_delay:
            await asyncio.sleep(self.status_delay)
        item = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def cancel_indexing(self, project_id: str) -> Dict[str, Any]:
        self.cancelled.append(project_id)
        if self.cancel_error is not None:
            raise self.cancel_error
        return {"success": True}

    async def close(self) -> None:
        self.closed = True


class _FakePipeline:
    def __init__(self, client: "FakeRedis"):
        self._client = client
        self._ops = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._ops = []
        return False

    def __getattr__(self, name):
        def _queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self
        return _queue

    def execute(self):
        results = [getattr(self._client, name)(*args, **kwargs) for name, args, kwargs in self._ops]
        self._ops = []
        return results


class FakeRedis:
    """The handful of redis-py calls the stores and sinks use, on plain dicts."""

    def __init__(self):
        self.kv: Dict[str, str] = {}
        self.sets: Dict[str, set] = {}
        self.streams: Dict[str, list] = {}
        self._seq = 0

    def ping(self):
        return True

    def close(self):
        pass

    def pipeline(self):
        return _FakePipeline(self)

    def set(self, key, value):
        self.kv[key] = value
        return True

    def get(self, key):
        return self.kv.get(key)

    def delete(self, key):
        return 1 if self.kv.pop(key, None) is not None else 0

    def sadd(self, key, member):
        members = self.sets.setdefault(key, set())
        added = member not in members
        members.add(member)
        return int(added)

    def srem(self, key, member):
        members = self.sets.get(key, set())
        if member in members:
            members.discard(member)
            return 1
        return 0

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def xadd(self, stream, fields, maxlen=None):
        self._seq += 1
        eid = f"{self._seq}-0"
        entries = self.streams.setdefault(stream, [])
        entries.append((eid, dict(fields)))
        if maxlen is not None and len(entries) > maxlen:
            del entries[: len(entries) - maxlen]
        return eid

    def xrange(self, stream, min="-", max="+", count=None):
        entries = self.streams.get(stream, [])
        if min != "-":
            floor = int(min.split("-")[0])
            entries = [e for e in entries if int(e[0].split("-")[0]) >= floor]
        return entries[:count] if count else list(entries)


class EventRecorder:
    """EventBus sink that keeps every event in order."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [e.type for e in self.events]

    def of_type(self, event_type: str):
        return [e for e in self.events if e.type == event_type]


@pytest.fixture
def fast_config():
    return TrackerSettings(
        poll_interval_seconds=0.01,
        max_poll_duration_seconds=2.0,
        start_grace_seconds=0.0,
        stale_after_seconds=3600,
        completed_visible_seconds=300,
    )


@pytest.fixture
def sql_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'tracker.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(sql_engine):
    return SqlStateStore(sql_engine)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def bus(recorder):
    b = EventBus()
    b.add_sink(recorder)
    return b
