"""
Tracker -> caller event channel.

EventBus fans every event out to asyncio.Queue subscribers (optionally filtered
by project_id) and to registered sinks. RedisEventSink mirrors events into a
Redis stream per project so other processes can replay them.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

import redis

from src.indexing.state import IndexingStats
from src.log import get_logger

logger = get_logger(__name__)

STREAM_EVENTS_PREFIX = "indexing:events:"


@dataclass(frozen=True)
class ProgressEvent:
    project_id: str
    percent: int
    step: str
    stats: Optional[IndexingStats] = None

    type = "progress"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "project_id": self.project_id,
            "percent": self.percent,
            "step": self.step,
            "stats": self.stats.to_dict() if self.stats else None,
        }


@dataclass(frozen=True)
class CompleteEvent:
    project_id: str
    stats: Optional[IndexingStats] = None

    type = "complete"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "project_id": self.project_id,
            "stats": self.stats.to_dict() if self.stats else None,
        }


@dataclass(frozen=True)
class ErrorEvent:
    project_id: str
    message: str

    type = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "project_id": self.project_id, "message": self.message}


TrackerEvent = Union[ProgressEvent, CompleteEvent, ErrorEvent]


def is_terminal_event(event: TrackerEvent) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))


class Subscription:
    def __init__(self, project_id: Optional[str] = None):
        self.project_id = project_id
        self.queue: asyncio.Queue = asyncio.Queue()

    def matches(self, event: TrackerEvent) -> bool:
        return self.project_id is None or event.project_id == self.project_id

    async def get(self) -> TrackerEvent:
        return await self.queue.get()

    def __aiter__(self) -> AsyncIterator[TrackerEvent]:
        return self

    async def __anext__(self) -> TrackerEvent:
        return await self.queue.get()


class EventBus:
    """In-process fan-out. publish() never blocks and never raises on a failing sink."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._sinks: List[Callable[[TrackerEvent], None]] = []

    def add_sink(self, sink: Callable[[TrackerEvent], None]) -> None:
        self._sinks.append(sink)

    def publish(self, event: TrackerEvent) -> None:
        for sub in list(self._subscriptions):
            if sub.matches(event):
                sub.queue.put_nowait(event)
        for sink in self._sinks:
            try:
                sink(event)
            except Exception as e:
                logger.warning("[EventBus] sink %r failed for %s/%s: %s", sink, event.type, event.project_id, e)

    @asynccontextmanager
    async def subscribe(self, project_id: Optional[str] = None) -> AsyncIterator[Subscription]:
        sub = Subscription(project_id)
        self._subscriptions.append(sub)
        try:
            yield sub
        finally:
            self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


def _events_stream(project_id: str) -> str:
    return f"{STREAM_EVENTS_PREFIX}{project_id}"


class RedisEventSink:
    """EventBus sink: XADD each event to indexing:events:<project_id>."""

    def __init__(self, redis_url: Optional[str] = None, client=None, maxlen: int = 1000):
        self._url = redis_url
        self._client = client
        self._maxlen = maxlen

    def _ensure_client(self):
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def __call__(self, event: TrackerEvent) -> None:
        self._ensure_client().xadd(
            _events_stream(event.project_id),
            {"type": event.type, "data": json.dumps(event.to_dict(), ensure_ascii=False)},
            maxlen=self._maxlen,
        )

    def read_events(self, project_id: str, after_id: str = "-", count: int = 100) -> List[Dict[str, Any]]:
        """Replay events (after_id='-' from the start). Returns [{id, type, data}]."""
        entries = self._ensure_client().xrange(_events_stream(project_id), min=after_id, max="+", count=count)
        out = []
        for eid, raw in entries:
            if after_id != "-" and eid == after_id:
                continue
            try:
                data = json.loads(raw.get("data", "{}"))
            except ValueError:
                data = raw.get("data")
            out.append({"id": eid, "type": raw.get("type", ""), "data": data})
        return out
