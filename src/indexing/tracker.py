"""
Process-wide indexing tracker: owns one TrackerCoordinator per running job.

Jobs run as background asyncio tasks, so the request (or CLI command) that
started them can go away without cancelling the job. At most one
coordinator per project_id runs at a time.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import aiohttp

from config.settings import TrackerSettings, settings
from src.indexing.coordinator import TrackerCoordinator
from src.indexing.errors import BackendRequestError, TrackerBusyError
from src.indexing.events import EventBus
from src.indexing.project_id import normalize_project_id
from src.indexing.state import IndexingState
from src.indexing.state_store import IndexingStateStore, expire_if_stale, visible_states
from src.log import get_logger

logger = get_logger(__name__)


class IndexingTracker:
    def __init__(
        self,
        client,
        store: IndexingStateStore,
        bus: Optional[EventBus] = None,
        config: Optional[TrackerSettings] = None,
    ):
        self._client = client
        self._store = store
        self.bus = bus or EventBus()
        self._config = config or settings.tracker
        self._coordinators: Dict[str, TrackerCoordinator] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_tracking(self, project_id: str) -> bool:
        if project_id not in self._coordinators:
            return False
        task = self._tasks.get(project_id)
        # no task yet means the coordinator is still opening
        return task is None or not task.done()

    @property
    def active_project_ids(self) -> List[str]:
        return [pid for pid in self._coordinators if self.is_tracking(pid)]

    async def start(self, project_name: str, project_id: Optional[str] = None) -> IndexingState:
        """Begin tracking a new job and return its initial state; the job itself runs in the background."""
        project_name = (project_name or "").strip()
        if not project_name:
            raise ValueError("project_name is required")
        project_id = (project_id or "").strip() or normalize_project_id(project_name)
        if self.is_tracking(project_id):
            raise TrackerBusyError(project_id)

        coordinator = TrackerCoordinator(
            project_id,
            project_name,
            client=self._client,
            store=self._store,
            bus=self.bus,
            config=self._config,
        )
        self._coordinators[project_id] = coordinator
        try:
            state = await coordinator.open()
        except Exception:
            self._coordinators.pop(project_id, None)
            raise
        task = asyncio.create_task(coordinator.run(), name=f"indexing:{project_id}")
        self._tasks[project_id] = task
        task.add_done_callback(lambda t, pid=project_id: self._on_done(pid, t))
        return state

    def _on_done(self, project_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(project_id) is task:
            self._tasks.pop(project_id, None)
            self._coordinators.pop(project_id, None)
        if task.cancelled():
            logger.info("[tracker] job task for project_id=%s was cancelled", project_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[tracker] job for project_id=%s crashed: %r", project_id, exc)

    async def wait(self, project_id: str) -> Optional[IndexingState]:
        """Wait for a running job to finish; returns the stored state either way."""
        task = self._tasks.get(project_id)
        if task is not None:
            await asyncio.shield(task)
        return await asyncio.to_thread(self._store.load, project_id)

    def _expire_orphan(self, state: Optional[IndexingState]) -> Optional[IndexingState]:
        # a row no coordinator owns will never be updated again; time it out once it goes quiet
        if state is None or self.is_tracking(state.project_id):
            return state
        return expire_if_stale(self._store, state, stale_after_seconds=self._config.stale_after_seconds)

    def get_state(self, project_id: str) -> Optional[IndexingState]:
        return self._expire_orphan(self._store.load(project_id))

    def list_states(self) -> List[IndexingState]:
        return visible_states(
            [self._expire_orphan(s) for s in self._store.load_all()],
            completed_visible_seconds=self._config.completed_visible_seconds,
        )

    async def cancel(self, project_id: str) -> bool:
        """Ask the backend to stop (best effort) and end local tracking with a cancelled error."""
        coordinator = self._coordinators.get(project_id)
        task = self._tasks.get(project_id)
        if coordinator is None or task is None or task.done():
            return False
        try:
            await self._client.cancel_indexing(coordinator.backend_project_id)
        except (BackendRequestError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("[tracker] backend cancel failed project_id=%s: %s", project_id, e)
        cancelled = coordinator.cancel()
        if cancelled:
            await asyncio.gather(asyncio.shield(task), return_exceptions=True)
        return cancelled

    def dismiss(self, project_id: str) -> bool:
        """Forget a finished job's row; running jobs must be cancelled first."""
        if self.is_tracking(project_id):
            raise TrackerBusyError(project_id)
        return self._store.clear(project_id)

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("[tracker] stopped %d running job(s) on shutdown", len(tasks))
