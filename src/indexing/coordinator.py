"""
Tracker coordinator: one instance per indexing job.

    idle -> launching -> racing (launch task || poll task) -> terminal

The blocking start call and the status poller run as two tasks; whichever
produces a terminal signal first decides the outcome. _claim_terminal() is a
one-shot guard: exactly one complete/error event is emitted per job and
anything arriving afterwards is dropped.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import List, Optional

import aiohttp

from config.settings import TrackerSettings, settings
from src.indexing.errors import (
    LAUNCH_FALLBACK_ERROR,
    BackendRequestError,
    LaunchError,
    StateStoreError,
    StatusParseError,
)
from src.indexing.events import CompleteEvent, ErrorEvent, EventBus, ProgressEvent, TrackerEvent
from src.indexing.launcher import JobLauncher
from src.indexing.poller import PollOutcome, StatusPoller
from src.indexing.project_id import normalize_project_id
from src.indexing.state import STARTING_STEP, IndexingState, IndexingStats
from src.indexing.state_store import IndexingStateStore
from src.indexing.status import Completed, Indexing
from src.log import get_logger
from src.observability import metrics, tracer

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Indexing cancelled"


class CoordinatorPhase(str, Enum):
    idle = "idle"
    launching = "launching"
    racing = "racing"
    terminal = "terminal"


def _launch_error_message(exc: BaseException) -> str:
    if isinstance(exc, LaunchError):
        return exc.message or LAUNCH_FALLBACK_ERROR
    return str(exc) or LAUNCH_FALLBACK_ERROR


class TrackerCoordinator:
    def __init__(
        self,
        project_id: str,
        project_name: str,
        *,
        client,
        store: IndexingStateStore,
        bus: Optional[EventBus] = None,
        config: Optional[TrackerSettings] = None,
        backend_project_id: Optional[str] = None,
    ):
        self.project_id = project_id
        self.project_name = project_name
        # the backend keys its progress by the normalized name, which may differ from our key
        self.backend_project_id = backend_project_id or normalize_project_id(project_name)
        self._client = client
        self._store = store
        self._bus = bus or EventBus()
        self._config = config or settings.tracker
        self._launcher = JobLauncher(client)
        self._poller = StatusPoller(
            client,
            self.backend_project_id,
            interval_seconds=self._config.poll_interval_seconds,
            max_duration_seconds=self._config.max_poll_duration_seconds,
        )
        self.phase = CoordinatorPhase.idle
        self.state: Optional[IndexingState] = None
        self._terminal = False
        self._cancel_requested = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        # one store write at a time, so a slow progress write cannot land after the terminal one
        self._store_lock = asyncio.Lock()
        self._started_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self._terminal

    @property
    def poll_count(self) -> int:
        return self._poller.poll_count

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def open(self) -> IndexingState:
        """Write the initial indexing row and announce 0%."""
        if self.phase != CoordinatorPhase.idle:
            raise RuntimeError(f"coordinator for {self.project_id!r} already opened ({self.phase.value})")
        self.state = IndexingState.initial(self.project_id, self.project_name)
        await asyncio.to_thread(self._store.save, self.state)
        self.phase = CoordinatorPhase.launching
        self._started_at = time.monotonic()
        metrics.indexing_jobs_started_total.inc()
        metrics.indexing_active_jobs.inc()
        logger.info(
            "[coordinator] opened project_id=%s project_name=%s backend_id=%s",
            self.project_id, self.project_name, self.backend_project_id,
        )
        self._emit(ProgressEvent(self.project_id, 0, STARTING_STEP))
        return self.state

    async def run(self) -> IndexingState:
        """Race the launch call against the poller; returns the terminal state."""
        if self.phase == CoordinatorPhase.idle:
            await self.open()
        if self.phase != CoordinatorPhase.launching:
            raise RuntimeError(f"coordinator for {self.project_id!r} cannot run from {self.phase.value}")
        self.phase = CoordinatorPhase.racing

        with tracer.start_as_current_span(
            "indexing.job",
            attributes={"indexing.project_id": self.project_id, "indexing.backend_id": self.backend_project_id},
        ) as span:
            launch_task = asyncio.create_task(self._launcher.launch(self.project_name))
            poll_task = asyncio.create_task(self._poll_after_grace())
            cancel_task = asyncio.create_task(self._cancel_requested.wait())
            self._tasks = [launch_task, poll_task, cancel_task]
            try:
                await self._race(launch_task, poll_task, cancel_task)
            finally:
                await self.dispose()
                if not self._terminal:
                    # interrupted (shutdown); the row stays indexing
                    metrics.indexing_active_jobs.dec()
            span.set_attribute("indexing.status", self.state.status.value)
            span.set_attribute("indexing.polls", self._poller.poll_count)
        return self.state

    def cancel(self) -> bool:
        """Request cancellation; True if the job was still running."""
        if self._terminal or self.phase == CoordinatorPhase.idle:
            return False
        self._cancel_requested.set()
        return True

    async def dispose(self) -> None:
        """Cancel whatever task is still in flight and wait for it to unwind."""
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []

    # ── race ─────────────────────────────────────────────────────────────────

    async def _poll_after_grace(self) -> PollOutcome:
        # give the backend a moment to register the job before the first poll
        if self._config.start_grace_seconds > 0:
            await asyncio.sleep(self._config.start_grace_seconds)
        return await self._poller.run(self._on_progress)

    async def _race(self, launch_task: asyncio.Task, poll_task: asyncio.Task, cancel_task: asyncio.Task) -> None:
        pending = {launch_task, poll_task, cancel_task}
        while True:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

            if cancel_task in done:
                logger.info("[coordinator] project_id=%s cancelled", self.project_id)
                await self._finalize_error(CANCELLED_MESSAGE)
                return

            if launch_task in done:
                exc = launch_task.exception()
                if exc is not None:
                    # preempts the poller, and wins over a poller failure in the same tick
                    await self._finalize_error(_launch_error_message(exc))
                    return
                if poll_task in done and not poll_task.exception() and poll_task.result().completed:
                    await self._finalize_completed(poll_task.result().stats)
                    return
                await self._confirm_and_complete(poll_task)
                return

            if poll_task in done:
                exc = poll_task.exception()
                if exc is not None:
                    logger.error("[coordinator] poller crashed project_id=%s: %r", self.project_id, exc)
                    await self._finalize_error(f"Indexing status polling failed: {exc}")
                    return
                outcome: PollOutcome = poll_task.result()
                if outcome.completed:
                    await self._finalize_completed(outcome.stats)
                else:
                    await self._finalize_error(outcome.message or "Indexing failed")
                return

    async def _confirm_and_complete(self, poll_task: asyncio.Task) -> None:
        """The start call returned first: one confirming poll, then completed regardless of its answer."""
        if not poll_task.done():
            poll_task.cancel()
            await asyncio.gather(poll_task, return_exceptions=True)
        stats: Optional[IndexingStats] = None
        try:
            snapshot = await self._client.get_status(self.backend_project_id)
        except (BackendRequestError, StatusParseError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("[coordinator] confirming status failed project_id=%s: %s", self.project_id, e)
        else:
            logger.info("[coordinator] confirming status project_id=%s: %s", self.project_id, type(snapshot).__name__)
            if isinstance(snapshot, (Completed, Indexing)):
                stats = snapshot.stats
        await self._finalize_completed(stats)

    async def _on_progress(self, snapshot: Indexing) -> None:
        if self._terminal:
            return
        self.state = self.state.with_progress(snapshot.percent, snapshot.step, snapshot.stats)
        if not await self._save_logged(self.state, progress=True):
            return
        self._emit(ProgressEvent(self.project_id, snapshot.percent, snapshot.step, snapshot.stats))

    # ── terminal ─────────────────────────────────────────────────────────────

    async def _finalize_completed(self, stats: Optional[IndexingStats]) -> None:
        if not self._claim_terminal("complete"):
            return
        self.state = self.state.complete(stats)
        await self._finish(CompleteEvent(self.project_id, self.state.stats), outcome="completed")

    async def _finalize_error(self, message: str) -> None:
        if not self._claim_terminal(f"error({message})"):
            return
        self.state = self.state.fail(message)
        await self._finish(ErrorEvent(self.project_id, message), outcome="error")

    def _claim_terminal(self, label: str) -> bool:
        if self._terminal:
            logger.debug("[coordinator] project_id=%s ignoring late %s", self.project_id, label)
            return False
        self._terminal = True
        self.phase = CoordinatorPhase.terminal
        return True

    async def _finish(self, event: TrackerEvent, outcome: str) -> None:
        await self._save_logged(self.state)
        metrics.indexing_jobs_finished_total.labels(outcome=outcome).inc()
        metrics.indexing_active_jobs.dec()
        if self._started_at is not None:
            metrics.indexing_job_duration_seconds.observe(time.monotonic() - self._started_at)
        logger.info(
            "[coordinator] project_id=%s finished %s after %d polls%s",
            self.project_id, outcome, self._poller.poll_count,
            f": {self.state.error}" if self.state.error else "",
        )
        self._emit(event)

    async def _save_logged(self, state: IndexingState, progress: bool = False) -> bool:
        """Persist state; False when a progress write was skipped because the job already ended."""
        async with self._store_lock:
            if progress and self._terminal:
                logger.debug("[coordinator] project_id=%s dropping progress write after terminal", self.project_id)
                return False
            save = asyncio.ensure_future(asyncio.to_thread(self._store.save, state))
            try:
                await asyncio.shield(save)
            except StateStoreError as e:
                logger.error("[coordinator] could not persist state project_id=%s: %s", self.project_id, e)
            except asyncio.CancelledError:
                # the worker thread keeps running; hold the lock until its write lands
                await asyncio.wait({save})
                if save.exception() is not None:
                    logger.error(
                        "[coordinator] could not persist state project_id=%s: %s", self.project_id, save.exception(),
                    )
                raise
        return True

    def _emit(self, event: TrackerEvent) -> None:
        self._bus.publish(event)
