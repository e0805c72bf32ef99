"""
Status poller: GET status on a fixed interval until the job reaches a terminal
status or the overall budget runs out. A failed poll is logged and retried on
the next tick; it never ends the loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import aiohttp

from src.indexing.errors import BackendRequestError, StatusParseError
from src.indexing.state import TIMED_OUT_MESSAGE, IndexingStats
from src.indexing.status import Completed, Errored, Indexing, NotFound
from src.log import get_logger
from src.observability import metrics

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 1.5
DEFAULT_MAX_POLL_DURATION_SECONDS = 15 * 60
_TRANSIENT_ERRORS = (BackendRequestError, StatusParseError, aiohttp.ClientError, asyncio.TimeoutError)


@dataclass(frozen=True)
class PollOutcome:
    completed: bool
    stats: Optional[IndexingStats] = None
    message: Optional[str] = None
    timed_out: bool = False

    @classmethod
    def success(cls, stats: Optional[IndexingStats]) -> PollOutcome:
        return cls(completed=True, stats=stats)

    @classmethod
    def failed(cls, message: str) -> PollOutcome:
        return cls(completed=False, message=message)

    @classmethod
    def expired(cls) -> PollOutcome:
        return cls(completed=False, message=TIMED_OUT_MESSAGE, timed_out=True)


ProgressCallback = Callable[[Indexing], Awaitable[None]]


class StatusPoller:
    def __init__(
        self,
        client,
        project_id: str,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_duration_seconds: float = DEFAULT_MAX_POLL_DURATION_SECONDS,
    ):
        self._client = client
        self.project_id = project_id
        self.interval_seconds = interval_seconds
        self.max_duration_seconds = max_duration_seconds
        self.poll_count = 0
        self._last_percent: Optional[int] = None
        self._last_step: Optional[str] = None

    async def _poll_once(self, budget: float):
        return await asyncio.wait_for(self._client.get_status(self.project_id), timeout=budget)

    async def run(self, on_progress: ProgressCallback) -> PollOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration_seconds

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            self.poll_count += 1
            try:
                snapshot = await self._poll_once(remaining)
            except _TRANSIENT_ERRORS as e:
                metrics.indexing_polls_total.labels(result="failed").inc()
                logger.warning(
                    "[poller] poll #%d failed project_id=%s: %s",
                    self.poll_count, self.project_id, str(e) or type(e).__name__,
                )
            else:
                outcome = await self._handle(snapshot, on_progress)
                if outcome is not None:
                    return outcome

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.interval_seconds, remaining))

        logger.warning(
            "[poller] gave up on project_id=%s after %.1fs (%d polls)",
            self.project_id, self.max_duration_seconds, self.poll_count,
        )
        return PollOutcome.expired()

    async def _handle(self, snapshot, on_progress: ProgressCallback) -> Optional[PollOutcome]:
        if isinstance(snapshot, Completed):
            metrics.indexing_polls_total.labels(result="completed").inc()
            logger.info("[poller] project_id=%s completed after %d polls", self.project_id, self.poll_count)
            return PollOutcome.success(snapshot.stats)

        if isinstance(snapshot, Errored):
            metrics.indexing_polls_total.labels(result="error").inc()
            logger.info("[poller] project_id=%s reported error: %s", self.project_id, snapshot.message)
            return PollOutcome.failed(snapshot.message)

        if isinstance(snapshot, NotFound):
            # job not registered on the server yet
            metrics.indexing_polls_total.labels(result="not_found").inc()
            logger.debug("[poller] project_id=%s not_found, continuing", self.project_id)
            return None

        metrics.indexing_polls_total.labels(result="indexing").inc()
        if snapshot.percent >= 100:
            logger.info("[poller] project_id=%s reached 100%%, treating as completed", self.project_id)
            return PollOutcome.success(snapshot.stats)
        if snapshot.percent == self._last_percent and snapshot.step == self._last_step:
            return None
        self._last_percent = snapshot.percent
        self._last_step = snapshot.step
        logger.info("[poller] project_id=%s %d%% %s", self.project_id, snapshot.percent, snapshot.step)
        await on_progress(snapshot)
        return None
