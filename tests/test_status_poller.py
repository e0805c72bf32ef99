"""StatusPoller loop: dedupe, not_found, transient failures, overall budget."""

import asyncio

import aiohttp

from src.indexing.errors import BackendRequestError, StatusParseError
from src.indexing.poller import StatusPoller
from src.indexing.state import IndexingStats
from src.indexing.status import Completed, Errored, Indexing, NotFound

from conftest import FakeBackend


def _run(backend, interval=0.01, max_duration=2.0):
    seen = []

    async def on_progress(snapshot):
        seen.append((snapshot.percent, snapshot.step))

    poller = StatusPoller(backend, "acme", interval_seconds=interval, max_duration_seconds=max_duration)
    outcome = asyncio.run(poller.run(on_progress))
    return outcome, seen, poller


def test_progress_then_completed_with_duplicates_suppressed():
    stats = IndexingStats(12, 340, 4)
    backend = FakeBackend([
        Indexing(10, "Parsing emails"),
        Indexing(10, "Parsing emails"),
        Indexing(55, "Indexing PDFs"),
        Completed(stats),
    ])
    outcome, seen, poller = _run(backend)
    assert outcome.completed is True
    assert outcome.stats == stats
    assert seen == [(10, "Parsing emails"), (55, "Indexing PDFs")]
    assert poller.poll_count == 4
    assert backend.status_calls == ["acme"] * 4


def test_same_percent_new_step_is_reported():
    backend = FakeBackend([Indexing(10, "Parsing emails"), Indexing(10, "Parsing PDFs"), Completed()])
    _, seen, _ = _run(backend)
    assert seen == [(10, "Parsing emails"), (10, "Parsing PDFs")]


def test_not_found_is_a_no_op():
    backend = FakeBackend([NotFound(), NotFound(), NotFound(), Completed()])
    outcome, seen, poller = _run(backend)
    assert outcome.completed is True
    assert seen == []
    assert poller.poll_count == 4


def test_server_error_ends_loop():
    backend = FakeBackend([Indexing(20, "Parsing"), Errored("mailbox locked")])
    outcome, seen, _ = _run(backend)
    assert outcome.completed is False
    assert outcome.message == "mailbox locked"
    assert outcome.timed_out is False
    assert seen == [(20, "Parsing")]


def test_hundred_percent_counts_as_completed():
    stats = IndexingStats(1, 1, 1)
    backend = FakeBackend([Indexing(100, "Finishing", stats=stats)])
    outcome, seen, _ = _run(backend)
    assert outcome.completed is True
    assert outcome.stats == stats
    assert seen == []


def test_transient_errors_are_retried():
    backend = FakeBackend([
        BackendRequestError("Status check failed: 502", status_code=502),
        StatusParseError("unknown indexing status 'weird'"),
        aiohttp.ClientConnectionError(),
        Indexing(30, "Parsing"),
        Completed(),
    ])
    outcome, seen, poller = _run(backend)
    assert outcome.completed is True
    assert seen == [(30, "Parsing")]
    assert poller.poll_count == 5


def test_all_failing_polls_time_out_at_budget():
    backend = FakeBackend([BackendRequestError("Status check failed: 500", status_code=500)])
    outcome, seen, poller = _run(backend, interval=0.02, max_duration=0.2)
    assert outcome.completed is False
    assert outcome.timed_out is True
    assert outcome.message == "Indexing timed out"
    assert seen == []
    assert poller.poll_count >= 2


def test_hanging_status_call_cannot_outlive_budget():
    backend = FakeBackend([Completed()], status_delay=30.0)

    async def scenario():
        poller = StatusPoller(backend, "acme", interval_seconds=0.01, max_duration_seconds=0.2)

        async def on_progress(_):
            pass

        return await asyncio.wait_for(poller.run(on_progress), timeout=5.0)

    outcome = asyncio.run(scenario())
    assert outcome.timed_out is True
