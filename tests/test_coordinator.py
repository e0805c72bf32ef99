"""
TrackerCoordinator: launcher/poller race, one terminal event per job,
final store row.
"""

import asyncio
import time

from src.indexing.coordinator import CoordinatorPhase, TrackerCoordinator
from src.indexing.errors import BackendRequestError, LaunchError
from src.indexing.state import STARTING_STEP, IndexingStats, IndexingStatus
from src.indexing.status import Completed, Errored, Indexing, NotFound

from conftest import FakeBackend


def _coordinator(backend, store, bus, config, name="Acme Tower"):
    return TrackerCoordinator("acme_tower", name, client=backend, store=store, bus=bus, config=config)


def _run(coordinator, timeout=5.0):
    return asyncio.run(asyncio.wait_for(coordinator.run(), timeout=timeout))


def _after_open(recorder):
    """Events following the 0% announcement every job opens with."""
    first = recorder.events[0]
    assert (first.type, first.percent, first.step) == ("progress", 0, STARTING_STEP)
    return [e.type for e in recorder.events[1:]]


def test_progress_scenario_with_duplicate_poll(sql_store, bus, recorder, fast_config):
    stats = IndexingStats(thread_count=12, message_count=340, pdf_count=4)
    backend = FakeBackend([
        Indexing(10, "Parsing emails"),
        Indexing(10, "Parsing emails"),
        Indexing(55, "Indexing PDFs"),
        Completed(stats),
    ])
    state = _run(_coordinator(backend, sql_store, bus, fast_config))

    assert _after_open(recorder) == ["progress", "progress", "complete"]
    assert [e.percent for e in recorder.of_type("progress")] == [0, 10, 55]
    assert recorder.of_type("complete")[0].stats == stats

    row = sql_store.load("acme_tower")
    assert row.status == IndexingStatus.completed
    assert row.percent == 100
    assert row.stats == stats
    assert row.completed_at is not None
    assert state == row


def test_quota_exceeded_while_polls_say_not_found(sql_store, bus, recorder, fast_config):
    backend = FakeBackend([NotFound()], launch_after=0.2, launch_error=LaunchError("quota exceeded", 429))
    _run(_coordinator(backend, sql_store, bus, fast_config))

    assert _after_open(recorder) == ["error"]
    assert recorder.events[-1].message == "quota exceeded"
    row = sql_store.load("acme_tower")
    assert row.status == IndexingStatus.error
    assert row.error == "quota exceeded"


def test_launcher_error_first_beats_later_poller_success(sql_store, bus, recorder, fast_config):
    backend = FakeBackend(
        [Completed(IndexingStats(1, 1, 1))],
        status_delay=0.1,
        launch_after=0.05,
        launch_error=LaunchError("quota exceeded"),
    )
    coordinator = _coordinator(backend, sql_store, bus, fast_config)
    _run(coordinator)

    assert _after_open(recorder) == ["error"]
    assert recorder.events[-1].message == "quota exceeded"
    assert sql_store.load("acme_tower").status == IndexingStatus.error
    assert coordinator.phase == CoordinatorPhase.terminal


def test_poller_success_first_beats_later_launcher_error(sql_store, bus, recorder, fast_config):
    stats = IndexingStats(2, 3, 4)
    backend = FakeBackend(
        [Completed(stats)],
        status_delay=0.05,
        launch_after=0.1,
        launch_error=LaunchError("quota exceeded"),
    )
    _run(_coordinator(backend, sql_store, bus, fast_config))

    assert _after_open(recorder) == ["complete"]
    assert recorder.events[-1].stats == stats
    row = sql_store.load("acme_tower")
    assert row.status == IndexingStatus.completed
    assert row.error is None


def test_launcher_success_confirms_with_one_poll(sql_store, bus, recorder, fast_config):
    stats = IndexingStats(5, 50, 2)
    backend = FakeBackend([NotFound(), Completed(stats)], launch_after=0.05)
    fast_config.poll_interval_seconds = 1.0
    _run(_coordinator(backend, sql_store, bus, fast_config))

    assert _after_open(recorder) == ["complete"]
    assert recorder.events[-1].stats == stats
    # one regular poll, then the confirming one
    assert len(backend.status_calls) == 2


def test_launcher_success_completes_even_if_confirmation_fails(sql_store, bus, recorder, fast_config):
    backend = FakeBackend(
        [Indexing(40, "Parsing"), BackendRequestError("Status check failed: 503", 503)],
        launch_after=0.05,
    )
    fast_config.poll_interval_seconds = 1.0
    _run(_coordinator(backend, sql_store, bus, fast_config))

    assert _after_open(recorder) == ["progress", "complete"]
    row = sql_store.load("acme_tower")
    assert row.status == IndexingStatus.completed
    assert row.percent == 100


def test_server_reported_error(sql_store, bus, recorder, fast_config):
    backend = FakeBackend([Indexing(20, "Parsing"), Errored("mailbox locked")])
    _run(_coordinator(backend, sql_store, bus, fast_config))

    assert _after_open(recorder) == ["progress", "error"]
    assert recorder.events[-1].message == "mailbox locked"
    row = sql_store.load("acme_tower")
    assert row.status == IndexingStatus.error
    assert row.percent == 20


def test_all_failing_polls_end_in_timeout(sql_store, bus, recorder, fast_config):
    backend = FakeBackend([BackendRequestError("Status check failed: 500", 500)])
    fast_config.max_poll_duration_seconds = 0.2
    _run(_coordinator(backend, sql_store, bus, fast_config))

    assert _after_open(recorder) == ["error"]
    assert recorder.events[-1].message == "Indexing timed out"
    assert sql_store.load("acme_tower").error == "Indexing timed out"


def test_percent_passes_through_verbatim(sql_store, bus, recorder, fast_config):
    backend = FakeBackend([
        Indexing(30, "a"), Indexing(25, "b"), Indexing(99, "c"), Completed(),
    ])
    _run(_coordinator(backend, sql_store, bus, fast_config))
    assert [e.percent for e in recorder.of_type("progress")] == [0, 30, 25, 99]
    assert sql_store.load("acme_tower").percent == 100


def test_polls_use_normalized_name(sql_store, bus, fast_config):
    backend = FakeBackend([Completed()])
    coordinator = TrackerCoordinator(
        "custom-key", "Smith Residence - Phase 2",
        client=backend, store=sql_store, bus=bus, config=fast_config,
    )
    _run(coordinator)
    assert backend.status_calls == ["smith_residence_phase_2"]
    assert sql_store.load("custom-key").status == IndexingStatus.completed


def test_cancel_ends_job_with_cancelled_error(sql_store, bus, recorder, fast_config):
    backend = FakeBackend([Indexing(10, "Parsing")])

    async def scenario():
        coordinator = _coordinator(backend, sql_store, bus, fast_config)
        await coordinator.open()
        task = asyncio.create_task(coordinator.run())
        await asyncio.sleep(0.05)
        assert coordinator.cancel() is True
        state = await asyncio.wait_for(task, timeout=2.0)
        assert coordinator.cancel() is False
        return state

    state = asyncio.run(scenario())
    assert state.status == IndexingStatus.error
    assert state.error == "Indexing cancelled"
    assert _after_open(recorder) == ["progress", "error"]


def test_initial_row_written_on_open(sql_store, bus, recorder, fast_config):
    backend = FakeBackend()

    async def scenario():
        coordinator = _coordinator(backend, sql_store, bus, fast_config)
        state = await coordinator.open()
        await coordinator.dispose()
        return state

    state = asyncio.run(scenario())
    row = sql_store.load("acme_tower")
    assert row == state
    assert row.status == IndexingStatus.indexing
    assert row.percent == 0
    assert _after_open(recorder) == []


def test_every_run_has_exactly_one_terminal_event(sql_store, fast_config):
    from src.indexing.events import EventBus, is_terminal_event

    scripts = [
        dict(statuses=[Completed()], launch_after=0.0),
        dict(statuses=[Completed()], launch_after=0.0, launch_error=LaunchError("nope")),
        dict(statuses=[Errored("bad")], launch_after=0.0),
        dict(statuses=[Errored("bad")], launch_after=0.0, launch_error=LaunchError("nope")),
    ]
    for script in scripts:
        events = []
        bus = EventBus()
        bus.add_sink(events.append)
        _run(_coordinator(FakeBackend(**script), sql_store, bus, fast_config))
        assert sum(1 for e in events if is_terminal_event(e)) == 1, script


class SlowProgressStore:
    """Wraps a store so that mid-job progress writes take a while to land."""

    def __init__(self, inner, delay=0.3):
        self._inner = inner
        self.delay = delay

    def save(self, state):
        if state.status == IndexingStatus.indexing and state.percent > 0:
            time.sleep(self.delay)
        self._inner.save(state)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def test_slow_progress_write_cannot_overwrite_launch_error(sql_store, bus, recorder, fast_config):
    backend = FakeBackend(
        [Indexing(40, "Parsing")],
        launch_after=0.1,
        launch_error=LaunchError("quota exceeded"),
    )
    fast_config.poll_interval_seconds = 1.0
    coordinator = _coordinator(backend, SlowProgressStore(sql_store), bus, fast_config)
    _run(coordinator)

    row = sql_store.load("acme_tower")
    assert row.status == IndexingStatus.error
    assert row.error == "quota exceeded"
    assert row.percent == 40
    assert recorder.types[-1] == "error"
    assert recorder.types.count("error") == 1


def test_cancelled_poll_waits_for_its_write_before_completion(sql_store, bus, recorder, fast_config):
    stats = IndexingStats(7, 70, 1)
    backend = FakeBackend([Indexing(40, "Parsing"), Completed(stats)], launch_after=0.1)
    fast_config.poll_interval_seconds = 1.0
    _run(_coordinator(backend, SlowProgressStore(sql_store), bus, fast_config))

    row = sql_store.load("acme_tower")
    assert row.status == IndexingStatus.completed
    assert row.stats == stats
    assert recorder.types[-1] == "complete"


def test_launch_error_without_message_uses_fallback(sql_store, bus, recorder, fast_config):
    backend = FakeBackend([NotFound()], launch_after=0.0, launch_error=LaunchError(""))
    _run(_coordinator(backend, sql_store, bus, fast_config))

    assert recorder.events[-1].message == "Indexing failed to start"
    assert sql_store.load("acme_tower").error == "Indexing failed to start"
