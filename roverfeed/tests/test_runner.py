"""Background runner tests"""

import asyncio
from datetime import datetime, timezone

import pytest

from roverfeed.core.errors import RunInProgressError
from roverfeed.models.cursors import STATUS_FAILED, STATUS_SUCCESS
from roverfeed.services.runner import BackgroundRunner, next_run_time
from roverfeed.services.scheduler import RunOutcome


class FakeScheduler:
    """Stands in for IncrementalScheduler; behaviour is chosen per source."""

    calls = []
    behaviour = {}

    def __init__(self, db):
        self.db = db

    async def run_incremental(self, source_id, lookback):
        FakeScheduler.calls.append((source_id, lookback))
        action = FakeScheduler.behaviour.get(source_id)
        if isinstance(action, Exception):
            raise action
        if callable(action):
            await action()
        return RunOutcome(source=source_id, status=STATUS_SUCCESS, records_added=5)


@pytest.fixture(autouse=True)
def _reset_fake():
    FakeScheduler.calls = []
    FakeScheduler.behaviour = {}


async def no_sleep(_seconds):
    return None


def make_runner(session_factory, sources=("curiosity", "perseverance"), **kwargs):
    return BackgroundRunner(
        session_factory=session_factory,
        sources=list(sources),
        lookback=7,
        scheduler_factory=FakeScheduler,
        source_delay=0,
        sleep=no_sleep,
        **kwargs,
    )


class TestRunOnce:
    """One pass over the active sources"""

    @pytest.mark.asyncio
    async def test_runs_every_source_in_order(self, session_factory):
        results = await make_runner(session_factory).run_once()

        assert FakeScheduler.calls == [("curiosity", 7), ("perseverance", 7)]
        assert all(r.status == STATUS_SUCCESS for r in results.values())

    @pytest.mark.asyncio
    async def test_continues_after_a_failing_source(self, session_factory):
        FakeScheduler.behaviour["curiosity"] = RuntimeError("database exploded")

        results = await make_runner(session_factory).run_once()

        assert [c[0] for c in FakeScheduler.calls] == ["curiosity", "perseverance"]
        assert results["curiosity"].status == STATUS_FAILED
        assert "database exploded" in results["curiosity"].error_message
        assert results["perseverance"].status == STATUS_SUCCESS

    @pytest.mark.asyncio
    async def test_run_in_progress_is_reported_as_failed(self, session_factory):
        FakeScheduler.behaviour["perseverance"] = RunInProgressError("busy")

        results = await make_runner(session_factory).run_once()

        assert results["perseverance"].status == STATUS_FAILED
        assert results["curiosity"].status == STATUS_SUCCESS

    @pytest.mark.asyncio
    async def test_overlapping_pass_is_skipped(self, session_factory):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def slow():
            entered.set()
            await release.wait()

        FakeScheduler.behaviour["curiosity"] = slow
        runner = make_runner(session_factory, sources=("curiosity",))

        first = asyncio.create_task(runner.run_once())
        await entered.wait()

        assert await runner.run_once() is None  # skipped, not queued

        release.set()
        results = await first
        assert results["curiosity"].status == STATUS_SUCCESS
        assert len(FakeScheduler.calls) == 1

    @pytest.mark.asyncio
    async def test_delay_between_sources(self, session_factory):
        delays = []

        async def sleep(seconds):
            delays.append(seconds)

        runner = BackgroundRunner(
            session_factory=session_factory,
            sources=["curiosity", "perseverance"],
            scheduler_factory=FakeScheduler,
            source_delay=2.0,
            sleep=sleep,
        )
        await runner.run_once()
        assert delays == [2.0]


class TestLoop:
    """Start, stop and wake-up schedule"""

    def test_next_run_later_today(self):
        now = datetime(2026, 3, 1, 0, 30, tzinfo=timezone.utc)
        assert next_run_time(now, run_at_hour=2, interval_hours=24) == datetime(2026, 3, 1, 2, 0, tzinfo=timezone.utc)

    def test_next_run_tomorrow_when_passed(self):
        now = datetime(2026, 3, 1, 2, 0, tzinfo=timezone.utc)
        assert next_run_time(now, run_at_hour=2, interval_hours=24) == datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc)

    def test_next_run_with_shorter_interval(self):
        now = datetime(2026, 3, 1, 9, 15, tzinfo=timezone.utc)
        assert next_run_time(now, run_at_hour=2, interval_hours=6) == datetime(2026, 3, 1, 14, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_loop_runs_a_pass_after_waking_and_stops_cleanly(self, session_factory):
        waits = []
        passes_done = asyncio.Event()

        async def sleep(seconds):
            waits.append(seconds)
            if len(waits) > 1:
                passes_done.set()
                await asyncio.Event().wait()

        runner = BackgroundRunner(
            session_factory=session_factory,
            sources=["perseverance"],
            scheduler_factory=FakeScheduler,
            source_delay=0,
            sleep=sleep,
            clock=lambda: datetime(2026, 3, 1, 1, 0, tzinfo=timezone.utc),
        )
        runner.start()
        await asyncio.wait_for(passes_done.wait(), timeout=5)

        assert waits[0] == 3600.0
        assert FakeScheduler.calls == [("perseverance", runner.lookback)]

        await runner.stop()
        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_errors(self, session_factory):
        waits = []
        recovered = asyncio.Event()
        clock_calls = []

        def clock():
            clock_calls.append(1)
            if len(clock_calls) == 1:
                raise RuntimeError("clock broke")
            return datetime(2026, 3, 1, 1, 0, tzinfo=timezone.utc)

        async def sleep(seconds):
            waits.append(seconds)
            if len(waits) > 1:
                recovered.set()
                await asyncio.Event().wait()

        runner = BackgroundRunner(
            session_factory=session_factory,
            sources=[],
            scheduler_factory=FakeScheduler,
            error_backoff=300,
            sleep=sleep,
            clock=clock,
        )
        runner.start()
        await asyncio.wait_for(recovered.wait(), timeout=5)

        assert waits == [300, 3600.0]
        await runner.stop()
