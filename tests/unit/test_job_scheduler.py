"""Unit tests for JobScheduler."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.config import Settings
from src.engine import build_engine, register_default_jobs
from src.services.job_scheduler import JobScheduler


@pytest.fixture
def scheduler(clock):
    return JobScheduler(clock)


class TestRegistration:
    def test_add_job(self, scheduler):
        scheduler.add_job("tick", "*/5 * * * *", AsyncMock())
        assert scheduler.job_names == ["tick"]

    def test_duplicate_name_rejected(self, scheduler):
        scheduler.add_job("tick", "*/5 * * * *", AsyncMock())
        with pytest.raises(ValueError):
            scheduler.add_job("tick", "0 8 * * *", AsyncMock())

    def test_invalid_cron_rejected(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.add_job("bad", "not a cron", AsyncMock())

    def test_next_fire_time(self, scheduler, clock):
        scheduler.add_job("morning", "0 8 * * *", AsyncMock())
        # Clock is Wednesday 10:00, so the next 08:00 is Thursday
        assert scheduler.next_fire_time("morning") == datetime(2025, 1, 16, 8, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_cancel(self, scheduler):
        scheduler.add_job("tick", "*/5 * * * *", AsyncMock())
        assert await scheduler.cancel("tick") is True
        assert await scheduler.cancel("tick") is False
        assert scheduler.job_names == []


class TestRunNow:
    @pytest.mark.asyncio
    async def test_returns_job_result(self, scheduler):
        func = AsyncMock(return_value="done")
        scheduler.add_job("tick", "*/5 * * * *", func)

        ran, result = await scheduler.run_now("tick")

        assert (ran, result) == (True, "done")
        func.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_job(self, scheduler):
        with pytest.raises(KeyError):
            await scheduler.run_now("missing")

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, scheduler):
        release = asyncio.Event()
        calls = 0

        async def slow_job():
            nonlocal calls
            calls += 1
            await release.wait()

        scheduler.add_job("slow", "*/5 * * * *", slow_job)
        first = asyncio.create_task(scheduler.run_now("slow"))
        await asyncio.sleep(0)

        ran, _ = await scheduler.run_now("slow")
        release.set()
        await first

        assert ran is False
        assert calls == 1

    @pytest.mark.asyncio
    async def test_errors_propagate_from_run_now(self, scheduler):
        scheduler.add_job("broken", "*/5 * * * *", AsyncMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            await scheduler.run_now("broken")


class TestLoop:
    @pytest.mark.asyncio
    async def test_loop_fires_and_survives_errors(self, clock):
        fired = asyncio.Event()
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("first run fails")
            fired.set()

        # Every second, so the loop fires quickly in real time
        scheduler = JobScheduler(lambda: datetime.now(timezone.utc))
        scheduler.add_job("flaky", "* * * * * *", flaky)
        scheduler.start()
        try:
            await asyncio.wait_for(fired.wait(), timeout=5)
        finally:
            await scheduler.stop()

        assert calls >= 2
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_stalled_clock_never_repeats_a_slot(self, scheduler):
        # The clock stays at 10:00 however long the loop sleeps
        delays = []
        parked = asyncio.Event()

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) > 3:
                parked.set()
                await asyncio.Event().wait()

        scheduler.add_job("hourly", "0 * * * *", AsyncMock())
        with patch("src.services.job_scheduler.asyncio.sleep", new=fake_sleep):
            scheduler.start()
            try:
                await asyncio.wait_for(parked.wait(), timeout=5)
                next_fire = scheduler.next_fire_time("hourly")
            finally:
                await scheduler.stop()

        assert delays == [3600, 7200, 10800, 14400]
        assert next_fire == datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_missed_slots_collapse_into_next(self):
        now = [datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)]
        delays = []
        parked = asyncio.Event()

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) == 1:
                # Host suspended well past several slots
                now[0] = datetime(2025, 1, 15, 13, 30, tzinfo=timezone.utc)
            else:
                parked.set()
                await asyncio.Event().wait()

        scheduler = JobScheduler(lambda: now[0])
        scheduler.add_job("hourly", "0 * * * *", AsyncMock())
        with patch("src.services.job_scheduler.asyncio.sleep", new=fake_sleep):
            scheduler.start()
            try:
                await asyncio.wait_for(parked.wait(), timeout=5)
                next_fire = scheduler.next_fire_time("hourly")
            finally:
                await scheduler.stop()

        assert delays == [3600, 1800]
        assert next_fire == datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler):
        scheduler.add_job("tick", "*/5 * * * *", AsyncMock())
        await scheduler.stop()
        assert scheduler.running is False


class TestDefaultJobs:
    def test_registers_four_jobs_in_cadence_order(self, clock):
        scheduler = JobScheduler(clock)
        campaigns = MagicMock()
        dispatcher = MagicMock()

        register_default_jobs(scheduler, Settings(_env_file=None), campaigns, dispatcher)

        assert scheduler.job_names == [
            "daily_micro_lessons",
            "inactivity_sweep",
            "dispatcher_tick",
            "goal_achievement_sweep",
        ]

    def test_build_engine_wires_components(self, settings, mock_pool):
        pool, _ = mock_pool

        engine = build_engine(pool, settings)

        assert engine.jobs.job_names == [
            "daily_micro_lessons",
            "inactivity_sweep",
            "dispatcher_tick",
            "goal_achievement_sweep",
        ]
        assert engine.jobs.running is False
        assert engine.clock.tz.key == "UTC"
