"""Unit tests for the job scheduler and background task spawner."""

from __future__ import annotations

import asyncio

import pytest

from cortexmcp.jobs.scheduler import BackgroundTasks
from cortexmcp.jobs.scheduler import JobScheduler
from cortexmcp.observability import LatencyRecorder


class TestBackgroundTasks:
    async def test_finished_task_is_discarded(self):
        background = BackgroundTasks()

        async def work():
            return 1

        task = background.spawn("work", work())
        assert background.pending == 1
        await task
        await asyncio.sleep(0)
        assert background.pending == 0
        assert background.failures == 0

    async def test_failure_is_logged_not_raised(self, caplog):
        background = BackgroundTasks()

        async def boom():
            raise RuntimeError("refresh failed")

        background.spawn("handoff-refresh:con_1", boom())
        await background.drain()

        assert background.pending == 0
        assert background.failures == 1
        assert "handoff-refresh:con_1" in caplog.text

    async def test_cancel_all(self):
        background = BackgroundTasks()
        background.spawn("sleepy", asyncio.sleep(60))

        await background.cancel_all()

        assert background.pending == 0
        assert background.failures == 0


class TestJobScheduler:
    async def test_run_now_counts_runs_and_records_latency(self):
        latency = LatencyRecorder()
        scheduler = JobScheduler(latency=latency)
        calls = []

        async def job():
            calls.append(1)

        scheduler.add("nightly", 60, job)
        assert await scheduler.run_now("nightly") is True

        assert calls == [1]
        assert scheduler.jobs["nightly"].runs == 1
        assert latency.snapshot()["job.nightly"]["count"] == 1

    async def test_failing_run_keeps_schedule(self):
        scheduler = JobScheduler()

        async def job():
            raise RuntimeError("db down")

        scheduler.add("cleanup", 60, job)
        assert await scheduler.run_now("cleanup") is False

        job_state = scheduler.jobs["cleanup"]
        assert job_state.failures == 1
        assert job_state.last_error == "db down"

    async def test_jobs_run_on_cadence_until_stopped(self):
        scheduler = JobScheduler()
        runs = []

        async def job():
            runs.append(1)

        scheduler.add("fast", 0.01, job)
        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.06)
        await scheduler.stop()

        assert not scheduler.running
        assert len(runs) >= 2
        count = len(runs)
        await asyncio.sleep(0.03)
        assert len(runs) == count

    async def test_one_failing_job_does_not_stop_others(self):
        scheduler = JobScheduler()
        good = []

        async def bad():
            raise RuntimeError("nope")

        async def ok():
            good.append(1)

        scheduler.add("bad", 0.01, bad)
        scheduler.add("ok", 0.01, ok)
        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.jobs["bad"].failures >= 1
        assert len(good) >= 1

    def test_duplicate_job_rejected(self):
        scheduler = JobScheduler()

        async def job():
            return None

        scheduler.add("x", 1, job)
        with pytest.raises(ValueError, match="already registered"):
            scheduler.add("x", 1, job)

    def test_non_positive_interval_rejected(self):
        scheduler = JobScheduler()

        async def job():
            return None

        with pytest.raises(ValueError, match="interval_seconds"):
            scheduler.add("x", 0, job)
