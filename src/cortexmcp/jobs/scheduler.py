"""Single-process job scheduling on asyncio.

``JobScheduler`` runs each registered job in its own task on a fixed
cadence; ``BackgroundTasks`` spawns one-off fire-and-forget work.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Coroutine
from dataclasses import dataclass
from dataclasses import field
from time import perf_counter
from typing import Any

from cortexmcp.observability import LatencyRecorder

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Spawner for work whose caller does not observe failure.

    Each spawned task is referenced until it finishes, then discarded.
    Exceptions are logged and never re-raised; nothing is retried.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures = 0

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._discard)
        return task

    def _discard(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failures += 1
            logger.error(
                "Background task %s failed: %s",
                task.get_name(),
                exc,
                exc_info=exc,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight task (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()


@dataclass
class ScheduledJob:
    """One job run every ``interval_seconds``."""

    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[object]]
    run_on_start: bool = False
    runs: int = 0
    failures: int = 0
    last_error: str | None = field(default=None, repr=False)


class JobScheduler:
    """Runs independent jobs on fixed cadences.

    A failing run is logged and the job keeps its schedule; the next
    run is the only retry.
    """

    def __init__(self, *, latency: LatencyRecorder | None = None) -> None:
        self._jobs: dict[str, ScheduledJob] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._latency = latency

    @property
    def jobs(self) -> dict[str, ScheduledJob]:
        return dict(self._jobs)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def add(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
        *,
        run_on_start: bool = False,
    ) -> ScheduledJob:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if name in self._jobs:
            raise ValueError(f"Job already registered: {name}")
        job = ScheduledJob(name, interval_seconds, func, run_on_start)
        self._jobs[name] = job
        return job

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        for job in self._jobs.values():
            self._tasks[job.name] = loop.create_task(
                self._loop(job), name=f"job:{job.name}"
            )
        logger.info("scheduler started jobs=%s", sorted(self._jobs))

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def run_now(self, name: str) -> bool:
        """Run one job immediately; returns whether it succeeded."""
        return await self._run_once(self._jobs[name])

    async def _loop(self, job: ScheduledJob) -> None:
        if job.run_on_start:
            await self._run_once(job)
        while True:
            await asyncio.sleep(job.interval_seconds)
            await self._run_once(job)

    async def _run_once(self, job: ScheduledJob) -> bool:
        start = perf_counter()
        ok = False
        try:
            await job.func()
            ok = True
        except Exception as exc:
            job.failures += 1
            job.last_error = str(exc)
            logger.exception("Job %s failed", job.name)
        finally:
            job.runs += 1
            if self._latency is not None:
                self._latency.record(
                    operation=f"job.{job.name}",
                    duration_ms=(perf_counter() - start) * 1000,
                    ok=ok,
                )
        return ok
