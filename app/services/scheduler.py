"""Periodic job scheduler.

Jobs are plain coroutine functions registered with ``on_schedule``.  Each
one runs in its own asyncio task: wait ``interval_seconds``, run, repeat.
A job that raises is logged and the loop carries on with the next tick,
so one bad run never stops the schedule.

The worker process (``python -m app.worker``) hosts the scheduler; the
API process can host it too when RUN_SCHEDULER=true.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

Job = Callable[[], Coroutine[Any, Any, object]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScheduledJob:
    name: str
    interval_seconds: float
    fn: Job
    run_immediately: bool = False


class PeriodicScheduler:
    def __init__(self) -> None:
        self._jobs: list[ScheduledJob] = []
        self._tasks: list[asyncio.Task] = []

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def on_schedule(
        self,
        interval_seconds: float,
        fn: Job,
        *,
        name: str | None = None,
        run_immediately: bool = False,
    ) -> ScheduledJob:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        job = ScheduledJob(
            name=name or getattr(fn, "__qualname__", repr(fn)),
            interval_seconds=interval_seconds,
            fn=fn,
            run_immediately=run_immediately,
        )
        self._jobs.append(job)
        logger.info("Scheduled job=%s every %.0fs", job.name, interval_seconds)
        if self._tasks:
            self._tasks.append(asyncio.create_task(self._loop(job), name=job.name))
        return job

    async def _run_once(self, job: ScheduledJob) -> None:
        try:
            await job.fn()
        except Exception:
            logger.exception("Scheduled job=%s failed", job.name)

    async def _loop(self, job: ScheduledJob) -> None:
        if job.run_immediately:
            await self._run_once(job)
        while True:
            await asyncio.sleep(job.interval_seconds)
            await self._run_once(job)

    def start(self) -> None:
        """Start one task per job.  Must be called from a running loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._loop(job), name=job.name) for job in self._jobs
        ]
        logger.info("Scheduler started jobs=%s", [j.name for j in self._jobs])

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Scheduler stopped")
