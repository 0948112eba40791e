"""Task manager — periodic background jobs on asyncio tasks.

Each ``CronJob`` has a handler coroutine and a ``period`` in seconds. A job
can ask to run once as soon as the manager starts (``run_on_start``), so
that e.g. drafts left over from a previous session are synced without
waiting a full period. A failing run is logged and the loop continues.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fleetzen.metrics.collector import DraftMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronJob:
    """A recurring background job."""

    handler: Callable[[], Awaitable[object]]
    period: float  # seconds
    name: str = ""
    run_on_start: bool = False


@dataclass
class JobStats:
    """Run bookkeeping for one job."""

    runs: int = 0
    failures: int = 0
    last_run: float | None = None  # unix timestamp


class TaskManager:
    """Runs registered cron jobs until stopped.

    Usage::

        tm = TaskManager(metrics=draft_metrics)
        tm.register("draft_reap", CronJob(handler=store.reap, period=3600))
        await tm.start()
        await tm.run_now("draft_reap")
        await tm.stop()
    """

    def __init__(self, *, metrics: DraftMetrics | None = None) -> None:
        self._jobs: dict[str, CronJob] = {}
        self._stats: dict[str, JobStats] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = False
        self._metrics = metrics

    @property
    def is_running(self) -> bool:
        """Whether the task manager is currently running."""
        return self._running

    @property
    def jobs(self) -> dict[str, CronJob]:
        """Registered jobs (name → CronJob)."""
        return dict(self._jobs)

    def stats(self, name: str) -> JobStats:
        """Run statistics of the job registered as *name*."""
        try:
            return self._stats[name]
        except KeyError:
            msg = f"no job registered as {name!r}"
            raise KeyError(msg) from None

    def register(self, name: str, job: CronJob) -> None:
        """Register (or replace) a job. Starts it at once if running."""
        if job.period <= 0:
            msg = f"job {name!r} needs a positive period, got {job.period}"
            raise ValueError(msg)
        resolved = CronJob(
            handler=job.handler,
            period=job.period,
            name=name,
            run_on_start=job.run_on_start,
        )
        old = self._tasks.pop(name, None)
        if old is not None:
            old.cancel()
        self._jobs[name] = resolved
        self._stats.setdefault(name, JobStats())
        if self._running:
            self._tasks[name] = asyncio.create_task(self._run_loop(resolved), name=name)

    async def start(self) -> None:
        """Start all registered jobs."""
        if self._running:
            return
        self._running = True
        for name, job in self._jobs.items():
            self._tasks[name] = asyncio.create_task(self._run_loop(job), name=name)
        logger.info("TaskManager started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Cancel all running jobs and wait for them to unwind."""
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for r in results:
            if isinstance(r, Exception):
                logger.error("Task error during shutdown: %s", r)
        logger.info("TaskManager stopped")

    async def run_now(self, name: str) -> bool:
        """Run one job immediately, outside its schedule.

        Returns:
            ``True`` if the run completed without raising.
        """
        job = self._jobs.get(name)
        if job is None:
            msg = f"no job registered as {name!r}"
            raise KeyError(msg)
        return await self._execute(job)

    async def _run_loop(self, job: CronJob) -> None:
        if job.run_on_start:
            await self._execute(job)
        while self._running:
            await asyncio.sleep(job.period)
            if not self._running:
                break
            await self._execute(job)

    async def _execute(self, job: CronJob) -> bool:
        stats = self._stats.setdefault(job.name, JobStats())
        stats.runs += 1
        stats.last_run = time.time()
        try:
            if self._metrics is not None:
                with self._metrics.track_cron(job.name):
                    await job.handler()
            else:
                await job.handler()
        except asyncio.CancelledError:
            raise
        except Exception:
            stats.failures += 1
            logger.exception("Cron job %r failed", job.name)
            return False
        return True
