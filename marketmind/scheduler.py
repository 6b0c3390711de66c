"""CycleScheduler — runs named coroutine jobs at fixed intervals.

Each job runs as its own ``asyncio`` task: ``await job()``, then sleep for
the period.  An exception inside a job is logged and the loop carries on
with the next tick.  ``stop()`` cancels every task and waits for it.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger("marketmind.scheduler")

Job = Callable[[], Awaitable[object]]


class CycleScheduler:
    """Owns the periodic tasks of the engine."""

    def __init__(self) -> None:
        self._jobs: dict[str, tuple[Job, float]] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    def add(self, name: str, job: Job, interval_seconds: float) -> None:
        """Register *job* to run every *interval_seconds*."""
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        if name in self._jobs:
            raise ValueError(f"Job '{name}' already scheduled")
        self._jobs[name] = (job, interval_seconds)

    def start(self) -> None:
        """Launch one task per registered job."""
        for name, (job, interval) in self._jobs.items():
            if name in self._tasks and not self._tasks[name].done():
                continue
            self._tasks[name] = asyncio.create_task(
                self._run(name, job, interval), name=f"marketmind-{name}",
            )
            logger.info("Scheduled '%s' every %.1fs", name, interval)

    async def stop(self) -> None:
        """Cancel all tasks and wait until they have finished."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")

    async def _run(self, name: str, job: Job, interval: float) -> None:
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Job '%s' failed: %s", name, exc)
            await asyncio.sleep(interval)
