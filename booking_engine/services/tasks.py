"""
BackgroundTaskRunner - Bounded queue + worker pool for post-response work.

Calendar sync, CRM sync and notifications are submitted here after a booking
request has been answered. Submissions never block the caller: when the
queue is full the job is dropped and logged. Job failures are logged and
counted, never propagated.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger

Job = Callable[[], Awaitable[Any]]


@dataclass
class TaskRunnerStats:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    queued: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "submitted": self.submitted,
            "completed": self.completed,
            "failed": self.failed,
            "dropped": self.dropped,
            "queued": self.queued,
        }


class BackgroundTaskRunner:
    """
    Runs submitted jobs on a fixed pool of asyncio workers.

    Usage:
        runner = BackgroundTaskRunner(workers=4, queue_size=1000)
        runner.start()
        runner.submit("calendar_sync:abc", lambda: sync_calendar(booking))
        ...
        await runner.stop()
    """

    def __init__(self, workers: int = 4, queue_size: int = 1000):
        self._worker_count = workers
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task[None]] = []
        self._stats = TaskRunnerStats()

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Spawn the worker pool on the running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"booking-sync-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info(f"Background task runner started with {self._worker_count} workers")

    def submit(self, name: str, job: Job) -> bool:
        """
        Queue a job without waiting.

        Returns:
            False if the queue was full and the job was dropped
        """
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            self._stats.dropped += 1
            logger.error(f"Background queue full, dropped task '{name}'")
            return False

        self._stats.submitted += 1
        logger.debug(f"Queued background task '{name}'")
        return True

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers, optionally letting queued jobs finish first."""
        if drain and self._workers:
            await self._queue.join()

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Background task runner stopped")

    async def _worker(self, index: int) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await job()
                self._stats.completed += 1
            except Exception as e:
                self._stats.failed += 1
                logger.error(f"Background task '{name}' failed: {type(e).__name__}: {e}")
            finally:
                self._queue.task_done()

    def get_stats(self) -> TaskRunnerStats:
        self._stats.queued = self._queue.qsize()
        return self._stats
