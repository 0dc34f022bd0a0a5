"""
WorkerPool - bounded pool of asyncio workers per queue.

Each worker repeatedly leases the next eligible job from the durable store and
runs it through JobQueue. When a queue has nothing eligible the worker sleeps
for ``poll_interval`` seconds.
"""

import asyncio

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from relay.jobs.queue import JobQueue


class WorkerPool:
    """
    Usage:
        pool = WorkerPool(queue, {"email": 2, "data-processing": 1})
        pool.start()
        ...
        await pool.stop()
    """

    def __init__(
        self,
        queue: JobQueue,
        concurrency: dict[str, int],
        poll_interval: float = 1.0,
    ):
        self._queue = queue
        self._concurrency = {name: max(1, n) for name, n in concurrency.items()}
        self._poll_interval = poll_interval
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()
        self._processed = 0

    @property
    def processed(self) -> int:
        return self._processed

    def is_running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Spawn the worker tasks for every configured queue."""
        if self._tasks:
            logger.warning("WorkerPool is already running")
            return

        self._stopping.clear()
        for queue_name, count in self._concurrency.items():
            for index in range(count):
                task = asyncio.create_task(
                    self._run(queue_name, index),
                    name=f"worker:{queue_name}:{index}",
                )
                self._tasks.append(task)
            logger.info(f"Started {count} worker(s) for queue '{queue_name}'")

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop polling; let in-flight jobs finish up to ``timeout`` seconds."""
        if not self._tasks:
            return

        self._stopping.set()
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} worker(s) with jobs still running")

        self._tasks.clear()
        logger.info("WorkerPool stopped")

    async def _run(self, queue_name: str, index: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self._queue.process_next(queue_name)
            except SQLAlchemyError as e:
                logger.error(f"Worker {queue_name}:{index} store error: {e}")
                job = None
            except Exception:
                logger.exception(f"Worker {queue_name}:{index} failed unexpectedly, continuing")
                job = None

            if job is not None:
                self._processed += 1
                continue

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
