import asyncio

from relay.datastore.repositories import JobRepository
from relay.jobs.models import Job, JobState
from relay.jobs.queue import JobQueue
from relay.jobs.worker import WorkerPool


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    async def poll():
        while not await predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def test_pool_drains_queue(queue: JobQueue):
    seen: list[int] = []

    async def handler(job: Job):
        seen.append(job.payload["n"])
        return {"n": job.payload["n"]}

    queue.register_handler("q", "t", handler)
    ids = [await queue.enqueue("q", "t", {"n": n}) for n in range(6)]

    pool = WorkerPool(queue, {"q": 2}, poll_interval=0.01)
    pool.start()
    assert pool.is_running()

    async def all_done():
        jobs = [await queue.get_job(i) for i in ids]
        return all(j.state == JobState.COMPLETED for j in jobs)

    try:
        await _wait_for(all_done)
    finally:
        await pool.stop()

    assert sorted(seen) == list(range(6))
    assert pool.processed == 6
    assert not pool.is_running()


async def test_concurrency_is_bounded(queue):
    running = 0
    peak = 0

    async def handler(job: Job):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        running -= 1

    queue.register_handler("q", "t", handler)
    ids = [await queue.enqueue("q", "t", {}) for _ in range(5)]

    pool = WorkerPool(queue, {"q": 2}, poll_interval=0.01)
    pool.start()

    async def all_done():
        jobs = [await queue.get_job(i) for i in ids]
        return all(j.state.is_terminal for j in jobs)

    try:
        await _wait_for(all_done)
    finally:
        await pool.stop()

    assert peak <= 2


async def test_stop_cancels_long_jobs_after_timeout(queue):
    started = asyncio.Event()

    async def handler(job: Job):
        started.set()
        await asyncio.sleep(30)

    queue.register_handler("q", "t", handler)
    await queue.enqueue("q", "t", {})

    pool = WorkerPool(queue, {"q": 1}, poll_interval=0.01)
    pool.start()
    await asyncio.wait_for(started.wait(), 5)

    await pool.stop(timeout=0.05)
    assert not pool.is_running()


class FlakyQueue(JobQueue):
    """Raises an unexpected error on the first poll, then behaves."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = 1

    async def process_next(self, queue_name: str):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("unexpected")
        return await super().process_next(queue_name)


async def test_worker_survives_unexpected_error(db, clock):
    queue = FlakyQueue(JobRepository(db), clock=clock)

    async def handler(job: Job):
        return {"ok": True}

    queue.register_handler("q", "t", handler)
    job_id = await queue.enqueue("q", "t")

    pool = WorkerPool(queue, {"q": 1}, poll_interval=0.01)
    pool.start()

    async def done():
        return (await queue.get_job(job_id)).state == JobState.COMPLETED

    try:
        await _wait_for(done)
    finally:
        await pool.stop()

    assert queue.failures == 0
    assert pool.processed == 1
