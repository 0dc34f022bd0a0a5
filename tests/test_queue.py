import asyncio

import pytest

from relay.datastore.repositories import JobRepository
from relay.jobs.models import Backoff, Job, JobOptions, JobState, JobSubmission
from relay.jobs.queue import JobQueue
from relay.services.errors import JobFatalError


class Recorder:
    def __init__(self, fail_times: int = 0, error: Exception | None = None):
        self.calls: list[Job] = []
        self.fail_times = fail_times
        self.error = error or RuntimeError("smtp timeout")

    async def __call__(self, job: Job):
        self.calls.append(job)
        if len(self.calls) <= self.fail_times:
            raise self.error
        return {"ok": True, "n": job.payload.get("n")}


async def test_enqueue_is_durable_and_waiting(queue: JobQueue, clock):
    job_id = await queue.enqueue("email", "welcome", {"to": "a@example.com"})

    job = await queue.get_job(job_id)
    assert job.state == JobState.WAITING
    assert job.payload == {"to": "a@example.com"}
    assert job.attempts == 0
    assert job.scheduled_at == clock()


async def test_successful_job_completes(queue):
    handler = Recorder()
    queue.register_handler("email", "welcome", handler)
    job_id = await queue.enqueue("email", "welcome", {"n": 1})

    job = await queue.process_next("email")
    assert job.id == job_id
    assert job.state == JobState.COMPLETED
    assert job.result == {"ok": True, "n": 1}
    assert job.finished_at is not None
    assert job.lease_token is None


async def test_process_next_on_empty_queue(queue):
    assert await queue.process_next("email") is None


async def test_exponential_backoff_until_failed(queue, clock):
    handler = Recorder(fail_times=99)
    queue.register_handler("email", "welcome", handler)
    options = JobOptions(max_attempts=3, backoff=Backoff(kind="exponential", base_delay_ms=2000))
    job_id = await queue.enqueue("email", "welcome", {}, options)
    enqueued_at = clock()

    job = await queue.process_next("email")
    assert job.state == JobState.WAITING
    assert job.attempts == 1
    assert job.scheduled_at == enqueued_at + 2000
    assert job.last_error == "RuntimeError: smtp timeout"

    # not eligible before its retry time
    assert await queue.process_next("email") is None

    clock.advance(2000)
    job = await queue.process_next("email")
    assert job.attempts == 2
    assert job.scheduled_at == clock() + 4000

    clock.advance(4000)
    job = await queue.process_next("email")
    assert job.id == job_id
    assert job.state == JobState.FAILED
    assert job.attempts == 3
    assert job.last_error == "RuntimeError: smtp timeout"
    assert len(handler.calls) == 3

    clock.advance(60_000)
    assert await queue.process_next("email") is None


async def test_fixed_backoff(queue, clock):
    queue.register_handler("q", "t", Recorder(fail_times=1))
    options = JobOptions(max_attempts=2, backoff=Backoff(kind="fixed", base_delay_ms=500))
    await queue.enqueue("q", "t", {}, options)

    job = await queue.process_next("q")
    assert job.scheduled_at == clock() + 500

    clock.advance(500)
    job = await queue.process_next("q")
    assert job.state == JobState.COMPLETED
    assert job.attempts == 1


async def test_fatal_error_skips_remaining_attempts(queue):
    handler = Recorder(fail_times=1, error=JobFatalError("bad address"))
    queue.register_handler("email", "welcome", handler)
    await queue.enqueue("email", "welcome", {}, JobOptions(max_attempts=5))

    job = await queue.process_next("email")
    assert job.state == JobState.FAILED
    assert job.attempts == 1
    assert "bad address" in job.last_error


async def test_unknown_job_type_fails_immediately(queue):
    await queue.enqueue("email", "mystery", {}, JobOptions(max_attempts=3))

    job = await queue.process_next("email")
    assert job.state == JobState.FAILED
    assert "UnknownJobType" in job.last_error


async def test_remove_on_complete_deletes_record(queue):
    queue.register_handler("email", "welcome", Recorder())
    job_id = await queue.enqueue("email", "welcome", {}, JobOptions(remove_on_complete=True))

    job = await queue.process_next("email")
    assert job.state == JobState.COMPLETED
    assert await queue.get_job(job_id) is None


async def test_fifo_by_scheduled_time_then_submission(queue, clock):
    handler = Recorder()
    queue.register_handler("q", "t", handler)

    await queue.enqueue("q", "t", {"n": 1})
    await queue.enqueue("q", "t", {"n": 2})
    await queue.enqueue("q", "t", {"n": 0}, JobOptions(delay_ms=1))
    await queue.enqueue("q", "t", {"n": 3})
    clock.advance(1)

    while await queue.process_next("q"):
        pass
    assert [c.payload["n"] for c in handler.calls] == [1, 2, 3, 0]


async def test_delayed_job_not_eligible_early(queue, clock):
    queue.register_handler("q", "t", Recorder())
    await queue.enqueue("q", "t", {}, JobOptions(delay_ms=5000))

    assert await queue.process_next("q") is None
    clock.advance(5000)
    assert (await queue.process_next("q")).state == JobState.COMPLETED


async def test_queues_are_isolated(queue):
    queue.register_handler("a", "t", Recorder())
    await queue.enqueue("b", "t", {})
    assert await queue.process_next("a") is None


async def test_expired_lease_is_requeued_without_charging_attempt(db, queue, clock):
    repo = JobRepository(db)
    handler = Recorder()
    queue.register_handler("q", "t", handler)
    job_id = await queue.enqueue("q", "t", {"n": 7}, JobOptions(max_attempts=1))

    # a worker leases the job and then crashes
    crashed = await repo.claim("q", "dead-token", clock(), lease_ms=30_000)
    assert crashed.id == job_id
    assert await queue.process_next("q") is None

    clock.advance(30_000)
    job = await queue.process_next("q")
    assert job.state == JobState.COMPLETED
    assert job.attempts == 0

    # the crashed worker's late write-back is refused
    assert await repo.complete(job_id, "dead-token", {"late": True}, clock()) is False
    assert (await queue.get_job(job_id)).result == {"ok": True, "n": 7}


async def test_counts_and_retry_failed(queue, clock):
    queue.register_handler("q", "t", Recorder(fail_times=1))
    job_id = await queue.enqueue("q", "t", {})
    await queue.enqueue("q", "t", {}, JobOptions(delay_ms=10_000))

    await queue.process_next("q")
    assert await queue.counts("q") == {
        "waiting": 1,
        "active": 0,
        "completed": 0,
        "failed": 1,
    }

    assert await queue.retry_failed(job_id) is True
    assert await queue.retry_failed(job_id) is False

    job = await queue.process_next("q")
    assert job.id == job_id
    assert job.state == JobState.COMPLETED


async def test_prune_removes_old_terminal_jobs(queue, clock):
    queue.register_handler("q", "t", Recorder())
    old_id = await queue.enqueue("q", "t", {})
    await queue.process_next("q")

    clock.advance(10_000)
    new_id = await queue.enqueue("q", "t", {})
    pending_id = await queue.enqueue("q", "t", {}, JobOptions(delay_ms=60_000))
    await queue.process_next("q")

    assert await queue.prune(older_than_ms=5_000) == 1
    assert await queue.get_job(old_id) is None
    assert await queue.get_job(new_id) is not None
    assert await queue.get_job(pending_id) is not None


def test_backoff_delays():
    exponential = Backoff(kind="exponential", baseDelayMs=2000)
    assert [exponential.delay_for(n) for n in (1, 2, 3)] == [2000, 4000, 8000]
    assert Backoff(kind="fixed", base_delay_ms=300).delay_for(5) == 300


def test_job_submission_aliases():
    submission = JobSubmission.model_validate(
        {
            "queueName": "email-queue",
            "type": "send-email",
            "data": {"to": "a@example.com"},
            "maxAttempts": 3,
            "backoff": {"kind": "exponential", "baseDelayMs": 2000},
        }
    )
    options = submission.options()
    assert options.max_attempts == 3
    assert options.backoff.delay_for(2) == 4000


def test_job_submission_rejects_zero_attempts():
    with pytest.raises(ValueError):
        JobSubmission.model_validate({"queueName": "q", "type": "t", "maxAttempts": 0})


class RecordingRepository(JobRepository):
    def __init__(self, db):
        super().__init__(db)
        self.writes: list[str] = []

    async def extend_lease(self, *args, **kwargs):
        self.writes.append("extend_lease")
        return await super().extend_lease(*args, **kwargs)

    async def complete(self, *args, **kwargs):
        self.writes.append("complete")
        return await super().complete(*args, **kwargs)

    async def fail(self, *args, **kwargs):
        self.writes.append("fail")
        return await super().fail(*args, **kwargs)


@pytest.mark.parametrize("outcome", ["complete", "fail"])
async def test_lease_renewal_stops_before_outcome_is_written(db, clock, outcome):
    repo = RecordingRepository(db)
    queue = JobQueue(repo, lease_ms=150, clock=clock)

    async def slow(job: Job):
        await asyncio.sleep(0.2)
        if outcome == "fail":
            raise RuntimeError("gave up")
        return {"ok": True}

    queue.register_handler("q", "slow", slow)
    await queue.enqueue("q", "slow")

    await queue.process_next("q")
    await asyncio.sleep(0.15)

    assert "extend_lease" in repo.writes
    assert repo.writes[-1] == outcome
