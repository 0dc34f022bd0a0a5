"""
JobQueue - durable named work queues with leases, retries and backoff.

Jobs are persisted before enqueue() returns. Workers lease the oldest eligible
job of a queue, run the handler registered for its type, and write the outcome
back. Write-backs only succeed while the worker still holds the lease, so a job
never has two concurrent executions that both record a result.
"""

import asyncio
import contextlib
import uuid
from typing import Any, Awaitable, Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from relay.datastore.repositories import JobRepository
from relay.jobs.models import Job, JobOptions, JobState, Trigger
from relay.services.errors import (
    JobFatalError,
    SchedulerDuplicateTick,
    StoreUnavailable,
    UnknownJobType,
)
from relay.utils import Clock, now_ms

Handler = Callable[[Job], Awaitable[Any]]


class JobQueue:
    """
    Usage:
        queue = JobQueue(JobRepository(db))
        queue.register_handler("email", "welcome", send_welcome)

        job_id = await queue.enqueue(
            "email",
            "welcome",
            {"to": "a@example.com"},
            JobOptions(max_attempts=3, backoff=Backoff(kind="exponential", base_delay_ms=2000)),
        )

        await queue.process_next("email")
    """

    def __init__(
        self,
        repository: JobRepository,
        lease_ms: int = 30_000,
        clock: Clock | None = None,
    ):
        self._repo = repository
        self._lease_ms = lease_ms
        self._clock = clock or now_ms
        self._handlers: dict[tuple[str, str], Handler] = {}

    @property
    def lease_ms(self) -> int:
        return self._lease_ms

    def register_handler(self, queue_name: str, job_type: str, handler: Handler) -> None:
        """Register the coroutine that executes jobs of a type on a queue."""
        self._handlers[(queue_name, job_type)] = handler
        logger.debug(f"Registered job handler: {queue_name}/{job_type}")

    def has_handler(self, queue_name: str, job_type: str) -> bool:
        return (queue_name, job_type) in self._handlers

    def queue_names(self) -> list[str]:
        """Queues that have at least one registered handler."""
        return sorted({queue_name for queue_name, _ in self._handlers})

    def _new_job(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any] | None,
        options: JobOptions,
    ) -> Job:
        now = self._clock()
        job = Job(
            id=uuid.uuid4().hex,
            queue_name=queue_name,
            type=job_type,
            payload=payload or {},
            max_attempts=options.max_attempts,
            backoff=options.backoff,
            scheduled_at=now + options.delay_ms,
            remove_on_complete=options.remove_on_complete,
            created_at=now,
            updated_at=now,
        )
        job.state = JobState.WAITING
        return job

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        options: JobOptions | None = None,
    ) -> str:
        """
        Persist a new waiting job and return its id.

        Raises:
            StoreUnavailable: If the job could not be persisted
        """
        job = self._new_job(queue_name, job_type, payload, options or JobOptions())
        try:
            await self._repo.insert(job)
        except SQLAlchemyError as e:
            logger.error(f"Failed to enqueue {queue_name}/{job_type}: {e}")
            raise StoreUnavailable(f"enqueue failed: {e}", service_id=queue_name) from e

        logger.info(f"Job {job.id} queued: {queue_name}/{job_type}")
        return job.id

    async def enqueue_for_period(self, trigger: Trigger, period_key: str) -> str:
        """
        Enqueue the job for one trigger tick, unless any instance already did.

        Raises:
            SchedulerDuplicateTick: If this (trigger, period) was already enqueued
            StoreUnavailable: If the job could not be persisted
        """
        job = self._new_job(trigger.queue_name, trigger.job_type, trigger.payload, trigger.options)
        job.trigger_id = trigger.id
        job.period_key = period_key
        try:
            inserted = await self._repo.insert_for_period(job, trigger.id, period_key, self._clock())
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"trigger enqueue failed: {e}", service_id=trigger.queue_name) from e

        if not inserted:
            raise SchedulerDuplicateTick(trigger.id, period_key)
        logger.info(f"Job {job.id} queued by trigger {trigger.id} for period {period_key}")
        return job.id

    async def get_job(self, job_id: str) -> Job | None:
        return await self._repo.get(job_id)

    async def counts(self, queue_name: str) -> dict[str, int]:
        return await self._repo.counts(queue_name)

    async def retry_failed(self, job_id: str) -> bool:
        """Manually re-drive a dead-lettered job with a fresh attempt budget."""
        redriven = await self._repo.redrive(job_id, self._clock())
        if redriven:
            logger.info(f"Failed job {job_id} re-queued")
        return redriven

    async def prune(self, older_than_ms: int) -> int:
        return await self._repo.prune(self._clock() - older_than_ms)

    async def process_next(self, queue_name: str) -> Job | None:
        """
        Lease and execute one eligible job of a queue.

        Returns the job as stored after execution, or None if nothing was
        eligible.
        """
        now = self._clock()
        await self._repo.requeue_expired(queue_name, now)

        token = uuid.uuid4().hex
        job = await self._repo.claim(queue_name, token, now, self._lease_ms)
        if job is None:
            return None

        await self._execute(job, token)
        stored = await self._repo.get(job.id)
        if stored is None:
            # removed on completion
            job.state = JobState.COMPLETED
            return job
        return stored

    async def _execute(self, job: Job, token: str) -> None:
        handler = self._handlers.get((job.queue_name, job.type))
        attempts = job.attempts + 1

        error: Exception | None = None
        renewer = asyncio.create_task(self._renew_lease(job.id, token))
        try:
            if handler is None:
                raise UnknownJobType(job.queue_name, job.type)
            logger.debug(f"Job {job.id} started ({job.type}, attempt {attempts}/{job.max_attempts})")
            result = await handler(job)
        except Exception as e:
            error = e
        finally:
            # no renewal may land after the outcome is written
            renewer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await renewer

        if error is not None:
            fatal = isinstance(error, JobFatalError)
            await self._record_failure(job, token, attempts, error, fatal=fatal)
            return

        now = self._clock()
        if await self._repo.complete(job.id, token, result, now, remove=job.remove_on_complete):
            logger.info(f"Job {job.id} completed ({job.queue_name}/{job.type})")
        else:
            logger.warning(f"Job {job.id} finished after its lease was lost; result discarded")

    async def _record_failure(
        self, job: Job, token: str, attempts: int, error: Exception, fatal: bool
    ) -> None:
        now = self._clock()
        message = f"{type(error).__name__}: {error}"

        if fatal or attempts >= job.max_attempts:
            recorded = await self._repo.fail(job.id, token, attempts, message, now)
            if recorded:
                logger.error(
                    f"Job {job.id} failed permanently after {attempts} attempt(s) "
                    f"({job.queue_name}/{job.type}): {message}"
                )
        else:
            delay = job.backoff.delay_for(attempts)
            recorded = await self._repo.schedule_retry(
                job.id, token, attempts, message, now + delay, now
            )
            if recorded:
                logger.warning(
                    f"Job {job.id} attempt {attempts}/{job.max_attempts} failed, "
                    f"retrying in {delay}ms: {message}"
                )

        if not recorded:
            logger.warning(f"Job {job.id} failure not recorded; lease was lost")

    async def _renew_lease(self, job_id: str, token: str) -> None:
        """Keep extending the lease while the handler runs."""
        interval = max(self._lease_ms / 3000, 0.05)
        while True:
            await asyncio.sleep(interval)
            now = self._clock()
            try:
                held = await self._repo.extend_lease(job_id, token, now + self._lease_ms, now)
            except SQLAlchemyError as e:
                logger.warning(f"Lease renewal for job {job_id} failed: {e}")
                continue
            if not held:
                logger.warning(f"Lease for job {job_id} lost during execution")
                return
