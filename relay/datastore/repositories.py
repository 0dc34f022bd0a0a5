"""
Repository layer - data access for durable jobs and trigger firings.

Every state transition is a conditional UPDATE guarded by the expected current
state (and, for active jobs, the lease token), so concurrent workers in
different processes never both win the same transition.
"""

import json
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from relay.datastore.engine import Database
from relay.datastore.models import JobDB, TriggerFiringDB
from relay.jobs.models import Backoff, Job, JobState

_NO_SYNC = {"synchronize_session": False}


def _to_model(row: JobDB) -> Job:
    return Job(
        id=row.id,
        queue_name=row.queue_name,
        type=row.type,
        payload=json.loads(row.payload or "{}"),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        backoff=Backoff(kind=row.backoff_kind, base_delay_ms=row.backoff_delay_ms),
        state=JobState(row.state),
        scheduled_at=row.scheduled_at,
        last_error=row.last_error,
        result=json.loads(row.result) if row.result is not None else None,
        remove_on_complete=row.remove_on_complete,
        trigger_id=row.trigger_id,
        period_key=row.period_key,
        lease_token=row.lease_token,
        lease_until=row.lease_until,
        created_at=row.created_at,
        updated_at=row.updated_at,
        finished_at=row.finished_at,
    )


def _to_row(job: Job) -> JobDB:
    return JobDB(
        id=job.id,
        queue_name=job.queue_name,
        type=job.type,
        payload=json.dumps(job.payload, default=str),
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        backoff_kind=job.backoff.kind,
        backoff_delay_ms=job.backoff.base_delay_ms,
        state=job.state.value,
        scheduled_at=job.scheduled_at,
        remove_on_complete=job.remove_on_complete,
        trigger_id=job.trigger_id,
        period_key=job.period_key,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


class JobRepository:
    """Durable job storage."""

    CLAIM_CANDIDATES = 5

    def __init__(self, db: Database):
        self._db = db

    async def insert(self, job: Job) -> None:
        async with self._db.session() as session:
            session.add(_to_row(job))

    async def insert_for_period(self, job: Job, trigger_id: str, period_key: str, now: int) -> bool:
        """
        Insert a firing marker and its job in one transaction.

        Returns False (and inserts nothing) if the (trigger_id, period_key)
        pair was already fired by any scheduler instance.
        """
        try:
            async with self._db.session() as session:
                session.add(
                    TriggerFiringDB(
                        trigger_id=trigger_id,
                        period_key=period_key,
                        job_id=job.id,
                        fired_at=now,
                    )
                )
                await session.flush()
                session.add(_to_row(job))
        except IntegrityError:
            return False
        return True

    async def get(self, job_id: str) -> Job | None:
        async with self._db.session() as session:
            result = await session.execute(select(JobDB).where(JobDB.id == job_id))
            row = result.scalar_one_or_none()
            return _to_model(row) if row else None

    async def requeue_expired(self, queue_name: str, now: int) -> int:
        """Return active jobs whose lease has expired to waiting."""
        async with self._db.session() as session:
            result = await session.execute(
                update(JobDB)
                .where(
                    JobDB.queue_name == queue_name,
                    JobDB.state == JobState.ACTIVE.value,
                    JobDB.lease_until <= now,
                )
                .values(
                    state=JobState.WAITING.value,
                    lease_token=None,
                    lease_until=None,
                    updated_at=now,
                )
                .execution_options(**_NO_SYNC)
            )
            count = result.rowcount or 0

        if count:
            logger.warning(f"Returned {count} jobs with expired leases to '{queue_name}'")
        return count

    async def claim(self, queue_name: str, token: str, now: int, lease_ms: int) -> Job | None:
        """
        Lease the oldest eligible waiting job of a queue.

        Eligible means waiting with scheduled_at <= now, ordered by
        (scheduled_at, submission sequence).
        """
        async with self._db.session() as session:
            result = await session.execute(
                select(JobDB.id)
                .where(
                    JobDB.queue_name == queue_name,
                    JobDB.state == JobState.WAITING.value,
                    JobDB.scheduled_at <= now,
                )
                .order_by(JobDB.scheduled_at, JobDB.seq)
                .limit(self.CLAIM_CANDIDATES)
            )
            candidates = list(result.scalars().all())

            for job_id in candidates:
                claimed = await session.execute(
                    update(JobDB)
                    .where(JobDB.id == job_id, JobDB.state == JobState.WAITING.value)
                    .values(
                        state=JobState.ACTIVE.value,
                        lease_token=token,
                        lease_until=now + lease_ms,
                        updated_at=now,
                    )
                    .execution_options(**_NO_SYNC)
                )
                if claimed.rowcount == 1:
                    row = (
                        await session.execute(select(JobDB).where(JobDB.id == job_id))
                    ).scalar_one()
                    return _to_model(row)

        return None

    async def extend_lease(self, job_id: str, token: str, lease_until: int, now: int) -> bool:
        return await self._transition(
            job_id, token, lease_until=lease_until, updated_at=now
        )

    async def complete(
        self, job_id: str, token: str, result: Any, now: int, remove: bool = False
    ) -> bool:
        if remove:
            async with self._db.session() as session:
                deleted = await session.execute(
                    delete(JobDB)
                    .where(
                        JobDB.id == job_id,
                        JobDB.state == JobState.ACTIVE.value,
                        JobDB.lease_token == token,
                    )
                    .execution_options(**_NO_SYNC)
                )
                return deleted.rowcount == 1

        return await self._transition(
            job_id,
            token,
            state=JobState.COMPLETED.value,
            result=json.dumps(result, default=str),
            lease_token=None,
            lease_until=None,
            updated_at=now,
            finished_at=now,
        )

    async def schedule_retry(
        self, job_id: str, token: str, attempts: int, error: str, run_at: int, now: int
    ) -> bool:
        return await self._transition(
            job_id,
            token,
            state=JobState.WAITING.value,
            attempts=attempts,
            last_error=error,
            scheduled_at=run_at,
            lease_token=None,
            lease_until=None,
            updated_at=now,
        )

    async def fail(self, job_id: str, token: str, attempts: int, error: str, now: int) -> bool:
        return await self._transition(
            job_id,
            token,
            state=JobState.FAILED.value,
            attempts=attempts,
            last_error=error,
            lease_token=None,
            lease_until=None,
            updated_at=now,
            finished_at=now,
        )

    async def _transition(self, job_id: str, token: str, **values: Any) -> bool:
        """Update an active job, only while the caller still holds its lease."""
        async with self._db.session() as session:
            result = await session.execute(
                update(JobDB)
                .where(
                    JobDB.id == job_id,
                    JobDB.state == JobState.ACTIVE.value,
                    JobDB.lease_token == token,
                )
                .values(**values)
                .execution_options(**_NO_SYNC)
            )
            return result.rowcount == 1

    async def redrive(self, job_id: str, now: int) -> bool:
        """Move a failed job back to waiting with a fresh attempt budget."""
        async with self._db.session() as session:
            result = await session.execute(
                update(JobDB)
                .where(JobDB.id == job_id, JobDB.state == JobState.FAILED.value)
                .values(
                    state=JobState.WAITING.value,
                    attempts=0,
                    scheduled_at=now,
                    finished_at=None,
                    updated_at=now,
                )
                .execution_options(**_NO_SYNC)
            )
            return result.rowcount == 1

    async def counts(self, queue_name: str) -> dict[str, int]:
        """Number of jobs per state for a queue."""
        async with self._db.session() as session:
            result = await session.execute(
                select(JobDB.state, func.count())
                .where(JobDB.queue_name == queue_name)
                .group_by(JobDB.state)
            )
            found = {state: count for state, count in result.all()}

        return {
            state.value: found.get(state.value, 0)
            for state in JobState
            if state != JobState.CREATED
        }

    async def prune(self, before: int) -> int:
        """Delete terminal jobs and trigger firings older than ``before``."""
        async with self._db.session() as session:
            jobs = await session.execute(
                delete(JobDB)
                .where(
                    JobDB.state.in_([JobState.COMPLETED.value, JobState.FAILED.value]),
                    JobDB.finished_at < before,
                )
                .execution_options(**_NO_SYNC)
            )
            firings = await session.execute(
                delete(TriggerFiringDB)
                .where(TriggerFiringDB.fired_at < before)
                .execution_options(**_NO_SYNC)
            )
            removed = (jobs.rowcount or 0) + (firings.rowcount or 0)

        if removed:
            logger.info(f"Pruned {removed} stale job records")
        return removed
