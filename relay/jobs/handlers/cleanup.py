"""
Cleanup job - prunes stale job records and expired state entries.
"""

from typing import Any

from loguru import logger

from relay.jobs.models import Job
from relay.jobs.queue import JobQueue
from relay.services.store import StateStore

PRUNE_STALE = "prune-stale-records"


class CleanupJob:
    def __init__(self, queue: JobQueue, store: StateStore, retention_ms: int):
        self.queue = queue
        self.store = store
        self.retention_ms = retention_ms

    async def __call__(self, job: Job) -> dict[str, Any]:
        retention_ms = int(job.payload.get("retentionMs", self.retention_ms))
        jobs_removed = await self.queue.prune(retention_ms)
        entries_removed = await self.store.purge_expired()
        logger.info(
            f"Cleanup done: {jobs_removed} job records, {entries_removed} expired entries"
        )
        return {"jobsRemoved": jobs_removed, "entriesRemoved": entries_removed}
