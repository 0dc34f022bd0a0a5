"""
Cron scheduler - enqueues recurring jobs, exactly once per cron tick.

Every scheduler instance fires its triggers independently (there is no
leader). Each firing computes a period key (the tick time truncated to the
minute) and inserts the job together with a (trigger_id, period_key) marker
under a unique constraint, so racing instances produce a single job per tick.
"""

from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from relay.jobs.models import JobOptions, Trigger
from relay.jobs.queue import JobQueue
from relay.services.errors import SchedulerDuplicateTick, StoreUnavailable
from relay.utils import Clock, ms_to_datetime, now_ms


def period_key(at: datetime) -> str:
    """Discretize a tick time to its cron period (minute granularity, UTC)."""
    minute = at.astimezone(timezone.utc).replace(second=0, microsecond=0)
    return minute.strftime("%Y-%m-%dT%H:%MZ")


class Scheduler:
    """
    Usage:
        scheduler = Scheduler(queue)
        scheduler.register_trigger("0 * * * *", "data-processing", "calculate-analytics")
        scheduler.start()
    """

    def __init__(self, queue: JobQueue, clock: Clock | None = None):
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._queue = queue
        self._clock = clock or now_ms
        self._triggers: dict[str, Trigger] = {}
        self._crons: dict[str, CronTrigger] = {}
        self._is_running = False

    @property
    def triggers(self) -> list[Trigger]:
        return list(self._triggers.values())

    def register_trigger(
        self,
        cron_expression: str,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        options: JobOptions | None = None,
        trigger_id: str | None = None,
    ) -> Trigger:
        """
        Register a recurring submission.

        The default trigger id is derived from (queue, type, cron) so that every
        instance configured the same way agrees on it.

        Raises:
            ValueError: If the crontab expression is invalid
        """
        cron = CronTrigger.from_crontab(cron_expression, timezone=timezone.utc)
        trigger = Trigger(
            id=trigger_id or f"{queue_name}:{job_type}:{cron_expression}",
            cron_expression=cron_expression,
            queue_name=queue_name,
            job_type=job_type,
            payload=payload or {},
            options=options or JobOptions(),
        )
        self._triggers[trigger.id] = trigger
        self._crons[trigger.id] = cron

        if self._is_running:
            self._add_job(trigger)

        logger.info(f"Trigger registered: {trigger.id} -> {queue_name}/{job_type}")
        return trigger

    def matches(self, trigger_id: str, at: datetime) -> bool:
        """Whether the trigger's cron schedule has a tick in the minute of ``at``."""
        minute = at.astimezone(timezone.utc).replace(second=0, microsecond=0)
        next_fire = self._crons[trigger_id].get_next_fire_time(None, minute)
        return next_fire is not None and next_fire == minute

    async def fire(self, trigger: Trigger, at: datetime | None = None) -> str | None:
        """
        Enqueue the trigger's job for the period containing ``at``.

        Returns the job id, or None if this period was already enqueued by any
        scheduler instance.
        """
        at = at or ms_to_datetime(self._clock())
        key = period_key(at)

        try:
            job_id = await self._queue.enqueue_for_period(trigger, key)
        except SchedulerDuplicateTick:
            logger.debug(f"Trigger {trigger.id} already fired for period {key}")
            job_id = None
        trigger.last_fired_period = key
        return job_id

    async def tick(self, at: datetime | None = None) -> list[str]:
        """Fire every trigger whose schedule matches the current minute."""
        at = at or ms_to_datetime(self._clock())
        fired = []
        for trigger in list(self._triggers.values()):
            if not self.matches(trigger.id, at):
                continue
            job_id = await self.fire(trigger, at)
            if job_id:
                fired.append(job_id)
        return fired

    async def _on_cron(self, trigger_id: str) -> None:
        trigger = self._triggers.get(trigger_id)
        if trigger is None:
            return
        try:
            await self.fire(trigger)
        except StoreUnavailable as e:
            logger.error(f"Trigger {trigger_id} could not enqueue: {e}")

    def _add_job(self, trigger: Trigger) -> None:
        self.scheduler.add_job(
            self._on_cron,
            trigger=self._crons[trigger.id],
            args=[trigger.id],
            id=f"trigger:{trigger.id}",
            name=f"{trigger.queue_name}/{trigger.job_type}",
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=30,
        )

    def start(self) -> None:
        """Start firing registered triggers."""
        if self._is_running:
            logger.warning("Scheduler is already running")
            return

        for trigger in self._triggers.values():
            self._add_job(trigger)

        self.scheduler.start()
        self._is_running = True
        logger.info(f"Scheduler started with {len(self._triggers)} trigger(s)")

    def stop(self) -> None:
        """Stop firing triggers."""
        if not self._is_running:
            logger.warning("Scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running
