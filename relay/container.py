"""
Service container - builds every service handle once from Settings.

Nothing in relay holds module-level state; the API layer and main.py receive
this container and pass its handles along explicitly.
"""

from dataclasses import dataclass

import httpx
from loguru import logger

from relay.datastore.engine import Database
from relay.datastore.repositories import JobRepository
from relay.jobs.handlers import (
    CALCULATE_ANALYTICS,
    DATA_QUEUE,
    EMAIL_QUEUE,
    PRUNE_STALE,
    SEND_EMAIL,
    AnalyticsJob,
    CleanupJob,
    EmailJob,
    LogMailer,
    Mailer,
    StaticUserSource,
    UserRecordSource,
)
from relay.jobs.queue import JobQueue
from relay.jobs.scheduler import Scheduler
from relay.jobs.worker import WorkerPool
from relay.providers.gateway import ExternalApiGateway
from relay.services.cache import RequestCache
from relay.services.rate_limiter import RateLimiter, RateLimitPolicy, RouteClass, default_policies
from relay.services.redis_store import RedisStateStore
from relay.services.store import SQLStateStore, StateStore
from relay.settings import Settings
from relay.utils import Clock, now_ms

DAY_MS = 24 * 60 * 60 * 1000


def policies_from_settings(settings: Settings) -> dict[RouteClass, RateLimitPolicy]:
    policies = default_policies()
    policies[RouteClass.GENERAL].limit = settings.rate_limit_max_requests
    policies[RouteClass.GENERAL].window_ms = settings.rate_limit_window_ms
    policies[RouteClass.AUTH].limit = settings.auth_rate_limit_max_attempts
    policies[RouteClass.AUTH].window_ms = settings.auth_rate_limit_window_ms
    policies[RouteClass.UPSTREAM].limit = settings.upstream_rate_limit_max_requests
    policies[RouteClass.UPSTREAM].window_ms = settings.upstream_rate_limit_window_ms
    return policies


@dataclass
class Container:
    settings: Settings
    db: Database
    store: StateStore
    cache: RequestCache
    limiter: RateLimiter
    queue: JobQueue
    workers: WorkerPool
    scheduler: Scheduler
    gateway: ExternalApiGateway
    user_source: UserRecordSource
    clock: Clock = now_ms

    async def start(self, run_background: bool = True) -> None:
        """Initialize storage; optionally start workers and the scheduler."""
        await self.db.init()
        if not run_background:
            return

        self.workers.start()
        if self.settings.scheduler_enabled:
            self.scheduler.start()

    async def stop(self) -> None:
        if self.scheduler.is_running():
            self.scheduler.stop()
        await self.workers.stop()
        await self.gateway.close()
        await self.store.close()
        await self.db.close()
        logger.info("All services stopped")


def build_container(
    settings: Settings,
    clock: Clock | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    mailer: Mailer | None = None,
    user_source: UserRecordSource | None = None,
) -> Container:
    """
    Wire every service from settings.

    ``transport`` replaces the network for upstream providers; ``mailer`` and
    ``user_source`` replace the default email and analytics collaborators.
    """
    clock = clock or now_ms
    user_source = user_source or StaticUserSource()
    db = Database(settings.database_url, echo=settings.database_echo)

    if settings.state_backend == "redis":
        store: StateStore = RedisStateStore.from_url(settings.redis_url, clock=clock)
    else:
        store = SQLStateStore(db, clock=clock)
    logger.info(f"Shared state store: {settings.state_backend}")

    cache = RequestCache(store, default_ttl=settings.cache_default_ttl, clock=clock)
    limiter = RateLimiter(
        store,
        policies=policies_from_settings(settings),
        failure_mode=settings.rate_limit_failure_mode,
        clock=clock,
    )

    queue = JobQueue(JobRepository(db), lease_ms=settings.job_lease_ms, clock=clock)
    retention_ms = settings.job_retention_days * DAY_MS
    queue.register_handler(EMAIL_QUEUE, SEND_EMAIL, EmailJob(mailer or LogMailer()))
    queue.register_handler(
        DATA_QUEUE, CALCULATE_ANALYTICS, AnalyticsJob(user_source, cache)
    )
    queue.register_handler(DATA_QUEUE, PRUNE_STALE, CleanupJob(queue, store, retention_ms))

    workers = WorkerPool(
        queue,
        {name: settings.worker_concurrency for name in queue.queue_names()},
        poll_interval=settings.worker_poll_interval,
    )

    scheduler = Scheduler(queue, clock=clock)
    scheduler.register_trigger(settings.analytics_cron, DATA_QUEUE, CALCULATE_ANALYTICS)
    scheduler.register_trigger(
        settings.cleanup_cron, DATA_QUEUE, PRUNE_STALE, {"retentionMs": retention_ms}
    )

    gateway = ExternalApiGateway.from_settings(settings, cache, transport=transport)

    return Container(
        settings=settings,
        db=db,
        store=store,
        cache=cache,
        limiter=limiter,
        queue=queue,
        workers=workers,
        scheduler=scheduler,
        gateway=gateway,
        user_source=user_source,
        clock=clock,
    )
