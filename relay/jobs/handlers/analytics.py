"""
Analytics job - periodic user aggregates from a read-only record source.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel

from relay.jobs.models import Job
from relay.services.cache import RequestCache

DATA_QUEUE = "data-processing"
CALCULATE_ANALYTICS = "calculate-analytics"
ANALYTICS_CACHE_KEY = "analytics:users"


class UserRecord(BaseModel):
    """The fields of a user record the aggregates need."""

    id: str
    country: str = "Unknown"
    age: int | None = None
    is_active: bool = True
    google_id: str | None = None


class UserRecordSource(Protocol):
    async def list_users(self) -> list[UserRecord]: ...


class StaticUserSource:
    """In-memory record source."""

    def __init__(self, users: list[UserRecord] | None = None):
        self.users = users or []

    async def list_users(self) -> list[UserRecord]:
        return list(self.users)


def aggregate(users: list[UserRecord]) -> dict[str, Any]:
    ages = [u.age for u in users if u.age is not None]
    return {
        "totalUsers": len(users),
        "activeUsers": sum(1 for u in users if u.is_active),
        "googleUsers": sum(1 for u in users if u.google_id),
        "byCountry": dict(Counter(u.country for u in users)),
        "avgAge": round(sum(ages) / len(ages)) if ages else 0,
        "calculatedAt": datetime.now(timezone.utc).isoformat(),
    }


class AnalyticsJob:
    """Handler for calculate-analytics jobs; publishes the result to the cache."""

    def __init__(
        self,
        source: UserRecordSource,
        cache: RequestCache | None = None,
        ttl_seconds: int = 2 * 3600,
    ):
        self.source = source
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def __call__(self, job: Job) -> dict[str, Any]:
        logger.info("Calculating user analytics...")
        users = await self.source.list_users()
        analytics = aggregate(users)

        if self.cache is not None:
            await self.cache.set(ANALYTICS_CACHE_KEY, analytics, self.ttl_seconds)

        logger.info(f"Analytics calculated for {analytics['totalUsers']} users")
        return analytics
