"""
Shared fixtures.

Storage fixtures run against a real SQLite file per test; time is driven by
FakeClock so window, TTL, backoff and lease behavior is deterministic.
"""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from relay.datastore.engine import Database
from relay.datastore.repositories import JobRepository
from relay.jobs.queue import JobQueue
from relay.services.cache import RequestCache
from relay.services.errors import StoreUnavailable
from relay.services.rate_limiter import RateLimiter
from relay.services.store import CounterState, SQLStateStore, StateStore
from relay.settings import Settings

START_MS = 1_700_000_000_000  # 2023-11-14T22:13:20Z


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class BrokenStore(StateStore):
    """A store whose every operation fails as if the backend were down."""

    async def get(self, key: str) -> bytes | None:
        raise StoreUnavailable("connection refused")

    async def set(self, key: str, value: bytes, ttl_ms: int | None = None) -> None:
        raise StoreUnavailable("connection refused")

    async def delete(self, *keys: str) -> int:
        raise StoreUnavailable("connection refused")

    async def keys(self, pattern: str) -> list[str]:
        raise StoreUnavailable("connection refused")

    async def incr(self, key: str, ttl_ms: int) -> CounterState:
        raise StoreUnavailable("connection refused")

    async def decr(self, key: str) -> CounterState | None:
        raise StoreUnavailable("connection refused")

    async def get_counter(self, key: str) -> CounterState | None:
        raise StoreUnavailable("connection refused")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'relay-test.db'}"


@pytest_asyncio.fixture
async def db(db_url) -> AsyncIterator[Database]:
    database = Database(db_url)
    await database.init()
    yield database
    await database.close()


@pytest.fixture
def store(db, clock) -> SQLStateStore:
    return SQLStateStore(db, clock=clock)


@pytest.fixture
def broken_store() -> BrokenStore:
    return BrokenStore()


@pytest.fixture
def cache(store, clock) -> RequestCache:
    return RequestCache(store, default_ttl=300, clock=clock)


@pytest.fixture
def limiter(store, clock) -> RateLimiter:
    return RateLimiter(store, clock=clock)


@pytest.fixture
def queue(db, clock) -> JobQueue:
    return JobQueue(JobRepository(db), lease_ms=30_000, clock=clock)


@pytest.fixture
def settings(db_url) -> Settings:
    return Settings(
        database_url=db_url,
        weather_api_key="weather-key",
        news_api_key="news-key",
        exchange_api_key="exchange-key",
        admin_username="admin",
        admin_password="s3cret",
        scheduler_enabled=False,
    )
