"""
StateStore - shared key-value state with expiry and atomic counters.

The store is the single source of truth for cache entries and rate-limit
windows. Every process talks to the same store; correctness relies on the
store's atomic primitives, never on in-process locks.

Implementations:
- SQLStateStore: SQLAlchemy tables (default, durable)
- RedisStateStore: redis.asyncio (see relay.services.redis_store)
"""

import fnmatch
from abc import ABC, abstractmethod
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from relay.datastore.engine import Database
from relay.datastore.models import CounterDB, KVEntryDB
from relay.services.errors import StoreUnavailable
from relay.utils import Clock, glob_to_like, now_ms


@dataclass
class CounterState:
    """Value of an atomic counter and the epoch-ms at which it expires."""

    count: int
    expires_at: int


class StateStore(ABC):
    """Interface of the shared state store. All methods raise StoreUnavailable."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the value for key, or None if absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl_ms: int | None = None) -> None:
        """Store value under key, replacing any existing value."""
        ...

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys (values and counters). Returns number removed."""
        ...

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """Return live value keys matching a glob pattern."""
        ...

    @abstractmethod
    async def incr(self, key: str, ttl_ms: int) -> CounterState:
        """
        Atomically increment a counter.

        A missing or expired counter restarts at 1 and expires ttl_ms from now;
        a live counter keeps its original expiry.
        """
        ...

    @abstractmethod
    async def decr(self, key: str) -> CounterState | None:
        """
        Atomically give back one unit of a live counter, never below zero.

        The expiry is left unchanged. Returns None if the counter is missing
        or expired.
        """
        ...

    @abstractmethod
    async def get_counter(self, key: str) -> CounterState | None:
        """Read a live counter without modifying it."""
        ...

    async def purge_expired(self) -> int:
        """Physically remove expired entries. Returns number removed."""
        return 0

    async def ping(self) -> bool:
        try:
            await self.get("__ping__")
            return True
        except StoreUnavailable:
            return False

    async def close(self) -> None:
        pass


class SQLStateStore(StateStore):
    """
    StateStore backed by the kv_entries and rate_counters tables.

    Counter increments use a single INSERT ... ON CONFLICT DO UPDATE statement,
    so concurrent increments on the same key are serialized by the database.
    """

    def __init__(self, db: Database, clock: Clock | None = None):
        self._db = db
        self._clock = clock or now_ms

    def _insert(self, model):
        if self._db.dialect == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    async def get(self, key: str) -> bytes | None:
        now = self._clock()
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(KVEntryDB.value).where(
                        KVEntryDB.key == key,
                        or_(KVEntryDB.expires_at.is_(None), KVEntryDB.expires_at > now),
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"get failed: {e}") from e

    async def set(self, key: str, value: bytes, ttl_ms: int | None = None) -> None:
        expires_at = self._clock() + ttl_ms if ttl_ms else None
        stmt = self._insert(KVEntryDB).values(key=key, value=value, expires_at=expires_at)
        stmt = stmt.on_conflict_do_update(
            index_elements=[KVEntryDB.key],
            set_={"value": stmt.excluded.value, "expires_at": stmt.excluded.expires_at},
        )
        try:
            async with self._db.session() as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"set failed: {e}") from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            async with self._db.session() as session:
                values = await session.execute(
                    delete(KVEntryDB).where(KVEntryDB.key.in_(keys))
                )
                counters = await session.execute(
                    delete(CounterDB).where(CounterDB.key.in_(keys))
                )
                return (values.rowcount or 0) + (counters.rowcount or 0)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"delete failed: {e}") from e

    async def keys(self, pattern: str) -> list[str]:
        now = self._clock()
        # LIKE only narrows the candidates: it has no character classes and
        # SQLite compares ASCII case-insensitively. fnmatchcase decides.
        bracket = pattern.find("[")
        like = glob_to_like(pattern) if bracket < 0 else glob_to_like(pattern[:bracket]) + "%"
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(KVEntryDB.key).where(
                        KVEntryDB.key.like(like, escape="\\"),
                        or_(KVEntryDB.expires_at.is_(None), KVEntryDB.expires_at > now),
                    )
                )
                found = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"keys failed: {e}") from e

        return [k for k in found if fnmatch.fnmatchcase(k, pattern)]

    async def incr(self, key: str, ttl_ms: int) -> CounterState:
        now = self._clock()
        expired = CounterDB.expires_at <= now
        stmt = self._insert(CounterDB).values(key=key, count=1, expires_at=now + ttl_ms)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CounterDB.key],
            set_={
                "count": case((expired, 1), else_=CounterDB.count + 1),
                "expires_at": case(
                    (expired, stmt.excluded.expires_at), else_=CounterDB.expires_at
                ),
            },
        ).returning(CounterDB.count, CounterDB.expires_at)
        try:
            async with self._db.session() as session:
                count, expires_at = (await session.execute(stmt)).one()
                return CounterState(count=count, expires_at=expires_at)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"incr failed: {e}") from e

    async def decr(self, key: str) -> CounterState | None:
        now = self._clock()
        stmt = (
            update(CounterDB)
            .where(CounterDB.key == key, CounterDB.expires_at > now, CounterDB.count > 0)
            .values(count=CounterDB.count - 1)
            .returning(CounterDB.count, CounterDB.expires_at)
        )
        try:
            async with self._db.session() as session:
                row = (await session.execute(stmt)).one_or_none()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"decr failed: {e}") from e

        if row is None:
            return None
        return CounterState(count=row[0], expires_at=row[1])

    async def get_counter(self, key: str) -> CounterState | None:
        now = self._clock()
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(CounterDB.count, CounterDB.expires_at).where(
                        CounterDB.key == key, CounterDB.expires_at > now
                    )
                )
                row = result.one_or_none()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"get_counter failed: {e}") from e

        if row is None:
            return None
        return CounterState(count=row[0], expires_at=row[1])

    async def purge_expired(self) -> int:
        now = self._clock()
        try:
            async with self._db.session() as session:
                values = await session.execute(
                    delete(KVEntryDB).where(
                        KVEntryDB.expires_at.is_not(None), KVEntryDB.expires_at <= now
                    )
                )
                counters = await session.execute(
                    delete(CounterDB).where(CounterDB.expires_at <= now)
                )
                removed = (values.rowcount or 0) + (counters.rowcount or 0)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"purge failed: {e}") from e

        if removed:
            logger.debug(f"Purged {removed} expired state entries")
        return removed
