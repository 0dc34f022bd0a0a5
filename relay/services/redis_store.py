"""
RedisStateStore - StateStore on top of redis.asyncio.

Expiry is enforced by Redis itself (SET PX / PEXPIRE). Counter increments use
a MULTI/EXEC pipeline of INCR + PEXPIRE NX + PTTL, so the window expiry is set
exactly once, by the request that created the window.
"""

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from relay.services.errors import StoreUnavailable
from relay.services.store import CounterState, StateStore
from relay.utils import Clock, now_ms

# Decrement only a live, positive counter; a missing key must not be recreated
# without an expiry.
DECR_LIVE_SCRIPT = """
local value = redis.call('GET', KEYS[1])
if not value or tonumber(value) <= 0 then
    return {-1, -2}
end
return {redis.call('DECR', KEYS[1]), redis.call('PTTL', KEYS[1])}
"""

class RedisStateStore(StateStore):
    """
    Usage:
        store = RedisStateStore.from_url("redis://localhost:6379/0")
        await store.set("key", b"value", ttl_ms=60_000)
    """

    def __init__(self, client: aioredis.Redis, clock: Clock | None = None):
        self._redis = client
        self._clock = clock or now_ms

    @classmethod
    def from_url(cls, url: str, clock: Clock | None = None) -> "RedisStateStore":
        client = aioredis.from_url(
            url,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        return cls(client, clock=clock)

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"get failed: {e}") from e

    async def set(self, key: str, value: bytes, ttl_ms: int | None = None) -> None:
        try:
            await self._redis.set(key, value, px=ttl_ms or None)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"set failed: {e}") from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._redis.delete(*keys)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"delete failed: {e}") from e

    async def keys(self, pattern: str) -> list[str]:
        try:
            found = [key async for key in self._redis.scan_iter(match=pattern, count=500)]
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"keys failed: {e}") from e
        return [k.decode("utf-8") if isinstance(k, bytes) else k for k in found]

    async def incr(self, key: str, ttl_ms: int) -> CounterState:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.pexpire(key, ttl_ms, nx=True)
                pipe.pttl(key)
                count, _, pttl = await pipe.execute()
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"incr failed: {e}") from e

        if pttl is None or pttl < 0:
            pttl = ttl_ms
        return CounterState(count=int(count), expires_at=self._clock() + int(pttl))

    async def decr(self, key: str) -> CounterState | None:
        try:
            count, pttl = await self._redis.eval(DECR_LIVE_SCRIPT, 1, key)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"decr failed: {e}") from e

        if int(count) < 0 or int(pttl) < 0:
            return None
        return CounterState(count=int(count), expires_at=self._clock() + int(pttl))

    async def get_counter(self, key: str) -> CounterState | None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.get(key)
                pipe.pttl(key)
                value, pttl = await pipe.execute()
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"get_counter failed: {e}") from e

        if value is None or pttl is None or pttl < 0:
            return None
        return CounterState(count=int(value), expires_at=self._clock() + int(pttl))

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis connection: {e}")
