"""
RequestCache - response cache on top of the shared StateStore.

Features:
- Deterministic keys from method + path + sorted query parameters
- Per-entry TTL, re-checked on read (expired entries are misses even if the
  store has not evicted them yet)
- Glob-pattern bulk invalidation
- Fails open: store errors turn reads into misses and writes into no-ops
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger

from relay.services.errors import CacheUnavailable, StoreUnavailable
from relay.services.store import StateStore
from relay.utils import Clock, now_ms

CACHE_NAMESPACE = "cache:"
CACHEABLE_METHODS = frozenset({"GET", "HEAD"})


@dataclass
class CachedValue:
    """A value served from cache."""

    value: Any
    key: str
    expires_at: int
    from_cache: bool = True


def request_key(
    method: str,
    path: str,
    query: Mapping[str, Any] | None = None,
) -> str | None:
    """
    Build the cache key for a request: ``<METHOD>:<path>[?<sorted-query>]``.

    Returns None for methods that are not read-only; such requests must never
    populate the cache.
    """
    method = method.upper()
    if method not in CACHEABLE_METHODS:
        return None

    key = f"{method}:{path}"
    if query:
        sorted_params = "&".join(f"{k}={query[k]}" for k in sorted(query))
        key = f"{key}?{sorted_params}"
    return key


class RequestCache:
    """
    Usage:
        cache = RequestCache(store)

        cached = await cache.get("weather:mumbai")
        if cached:
            return cached.value

        data = await fetch_weather()
        await cache.set("weather:mumbai", data, ttl_seconds=600)
    """

    def __init__(
        self,
        store: StateStore,
        default_ttl: int = 300,
        clock: Clock | None = None,
        debug: bool = False,
    ):
        self._store = store
        self._default_ttl = default_ttl
        self._clock = clock or now_ms
        self._debug = debug
        self._stats = CacheStats()

    @staticmethod
    def _full_key(key: str) -> str:
        return f"{CACHE_NAMESPACE}{key}"

    async def get(self, key: str) -> CachedValue | None:
        """Get a live entry, or None on miss. Never raises."""
        full_key = self._full_key(key)
        try:
            raw = await self._store.get(full_key)
        except StoreUnavailable as e:
            self._fail_open("read", full_key, e)
            return None

        if raw is None:
            self._stats.misses += 1
            self._log(f"MISS: {full_key[:80]}")
            return None

        try:
            envelope = json.loads(raw)
            expires_at = int(envelope["expires_at"])
            value = envelope["value"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {full_key[:80]}: {e}")
            self._stats.misses += 1
            return None

        if self._clock() >= expires_at:
            self._stats.misses += 1
            self._log(f"EXPIRED: {full_key[:80]}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {full_key[:80]}")
        return CachedValue(value=value, key=key, expires_at=expires_at)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """
        Store a JSON-serializable value, replacing any existing entry.

        Returns False if the write was skipped because the store is unavailable.
        """
        ttl_ms = (ttl_seconds if ttl_seconds is not None else self._default_ttl) * 1000
        full_key = self._full_key(key)
        envelope = {"value": value, "expires_at": self._clock() + ttl_ms}
        raw = json.dumps(envelope, default=str).encode("utf-8")

        try:
            await self._store.set(full_key, raw, ttl_ms=ttl_ms)
        except StoreUnavailable as e:
            self._fail_open("write", full_key, e)
            return False

        self._stats.sets += 1
        self._log(f"SET: {full_key[:80]} (TTL: {ttl_ms // 1000}s)")
        return True

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None = None,
    ) -> tuple[Any, bool]:
        """
        Return (value, from_cache). On a miss, compute() is awaited and its
        result cached; exceptions from compute() propagate and nothing is cached.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached.value, True

        value = await compute()
        await self.set(key, value, ttl_seconds)
        return value, False

    async def delete(self, key: str) -> bool:
        full_key = self._full_key(key)
        try:
            removed = await self._store.delete(full_key)
        except StoreUnavailable as e:
            raise CacheUnavailable(str(e)) from e
        return removed > 0

    async def invalidate(self, pattern: str = "*") -> int:
        """
        Remove every entry whose key matches a glob pattern.

        Args:
            pattern: Glob over cache keys, e.g. ``weather:*``; ``*`` clears all

        Returns:
            Number of entries removed (zero matches is not an error)

        Raises:
            CacheUnavailable: If the store cannot be reached
        """
        try:
            keys = await self._store.keys(self._full_key(pattern))
            removed = await self._store.delete(*keys) if keys else 0
        except StoreUnavailable as e:
            logger.error(f"Cache invalidation of '{pattern}' failed: {e}")
            raise CacheUnavailable(str(e)) from e

        self._stats.invalidations += removed
        logger.info(f"INVALIDATE: {removed} cache entries matching '{pattern}'")
        return removed

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        return self._stats

    def _fail_open(self, op: str, key: str, error: Exception) -> None:
        self._stats.errors += 1
        logger.warning(f"Cache {op} skipped for {key[:80]}, store unavailable: {error}")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[RequestCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    errors: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "errors": self.errors,
            "invalidations": self.invalidations,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
