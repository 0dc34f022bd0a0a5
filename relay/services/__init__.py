"""
Service layer - shared state and the request-path guards built on it.

Provides:
- StateStore: Shared key-value store with expiry and atomic counters
  (SQLStateStore by default, RedisStateStore optional)
- RequestCache: Response cache with TTL and glob invalidation
- RateLimiter: Fixed-window limits per identity and route class
"""

from relay.services.errors import (
    ServiceError,
    StoreUnavailable,
    CacheUnavailable,
    UpstreamUnavailable,
    RateLimitExceeded,
    JobExecutionError,
    JobFatalError,
    UnknownJobType,
    SchedulerDuplicateTick,
)
from relay.services.store import StateStore, SQLStateStore, CounterState
from relay.services.redis_store import RedisStateStore
from relay.services.cache import RequestCache, CachedValue, CacheStats, request_key
from relay.services.rate_limiter import (
    RateLimiter,
    RateLimitDecision,
    RateLimitPolicy,
    RouteClass,
    FailureMode,
    default_policies,
)

__all__ = [
    # Errors
    "ServiceError",
    "StoreUnavailable",
    "CacheUnavailable",
    "UpstreamUnavailable",
    "RateLimitExceeded",
    "JobExecutionError",
    "JobFatalError",
    "UnknownJobType",
    "SchedulerDuplicateTick",
    # Store
    "StateStore",
    "SQLStateStore",
    "RedisStateStore",
    "CounterState",
    # Cache
    "RequestCache",
    "CachedValue",
    "CacheStats",
    "request_key",
    # Rate limiting
    "RateLimiter",
    "RateLimitDecision",
    "RateLimitPolicy",
    "RouteClass",
    "FailureMode",
    "default_policies",
]
