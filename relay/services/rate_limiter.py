"""
RateLimiter - fixed-window request gating per (identity, route class).

Windows live in the shared StateStore as atomic counters. A window opens on
the first counted request and expires exactly ``window_ms`` later; the next
counted request after that opens a fresh window at count 1.

Route classes with ``skip_successful`` (authentication) only count failed
attempts. ``check`` reserves a slot with the same atomic increment as every
other class, so concurrent attempts cannot overrun the limit; the caller then
reports the outcome with ``report`` and a success gives its slot back.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from relay.services.errors import StoreUnavailable
from relay.services.store import CounterState, StateStore
from relay.utils import Clock, now_ms


class RouteClass(str, Enum):
    """Route classes with independent limit policies."""

    GENERAL = "general"
    AUTH = "auth"
    UPSTREAM = "upstream"


class FailureMode(str, Enum):
    """What the limiter does when the store cannot be reached."""

    OPEN = "open"  # admit every request
    CLOSED = "closed"  # reject every request


@dataclass
class RateLimitPolicy:
    """Limit policy for one route class."""

    limit: int
    window_ms: int
    skip_successful: bool = False
    message: str = "Too many requests. Please try again later."


def default_policies() -> dict[RouteClass, RateLimitPolicy]:
    return {
        RouteClass.GENERAL: RateLimitPolicy(
            limit=100,
            window_ms=15 * 60 * 1000,
            message="Too many requests. Please try again later.",
        ),
        RouteClass.AUTH: RateLimitPolicy(
            limit=5,
            window_ms=15 * 60 * 1000,
            skip_successful=True,
            message="Too many login attempts, please try again after 15 minutes.",
        ),
        RouteClass.UPSTREAM: RateLimitPolicy(
            limit=10,
            window_ms=60 * 1000,
            message="Too many API requests, please slow down.",
        ),
    }


@dataclass
class RateLimitDecision:
    """Outcome of a rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch ms at which the window resets
    route_class: RouteClass
    message: str = ""
    degraded: bool = False  # decided by failure mode, not by the store

    def retry_after_seconds(self, now: int) -> int:
        return max(0, -(-(self.reset_at - now) // 1000))

    def to_payload(self) -> dict[str, Any]:
        """Structured rejection payload surfaced to the caller."""
        return {
            "allowed": self.allowed,
            "message": self.message,
            "retryAfter": self.reset_at,
        }


class RateLimiter:
    """
    Usage:
        limiter = RateLimiter(store)

        decision = await limiter.check(user_id, RouteClass.UPSTREAM)
        if not decision.allowed:
            return JSONResponse(decision.to_payload(), status_code=429)
    """

    KEY_PREFIX = "ratelimit"

    def __init__(
        self,
        store: StateStore,
        policies: dict[RouteClass, RateLimitPolicy] | None = None,
        failure_mode: FailureMode | str = FailureMode.OPEN,
        clock: Clock | None = None,
    ):
        self._store = store
        self._policies = policies or default_policies()
        self._failure_mode = FailureMode(failure_mode)
        self._clock = clock or now_ms
        logger.info(f"Rate limiter fails {self._failure_mode.value} when the store is unavailable")

    @property
    def failure_mode(self) -> FailureMode:
        return self._failure_mode

    def policy(self, route_class: RouteClass | str) -> RateLimitPolicy:
        return self._policies[RouteClass(route_class)]

    def _make_key(self, identity: str, route_class: RouteClass) -> str:
        return f"{self.KEY_PREFIX}:{route_class.value}:{identity}"

    async def check(self, identity: str, route_class: RouteClass | str) -> RateLimitDecision:
        """
        Count a request against its window and decide whether it is admitted.

        Exceeding the limit is an expected outcome and returns a decision with
        ``allowed=False``; it never raises.
        """
        route_class = RouteClass(route_class)
        policy = self._policies[route_class]
        key = self._make_key(identity, route_class)

        try:
            state = await self._store.incr(key, policy.window_ms)
        except StoreUnavailable as e:
            return self._degraded(route_class, policy, e)

        count, reset_at = state.count, state.expires_at
        allowed = count <= policy.limit
        remaining = max(0, policy.limit - count)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded: identity={identity} class={route_class.value} "
                f"count={count} limit={policy.limit}"
            )
            if policy.skip_successful:
                # a rejected attempt never runs, so it is neither success nor failure
                await self._release(identity, route_class)
            return RateLimitDecision(
                allowed=False,
                limit=policy.limit,
                remaining=0,
                reset_at=reset_at,
                route_class=route_class,
                message=policy.message,
            )

        return RateLimitDecision(
            allowed=True,
            limit=policy.limit,
            remaining=remaining,
            reset_at=reset_at,
            route_class=route_class,
        )

    async def report(self, identity: str, route_class: RouteClass | str, success: bool) -> None:
        """
        Report the outcome of a request checked under a failure-only class.

        The slot reserved by ``check`` is released for a success and kept for
        a failure. For classes that count every request this is a no-op.
        """
        route_class = RouteClass(route_class)
        policy = self._policies[route_class]
        if not policy.skip_successful or not success:
            return

        state = await self._release(identity, route_class)
        if state is not None:
            logger.debug(
                f"Successful attempt released: identity={identity} class={route_class.value} "
                f"count={state.count}/{policy.limit}"
            )

    async def _release(self, identity: str, route_class: RouteClass) -> CounterState | None:
        try:
            return await self._store.decr(self._make_key(identity, route_class))
        except StoreUnavailable as e:
            logger.warning(f"Could not release attempt slot for {identity}: {e}")
            return None

    async def reset(self, identity: str, route_class: RouteClass | str) -> bool:
        """Clear the current window for an identity."""
        route_class = RouteClass(route_class)
        try:
            removed = await self._store.delete(self._make_key(identity, route_class))
        except StoreUnavailable as e:
            logger.error(f"Rate limit reset failed for {identity}: {e}")
            return False
        logger.info(f"Rate limit reset: identity={identity} class={route_class.value}")
        return removed > 0

    def _degraded(
        self, route_class: RouteClass, policy: RateLimitPolicy, error: Exception
    ) -> RateLimitDecision:
        allowed = self._failure_mode == FailureMode.OPEN
        logger.warning(
            f"Rate limit store unavailable, failing {self._failure_mode.value} "
            f"({'admitting' if allowed else 'rejecting'}) class={route_class.value}: {error}"
        )
        return RateLimitDecision(
            allowed=allowed,
            limit=policy.limit,
            remaining=policy.limit if allowed else 0,
            reset_at=self._clock() + policy.window_ms,
            route_class=route_class,
            message="" if allowed else "Rate limiting temporarily unavailable, please retry later.",
            degraded=True,
        )
