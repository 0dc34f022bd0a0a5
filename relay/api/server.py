"""FastAPI server exposing the cache, rate limiter, job queue and providers."""

import hmac
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from relay.api.identity import HeaderIdentityProvider, Identity, IdentityProvider
from relay.api.middleware import RequestLoggingMiddleware
from relay.api.schemas import InvalidateRequest, LoginAttempt
from relay.container import Container
from relay.exceptions import (
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from relay.jobs.handlers.analytics import aggregate
from relay.jobs.models import JobState, JobSubmission
from relay.services.cache import request_key
from relay.services.errors import (
    CacheUnavailable,
    RateLimitExceeded,
    StoreUnavailable,
    UpstreamUnavailable,
)
from relay.services.rate_limiter import RouteClass
from relay.utils import Clock

CredentialCheck = Callable[[str, str], Awaitable[bool]]


class RelayServer:
    """HTTP surface over the service container."""

    def __init__(
        self,
        container: Container,
        identity_provider: IdentityProvider | None = None,
        verify_credentials: CredentialCheck | None = None,
        manage_lifecycle: bool = True,
        clock: Clock | None = None,
    ):
        self.container = container
        self.identity_provider = identity_provider or HeaderIdentityProvider()
        self.verify_credentials = verify_credentials or self._check_admin_credentials
        self.clock = clock or container.clock

        self.app = FastAPI(
            title="Relay",
            lifespan=self._lifespan if manage_lifecycle else None,
        )
        self.app.add_middleware(RequestLoggingMiddleware, identity_provider=self.identity_provider)

        self.app.add_exception_handler(RateLimitExceeded, self._on_rate_limited)
        self.app.add_exception_handler(UpstreamUnavailable, self._on_upstream_unavailable)
        self.app.add_exception_handler(CacheUnavailable, self._on_store_unavailable)
        self.app.add_exception_handler(StoreUnavailable, self._on_store_unavailable)

        # Register routes
        self.app.get("/health")(self.health_check)
        self.app.get("/api/weather/{city}")(self.get_weather)
        self.app.get("/api/news")(self.get_news)
        self.app.get("/api/exchange/{base}")(self.get_exchange_rates)
        self.app.get("/api/github/{username}")(self.get_github_user)
        self.app.get("/api/quote")(self.get_quote)
        self.app.get("/api/random-user")(self.get_random_user)
        self.app.get("/api/stats")(self.get_stats)
        self.app.post("/api/auth/attempt")(self.login_attempt)
        self.app.post("/api/cache/invalidate")(self.invalidate_cache)
        self.app.post("/api/jobs", status_code=status.HTTP_202_ACCEPTED)(self.submit_job)
        self.app.get("/api/jobs/{job_id}")(self.get_job)
        self.app.post("/api/jobs/{job_id}/retry")(self.retry_job)
        self.app.get("/api/queues/{queue_name}")(self.get_queue_counts)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.container.start()
        try:
            yield
        finally:
            await self.container.stop()

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    async def _admit(self, request: Request, *route_classes: RouteClass) -> Identity:
        """Resolve the caller and run it through each route class in order."""
        identity = self.identity_provider.resolve(request)
        for route_class in route_classes:
            decision = await self.container.limiter.check(identity.id, route_class)
            if not decision.allowed:
                raise RateLimitExceeded(
                    route_class.value,
                    retry_after_ms=max(0, decision.reset_at - self.clock()),
                    message=decision.message,
                    reset_at=decision.reset_at,
                )
        return identity

    async def _admit_admin(self, request: Request) -> Identity:
        identity = await self._admit(request, RouteClass.GENERAL)
        if not identity.is_admin:
            logger.warning(f"Admin route {request.url.path} refused for {identity.id}")
            raise ForbiddenError()
        return identity

    async def _check_admin_credentials(self, username: str, password: str) -> bool:
        settings = self.container.settings
        if not settings.admin_username or not settings.admin_password:
            return False
        return hmac.compare_digest(username, settings.admin_username) and hmac.compare_digest(
            password, settings.admin_password
        )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    async def _on_rate_limited(self, request: Request, exc: RateLimitExceeded) -> JSONResponse:
        reset_at = exc.reset_at if exc.reset_at is not None else self.clock() + exc.retry_after_ms
        retry_after_seconds = max(0, -(-exc.retry_after_ms // 1000))
        return JSONResponse(
            {"allowed": False, "message": str(exc), "retryAfter": reset_at},
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after_seconds)},
        )

    async def _on_upstream_unavailable(
        self, request: Request, exc: UpstreamUnavailable
    ) -> JSONResponse:
        return JSONResponse(
            {"success": False, "message": f"{exc.service_id} is temporarily unavailable"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    async def _on_store_unavailable(self, request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} failed, store unavailable: {exc}")
        return JSONResponse(
            {"success": False, "message": "Service temporarily unavailable"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    async def health_check(self) -> JSONResponse:
        """Health check endpoint."""
        store_ok = await self.container.store.ping()
        body = {
            "status": "ok" if store_ok else "degraded",
            "store": store_ok,
            "workers": self.container.workers.is_running(),
            "scheduler": self.container.scheduler.is_running(),
        }
        code = status.HTTP_200_OK if store_ok else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(body, status_code=code)

    async def get_weather(self, request: Request, city: str) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL, RouteClass.UPSTREAM)
        result = await self.container.gateway.fetch_weather(city)
        return result.to_response()

    async def get_news(
        self, request: Request, country: str = "us", category: str = "technology"
    ) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL, RouteClass.UPSTREAM)
        result = await self.container.gateway.fetch_news(country, category)
        return result.to_response()

    async def get_exchange_rates(self, request: Request, base: str) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL, RouteClass.UPSTREAM)
        result = await self.container.gateway.fetch_exchange_rates(base)
        return result.to_response()

    async def get_github_user(self, request: Request, username: str) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL, RouteClass.UPSTREAM)
        result = await self.container.gateway.fetch_github_user(username)
        return result.to_response()

    async def get_quote(self, request: Request) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL, RouteClass.UPSTREAM)
        result = await self.container.gateway.fetch_quote()
        return result.to_response()

    async def get_random_user(self, request: Request) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL, RouteClass.UPSTREAM)
        result = await self.container.gateway.fetch_random_user()
        return result.to_response()

    async def get_stats(self, request: Request) -> dict[str, Any]:
        """User statistics, response-cached by request key."""
        await self._admit(request, RouteClass.GENERAL)

        async def compute() -> dict[str, Any]:
            users = await self.container.user_source.list_users()
            return aggregate(users)

        key = request_key(request.method, request.url.path, dict(request.query_params))
        stats, from_cache = await self.container.cache.get_or_set(key, compute)
        return {"success": True, "data": stats, "cached": from_cache}

    async def login_attempt(self, request: Request, body: LoginAttempt) -> dict[str, Any]:
        """Credential check guarded by the failure-counting auth limiter."""
        identity = await self._admit(request, RouteClass.AUTH)
        success = await self.verify_credentials(body.username, body.password)
        await self.container.limiter.report(identity.id, RouteClass.AUTH, success)

        if not success:
            logger.warning(f"Failed login attempt for '{body.username}' from {identity.id}")
            raise UnauthorizedError()
        return {"success": True, "username": body.username}

    async def invalidate_cache(self, request: Request, body: InvalidateRequest) -> dict[str, int]:
        identity = await self._admit_admin(request)
        count = await self.container.cache.invalidate(body.pattern)
        logger.info(f"Cache invalidation '{body.pattern}' by {identity.id}: {count} entries")
        return {"count": count}

    async def submit_job(self, request: Request, body: JobSubmission) -> dict[str, str]:
        await self._admit(request, RouteClass.GENERAL)
        queue = self.container.queue
        if not queue.has_handler(body.queue_name, body.type):
            raise ValidationError(f"Unknown job type '{body.type}' for queue '{body.queue_name}'")

        job_id = await queue.enqueue(body.queue_name, body.type, body.data, body.options())
        return {"id": job_id, "state": JobState.WAITING.value}

    async def get_job(self, request: Request, job_id: str) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL)
        job = await self.container.queue.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job.to_public()

    async def retry_job(self, request: Request, job_id: str) -> dict[str, Any]:
        await self._admit_admin(request)
        if not await self.container.queue.retry_failed(job_id):
            raise NotFoundError(f"No failed job {job_id}")
        return {"id": job_id, "state": JobState.WAITING.value}

    async def get_queue_counts(self, request: Request, queue_name: str) -> dict[str, Any]:
        await self._admit(request, RouteClass.GENERAL)
        if queue_name not in self.container.queue.queue_names():
            raise NotFoundError(f"Queue {queue_name} not found")
        counts = await self.container.queue.counts(queue_name)
        return {"queue": queue_name, "counts": counts}


def create_app(
    container: Container,
    identity_provider: IdentityProvider | None = None,
    verify_credentials: CredentialCheck | None = None,
    manage_lifecycle: bool = True,
) -> FastAPI:
    """Create FastAPI app for the service container.

    Args:
        container: Service handles built by build_container
        identity_provider: Resolves the caller of each request
        verify_credentials: Credential check for the login-attempt route
        manage_lifecycle: Start and stop the container with the app

    Returns:
        FastAPI app
    """
    server = RelayServer(
        container,
        identity_provider=identity_provider,
        verify_credentials=verify_credentials,
        manage_lifecycle=manage_lifecycle,
    )
    return server.app
