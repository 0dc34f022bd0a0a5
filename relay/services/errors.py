"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class StoreUnavailable(ServiceError):
    """Shared state store could not be reached."""

    pass


class CacheUnavailable(ServiceError):
    """Cache read or write failed because the store is unavailable."""

    pass


class UpstreamUnavailable(ServiceError):
    """Upstream provider timed out, failed, or returned an unusable response."""

    def __init__(self, service_id: str, reason: str = ""):
        self.reason = reason
        msg = f"Upstream service '{service_id}' unavailable"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, service_id=service_id)


class RateLimitExceeded(ServiceError):
    """Rate limit exceeded. Raised only at the HTTP edge."""

    def __init__(
        self,
        route_class: str,
        retry_after_ms: int,
        message: str = "",
        reset_at: int | None = None,
    ):
        self.route_class = route_class
        self.retry_after_ms = retry_after_ms
        self.reset_at = reset_at
        super().__init__(
            message or f"Rate limit exceeded for '{route_class}'",
            service_id=route_class,
        )


class JobExecutionError(ServiceError):
    """Job handler failed; the job is retried according to its backoff."""

    pass


class JobFatalError(JobExecutionError):
    """Job handler failed permanently; remaining attempts are skipped."""

    pass


class UnknownJobType(JobFatalError):
    """No handler registered for the job's queue and type."""

    def __init__(self, queue_name: str, job_type: str):
        self.queue_name = queue_name
        self.job_type = job_type
        super().__init__(f"No handler registered for '{queue_name}/{job_type}'")


class SchedulerDuplicateTick(ServiceError):
    """Another scheduler instance already enqueued this trigger period."""

    def __init__(self, trigger_id: str, period_key: str):
        self.trigger_id = trigger_id
        self.period_key = period_key
        super().__init__(
            f"Trigger '{trigger_id}' already fired for period {period_key}",
            service_id=trigger_id,
        )
