"""
Job queue types using Pydantic models.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):
    """
    Job lifecycle.

    created -> waiting -> active -> completed
                  ^          |
                  +- retry --+-> failed (terminal)
    """

    CREATED = "created"
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class Backoff(BaseModel):
    """Delay policy between retry attempts."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["fixed", "exponential"] = "fixed"
    base_delay_ms: int = Field(default=0, ge=0, alias="baseDelayMs")

    def delay_for(self, attempts: int) -> int:
        """Delay before the retry that follows failed attempt number ``attempts``."""
        if self.kind == "exponential":
            return self.base_delay_ms * 2 ** max(0, attempts - 1)
        return self.base_delay_ms


class JobOptions(BaseModel):
    """Per-job submission options."""

    max_attempts: int = Field(default=1, ge=1)
    backoff: Backoff = Field(default_factory=Backoff)
    delay_ms: int = Field(default=0, ge=0)
    remove_on_complete: bool = False


class Job(BaseModel):
    """A unit of background work."""

    id: str
    queue_name: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 1
    backoff: Backoff = Field(default_factory=Backoff)
    state: JobState = JobState.CREATED
    scheduled_at: int
    last_error: str | None = None
    result: Any = None
    remove_on_complete: bool = False
    trigger_id: str | None = None
    period_key: str | None = None
    lease_token: str | None = None
    lease_until: int | None = None
    created_at: int
    updated_at: int
    finished_at: int | None = None

    @property
    def attempts_left(self) -> int:
        return self.max_attempts - self.attempts

    def to_public(self) -> dict[str, Any]:
        """Job status as exposed to API callers."""
        return {
            "id": self.id,
            "queueName": self.queue_name,
            "type": self.type,
            "data": self.payload,
            "state": self.state.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "backoff": self.backoff.model_dump(by_alias=True),
            "scheduledAt": self.scheduled_at,
            "lastError": self.last_error,
            "result": self.result,
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
        }


class JobSubmission(BaseModel):
    """Job submission payload: {queueName, type, data, maxAttempts, backoff}."""

    model_config = ConfigDict(populate_by_name=True)

    queue_name: str = Field(alias="queueName", min_length=1, max_length=255)
    type: str = Field(min_length=1, max_length=255)
    data: dict[str, Any] = Field(default_factory=dict)
    max_attempts: int = Field(default=1, ge=1, le=100, alias="maxAttempts")
    backoff: Backoff = Field(default_factory=Backoff)
    delay_ms: int = Field(default=0, ge=0, alias="delayMs")

    def options(self) -> JobOptions:
        return JobOptions(
            max_attempts=self.max_attempts,
            backoff=self.backoff,
            delay_ms=self.delay_ms,
        )


class Trigger(BaseModel):
    """A recurring job submission on a cron cadence."""

    id: str
    cron_expression: str
    queue_name: str
    job_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    options: JobOptions = Field(default_factory=JobOptions)
    last_fired_period: str | None = None
