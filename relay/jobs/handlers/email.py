"""
Email jobs - outbound notifications sent off the request path.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel, ValidationError

from relay.jobs.models import Backoff, Job, JobOptions
from relay.jobs.queue import JobQueue
from relay.services.errors import JobFatalError

EMAIL_QUEUE = "email-queue"
SEND_EMAIL = "send-email"

EMAIL_OPTIONS = JobOptions(
    max_attempts=3,
    backoff=Backoff(kind="exponential", base_delay_ms=2000),
    remove_on_complete=True,
)


class EmailMessage(BaseModel):
    """Payload of a send-email job."""

    to: str
    subject: str
    body: str = ""
    type: str = "generic"


class Mailer(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class LogMailer:
    """Mailer that only logs; stands in for an SMTP or provider integration."""

    def __init__(self, delay: float = 1.0):
        self.delay = delay

    async def send(self, message: EmailMessage) -> None:
        await asyncio.sleep(self.delay)
        logger.info(f"Email sent: {message.subject} to {message.to}")


class EmailJob:
    """Handler for send-email jobs."""

    def __init__(self, mailer: Mailer):
        self.mailer = mailer

    async def __call__(self, job: Job) -> dict[str, Any]:
        try:
            message = EmailMessage.model_validate(job.payload)
        except ValidationError as e:
            raise JobFatalError(f"Malformed email payload: {e.error_count()} error(s)") from e

        logger.info(f"Processing email: {message.type} to {message.to}")
        await self.mailer.send(message)
        return {"success": True, "sentAt": datetime.now(timezone.utc).isoformat()}


async def send_email(
    queue: JobQueue,
    to: str,
    subject: str,
    body: str = "",
    type: str = "generic",
) -> str:
    """Queue an email for delivery with retries."""
    message = EmailMessage(to=to, subject=subject, body=body, type=type)
    return await queue.enqueue(EMAIL_QUEUE, SEND_EMAIL, message.model_dump(), EMAIL_OPTIONS)


async def send_welcome(queue: JobQueue, email: str, name: str) -> str:
    """Queue the welcome notification for a newly registered user."""
    return await send_email(
        queue,
        to=email,
        subject="Welcome aboard!",
        body=f"Hi {name}, thanks for registering.",
        type="welcome",
    )
