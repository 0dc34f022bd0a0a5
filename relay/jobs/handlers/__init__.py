"""
Built-in job handlers.
"""

from relay.jobs.handlers.analytics import (
    ANALYTICS_CACHE_KEY,
    CALCULATE_ANALYTICS,
    DATA_QUEUE,
    AnalyticsJob,
    StaticUserSource,
    UserRecord,
    UserRecordSource,
)
from relay.jobs.handlers.cleanup import PRUNE_STALE, CleanupJob
from relay.jobs.handlers.email import (
    EMAIL_QUEUE,
    SEND_EMAIL,
    EmailJob,
    EmailMessage,
    LogMailer,
    Mailer,
    send_email,
    send_welcome,
)

__all__ = [
    "ANALYTICS_CACHE_KEY",
    "CALCULATE_ANALYTICS",
    "DATA_QUEUE",
    "EMAIL_QUEUE",
    "PRUNE_STALE",
    "SEND_EMAIL",
    "AnalyticsJob",
    "CleanupJob",
    "EmailJob",
    "EmailMessage",
    "LogMailer",
    "Mailer",
    "StaticUserSource",
    "UserRecord",
    "UserRecordSource",
    "send_email",
    "send_welcome",
]
