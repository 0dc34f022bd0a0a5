"""
Database models.
SQLAlchemy 2.0 declarative mappings; all timestamps are epoch milliseconds.
"""

from sqlalchemy import BigInteger, Boolean, Index, Integer, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class KVEntryDB(Base):
    """Key-value entries (cache payloads)."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    expires_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<KVEntry(key={self.key}, expires_at={self.expires_at})>"


class CounterDB(Base):
    """Atomic counters with expiry (rate-limit windows)."""

    __tablename__ = "rate_counters"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Counter(key={self.key}, count={self.count})>"


class JobDB(Base):
    """Durable background jobs."""

    __tablename__ = "jobs"

    # Monotonic submission sequence, used as the FIFO tie-breaker
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    queue_name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    backoff_kind: Mapped[str] = mapped_column(String(32), nullable=False, default="fixed")
    backoff_delay_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    scheduled_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    lease_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_until: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    remove_on_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trigger_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    period_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    finished_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_jobs_claim", "queue_name", "state", "scheduled_at", "seq"),
        Index("idx_jobs_lease", "state", "lease_until"),
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, queue={self.queue_name}, type={self.type}, state={self.state})>"


class TriggerFiringDB(Base):
    """One row per (trigger, period) that has been enqueued."""

    __tablename__ = "trigger_firings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger_id: Mapped[str] = mapped_column(String(255), nullable=False)
    period_key: Mapped[str] = mapped_column(String(64), nullable=False)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    fired_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("trigger_id", "period_key", name="uq_trigger_period"),
    )

    def __repr__(self) -> str:
        return f"<TriggerFiring(trigger={self.trigger_id}, period={self.period_key})>"
