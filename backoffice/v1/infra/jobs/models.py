"""
Job queue models.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.infra.database import Base, UTCDateTime, utcnow


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({JobStatus.DONE.value, JobStatus.FAILED.value})


class JobType(str, Enum):
    """Job types the worker knows how to process."""

    SYNC_CUSTOMER = "sync_customer"
    SYNC_PROJECT = "sync_project"
    POST_TIME_ENTRY_COST = "post_time_entry_cost"


class Job(Base):
    """
    A unit of deferred work.

    Rows move PENDING -> RUNNING -> DONE | FAILED, returning to PENDING when a
    retryable failure is scheduled. The lease fields (``locked_at`` and
    ``locked_by``) are only set while RUNNING and are written by the claim
    statement alone.
    """

    __tablename__ = "job_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Job-specific parameters"
    )

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: PENDING|RUNNING|DONE|FAILED",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of executions started"
    )
    run_after: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="Earliest time the job may be claimed",
    )

    # Lease
    locked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="When the job was claimed"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID holding the lease"
    )

    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    dedupe_key: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Fingerprint of job_type and payload"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'DONE', 'FAILED')",
            name="job_queue_status_check",
        ),
        CheckConstraint("attempts >= 0", name="job_queue_attempts_check"),
        Index("ix_job_queue_status_run_after", "status", "run_after"),
        Index("ix_job_queue_type_status", "job_type", "status"),
        Index("ix_job_queue_created_at", "created_at"),
        # At most one PENDING job per fingerprint
        Index(
            "ix_job_queue_dedupe_pending",
            "dedupe_key",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def lease_expired(self, lease_ttl_s: int, now: datetime) -> bool:
        """Check whether a RUNNING job's lease is old enough to be reclaimed."""
        if self.status != JobStatus.RUNNING.value or self.locked_at is None:
            return False
        return (now - self.locked_at).total_seconds() > lease_ttl_s
