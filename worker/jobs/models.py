"""
Queue table backing the Postgres broker.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, Index, Integer, SmallInteger, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from worker.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    DEADLETTER = "deadletter"


class QueuedJob(Base):
    """
    A job waiting for, or undergoing, delivery to a worker.

    Provides at-least-once delivery with:
    - Worker coordination (locking, heartbeats)
    - Per-job attempt budget and exponential backoff base
    - Last error kept for dead-lettered jobs
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    queue: Mapped[str] = mapped_column(Text, nullable=False, comment="Queue name")
    name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job name selecting a workflow handler"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Job-specific parameters",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.QUEUED.value,
        comment="Job status: queued|running|succeeded|deadletter",
    )
    run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="now()",
        default=lambda: datetime.now(UTC),
        comment="Earliest time to deliver job",
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Deliveries started so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Delivery budget"
    )
    backoff_ms: Mapped[int] = mapped_column(
        Integer, nullable=False, default=2000, comment="Exponential backoff base"
    )

    # Worker coordination
    locked_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When job was locked by worker"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that locked the job"
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Last worker heartbeat"
    )

    # Results
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Job result data"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="now()",
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default="now()",
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'running', 'succeeded', 'deadletter')",
            name="jobs_status_check",
        ),
        CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
        Index("ix_jobs_queue_status_run_at", "queue", "status", "run_at"),
        Index("ix_jobs_heartbeat_at", "heartbeat_at"),
    )

    def can_retry(self) -> bool:
        """Check whether another delivery fits in the attempt budget."""
        return self.attempts < self.max_attempts
