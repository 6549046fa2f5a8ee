"""
Audit trail models.

The audit log is append-only: rows are inserted once per lifecycle
transition of a job delivery and never updated or deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, BigInteger, Index, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from worker.infra.database import Base


class AuditStatus(str, Enum):
    """Lifecycle transition recorded for a job delivery."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditLog(Base):
    """One lifecycle event of one job delivery."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    source: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )

    __table_args__ = (
        Index("ix_audit_log_correlation_id", "correlation_id"),
        Index("ix_audit_log_created_at", "created_at"),
    )
