"""
Audit recorder for job lifecycle events.
"""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from worker.audit.models import AuditLog, AuditStatus
from worker.config.logging import get_logger
from worker.core.exceptions import AuditWriteError
from worker.infra.database import Database

logger = get_logger(__name__)


class AuditRecorder:
    """
    Writes lifecycle events to the append-only audit log.

    Every call inserts and commits one row in its own session, so a
    recorded event is durable before the caller moves on. Storage failures
    are raised as AuditWriteError; the caller decides whether that aborts
    the job.
    """

    def __init__(self, database: Database):
        self.database = database

    async def record(
        self,
        source: str,
        action: str,
        status: AuditStatus,
        correlation_id: str | None,
        payload: dict[str, Any] | None,
    ) -> None:
        """Insert one audit entry."""
        entry = AuditLog(
            source=source,
            action=action,
            status=AuditStatus(status).value,
            correlation_id=correlation_id,
            payload=payload,
        )

        try:
            async with self.database.session() as session:
                session.add(entry)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "Audit write failed",
                action=action,
                status=entry.status,
                correlation_id=correlation_id,
                error=str(e),
            )
            raise AuditWriteError(
                f"Failed to write '{entry.status}' audit entry for {action}: {e}",
                {"action": action, "status": entry.status, "correlation_id": correlation_id},
            ) from e
