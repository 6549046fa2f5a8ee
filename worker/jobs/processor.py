"""
Executes one job delivery with audit-trail bookkeeping.
"""

from datetime import UTC, datetime
from typing import Any, Protocol

from worker.audit.models import AuditStatus
from worker.config.logging import bind_job_context, get_logger
from worker.core.registries import JobRegistry
from worker.jobs.schemas import JobContext, JobEnvelope, JobResult

logger = get_logger(__name__)

AUDIT_SOURCE = "queue"


class AuditSink(Protocol):
    async def record(
        self,
        source: str,
        action: str,
        status: AuditStatus,
        correlation_id: str | None,
        payload: dict[str, Any] | None,
    ) -> None: ...


class JobProcessor:
    """
    Runs the workflow handler registered for a job and audits the delivery.

    Every delivery writes a ``started`` entry before the handler runs and
    exactly one ``completed`` or ``failed`` entry after it. Handler errors
    are re-raised unchanged so the broker can decide on redelivery; this
    class never schedules retries itself.
    """

    def __init__(self, registry: JobRegistry, recorder: AuditSink):
        self.registry = registry
        self.recorder = recorder

    async def process(self, job: JobEnvelope) -> JobResult:
        correlation_id = job.correlation_id
        bind_job_context(
            job_id=str(job.id),
            job_name=job.name,
            correlation_id=correlation_id,
            attempts_made=job.attempts_made,
        )

        # A failed started write aborts the job before any business logic runs
        await self.recorder.record(
            AUDIT_SOURCE, job.name, AuditStatus.STARTED, correlation_id, job.payload
        )
        logger.info("Processing job started")

        handler = self.registry.find(job.name)
        result: dict[str, Any] | None = None

        if handler is None:
            # Shared queue: jobs meant for other consumers are acknowledged untouched
            logger.info("No handler registered for job, skipping")
        else:
            try:
                result = await handler.handle(JobContext.from_envelope(job), job.payload)
            except Exception as e:
                logger.error(
                    "Processing job failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self.recorder.record(
                    AUDIT_SOURCE,
                    job.name,
                    AuditStatus.FAILED,
                    correlation_id,
                    {"error": str(e), "originalPayload": job.payload},
                )
                raise

        await self.recorder.record(
            AUDIT_SOURCE, job.name, AuditStatus.COMPLETED, correlation_id, job.payload
        )
        logger.info("Processing job completed successfully")

        return JobResult(ok=True, processed_at=datetime.now(UTC), result=result)
