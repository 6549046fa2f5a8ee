"""
Queue broker boundary and its Postgres-backed implementation.

The worker only needs a narrow interface from the broker: claim one job,
report success or failure, keep in-flight jobs alive and hand back jobs
whose worker disappeared. Retry scheduling and the attempt budget live
here, never in the worker.
"""

import random
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, select, update

from worker.config.logging import get_logger
from worker.config.settings import Settings
from worker.infra.database import Database
from worker.jobs.models import JobStatus, QueuedJob
from worker.jobs.schemas import JobEnqueue, JobEnvelope, JobResult

logger = get_logger(__name__)


class FailureOutcome(str, Enum):
    """What the broker did with a failed delivery."""

    RETRY_SCHEDULED = "retry_scheduled"
    DEADLETTER = "deadletter"
    # The delivery lost its claim (stalled recovery); the row was left alone
    SUPERSEDED = "superseded"


class Broker(Protocol):
    """Interface the worker pool consumes."""

    async def claim(self, worker_id: str) -> JobEnvelope | None:
        """Lock and return the next deliverable job, or None when idle."""
        ...

    async def complete(self, job: JobEnvelope, result: JobResult) -> None:
        """Acknowledge a successful delivery."""
        ...

    async def fail(self, job: JobEnvelope, error: BaseException) -> FailureOutcome:
        """Record a failed delivery and schedule redelivery or dead-letter it."""
        ...

    async def heartbeat(self, worker_id: str, job_ids: Iterable[UUID | str]) -> None:
        """Mark in-flight jobs as still being worked on."""
        ...

    async def recover_stalled(self, visibility_timeout_s: int) -> int:
        """Requeue jobs with a stale heartbeat, dead-lettering those out of attempts."""
        ...


def calculate_retry_delay(
    attempt: int,
    base_ms: int,
    max_delay_s: float,
    rand: Callable[[], float] = random.random,
) -> float:
    """Exponential backoff with ±25% jitter, in seconds."""
    base_delay = base_ms / 1000

    # Exponential backoff: base * 2^(attempt - 1)
    delay = min(max_delay_s, base_delay * (2 ** max(0, attempt - 1)))

    jitter = delay * 0.25 * (2 * rand() - 1)
    return max(1.0, delay + jitter)


def to_envelope(job: QueuedJob) -> JobEnvelope:
    """Build the delivery view of a claimed row; attempts already counts this one."""
    return JobEnvelope(
        id=job.id,
        name=job.name,
        payload=dict(job.payload or {}),
        attempts_made=max(0, job.attempts - 1),
        created_at=job.created_at,
    )


def claimed_attempt(job: JobEnvelope) -> int:
    """The attempts value the row held when this delivery claimed it."""
    return job.attempts_made + 1


class PostgresBroker:
    """
    Postgres-backed queue.

    Features:
    - SELECT FOR UPDATE SKIP LOCKED for claiming jobs
    - Heartbeats and visibility timeout for stalled job recovery
    - Exponential backoff with jitter for retries
    - Dead-letter once the per-job attempt budget is exhausted
    """

    def __init__(self, settings: Settings, database: Database):
        self.settings = settings
        self.database = database
        self.queue = settings.queue_name

    async def enqueue(self, job_enqueue: JobEnqueue) -> UUID:
        """Add a job to the queue and return its id."""
        now = datetime.now(UTC)
        job = QueuedJob(
            id=uuid4(),
            queue=self.queue,
            name=job_enqueue.name,
            payload=job_enqueue.payload,
            status=JobStatus.QUEUED.value,
            run_at=job_enqueue.run_at or now,
            attempts=0,
            max_attempts=job_enqueue.max_attempts
            or self.settings.job_default_max_attempts,
            backoff_ms=(
                job_enqueue.backoff_ms
                if job_enqueue.backoff_ms is not None
                else self.settings.job_backoff_base_ms
            ),
            created_at=now,
            updated_at=now,
        )

        async with self.database.session() as session:
            session.add(job)
            await session.commit()

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            job_name=job.name,
            queue=self.queue,
            max_attempts=job.max_attempts,
        )
        return job.id

    async def claim(self, worker_id: str) -> JobEnvelope | None:
        while True:
            now = datetime.now(UTC)

            async with self.database.session() as session:
                claim_query = (
                    select(QueuedJob)
                    .where(
                        and_(
                            QueuedJob.queue == self.queue,
                            QueuedJob.status == JobStatus.QUEUED.value,
                            QueuedJob.run_at <= now,
                        )
                    )
                    .order_by(QueuedJob.run_at, QueuedJob.created_at)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )

                result = await session.execute(claim_query)
                job = result.scalar_one_or_none()
                if job is None:
                    return None

                if not isinstance(job.payload, dict):
                    # No handler can take it; keep it out of the queue for good
                    job.status = JobStatus.DEADLETTER.value
                    job.last_error = "Job payload is not a JSON object"
                    job.updated_at = now
                    await session.commit()

                    logger.error(
                        "Job permanently failed",
                        job_id=str(job.id),
                        job_name=job.name,
                        error=job.last_error,
                    )
                    continue

                job.status = JobStatus.RUNNING.value
                job.locked_at = now
                job.locked_by = worker_id
                job.heartbeat_at = now
                job.attempts = job.attempts + 1
                job.updated_at = now
                envelope = to_envelope(job)
                await session.commit()

            logger.debug(
                "Claimed job",
                worker_id=worker_id,
                job_id=str(envelope.id),
                job_name=envelope.name,
                attempts=envelope.attempts_made + 1,
            )
            return envelope

    def _held_by(self, job: JobEnvelope):
        """Rows still running under the claim this delivery made."""
        return and_(
            QueuedJob.id == job.id,
            QueuedJob.status == JobStatus.RUNNING.value,
            QueuedJob.attempts == claimed_attempt(job),
        )

    async def complete(self, job: JobEnvelope, result: JobResult) -> None:
        async with self.database.session() as session:
            if self.settings.job_remove_on_complete:
                outcome = await session.execute(
                    delete(QueuedJob).where(self._held_by(job))
                )
            else:
                outcome = await session.execute(
                    update(QueuedJob)
                    .where(self._held_by(job))
                    .values(
                        status=JobStatus.SUCCEEDED.value,
                        result=result.to_dict(),
                        locked_at=None,
                        locked_by=None,
                        heartbeat_at=None,
                        updated_at=datetime.now(UTC),
                    )
                )
            await session.commit()

        if not outcome.rowcount:
            # Recovered as stalled meanwhile; the job is redelivered
            logger.warning(
                "Completed job no longer held by this delivery",
                job_id=str(job.id),
                job_name=job.name,
            )

    async def fail(self, job: JobEnvelope, error: BaseException) -> FailureOutcome:
        now = datetime.now(UTC)

        async with self.database.session() as session:
            row = await session.get(QueuedJob, job.id, with_for_update=True)
            if (
                row is None
                or row.status != JobStatus.RUNNING.value
                or row.attempts != claimed_attempt(job)
            ):
                logger.warning(
                    "Failed job no longer held by this delivery",
                    job_id=str(job.id),
                    job_name=job.name,
                    error=str(error),
                )
                return FailureOutcome.SUPERSEDED

            values: dict[str, Any] = {
                "locked_at": None,
                "locked_by": None,
                "heartbeat_at": None,
                "last_error": str(error),
                "updated_at": now,
            }

            if row.can_retry():
                delay_s = calculate_retry_delay(
                    row.attempts, row.backoff_ms, self.settings.job_max_backoff_s
                )
                values["status"] = JobStatus.QUEUED.value
                values["run_at"] = now + timedelta(seconds=delay_s)
                outcome = FailureOutcome.RETRY_SCHEDULED
            else:
                values["status"] = JobStatus.DEADLETTER.value
                outcome = FailureOutcome.DEADLETTER

            await session.execute(
                update(QueuedJob).where(QueuedJob.id == job.id).values(**values)
            )
            await session.commit()

        logger.info(
            "Recorded job failure",
            job_id=str(job.id),
            outcome=outcome.value,
            attempts=row.attempts,
            max_attempts=row.max_attempts,
            next_run_at=values["run_at"].isoformat() if "run_at" in values else None,
        )
        return outcome

    async def heartbeat(self, worker_id: str, job_ids: Iterable[UUID | str]) -> None:
        ids = list(job_ids)
        if not ids:
            return

        async with self.database.session() as session:
            await session.execute(
                update(QueuedJob)
                .where(
                    and_(
                        QueuedJob.id.in_(ids),
                        QueuedJob.locked_by == worker_id,
                    )
                )
                .values(heartbeat_at=datetime.now(UTC))
            )
            await session.commit()

    async def recover_stalled(self, visibility_timeout_s: int) -> int:
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=visibility_timeout_s)
        stalled = and_(
            QueuedJob.queue == self.queue,
            QueuedJob.status == JobStatus.RUNNING.value,
            QueuedJob.heartbeat_at < cutoff,
        )
        released = {
            "locked_at": None,
            "locked_by": None,
            "heartbeat_at": None,
            "updated_at": now,
        }
        reason = f"Job stalled: no heartbeat for {visibility_timeout_s}s"

        async with self.database.session() as session:
            # A job that kills its worker on every delivery must still run out of attempts
            exhausted = await session.execute(
                update(QueuedJob)
                .where(and_(stalled, QueuedJob.attempts >= QueuedJob.max_attempts))
                .values(status=JobStatus.DEADLETTER.value, last_error=reason, **released)
                .returning(QueuedJob.id, QueuedJob.name, QueuedJob.attempts)
            )
            deadlettered = exhausted.all()

            requeued = await session.execute(
                update(QueuedJob)
                .where(and_(stalled, QueuedJob.attempts < QueuedJob.max_attempts))
                .values(status=JobStatus.QUEUED.value, last_error=reason, **released)
            )
            await session.commit()

        for job_id, job_name, attempts in deadlettered:
            logger.error(
                "Job permanently failed",
                job_id=str(job_id),
                job_name=job_name,
                attempts_made=attempts,
                error=reason,
            )

        recovered = requeued.rowcount or 0
        if recovered:
            logger.warning(
                "Recovered stalled jobs",
                stalled_job_count=recovered,
                timeout_seconds=visibility_timeout_s,
            )
        return recovered + len(deadlettered)
