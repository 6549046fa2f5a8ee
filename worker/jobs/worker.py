"""
Fixed-size worker pool consuming the job queue.
"""

import asyncio
import os
import socket
from uuid import UUID

from worker.config.logging import get_logger
from worker.config.settings import Settings
from worker.jobs.broker import Broker, FailureOutcome
from worker.jobs.processor import JobProcessor
from worker.jobs.schemas import JobEnvelope

logger = get_logger(__name__)

CLAIM_ERROR_BACKOFF_S = 5


class JobWorker:
    """
    Queue consumer with a fixed number of independent slots.

    Features:
    - One job per slot at a time; slots never wait on each other
    - Heartbeats for in-flight jobs and stalled job recovery
    - Graceful shutdown: stop claiming, let in-flight jobs finish
    """

    def __init__(self, settings: Settings, broker: Broker, processor: JobProcessor):
        self.settings = settings
        self.broker = broker
        self.processor = processor
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.active_jobs: set[UUID | str] = set()
        self._stopping = asyncio.Event()

    @property
    def concurrency(self) -> int:
        return self.settings.worker_concurrency

    async def start(self) -> None:
        """Run the pool until stop() is called and in-flight jobs are done."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stopping.clear()
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            queue=self.settings.queue_name,
            concurrency=self.concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
        )

        # Background loops outlive the slots until in-flight jobs have drained
        background = [
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._stalled_job_recovery_loop()),
        ]
        try:
            await asyncio.gather(
                *(self._slot_loop(slot) for slot in range(self.concurrency))
            )
        finally:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
            self.running = False
            logger.info("Job worker stopped", worker_id=self.worker_id)

    def stop(self) -> None:
        """Signal the pool to stop; safe to call from a signal handler."""
        if not self._stopping.is_set():
            logger.info(
                "Stopping job worker",
                worker_id=self.worker_id,
                active_jobs=len(self.active_jobs),
            )
            self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def _sleep(self, seconds: float) -> None:
        """Sleep that wakes early on shutdown."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _slot_loop(self, slot: int) -> None:
        """Claim and process jobs one at a time until shutdown."""
        while not self.stopping:
            try:
                job = await self.broker.claim(self.worker_id)
            except Exception:
                logger.exception(
                    "Error claiming job", worker_id=self.worker_id, slot=slot
                )
                await self._sleep(CLAIM_ERROR_BACKOFF_S)
                continue

            if job is None:
                await self._sleep(self.settings.job_poll_interval_ms / 1000)
                continue

            await self._run_job(job)

    async def _run_job(self, job: JobEnvelope) -> None:
        """Process one delivery and report the outcome to the broker."""
        self.active_jobs.add(job.id)
        try:
            try:
                result = await self.processor.process(job)
            except Exception as e:
                outcome = await self.broker.fail(job, e)
                if outcome is FailureOutcome.DEADLETTER:
                    logger.error(
                        "Job permanently failed",
                        job_id=str(job.id),
                        job_name=job.name,
                        attempts_made=job.attempts_made + 1,
                        error=str(e),
                    )
                elif outcome is FailureOutcome.RETRY_SCHEDULED:
                    logger.warning(
                        "Job failed, redelivery scheduled",
                        job_id=str(job.id),
                        job_name=job.name,
                        error=str(e),
                    )
                return

            await self.broker.complete(job, result)
            logger.info("Job completed", job_id=str(job.id), job_name=job.name)
        except Exception:
            # Broker unreachable while reporting; stalled recovery redelivers the job
            logger.exception(
                "Error reporting job outcome", job_id=str(job.id), job_name=job.name
            )
        finally:
            self.active_jobs.discard(job.id)

    async def _heartbeat_loop(self) -> None:
        """Update heartbeats for active jobs."""
        while True:
            await asyncio.sleep(self.settings.job_heartbeat_interval_s)
            if not self.active_jobs:
                continue
            try:
                await self.broker.heartbeat(self.worker_id, list(self.active_jobs))
            except Exception:
                logger.exception(
                    "Error updating heartbeats", worker_id=self.worker_id
                )

    async def _stalled_job_recovery_loop(self) -> None:
        """Return jobs abandoned by crashed workers to the queue."""
        while True:
            try:
                await self.broker.recover_stalled(
                    self.settings.job_visibility_timeout_s
                )
            except Exception:
                logger.exception("Error in stalled job recovery")
            await asyncio.sleep(self.settings.job_visibility_timeout_s)
