import asyncio
import signal
import sys

import httpx
from pydantic import ValidationError

from worker.audit.recorder import AuditRecorder
from worker.config.logging import get_logger, setup_logging
from worker.config.settings import Settings, get_settings
from worker.core.exceptions import ConfigurationError
from worker.core.registries import job_registry
from worker.infra.database import Database
from worker.jobs.broker import PostgresBroker
from worker.jobs.processor import JobProcessor
from worker.jobs.registry_init import register_job_handlers
from worker.jobs.worker import JobWorker
from worker.salesforce.client import SalesforceClient
from worker.salesforce.credentials import CredentialManager

logger = get_logger(__name__)


def load_settings() -> Settings:
    """Load settings, turning missing or invalid values into a ConfigurationError."""
    try:
        return get_settings()
    except ValidationError as e:
        fields = sorted(
            ".".join(str(part) for part in error["loc"]).upper()
            for error in e.errors()
            if error["loc"]
        )
        # Cross-field checks from model_post_init carry no location
        problems = [error["msg"] for error in e.errors() if not error["loc"]]
        raise ConfigurationError(
            f"Missing or invalid configuration: {', '.join(fields + problems)}",
            {"fields": fields, "problems": problems},
        ) from e
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


async def run_worker(settings: Settings) -> None:
    """Wire the worker together and run it until SIGINT or SIGTERM."""
    database = Database(settings)
    http_client = httpx.AsyncClient(timeout=settings.sf_request_timeout_s)

    credentials = CredentialManager(settings, http_client)
    salesforce = SalesforceClient(credentials, settings)

    register_job_handlers(job_registry, salesforce)
    # Freeze registry in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        job_registry.freeze()

    processor = JobProcessor(job_registry, AuditRecorder(database))
    broker = PostgresBroker(settings, database)
    worker = JobWorker(settings, broker, processor)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    logger.info("Using database", **database.describe())

    try:
        await worker.start()
    finally:
        logger.info("Shutting down worker")
        await http_client.aclose()
        await database.close()


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        # Logging is not configured yet; report straight to stderr
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
