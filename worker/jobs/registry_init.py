"""
Job registry initialization.

Registers all workflow handlers with a job registry at startup.
"""

from worker.config.logging import get_logger
from worker.core.registries import JobRegistry
from worker.jobs.handlers import (
    SalesforceGetRecordHandler,
    SalesforceQueryHandler,
    SmokeTestHandler,
)
from worker.salesforce.client import SalesforceClient

logger = get_logger(__name__)


def register_job_handlers(registry: JobRegistry, salesforce: SalesforceClient) -> None:
    """Register all workflow handlers with the job registry."""

    logger.info("Registering job handlers")

    # Enqueued by `barry-worker send-job`
    registry.register("test", SmokeTestHandler())

    # Salesforce handlers
    registry.register("salesforce.query", SalesforceQueryHandler(salesforce))
    registry.register("salesforce.get_record", SalesforceGetRecordHandler(salesforce))

    logger.info("Job handlers registered", registered_handlers=registry.list())
