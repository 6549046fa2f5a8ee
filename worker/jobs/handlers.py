"""
Workflow handlers for queued jobs.

Each handler implements the JobHandler protocol and is registered in the
job registry under the job name it serves. Payloads are validated at the
top of every handler; infrastructure failures are raised so the broker
redelivers the job, while business outcomes the handler can recognise are
returned as ordinary results.
"""

from typing import Any

from worker.config.logging import get_logger
from worker.core.exceptions import SalesforceAPIError
from worker.jobs.schemas import (
    JobContext,
    SalesforceGetRecordPayload,
    SalesforceQueryPayload,
    SmokeTestPayload,
)
from worker.salesforce.client import SalesforceClient

logger = get_logger(__name__)


class SmokeTestHandler:
    """
    Proves the pipeline end to end without touching remote services.

    Payload expected:
    {
        "message": "Hello from send-job",
        "when": "2025-01-01T00:00:00Z"  # optional
    }
    """

    async def handle(
        self, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        data = SmokeTestPayload.parse(context.name, payload)

        logger.info(
            "Smoke test job received",
            message=data.message,
            sent_at=data.when.isoformat() if data.when else None,
        )

        return {"status": "completed", "echo": data.message}


class SalesforceQueryHandler:
    """
    Runs a SOQL query against the org.

    Payload expected:
    {
        "soql": "SELECT Id, Name FROM Contact LIMIT 10"
    }
    """

    def __init__(self, salesforce: SalesforceClient):
        self.salesforce = salesforce

    async def handle(
        self, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        data = SalesforceQueryPayload.parse(context.name, payload)

        result = await self.salesforce.query(data.soql)
        records = result.get("records", [])

        logger.info(
            "Salesforce query completed",
            total_size=result.get("totalSize", len(records)),
            done=result.get("done"),
        )

        return {
            "status": "completed",
            "total_size": result.get("totalSize", len(records)),
            "records": records,
        }


class SalesforceGetRecordHandler:
    """
    Fetches a single record.

    Payload expected:
    {
        "sobject": "Contact",
        "record_id": "003XXXXXXXXXXXXXXX"
    }

    A record that does not exist is reported as a ``not_found`` result;
    redelivering the job would not change that.
    """

    def __init__(self, salesforce: SalesforceClient):
        self.salesforce = salesforce

    async def handle(
        self, context: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        data = SalesforceGetRecordPayload.parse(context.name, payload)

        try:
            record = await self.salesforce.get_record(data.sobject, data.record_id)
        except SalesforceAPIError as e:
            if e.status_code == 404:
                logger.info(
                    "Salesforce record not found",
                    sobject=data.sobject,
                    record_id=data.record_id,
                )
                return {
                    "status": "not_found",
                    "sobject": data.sobject,
                    "record_id": data.record_id,
                }
            raise

        return {"status": "completed", "sobject": data.sobject, "record": record}
