"""
Job envelopes, results and per-handler payload schemas.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from worker.core.exceptions import MalformedPayloadError


@dataclass(frozen=True)
class JobEnvelope:
    """A job as delivered by the broker."""

    id: UUID | str
    name: str
    payload: dict[str, Any]
    attempts_made: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def correlation_id(self) -> str:
        """Caller-supplied correlation id, else one derived from id and creation time."""
        supplied = self.payload.get("correlation_id")
        if isinstance(supplied, str) and supplied:
            return supplied
        return f"job-{self.id}-{int(self.created_at.timestamp() * 1000)}"


@dataclass(frozen=True)
class JobContext:
    """What a handler knows about the delivery it is running in."""

    job_id: str
    name: str
    correlation_id: str
    attempts_made: int

    @classmethod
    def from_envelope(cls, job: JobEnvelope) -> "JobContext":
        return cls(
            job_id=str(job.id),
            name=job.name,
            correlation_id=job.correlation_id,
            attempts_made=job.attempts_made,
        )


@dataclass(frozen=True)
class JobResult:
    """Success result handed back to the broker."""

    ok: bool
    processed_at: datetime
    result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "processed_at": self.processed_at.isoformat(),
            "result": self.result,
        }


class JobEnqueue(BaseModel):
    """Schema for enqueueing a new job."""

    name: str = Field(..., min_length=1, description="Job name")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")
    max_attempts: int | None = Field(
        default=None, ge=1, description="Delivery budget; settings default when unset"
    )
    backoff_ms: int | None = Field(
        default=None, ge=0, description="Backoff base; settings default when unset"
    )
    run_at: datetime | None = Field(
        default=None, description="Earliest time to deliver job"
    )


# Handler payloads


class JobPayload(BaseModel):
    """Base for handler payloads; correlation_id rides along on every job."""

    model_config = ConfigDict(extra="ignore")

    correlation_id: str | None = None

    @classmethod
    def parse(cls, job_name: str, payload: dict[str, Any]):
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise MalformedPayloadError(
                job_name,
                [
                    {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
                    for error in e.errors()
                ],
            ) from e


class SmokeTestPayload(JobPayload):
    message: str = Field(..., min_length=1)
    when: datetime | None = None


class SalesforceQueryPayload(JobPayload):
    soql: str = Field(..., min_length=1)


class SalesforceGetRecordPayload(JobPayload):
    sobject: str = Field(..., pattern=r"^[A-Za-z][A-Za-z0-9_]*$")
    record_id: str = Field(..., pattern=r"^[A-Za-z0-9]{15}([A-Za-z0-9]{3})?$")
