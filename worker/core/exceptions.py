from typing import Any


class WorkerError(Exception):
    """Base exception for the job worker."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(WorkerError):
    """Raised when required configuration is missing or invalid."""


class CredentialRefreshError(WorkerError):
    """Raised when the token issuer cannot produce a usable credential."""


class SalesforceAPIError(WorkerError):
    """Raised for a non-2xx response from the Salesforce REST API."""

    def __init__(self, status_code: int, path: str, body: str):
        self.status_code = status_code
        self.path = path
        self.body = body
        super().__init__(
            f"Salesforce API error ({status_code}) on {path}: {body}",
            {"status_code": status_code, "path": path},
        )


class MalformedPayloadError(WorkerError):
    """Raised when a job payload fails validation for its handler."""

    def __init__(self, job_name: str, errors: list[dict[str, Any]]):
        self.job_name = job_name
        self.errors = errors
        fields = ", ".join(
            ".".join(str(part) for part in error.get("loc", ())) or "payload"
            for error in errors
        )
        super().__init__(
            f"Malformed payload for job '{job_name}': {fields}",
            {"job_name": job_name, "errors": errors},
        )


class AuditWriteError(WorkerError):
    """Raised when an audit log entry cannot be persisted."""
