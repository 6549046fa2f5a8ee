"""JSON helpers for the Salesforce REST API."""

from typing import Any
from urllib.parse import urlencode

from worker.config.settings import Settings
from worker.core.exceptions import SalesforceAPIError
from worker.salesforce.credentials import Credential, CredentialManager


class SalesforceClient:
    """Thin JSON layer over CredentialManager.authenticated_request."""

    def __init__(self, credentials: CredentialManager, settings: Settings):
        self.credentials = credentials
        self.settings = settings

    def rest_path(self, relative: str) -> str:
        """Prefix a REST resource with the configured API version."""
        separator = "" if relative.startswith("/") else "/"
        return f"/services/data/v{self.settings.sf_api_version}{separator}{relative}"

    async def request_json(
        self,
        path: str,
        method: str = "GET",
        json: dict[str, Any] | None = None,
        **request_kwargs: Any,
    ) -> dict[str, Any]:
        """Issue an authenticated request and decode its JSON body."""
        if json is not None:
            request_kwargs["json"] = json

        response = await self.credentials.authenticated_request(
            path, method, **request_kwargs
        )
        text = response.text

        if not response.is_success:
            raise SalesforceAPIError(response.status_code, path, text)

        if not text:
            return {}
        return response.json()

    async def query(self, soql: str) -> dict[str, Any]:
        """Run a SOQL query and return the raw result page."""
        return await self.request_json(self.rest_path(f"query?{urlencode({'q': soql})}"))

    async def get_record(self, sobject: str, record_id: str) -> dict[str, Any]:
        return await self.request_json(self.rest_path(f"sobjects/{sobject}/{record_id}"))

    async def force_refresh(self) -> Credential:
        return await self.credentials.force_refresh()
