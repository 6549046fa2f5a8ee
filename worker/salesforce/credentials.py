"""
Salesforce OAuth credential lifecycle.

Holds the current access token, refreshes it through the refresh-token grant
and issues authenticated requests against the instance URL the issuer hands
back. Refreshes are single-flight: concurrent callers that need a new token
share one in-flight call to the issuer.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from worker.config.logging import get_logger
from worker.config.settings import Settings
from worker.core.exceptions import CredentialRefreshError

logger = get_logger(__name__)

INVALID_SESSION_MARKER = "INVALID_SESSION_ID"


@dataclass(frozen=True)
class Credential:
    """Access token plus the API base URL it is valid for."""

    access_token: str
    instance_url: str
    expires_at: float  # epoch seconds

    def is_valid(self, now: float) -> bool:
        return self.expires_at > now


class CredentialStore:
    """Holds the current credential; replaced wholesale, never mutated."""

    def __init__(self) -> None:
        self._credential: Credential | None = None

    def get(self) -> Credential | None:
        return self._credential

    def replace(self, credential: Credential) -> None:
        self._credential = credential


def is_auth_failure(status_code: int, body: str | None = None) -> bool:
    """401, or 403 carrying an invalid-session error, means the token is stale."""
    if status_code == 401:
        return True
    if status_code == 403 and body and INVALID_SESSION_MARKER in body:
        return True
    return False


class CredentialManager:
    """
    Guards every outbound call to the Salesforce REST API.

    Salesforce refresh responses do not reliably include a token lifetime,
    so expiry is estimated as ``now + (ttl - skew)`` with a ttl shorter than
    the org's session timeout. A token the API rejects anyway is refreshed
    and the request retried exactly once.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        store: CredentialStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.http_client = http_client
        self.store = store or CredentialStore()
        self._clock = clock
        self._refreshing: asyncio.Task[Credential] | None = None

    @property
    def token_url(self) -> str:
        return f"{self.settings.sf_login_url.rstrip('/')}/services/oauth2/token"

    async def get_credential(self) -> Credential:
        """Return the cached credential, refreshing it when expired or absent."""
        credential = self.store.get()
        if credential is not None and credential.is_valid(self._clock()):
            return credential
        return await self.force_refresh()

    async def force_refresh(self) -> Credential:
        """Refresh the credential, joining a refresh that is already in flight."""
        if self._refreshing is None:
            task = asyncio.create_task(self._refresh())
            task.add_done_callback(self._clear_refreshing)
            self._refreshing = task
        # Shielded so one cancelled waiter does not cancel the shared refresh
        return await asyncio.shield(self._refreshing)

    def _clear_refreshing(self, task: "asyncio.Task[Credential]") -> None:
        if self._refreshing is task:
            self._refreshing = None

    def _conservative_expiry(self) -> float:
        ttl = self.settings.sf_token_ttl_seconds
        skew = self.settings.sf_token_skew_seconds
        return self._clock() + (ttl - skew)

    async def _refresh(self) -> Credential:
        form = {
            "grant_type": "refresh_token",
            "client_id": self.settings.sf_client_id,
            "client_secret": self.settings.sf_client_secret,
            "refresh_token": self.settings.sf_refresh_token,
        }

        logger.info("Refreshing Salesforce access token", token_url=self.token_url)

        try:
            response = await self.http_client.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.RequestError as e:
            raise CredentialRefreshError(
                f"Salesforce token refresh failed: {e}",
                {"token_url": self.token_url},
            ) from e

        text = response.text
        if not response.is_success:
            raise CredentialRefreshError(
                f"Salesforce token refresh failed ({response.status_code}): {text}",
                {"status_code": response.status_code},
            )

        try:
            data: Any = response.json()
        except ValueError as e:
            raise CredentialRefreshError(
                f"Salesforce token response is not valid JSON: {text[:200]}"
            ) from e

        if not isinstance(data, dict):
            raise CredentialRefreshError("Salesforce token response is not a JSON object")

        missing = [
            field for field in ("access_token", "instance_url") if not data.get(field)
        ]
        if missing:
            raise CredentialRefreshError(
                f"Salesforce token response missing fields: {', '.join(missing)}",
                {"missing": missing},
            )

        credential = Credential(
            access_token=data["access_token"],
            instance_url=str(data["instance_url"]).rstrip("/"),
            expires_at=self._conservative_expiry(),
        )
        self.store.replace(credential)

        logger.info(
            "Salesforce access token refreshed",
            instance_url=credential.instance_url,
            expires_in_s=round(credential.expires_at - self._clock()),
        )
        return credential

    @staticmethod
    def build_url(credential: Credential, path: str) -> str:
        """Absolute URLs pass through; relative paths hang off the instance URL."""
        if path.startswith(("http://", "https://")):
            return path
        separator = "" if path.startswith("/") else "/"
        return f"{credential.instance_url}{separator}{path}"

    async def _send(
        self,
        credential: Credential,
        method: str,
        path: str,
        headers: dict[str, str] | None,
        request_kwargs: dict[str, Any],
    ) -> httpx.Response:
        request_headers = {
            "Content-Type": "application/json",
            **(headers or {}),
            "Authorization": f"Bearer {credential.access_token}",
        }
        return await self.http_client.request(
            method,
            self.build_url(credential, path),
            headers=request_headers,
            **request_kwargs,
        )

    async def authenticated_request(
        self,
        path: str,
        method: str = "GET",
        *,
        headers: dict[str, str] | None = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request with the current bearer token.

        An auth failure triggers exactly one refresh and one retry; the
        retry's response is returned whatever it is. Every other response,
        including 4xx business errors and 5xx, is returned unmodified.
        """
        credential = await self.get_credential()
        response = await self._send(credential, method, path, headers, request_kwargs)

        if is_auth_failure(response.status_code, response.text):
            logger.warning(
                "Salesforce rejected access token, refreshing and retrying once",
                status_code=response.status_code,
                method=method,
                path=path,
            )
            credential = await self.force_refresh()
            response = await self._send(
                credential, method, path, headers, request_kwargs
            )

        return response
