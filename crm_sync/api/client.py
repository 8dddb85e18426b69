"""Teamleader Focus API client - thin async wrapper over its RPC-style endpoints.

Every Teamleader endpoint is a POST to ``/<resource>.<action>`` with a JSON body,
e.g. ``/contacts.list`` or ``/contacts.add``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import SyncSettings, settings as default_settings
from ..sync.errors import SyncError

logger = logging.getLogger(__name__)


class ApiError(SyncError):
    """Non-2xx response or transport failure talking to the external CRM.

    ``status_code`` is None for transport errors (DNS, timeout, reset).
    """

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{self.status_code} {base}"


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        data = response.json() if response.content else {}
    except ValueError:
        return response.text[:500] or response.reason_phrase, None

    if isinstance(data, dict):
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first = errors[0]
            return str(first.get("title") or first.get("detail") or first), data
        if data.get("message"):
            return str(data["message"]), data
    return response.reason_phrase or "request failed", data


class TeamleaderClient:
    """Async client for one user's Teamleader account.

    Usage:
        async with TeamleaderClient(access_token) as api:
            data = await api.post("contacts.list", {"page": {"size": 100}})
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.focus.teamleader.eu",
        timeout: float = 30.0,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, access_token: str, config: SyncSettings | None = None) -> "TeamleaderClient":
        config = config or default_settings
        return cls(
            access_token,
            base_url=config.teamleader_api_url,
            timeout=config.http_timeout_seconds,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def __aenter__(self) -> "TeamleaderClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, *args) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, endpoint: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        """POST to ``/<endpoint>`` and return the decoded JSON body.

        Raises:
            ApiError: On non-2xx status or transport failure
        """
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        try:
            resp = await self._client.post(f"/{endpoint}", json=body or {})
        except httpx.HTTPError as e:
            logger.warning("Teamleader %s transport error: %s", endpoint, e)
            raise ApiError(f"{endpoint}: {e}", status_code=None) from e

        if not 200 <= resp.status_code < 300:
            message, details = _error_message(resp)
            logger.warning("Teamleader %s returned %s: %s", endpoint, resp.status_code, message)
            raise ApiError(message, status_code=resp.status_code, details=details)

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(f"{endpoint}: invalid JSON response", status_code=resp.status_code) from e
        return data if isinstance(data, dict) else {"data": data}

    async def list(
        self,
        resource: str,
        page_size: int,
        page_number: int = 1,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call ``<resource>.list`` for one page.

        Teamleader rejects ``page.number = 1`` on some resources, so the first
        page is requested without a number.
        """
        page: dict[str, int] = {"size": page_size}
        if page_number > 1:
            page["number"] = page_number
        return await self.post(f"{resource}.list", {"filter": filters or {}, "page": page})

    async def add_contact(self, payload: dict[str, Any]) -> str | None:
        """Create a contact and return its new id."""
        data = await self.post("contacts.add", payload)
        created = data.get("data") or {}
        return created.get("id") if isinstance(created, dict) else None
