"""OAuth 2.0 client for Teamleader Focus.

Handles the Authorization Code flow:
1. Generate authorization URL
2. Exchange the callback code for access + refresh tokens
3. Refresh tokens when expired
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx

from ..config import SyncSettings, settings as default_settings


@dataclass
class OAuthTokens:
    """OAuth tokens returned by the token endpoint."""

    access_token: str
    refresh_token: str | None  # refresh responses may omit it
    expires_in: int  # seconds
    token_type: str = "Bearer"
    _created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def expires_at(self) -> datetime:
        """When the access token expires (based on creation time)."""
        return self._created_at + timedelta(seconds=self.expires_in)


class OAuthError(Exception):
    """OAuth-related error."""

    def __init__(self, message: str, error_code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class OAuthClient:
    """OAuth 2.0 client for the Teamleader Focus token endpoint.

    Usage:
        client = OAuthClient.from_settings()

        # Send the user to the consent page
        auth_url = client.get_authorization_url(state=client.generate_state(user_id))

        # Teamleader redirects back with ?code=xxx
        assert client.verify_state(state, user_id)
        tokens = await client.exchange_code(code)

        # Later, when the access token is about to expire
        new_tokens = await client.refresh_tokens(tokens.refresh_token)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        auth_url: str = "https://focus.teamleader.eu/oauth2/authorize",
        token_url: str = "https://focus.teamleader.eu/oauth2/access_token",
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.auth_url = auth_url
        self.token_url = token_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: SyncSettings | None = None) -> "OAuthClient":
        """Create a client from application settings.

        Raises:
            OAuthError: If the OAuth app credentials are not configured
        """
        config = config or default_settings
        if not config.teamleader_configured:
            raise OAuthError(
                "Teamleader OAuth app is not configured",
                error_code="not_configured",
            )
        return cls(
            client_id=config.teamleader_client_id,
            client_secret=config.teamleader_client_secret,
            redirect_uri=config.teamleader_redirect_uri,
            auth_url=config.teamleader_auth_url,
            token_url=config.teamleader_token_url,
            timeout=config.http_timeout_seconds,
        )

    def generate_state(self, user_id: str) -> str:
        """Generate a signed state value for CSRF protection, bound to the user."""
        nonce = secrets.token_urlsafe(16)
        issued = str(int(time.time()))
        return f"{nonce}.{issued}.{self._sign_state(user_id, nonce, issued)}"

    def verify_state(self, state: str, user_id: str, max_age_seconds: int = 600) -> bool:
        """Check a state from the callback was issued to this user and has not expired."""
        try:
            nonce, issued, signature = state.split(".")
            age = time.time() - int(issued)
        except ValueError:
            return False
        if age < 0 or age > max_age_seconds:
            return False
        return hmac.compare_digest(signature, self._sign_state(user_id, nonce, issued))

    def _sign_state(self, user_id: str, nonce: str, issued: str) -> str:
        payload = f"{user_id}:{nonce}:{issued}"
        return hmac.new(
            self.client_secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def get_authorization_url(self, state: str | None = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
        }
        if state:
            params["state"] = state
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for tokens.

        Raises:
            OAuthError: If the exchange fails
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
            },
            failure="Token exchange failed",
            error_code="exchange_failed",
            require_refresh_token=True,
        )

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """Refresh the access token using a refresh token.

        Raises:
            OAuthError: If refresh fails
        """
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            failure="Token refresh failed",
            error_code="refresh_failed",
        )

    async def _token_request(
        self,
        body: dict[str, str],
        failure: str,
        error_code: str,
        require_refresh_token: bool = False,
    ) -> OAuthTokens:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.token_url, json=body)
        except httpx.HTTPError as e:
            raise OAuthError(f"{failure}: {e}", error_code="network_error") from e

        if response.status_code != 200:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {"raw_response": response.text[:500]}
            if not isinstance(error_data, dict):
                error_data = {"raw_response": str(error_data)[:500]}
            raise OAuthError(
                f"{failure}: {response.status_code}",
                error_code=error_data.get("error", error_code),
                details=error_data,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise OAuthError(f"{failure}: invalid JSON", error_code="invalid_response") from e
        return self._parse_token_response(data, require_refresh_token=require_refresh_token)

    def _parse_token_response(self, data: Any, require_refresh_token: bool = True) -> OAuthTokens:
        """Parse the token endpoint response.

        A refresh grant may leave out ``refresh_token``; the caller keeps the old one.

        Raises:
            OAuthError: If required fields are missing
        """
        if not isinstance(data, dict):
            raise OAuthError("Invalid token response", error_code="invalid_response")
        try:
            return OAuthTokens(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"] if require_refresh_token else data.get("refresh_token"),
                expires_in=int(data.get("expires_in") or 3600),
                token_type=data.get("token_type", "Bearer"),
            )
        except KeyError as e:
            raise OAuthError(
                f"Invalid token response: missing {e}",
                error_code="invalid_response",
                details={"missing_field": str(e), "response_keys": list(data.keys())},
            )
