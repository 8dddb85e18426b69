"""Tests for the Teamleader OAuth client."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from crm_sync.config import SyncSettings
from crm_sync.oauth.client import OAuthClient, OAuthError, OAuthTokens


class TestOAuthTokens:
    def test_expires_at(self):
        tokens = OAuthTokens(access_token="a", refresh_token="r", expires_in=3600)
        expected = datetime.now(timezone.utc) + timedelta(seconds=3600)
        assert abs((tokens.expires_at - expected).total_seconds()) < 10


class TestOAuthClient:
    @pytest.fixture
    def client(self):
        return OAuthClient(
            client_id="test_client_id",
            client_secret="test_client_secret",
            redirect_uri="http://localhost:8030/oauth/callback",
            token_url="https://focus.test/oauth2/access_token",
        )

    def _patched(self, response=None, side_effect=None):
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(return_value=response, side_effect=side_effect)
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        return mock_client

    def test_from_settings_requires_credentials(self):
        with pytest.raises(OAuthError) as exc_info:
            OAuthClient.from_settings(SyncSettings(teamleader_client_id="", teamleader_client_secret=""))
        assert exc_info.value.error_code == "not_configured"

    def test_from_settings(self):
        config = SyncSettings(teamleader_client_id="id", teamleader_client_secret="secret")
        client = OAuthClient.from_settings(config)
        assert client.client_id == "id"
        assert client.token_url == config.teamleader_token_url

    def test_generate_state(self, client):
        state1 = client.generate_state("user-1")
        state2 = client.generate_state("user-1")
        assert len(state1) > 20
        assert state1 != state2
        assert client.verify_state(state1, "user-1")
        assert client.verify_state(state2, "user-1")

    def test_verify_state_bound_to_user(self, client):
        state = client.generate_state("user-1")
        assert not client.verify_state(state, "user-2")

    def test_verify_state_rejects_tampering(self, client):
        nonce, issued, signature = client.generate_state("user-1").split(".")
        assert not client.verify_state(f"other{nonce}.{issued}.{signature}", "user-1")
        assert not client.verify_state("not-a-state", "user-1")
        assert not client.verify_state("a.not-a-time.sig", "user-1")

    def test_verify_state_rejects_other_secret(self, client):
        other = OAuthClient(client_id="test_client_id", client_secret="another_secret", redirect_uri="x")
        assert not client.verify_state(other.generate_state("user-1"), "user-1")

    def test_verify_state_expires(self, client):
        with patch("crm_sync.oauth.client.time") as mock_time:
            mock_time.time.return_value = 1_700_000_000
            state = client.generate_state("user-1")
            mock_time.time.return_value = 1_700_000_000 + 601
            assert not client.verify_state(state, "user-1", max_age_seconds=600)
            mock_time.time.return_value = 1_700_000_000 + 599
            assert client.verify_state(state, "user-1", max_age_seconds=600)

    def test_get_authorization_url(self, client):
        url = client.get_authorization_url(state="xyz")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://focus.teamleader.eu/oauth2/authorize?")
        assert query["response_type"] == ["code"]
        assert query["client_id"] == ["test_client_id"]
        assert query["state"] == ["xyz"]

    @pytest.mark.asyncio
    async def test_exchange_code_success(self, client):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {
            "access_token": "new_access_token",
            "refresh_token": "new_refresh_token",
            "expires_in": 3600,
            "token_type": "Bearer",
        }

        with patch("httpx.AsyncClient") as MockAsyncClient:
            mock_client = self._patched(mock_response)
            MockAsyncClient.return_value = mock_client

            tokens = await client.exchange_code("auth_code_123")

        assert tokens.access_token == "new_access_token"
        assert tokens.refresh_token == "new_refresh_token"
        body = mock_client.post.call_args.kwargs["json"]
        assert body["grant_type"] == "authorization_code"
        assert body["code"] == "auth_code_123"
        assert body["redirect_uri"] == "http://localhost:8030/oauth/callback"

    @pytest.mark.asyncio
    async def test_refresh_tokens_success(self, client):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"access_token": "a2", "refresh_token": "r2"}

        with patch("httpx.AsyncClient") as MockAsyncClient:
            mock_client = self._patched(mock_response)
            MockAsyncClient.return_value = mock_client

            tokens = await client.refresh_tokens("r1")

        assert tokens.access_token == "a2"
        assert tokens.expires_in == 3600
        mock_client.post.assert_awaited_once()
        args, kwargs = mock_client.post.call_args
        assert args == ("https://focus.test/oauth2/access_token",)
        assert kwargs["json"] == {
            "grant_type": "refresh_token",
            "refresh_token": "r1",
            "client_id": "test_client_id",
            "client_secret": "test_client_secret",
        }

    @pytest.mark.asyncio
    async def test_refresh_tokens_rejected(self, client):
        mock_response = MagicMock()
        mock_response.status_code = 400
        mock_response.content = b'{"error": "invalid_grant"}'
        mock_response.json.return_value = {"error": "invalid_grant"}

        with patch("httpx.AsyncClient") as MockAsyncClient:
            MockAsyncClient.return_value = self._patched(mock_response)

            with pytest.raises(OAuthError) as exc_info:
                await client.refresh_tokens("expired")

        assert exc_info.value.error_code == "invalid_grant"
        assert "400" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_refresh_tokens_without_new_refresh_token(self, client):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"access_token": "only-access", "expires_in": 3600}

        with patch("httpx.AsyncClient") as MockAsyncClient:
            MockAsyncClient.return_value = self._patched(mock_response)

            tokens = await client.refresh_tokens("r1")

        assert tokens.access_token == "only-access"
        assert tokens.refresh_token is None

    @pytest.mark.asyncio
    async def test_refresh_tokens_malformed_body(self, client):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"refresh_token": "only-refresh"}

        with patch("httpx.AsyncClient") as MockAsyncClient:
            MockAsyncClient.return_value = self._patched(mock_response)

            with pytest.raises(OAuthError) as exc_info:
                await client.refresh_tokens("r1")

        assert exc_info.value.error_code == "invalid_response"

    @pytest.mark.asyncio
    async def test_exchange_code_requires_refresh_token(self, client):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"access_token": "only-access"}

        with patch("httpx.AsyncClient") as MockAsyncClient:
            MockAsyncClient.return_value = self._patched(mock_response)

            with pytest.raises(OAuthError) as exc_info:
                await client.exchange_code("auth_code_123")

        assert exc_info.value.error_code == "invalid_response"
        assert exc_info.value.details["missing_field"] == "'refresh_token'"

    @pytest.mark.asyncio
    async def test_network_error(self, client):
        with patch("httpx.AsyncClient") as MockAsyncClient:
            MockAsyncClient.return_value = self._patched(side_effect=httpx.ConnectError("refused"))

            with pytest.raises(OAuthError) as exc_info:
                await client.refresh_tokens("r1")

        assert exc_info.value.error_code == "network_error"
