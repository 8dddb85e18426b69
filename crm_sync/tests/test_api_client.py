"""Tests for the Teamleader API client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from crm_sync.api.client import ApiError, TeamleaderClient
from crm_sync.config import SyncSettings


def _response(status_code: int, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    response.reason_phrase = "Error"
    return response


def _mock_http(response=None, side_effect=None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client.aclose = AsyncMock()
    return mock_client


class TestTeamleaderClient:
    def test_headers(self):
        client = TeamleaderClient("tok-123")
        assert client.headers["Authorization"] == "Bearer tok-123"
        assert client.headers["Content-Type"] == "application/json"

    def test_from_settings(self):
        config = SyncSettings(teamleader_api_url="https://tl.test/", http_timeout_seconds=5)
        client = TeamleaderClient.from_settings("tok", config)
        assert client.base_url == "https://tl.test"
        assert client.timeout == 5

    @pytest.mark.asyncio
    async def test_post_requires_context(self):
        with pytest.raises(RuntimeError):
            await TeamleaderClient("tok").post("contacts.list")

    @pytest.mark.asyncio
    async def test_list_first_page_omits_number(self):
        mock_client = _mock_http(_response(200, {"data": [{"id": "c-1"}]}))

        with patch("httpx.AsyncClient", return_value=mock_client):
            async with TeamleaderClient("tok") as api:
                data = await api.list("contacts", 100)

        assert data == {"data": [{"id": "c-1"}]}
        mock_client.post.assert_awaited_once_with(
            "/contacts.list", json={"filter": {}, "page": {"size": 100}}
        )
        mock_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_later_page_sends_number(self):
        mock_client = _mock_http(_response(200, {"data": []}))

        with patch("httpx.AsyncClient", return_value=mock_client):
            async with TeamleaderClient("tok") as api:
                await api.list("deals", 50, page_number=3)

        mock_client.post.assert_awaited_once_with(
            "/deals.list", json={"filter": {}, "page": {"size": 50, "number": 3}}
        )

    @pytest.mark.asyncio
    async def test_list_sends_filters(self):
        mock_client = _mock_http(_response(200, {"data": []}))

        with patch("httpx.AsyncClient", return_value=mock_client):
            async with TeamleaderClient("tok") as api:
                await api.list("deals", 50, filters={"updated_since": "2026-01-01T00:00:00+00:00"})

        mock_client.post.assert_awaited_once_with(
            "/deals.list",
            json={"filter": {"updated_since": "2026-01-01T00:00:00+00:00"}, "page": {"size": 50}},
        )

    @pytest.mark.asyncio
    async def test_non_2xx_raises_api_error_with_status(self):
        payload = {"errors": [{"title": "Too Many Requests", "status": 429}]}
        mock_client = _mock_http(_response(429, payload))

        with patch("httpx.AsyncClient", return_value=mock_client):
            async with TeamleaderClient("tok") as api:
                with pytest.raises(ApiError) as exc_info:
                    await api.list("contacts", 100)

        assert exc_info.value.status_code == 429
        assert str(exc_info.value) == "429 Too Many Requests"
        assert exc_info.value.details == payload

    @pytest.mark.asyncio
    async def test_transport_error_has_no_status(self):
        mock_client = _mock_http(side_effect=httpx.ConnectTimeout("timed out"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            async with TeamleaderClient("tok") as api:
                with pytest.raises(ApiError) as exc_info:
                    await api.list("contacts", 100)

        assert exc_info.value.status_code is None
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_add_contact_returns_new_id(self):
        mock_client = _mock_http(_response(201, {"data": {"id": "c-new", "type": "contact"}}))

        with patch("httpx.AsyncClient", return_value=mock_client):
            async with TeamleaderClient("tok") as api:
                new_id = await api.add_contact({"last_name": "Lovelace"})

        assert new_id == "c-new"
        mock_client.post.assert_awaited_once_with("/contacts.add", json={"last_name": "Lovelace"})

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self):
        mock_client = _mock_http(_response(204))

        with patch("httpx.AsyncClient", return_value=mock_client):
            async with TeamleaderClient("tok") as api:
                assert await api.post("contacts.update", {"id": "c-1"}) == {}
