"""Tests for the Tidepool client: login, windowed reads and failure mapping."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from healthsync.ingest.errors import AuthenticationError, FetchError
from healthsync.ingest.sources.tidepool import TidepoolClient, TidepoolSession
from healthsync.ingest.tests.conftest import TEST_NOW, cbg, mock_response

SESSION = TidepoolSession(token="tok-1", user_id="abc123")
START = TEST_NOW - timedelta(days=5)
END = TEST_NOW


@pytest.fixture
def client(mock_httpx_client: MagicMock) -> TidepoolClient:
    return TidepoolClient("https://api.example.test/", http_client=mock_httpx_client)


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_returns_session(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        session = await client.login("me@example.com", "hunter2")
        assert session == SESSION
        url = mock_httpx_client.post.call_args.args[0]
        headers = mock_httpx_client.post.call_args.kwargs["headers"]
        assert url == "https://api.example.test/auth/login"
        assert headers["Authorization"] == "Basic bWVAZXhhbXBsZS5jb206aHVudGVyMg=="

    @pytest.mark.asyncio
    async def test_non_success_raises(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(return_value=mock_response(401, {}))
        with pytest.raises(AuthenticationError, match="401"):
            await client.login("me@example.com", "wrong")

    @pytest.mark.asyncio
    async def test_missing_token_raises(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(return_value=mock_response(200, {"userid": "abc123"}))
        with pytest.raises(AuthenticationError, match="session token"):
            await client.login("me@example.com", "hunter2")

    @pytest.mark.asyncio
    async def test_transport_error_raises(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(AuthenticationError):
            await client.login("me@example.com", "hunter2")


class TestReads:
    @pytest.mark.asyncio
    async def test_glucose_query(self, client: TidepoolClient, mock_httpx_client: MagicMock) -> None:
        mock_httpx_client.get = AsyncMock(
            return_value=mock_response(json_data=[cbg("2026-02-20T10:00:00Z", 6.1)])
        )
        data = await client.fetch_glucose(SESSION, START, END)
        assert data[0]["value"] == 6.1

        call = mock_httpx_client.get.call_args
        assert call.args[0] == "https://api.example.test/data/abc123"
        assert call.kwargs["params"] == {
            "type": "cbg",
            "startDate": "2026-02-18T12:00:00.000Z",
            "endDate": "2026-02-23T12:00:00.000Z",
        }
        assert call.kwargs["headers"] == {"x-tidepool-session-token": "tok-1"}

    @pytest.mark.asyncio
    async def test_insulin_merges_bolus_then_basal(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        def respond(url: str, params: dict, headers: dict) -> MagicMock:
            if params["type"] == "bolus":
                return mock_response(json_data=[{"time": "2026-02-20T08:00:00Z", "normal": 4}])
            return mock_response(json_data=[{"time": "2026-02-20T00:00:00Z", "rate": 0.8}])

        mock_httpx_client.get = AsyncMock(side_effect=respond)
        data = await client.fetch_insulin(SESSION, START, END)
        assert [d["type"] for d in data] == ["bolus", "basal"]
        assert mock_httpx_client.get.await_count == 2

    @pytest.mark.asyncio
    async def test_activity_type(self, client: TidepoolClient, mock_httpx_client: MagicMock) -> None:
        await client.fetch_activity(SESSION, START, END)
        assert mock_httpx_client.get.call_args.kwargs["params"]["type"] == "physicalActivity"

    @pytest.mark.asyncio
    async def test_non_success_raises_fetch_error(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.get = AsyncMock(return_value=mock_response(503, None))
        with pytest.raises(FetchError) as exc_info:
            await client.fetch_glucose(SESSION, START, END)
        assert exc_info.value.metric == "cbg"
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_non_list_body_raises(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.get = AsyncMock(return_value=mock_response(json_data={"error": "x"}))
        with pytest.raises(FetchError, match="JSON array"):
            await client.fetch_activity(SESSION, START, END)

    @pytest.mark.asyncio
    async def test_transport_error_raises_fetch_error(
        self, client: TidepoolClient, mock_httpx_client: MagicMock
    ) -> None:
        mock_httpx_client.get = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(FetchError):
            await client.fetch_glucose(SESSION, START, END)
