"""Tidepool API client.

Login exchanges basic credentials for a session token (returned in the
``x-tidepool-session-token`` header) and the account's user id.  Every read
is one data type over one ``[start, end)`` window:

    GET /data/{userid}?type=cbg&startDate=...&endDate=...

Data types used:
    cbg               — continuous glucose readings (mmol/L)
    bolus, basal      — insulin deliveries (fetched concurrently)
    physicalActivity  — workouts

There is no retry here; a non-success response raises and the caller
decides what to do.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from healthsync.ingest.errors import AuthenticationError, FetchError
from healthsync.ingest.records import iso_utc

logger = logging.getLogger("healthsync.ingest.sources.tidepool")

TIDEPOOL_API_BASE = "https://api.tidepool.org"
SESSION_TOKEN_HEADER = "x-tidepool-session-token"


@dataclass(frozen=True)
class TidepoolSession:
    """Authenticated session: bearer-style token plus the opaque account id."""

    token: str
    user_id: str


class TidepoolClient:
    """Read-only client for the Tidepool data API."""

    def __init__(
        self,
        base_url: str = TIDEPOOL_API_BASE,
        timeout_s: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:    API root.
            timeout_s:   Per-request timeout when the client owns its httpx client.
            http_client: Optional pre-configured httpx client (useful for testing).
        """
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._http_client = http_client

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> TidepoolSession:
        """Authenticate and return a session.

        Raises:
            AuthenticationError: Non-success response, missing token, or
                                 transport failure.
        """
        basic = base64.b64encode(f"{email}:{password}".encode()).decode()
        headers = {"Authorization": f"Basic {basic}"}
        url = f"{self._base_url}/auth/login"

        try:
            if self._http_client:
                response = await self._http_client.post(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    response = await client.post(url, headers=headers)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Tidepool login failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise AuthenticationError(f"Tidepool login failed: {response.status_code}")

        token = response.headers.get(SESSION_TOKEN_HEADER)
        if not token:
            raise AuthenticationError("Tidepool login response missing session token")

        user_id = (response.json() or {}).get("userid")
        if not user_id:
            raise AuthenticationError("Tidepool login response missing user id")

        logger.info("Authenticated with Tidepool as %s", user_id)
        return TidepoolSession(token=token, user_id=user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_glucose(
        self, session: TidepoolSession, start: datetime, end: datetime
    ) -> list[dict]:
        """Fetch raw CGM readings in ``[start, end)``."""
        return await self._get_data(session, "cbg", start, end)

    async def fetch_insulin(
        self, session: TidepoolSession, start: datetime, end: datetime
    ) -> list[dict]:
        """Fetch bolus and basal deliveries concurrently and merge them.

        Returns:
            Boluses followed by basals, each tagged with ``type``.
        """
        boluses, basals = await asyncio.gather(
            self._get_data(session, "bolus", start, end),
            self._get_data(session, "basal", start, end),
        )
        return [{**b, "type": "bolus"} for b in boluses] + [
            {**b, "type": "basal"} for b in basals
        ]

    async def fetch_activity(
        self, session: TidepoolSession, start: datetime, end: datetime
    ) -> list[dict]:
        """Fetch raw physical-activity sessions in ``[start, end)``."""
        return await self._get_data(session, "physicalActivity", start, end)

    async def _get_data(
        self, session: TidepoolSession, data_type: str, start: datetime, end: datetime
    ) -> list[dict]:
        """GET one data type for one window.

        Raises:
            FetchError: On a non-success response or transport failure.
        """
        url = f"{self._base_url}/data/{session.user_id}"
        params = {"type": data_type, "startDate": iso_utc(start), "endDate": iso_utc(end)}
        headers = {SESSION_TOKEN_HEADER: session.token}

        try:
            response = await self._get(url, params, headers)
        except httpx.HTTPError as exc:
            raise FetchError(data_type, str(exc)) from exc

        if not 200 <= response.status_code < 300:
            raise FetchError(data_type, str(response.status_code), response.status_code)

        data: Any = response.json()
        if not isinstance(data, list):
            raise FetchError(data_type, f"expected a JSON array, got {type(data).__name__}")
        return data

    async def _get(self, url: str, params: dict, headers: dict) -> httpx.Response:
        if self._http_client:
            return await self._http_client.get(url, params=params, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout_s) as client:
            return await client.get(url, params=params, headers=headers)
