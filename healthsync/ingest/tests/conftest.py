"""Shared fixtures for ingest engine tests.

``SQLiteStore`` runs the real generated statements against the real
``schema.sql`` in an in-memory database, so conflict behaviour (merge,
ignore, accumulate, forward-only cursor) is exercised end to end.
"""

from __future__ import annotations

import re
import sqlite3
from datetime import datetime, timezone
from typing import Any, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from healthsync.ingest.config_loader import BackfillConfig, IngestConfig, load_ingest_config
from healthsync.ingest.errors import DuplicateKeyError
from healthsync.ingest.executor import BatchExecutor, StatementStore
from healthsync.ingest.pacing import NoDelayPacer
from healthsync.ingest.statements import Statement
from healthsync.services.database import SCHEMA_PATH

# Fixed "now" for every backfill test
TEST_NOW = datetime(2026, 2, 23, 12, 0, 0, tzinfo=timezone.utc)

_PLACEHOLDER = re.compile(r"\$(\d+)")


def _sqlite_sql(sql: str) -> str:
    return _PLACEHOLDER.sub(r"?\1", sql)


class SQLiteStore(StatementStore):
    """StatementStore over an in-memory SQLite database."""

    def __init__(self, max_batch_statements: int = 500) -> None:
        self.MAX_BATCH_STATEMENTS = max_batch_statements
        self.conn = sqlite3.connect(":memory:", check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.create_function(
            "NOW", 0, lambda: datetime.now(timezone.utc).isoformat()
        )
        self.conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
        self.batches: list[list[Statement]] = []
        self.fail_on_batch: int | None = None

    async def fetch_value(self, sql: str, *params: Any) -> Any:
        row = self.conn.execute(_sqlite_sql(sql), params).fetchone()
        return row[0] if row else None

    async def execute_batch(self, statements: Sequence[Statement]) -> None:
        if self.fail_on_batch is not None and len(self.batches) == self.fail_on_batch:
            raise RuntimeError("simulated store outage")
        try:
            with self.conn:
                for s in statements:
                    self.conn.execute(_sqlite_sql(s.sql), s.params)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateKeyError(str(exc)) from exc
            raise
        self.batches.append(list(statements))

    def rows(self, table: str, order_by: str = "rowid") -> list[dict]:
        return [
            dict(r) for r in self.conn.execute(f"SELECT * FROM {table} ORDER BY {order_by}")
        ]

    def count(self, table: str) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


# ---------------------------------------------------------------------------
# Store / executor fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> SQLiteStore:
    return SQLiteStore()


@pytest.fixture
def executor(store: SQLiteStore) -> BatchExecutor:
    return BatchExecutor(store)


@pytest.fixture
def ingest_config() -> IngestConfig:
    """Load the real ingest config for tests."""
    return load_ingest_config()


@pytest.fixture
def backfill_config() -> BackfillConfig:
    return BackfillConfig(
        chunk_days={"glucose": 5, "insulin": 5, "activity": 30},
        pace_ms=0,
        legacy_windows={},
    )


@pytest.fixture
def pacer() -> NoDelayPacer:
    return NoDelayPacer()


# ---------------------------------------------------------------------------
# Raw Tidepool records
# ---------------------------------------------------------------------------


def cbg(time: str, value: float, trend: str | None = None) -> dict:
    raw = {"type": "cbg", "time": time, "value": value, "units": "mmol/L"}
    if trend is not None:
        raw["trend"] = trend
    return raw


def physical_activity(
    time: str,
    minutes: float | None = 30,
    km: float | None = 5.0,
    calories: float | None = 100,
    name: str = "Run - Morning",
) -> dict:
    raw: dict = {"type": "physicalActivity", "time": time, "name": name}
    if minutes is not None:
        raw["duration"] = {"value": minutes, "units": "minutes"}
    if km is not None:
        raw["distance"] = {"value": km, "units": "kilometers"}
    if calories is not None:
        raw["energy"] = {"value": calories, "units": "kilocalories"}
    return raw


@pytest.fixture
def sample_payload() -> dict:
    """A realistic device push with every metric kind present."""
    return {
        "syncTimestamp": "2026-02-23T07:00:00Z",
        "dailyActivity": [
            {
                "date": "2026-02-22",
                "steps": 11234,
                "activeCalories": 612,
                "basalCalories": 1710,
                "exerciseMinutes": 48,
                "standHours": 11,
                "walkDistanceKm": 8.4,
            }
        ],
        "workouts": [
            {
                "workoutType": "running",
                "startTime": "2026-02-22T06:30:00Z",
                "endTime": "2026-02-22T07:05:00Z",
                "durationSeconds": 2100,
                "distanceKm": 6.2,
                "activeCalories": 410,
                "avgHeartRate": 151,
                "maxHeartRate": 174,
            }
        ],
        "heartRateDaily": [{"date": "2026-02-22", "restingHR": 52, "walkingHRAvg": 96, "hrv": 61.5}],
        "vitals": [{"type": "vo2max", "date": "2026-02-22", "value": 48.3}],
        "sleepSessions": [
            {
                "date": "2026-02-22",
                "bedtime": "2026-02-21T22:50:00Z",
                "wakeTime": "2026-02-22T06:10:00Z",
                "totalMinutes": 410,
                "remMinutes": 95,
                "coreMinutes": 220,
                "deepMinutes": 70,
                "awakeMinutes": 25,
            }
        ],
        "bodyMeasurements": [{"type": "weight", "date": "2026-02-22", "value": 72.4}],
    }


# ---------------------------------------------------------------------------
# HTTP mocks
# ---------------------------------------------------------------------------


def mock_response(status_code: int = 200, json_data: Any = None, headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json = MagicMock(return_value=json_data)
    return response


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """httpx.AsyncClient stand-in whose login succeeds and reads return []."""
    client = MagicMock()
    client.post = AsyncMock(
        return_value=mock_response(
            json_data={"userid": "abc123"},
            headers={"x-tidepool-session-token": "tok-1"},
        )
    )
    client.get = AsyncMock(return_value=mock_response(json_data=[]))
    return client
