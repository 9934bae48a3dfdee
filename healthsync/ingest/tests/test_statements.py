"""Tests for the INSERT ... ON CONFLICT statement builder."""

from __future__ import annotations

import pytest

from healthsync.ingest.records import (
    ConflictMode,
    DailyActivityDelta,
    GlucoseReading,
    InsulinDose,
    RunningSession,
    SyncCursor,
    TableSpec,
)
from healthsync.ingest.statements import build_statement, build_statements, build_upsert_query
from healthsync.ingest.tests.conftest import SQLiteStore, cbg, physical_activity
from healthsync.models.push import DailyActivity, HeartRateDaily, Workout


class TestBuildUpsertQuery:
    def test_merge_updates_every_value_column_and_stamps(self) -> None:
        sql = build_upsert_query(DailyActivity.TABLE)
        assert sql.startswith("INSERT INTO daily_activity (date, steps,")
        assert "ON CONFLICT (date) DO UPDATE SET steps = EXCLUDED.steps" in sql
        assert "cycle_distance_km = EXCLUDED.cycle_distance_km, updated_at = NOW()" in sql
        assert "date = EXCLUDED.date" not in sql

    def test_merge_composite_key(self) -> None:
        sql = build_upsert_query(Workout.TABLE)
        assert "ON CONFLICT (workout_type, start_time) DO UPDATE SET end_time" in sql

    def test_ignore_does_nothing(self) -> None:
        sql = build_upsert_query(GlucoseReading.TABLE)
        assert sql == (
            "INSERT INTO glucose_readings (timestamp, value, trend, source) "
            "VALUES ($1, $2, $3, $4) ON CONFLICT (timestamp) DO NOTHING"
        )

    def test_accumulate_adds_to_existing(self) -> None:
        sql = build_upsert_query(DailyActivityDelta.TABLE)
        assert (
            "active_calories = COALESCE(activity_summaries.active_calories, 0) "
            "+ EXCLUDED.active_calories"
        ) in sql

    def test_advance_is_guarded(self) -> None:
        sql = build_upsert_query(SyncCursor.TABLE)
        assert sql.endswith(
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value "
            "WHERE sync_state.value < EXCLUDED.value"
        )

    def test_key_only_table_falls_back_to_do_nothing(self) -> None:
        spec = TableSpec("tags", ("name",), ("name",), ConflictMode.MERGE)
        assert build_upsert_query(spec).endswith("DO NOTHING")

    def test_query_is_cached_per_spec(self) -> None:
        assert build_upsert_query(GlucoseReading.TABLE) is build_upsert_query(GlucoseReading.TABLE)


class TestBuildStatement:
    def test_params_follow_column_order(self) -> None:
        stmt = build_statement(GlucoseReading.from_source(cbg("2026-02-20T10:00:00Z", 6.04)))
        assert stmt.table == "glucose_readings"
        assert stmt.params == ("2026-02-20T10:00:00Z", 6.0, None, "tidepool")
        assert stmt.is_insert_or_ignore

    def test_resting_hr_above_cap_becomes_null(self) -> None:
        row = HeartRateDaily.model_validate({"date": "2026-02-22", "restingHR": 81, "hrv": 40})
        stmt = build_statement(row)
        assert stmt.params == ("2026-02-22", None, None, 40.0)

    def test_resting_hr_at_cap_kept(self) -> None:
        row = HeartRateDaily.model_validate({"date": "2026-02-22", "restingHR": 80})
        assert build_statement(row).params[1] == 80

    def test_merge_is_not_insert_or_ignore(self) -> None:
        row = DailyActivity.model_validate({"date": "2026-02-22", "steps": 10})
        assert not build_statement(row).is_insert_or_ignore

    def test_size_bytes_counts_sql_and_params(self) -> None:
        stmt = build_statement(SyncCursor(value="2026-02-23T07:00:00Z"))
        assert stmt.size_bytes > len(stmt.sql)

    def test_build_statements_preserves_order(self) -> None:
        doses = [
            InsulinDose(timestamp="2026-02-20T08:00:00Z", units=4.0, type="bolus"),
            InsulinDose(timestamp="2026-02-20T00:00:00Z", units=0.8, type="basal"),
        ]
        statements = build_statements(doses)
        assert [s.params[2] for s in statements] == ["bolus", "basal"]


class TestConflictBehaviour:
    """Run generated statements against the real schema."""

    @pytest.mark.asyncio
    async def test_merge_overwrites_and_replay_is_stable(self, store: SQLiteStore) -> None:
        first = DailyActivity.model_validate({"date": "2026-02-22", "steps": 100})
        second = DailyActivity.model_validate({"date": "2026-02-22", "steps": 250})
        await store.execute_batch(build_statements([first, second, second]))
        rows = store.rows("daily_activity")
        assert len(rows) == 1
        assert rows[0]["steps"] == 250

    @pytest.mark.asyncio
    async def test_ignore_keeps_first_row(self, store: SQLiteStore) -> None:
        await store.execute_batch(
            build_statements(
                [
                    GlucoseReading.from_source(cbg("2026-02-20T10:00:00Z", 6.0)),
                    GlucoseReading.from_source(cbg("2026-02-20T10:00:00Z", 9.9)),
                ]
            )
        )
        assert [r["value"] for r in store.rows("glucose_readings")] == [6.0]

    @pytest.mark.asyncio
    async def test_accumulate_sums_deltas(self, store: SQLiteStore) -> None:
        a = DailyActivityDelta(date="2026-02-20").plus(
            RunningSession.from_source(physical_activity("2026-02-20T06:00:00Z", calories=100))
        )
        b = DailyActivityDelta(date="2026-02-20").plus(
            RunningSession.from_source(physical_activity("2026-02-20T18:00:00Z", calories=150))
        )
        await store.execute_batch(build_statements([a, b]))
        assert store.rows("activity_summaries")[0]["active_calories"] == 250

    @pytest.mark.asyncio
    async def test_cursor_only_moves_forward(self, store: SQLiteStore) -> None:
        await store.execute_batch(
            build_statements(
                [
                    SyncCursor(value="2026-02-23T07:00:00Z"),
                    SyncCursor(value="2026-02-22T07:00:00Z"),
                ]
            )
        )
        assert store.rows("sync_state")[0]["value"] == "2026-02-23T07:00:00Z"
