"""Pydantic schemas for the device push sync payload.

One model per metric kind.  Each model doubles as an ingest record: it
carries a ``TABLE`` spec (merge on its natural key) and a ``row()`` method,
so the statement builder handles all six kinds through one code path.

Wire format (camelCase)::

    {
      "syncTimestamp": "2026-02-23T07:00:00Z",
      "dailyActivity": [...], "workouts": [...], "heartRateDaily": [...],
      "vitals": [...], "sleepSessions": [...], "bodyMeasurements": [...]
    }
"""

from __future__ import annotations

from typing import Any, ClassVar, Literal

from pydantic import AwareDatetime, Field

from healthsync.ingest.records import ConflictMode, TableSpec
from healthsync.models.base import PayloadBase

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

#: Resting heart rates above this are known-bad source data and stored as NULL.
RESTING_HR_CAP_BPM = 80


def _merge_table(name: str, columns: tuple[str, ...], key: tuple[str, ...]) -> TableSpec:
    return TableSpec(
        name=name,
        columns=columns,
        key=key,
        conflict=ConflictMode.MERGE,
        stamp_updated_at=True,
    )


class DailyActivity(PayloadBase):
    TABLE: ClassVar[TableSpec] = _merge_table(
        "daily_activity",
        (
            "date",
            "steps",
            "active_calories",
            "basal_calories",
            "exercise_minutes",
            "stand_hours",
            "walk_distance_km",
            "cycle_distance_km",
        ),
        ("date",),
    )

    date: str = Field(pattern=DATE_PATTERN)
    steps: int | None = None
    active_calories: int | None = None
    basal_calories: int | None = None
    exercise_minutes: int | None = None
    stand_hours: int | None = None
    walk_distance_km: float | None = None
    cycle_distance_km: float | None = None

    def row(self) -> dict[str, Any]:
        return self.model_dump()


class Workout(PayloadBase):
    TABLE: ClassVar[TableSpec] = _merge_table(
        "workouts",
        (
            "workout_type",
            "start_time",
            "end_time",
            "duration_seconds",
            "distance_km",
            "active_calories",
            "avg_heart_rate",
            "max_heart_rate",
        ),
        ("workout_type", "start_time"),
    )

    workout_type: str = Field(min_length=1)
    start_time: str = Field(min_length=1)
    end_time: str | None = Field(default=None, min_length=1)
    duration_seconds: int | None = None
    distance_km: float | None = None
    active_calories: int | None = None
    avg_heart_rate: int | None = None
    max_heart_rate: int | None = None

    def row(self) -> dict[str, Any]:
        return self.model_dump()


class HeartRateDaily(PayloadBase):
    TABLE: ClassVar[TableSpec] = _merge_table(
        "heart_rate_daily",
        ("date", "resting_hr", "walking_hr_avg", "hrv"),
        ("date",),
    )

    date: str = Field(pattern=DATE_PATTERN)
    resting_hr: int | None = Field(default=None, alias="restingHR")
    walking_hr_avg: int | None = Field(default=None, alias="walkingHRAvg")
    hrv: float | None = None  # SDNN, ms

    def row(self) -> dict[str, Any]:
        data = self.model_dump()
        if self.resting_hr is not None and self.resting_hr > RESTING_HR_CAP_BPM:
            data["resting_hr"] = None
        return data


class Vital(PayloadBase):
    TABLE: ClassVar[TableSpec] = _merge_table("vitals", ("type", "date", "value"), ("type", "date"))

    type: Literal["vo2max", "respiratory_rate", "spo2"]
    date: str = Field(pattern=DATE_PATTERN)
    value: float

    def row(self) -> dict[str, Any]:
        return self.model_dump()


class SleepSession(PayloadBase):
    TABLE: ClassVar[TableSpec] = _merge_table(
        "sleep_sessions",
        (
            "date",
            "bedtime",
            "wake_time",
            "total_minutes",
            "rem_minutes",
            "core_minutes",
            "deep_minutes",
            "awake_minutes",
        ),
        ("date",),
    )

    date: str = Field(pattern=DATE_PATTERN)  # night of
    bedtime: str | None = Field(default=None, min_length=1)
    wake_time: str | None = Field(default=None, min_length=1)
    total_minutes: int | None = None
    rem_minutes: int | None = None
    core_minutes: int | None = None
    deep_minutes: int | None = None
    awake_minutes: int | None = None

    def row(self) -> dict[str, Any]:
        return self.model_dump()


class BodyMeasurement(PayloadBase):
    TABLE: ClassVar[TableSpec] = _merge_table(
        "body_measurements", ("type", "date", "value"), ("type", "date")
    )

    type: Literal["weight", "body_fat"]
    date: str = Field(pattern=DATE_PATTERN)
    value: float  # kg or %

    def row(self) -> dict[str, Any]:
        return self.model_dump()


#: Payload array key → record model, in ingestion order.
METRIC_MODELS: dict[str, type[PayloadBase]] = {
    "dailyActivity": DailyActivity,
    "workouts": Workout,
    "heartRateDaily": HeartRateDaily,
    "vitals": Vital,
    "sleepSessions": SleepSession,
    "bodyMeasurements": BodyMeasurement,
}


class SyncPayload(PayloadBase):
    """One push from the device export."""

    sync_timestamp: AwareDatetime
    daily_activity: list[DailyActivity] | None = None
    workouts: list[Workout] | None = None
    heart_rate_daily: list[HeartRateDaily] | None = None
    vitals: list[Vital] | None = None
    sleep_sessions: list[SleepSession] | None = None
    body_measurements: list[BodyMeasurement] | None = None

    def metric_arrays(self) -> dict[str, list[Any]]:
        """Return the present, non-empty metric arrays keyed by wire name."""
        arrays = {
            "dailyActivity": self.daily_activity,
            "workouts": self.workouts,
            "heartRateDaily": self.heart_rate_daily,
            "vitals": self.vitals,
            "sleepSessions": self.sleep_sessions,
            "bodyMeasurements": self.body_measurements,
        }
        return {key: rows for key, rows in arrays.items() if rows}


class SyncResponse(PayloadBase):
    ok: bool = True
    result: dict[str, int]
