"""Record variants and table specifications for the ingest engine.

Every ingestible record (the push-mode metric rows in
``healthsync.models.push`` and the backfill rows defined here) carries a
``TABLE`` class attribute describing its target table, natural key and
conflict behaviour, plus a ``row()`` method returning column values.  The
statement builder dispatches on ``TABLE`` alone, so there is one code path
for all record kinds.

Natural keys (UNIQUE constraints in ``services/schema.sql``):
    daily_activity      — (date)
    workouts            — (workout_type, start_time)
    heart_rate_daily    — (date)
    vitals              — (type, date)
    sleep_sessions      — (date)
    body_measurements   — (type, date)
    sync_state          — (key)
    glucose_readings    — (timestamp)
    insulin_doses       — (timestamp, type)
    running_sessions    — (start_time)
    activity_summaries  — (date)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Protocol

from healthsync.ingest.units import activity_type_from_name, to_kilometers, to_seconds

logger = logging.getLogger("healthsync.ingest.records")

SOURCE_TAG = "tidepool"
SYNC_CURSOR_KEY = "last_sync"


class ConflictMode(str, Enum):
    """What a write does when its natural key already exists."""

    MERGE = "merge"            # overwrite every non-key column, stamp updated_at
    IGNORE = "ignore"          # keep the first-written row
    ACCUMULATE = "accumulate"  # add incoming values to the stored totals
    ADVANCE = "advance"        # overwrite only when the incoming value sorts later


@dataclass(frozen=True)
class TableSpec:
    """Target table of a record kind.

    Attributes:
        name:             Table name.
        columns:          Columns written by the insert clause, in order.
        key:              Natural-key columns (the ON CONFLICT target).
        conflict:         Conflict resolution mode.
        stamp_updated_at: Write ``updated_at = NOW()`` on insert and merge.
    """

    name: str
    columns: tuple[str, ...]
    key: tuple[str, ...]
    conflict: ConflictMode
    stamp_updated_at: bool = False

    @property
    def value_columns(self) -> tuple[str, ...]:
        return tuple(c for c in self.columns if c not in self.key)


class IngestRecord(Protocol):
    """Structural type shared by every record variant."""

    TABLE: ClassVar[TableSpec]

    def row(self) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _number(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric source value: %r", value)
        return None


def _parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def iso_utc(dt: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


# ---------------------------------------------------------------------------
# Sync cursor (push path only)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncCursor:
    """Singleton marker holding the last ingested push payload timestamp.

    ``value`` is written in the fixed-width ``iso_utc`` form, so the
    ADVANCE guard's string comparison orders cursors by time.
    """

    TABLE: ClassVar[TableSpec] = TableSpec(
        name="sync_state",
        columns=("key", "value"),
        key=("key",),
        conflict=ConflictMode.ADVANCE,
    )

    value: str
    key: str = SYNC_CURSOR_KEY

    def row(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value}


# ---------------------------------------------------------------------------
# Backfill rows (insert-or-ignore, plus the additive daily aggregate)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GlucoseReading:
    """One CGM reading (mmol/L)."""

    TABLE: ClassVar[TableSpec] = TableSpec(
        name="glucose_readings",
        columns=("timestamp", "value", "trend", "source"),
        key=("timestamp",),
        conflict=ConflictMode.IGNORE,
    )

    timestamp: str
    value: float
    trend: str | None = None
    source: str = SOURCE_TAG

    @classmethod
    def from_source(cls, raw: dict, source: str = SOURCE_TAG) -> "GlucoseReading":
        """Build a reading from a raw ``cbg`` record, rounding to one decimal."""
        return cls(
            timestamp=raw["time"],
            value=round(float(raw["value"]), 1),
            trend=raw.get("trend"),
            source=source,
        )

    def row(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "value": self.value,
            "trend": self.trend,
            "source": self.source,
        }


@dataclass(frozen=True)
class InsulinDose:
    """One bolus or basal delivery."""

    TABLE: ClassVar[TableSpec] = TableSpec(
        name="insulin_doses",
        columns=("timestamp", "units", "type", "sub_type", "duration", "source"),
        key=("timestamp", "type"),
        conflict=ConflictMode.IGNORE,
    )

    timestamp: str
    units: float
    type: str
    sub_type: str | None = None
    duration: float | None = None
    source: str = SOURCE_TAG

    @classmethod
    def from_source(cls, raw: dict, source: str = SOURCE_TAG) -> "InsulinDose":
        """Build a dose from a raw record tagged with ``type`` 'bolus' or 'basal'.

        Bolus units are normal + extended; basal units are the delivery rate.
        """
        if raw["type"] == "bolus":
            return cls(
                timestamp=raw["time"],
                units=(_number(raw.get("normal")) or 0.0) + (_number(raw.get("extended")) or 0.0),
                type="bolus",
                sub_type=raw.get("subType"),
                duration=None,
                source=source,
            )
        return cls(
            timestamp=raw["time"],
            units=_number(raw.get("rate")) or 0.0,
            type="basal",
            sub_type=raw.get("deliveryType"),
            duration=_number(raw.get("duration")),
            source=source,
        )

    def row(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "units": self.units,
            "type": self.type,
            "sub_type": self.sub_type,
            "duration": self.duration,
            "source": self.source,
        }


@dataclass(frozen=True)
class RunningSession:
    """A workout pulled from the external source, in canonical units."""

    TABLE: ClassVar[TableSpec] = TableSpec(
        name="running_sessions",
        columns=(
            "start_time",
            "end_time",
            "distance_km",
            "duration_seconds",
            "avg_pace_sec_per_km",
            "activity_name",
            "active_calories",
            "source",
        ),
        key=("start_time",),
        conflict=ConflictMode.IGNORE,
    )

    start_time: str
    end_time: str | None = None
    distance_km: float | None = None
    duration_seconds: int | None = None
    avg_pace_sec_per_km: int | None = None
    activity_name: str | None = None
    active_calories: int | None = None
    source: str = SOURCE_TAG

    @property
    def date(self) -> str:
        """Calendar date (``YYYY-MM-DD``) taken from the start timestamp."""
        return self.start_time[:10]

    @classmethod
    def from_source(cls, raw: dict, source: str = SOURCE_TAG) -> "RunningSession":
        """Normalize a raw ``physicalActivity`` record.

        Duration → seconds, distance → km, energy → rounded calories; the end
        time is start + duration and pace is seconds per km.
        """
        duration = raw.get("duration") or None
        distance = raw.get("distance") or None
        energy = raw.get("energy") or None

        seconds = (
            to_seconds(float(duration["value"]), duration.get("units"))
            if duration and duration.get("value")
            else None
        )
        km = (
            to_kilometers(float(distance["value"]), distance.get("units"))
            if distance and distance.get("value")
            else None
        )
        calories = (
            round(float(energy["value"]))
            if energy and energy.get("value") is not None
            else None
        )

        start_time = raw["time"]
        end_time = (
            iso_utc(_parse_timestamp(start_time) + timedelta(seconds=seconds))
            if seconds
            else None
        )
        pace = round(seconds / km) if seconds and km and km > 0 else None
        name = raw.get("name")

        return cls(
            start_time=start_time,
            end_time=end_time,
            distance_km=round(km, 2) if km else None,
            duration_seconds=round(seconds) if seconds else None,
            avg_pace_sec_per_km=pace,
            activity_name=activity_type_from_name(name) if name else None,
            active_calories=calories,
            source=source,
        )

    def row(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "distance_km": self.distance_km,
            "duration_seconds": self.duration_seconds,
            "avg_pace_sec_per_km": self.avg_pace_sec_per_km,
            "activity_name": self.activity_name,
            "active_calories": self.active_calories,
            "source": self.source,
        }


@dataclass(frozen=True)
class DailyActivityDelta:
    """Per-date totals to add onto ``activity_summaries``.

    Values accumulate unrounded while grouping; ``row()`` rounds them.
    """

    TABLE: ClassVar[TableSpec] = TableSpec(
        name="activity_summaries",
        columns=("date", "active_calories", "exercise_minutes"),
        key=("date",),
        conflict=ConflictMode.ACCUMULATE,
    )

    date: str
    active_calories: float = 0.0
    exercise_minutes: float = 0.0

    def plus(self, session: RunningSession) -> "DailyActivityDelta":
        return DailyActivityDelta(
            date=self.date,
            active_calories=self.active_calories + (session.active_calories or 0),
            exercise_minutes=self.exercise_minutes + (session.duration_seconds or 0) / 60,
        )

    def row(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "active_calories": round(self.active_calories),
            "exercise_minutes": round(self.exercise_minutes),
        }
