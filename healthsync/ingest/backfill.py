"""Historical backfill orchestrator for the external diabetes-data platform.

Fills gaps in the glucose, insulin and activity tables from a days-ago
range.  Designed to:
- Split the range into bounded, non-overlapping windows (oldest first)
- Process metrics and windows strictly one after another
- Flush every window through the batch executor before starting the next
- Pace between windows to respect the source's implicit rate limit
- Measure instead of write in dry-run mode (the reads still happen)

There is no persisted progress marker.  A crash loses at most the in-flight
window; rerunning the same range is always safe because every backfill
table except the daily aggregate is insert-or-ignore.  To skip windows that
already completed, rerun with ``to_days`` set at the last completed window.

Usage::

    orchestrator = BackfillOrchestrator(client, executor, config.backfill)
    async for result in orchestrator.iter_run(credentials, request):
        logger.info("Backfill progress: %s", result)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import partial
from types import MappingProxyType
from typing import AsyncIterator, Callable, Iterable, Mapping, TypeVar

from healthsync.ingest.config_loader import METRICS, BackfillConfig
from healthsync.ingest.dedup import InMemoryDedupCache, session_key
from healthsync.ingest.errors import FetchError
from healthsync.ingest.executor import BatchExecutor, ExecutionReport
from healthsync.ingest.pacing import FixedDelayPacer, Pacer
from healthsync.ingest.records import (
    SOURCE_TAG,
    DailyActivityDelta,
    GlucoseReading,
    InsulinDose,
    RunningSession,
)
from healthsync.ingest.sources.tidepool import TidepoolClient, TidepoolSession
from healthsync.ingest.statements import Statement, build_statements
from healthsync.ingest.windows import Window, generate_windows

logger = logging.getLogger("healthsync.ingest.backfill")

R = TypeVar("R")


@dataclass(frozen=True)
class Credentials:
    """Source account credentials, used only to obtain a session token."""

    email: str
    password: str = field(repr=False)


@dataclass
class BackfillRequest:
    """What one invocation should backfill.

    Attributes:
        from_days:     Start of the range, in days ago. None → legacy gap windows.
        to_days:       End of the range, in days ago (must be < from_days).
        skip_glucose:  Disable the glucose stream.
        skip_insulin:  Disable the insulin stream.
        skip_activity: Disable the activity stream.
    """

    from_days: int | None = None
    to_days: int | None = None
    skip_glucose: bool = False
    skip_insulin: bool = False
    skip_activity: bool = False

    def __post_init__(self) -> None:
        if (self.from_days is None) != (self.to_days is None):
            raise ValueError("from_days and to_days must be given together")
        if self.from_days is not None and self.to_days is not None:
            if self.to_days < 0 or self.from_days <= self.to_days:
                raise ValueError(
                    f"Expected from_days > to_days >= 0, got {self.from_days} and {self.to_days}"
                )

    @property
    def has_range(self) -> bool:
        return self.from_days is not None

    def enabled(self, metric: str) -> bool:
        return not getattr(self, f"skip_{metric}")


@dataclass
class WindowResult:
    """Progress update emitted after each processed window.

    Attributes:
        metric:     'glucose', 'insulin' or 'activity'.
        window:     Days-ago window.
        start:      Absolute window start (inclusive).
        end:        Absolute window end (exclusive).
        fetched:    Raw records returned by the source.
        records:    Rows queued (readings, doses or workouts).
        aggregates: Daily aggregate rows queued (activity only).
        execution:  What the executor submitted or measured.
    """

    metric: str
    window: Window
    start: datetime
    end: datetime
    fetched: int = 0
    records: int = 0
    aggregates: int = 0
    execution: ExecutionReport = field(default_factory=ExecutionReport)


@dataclass
class BackfillReport:
    """Totals for one invocation (identical in dry-run and live mode)."""

    glucose_readings: int = 0
    insulin_doses: int = 0
    workouts: int = 0
    activity_days: int = 0
    windows: int = 0
    statements: int = 0
    size_bytes: int = 0
    dry_run: bool = False

    def record(self, result: WindowResult) -> None:
        self.windows += 1
        self.statements += result.execution.statements
        self.size_bytes += result.execution.size_bytes
        if result.metric == "glucose":
            self.glucose_readings += result.records
        elif result.metric == "insulin":
            self.insulin_doses += result.records
        else:
            self.workouts += result.records
            self.activity_days += result.aggregates


def plan_windows(request: BackfillRequest, config: BackfillConfig) -> dict[str, list[Window]]:
    """Return the windows to process per enabled metric, in processing order."""
    plan: dict[str, list[Window]] = {}
    for metric in METRICS:
        if not request.enabled(metric):
            continue
        if request.from_days is not None and request.to_days is not None:
            plan[metric] = generate_windows(
                request.from_days, request.to_days, config.chunk_days[metric]
            )
        else:
            plan[metric] = list(config.legacy_windows.get(metric, []))
    return plan


def aggregate_by_date(sessions: Iterable[RunningSession]) -> Mapping[str, DailyActivityDelta]:
    """Group sessions by start date into one additive delta per date.

    Returns:
        Read-only mapping of ``YYYY-MM-DD`` → DailyActivityDelta, in first-seen order.
    """
    totals: dict[str, DailyActivityDelta] = {}
    for session in sessions:
        current = totals.get(session.date) or DailyActivityDelta(date=session.date)
        totals[session.date] = current.plus(session)
    return MappingProxyType(totals)


def _normalize(metric: str, raw: Iterable[dict], build: Callable[[dict], R]) -> list[R]:
    """Map raw source records through ``build``; a malformed record raises FetchError."""
    records: list[R] = []
    for item in raw:
        try:
            records.append(build(item))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise FetchError(
                metric, f"malformed record {item!r} ({type(exc).__name__}: {exc})"
            ) from exc
    return records


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BackfillOrchestrator:
    """Drive source reads and batched writes window by window.

    All network calls and batch submissions are awaited in sequence; the
    only concurrency is the bolus/basal pair inside one insulin fetch.
    """

    def __init__(
        self,
        client: TidepoolClient,
        executor: BatchExecutor,
        config: BackfillConfig,
        source_tag: str = SOURCE_TAG,
        pacer: Pacer | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client:     External source client.
            executor:   Batch executor (its dry_run flag decides whether anything is written).
            config:     Backfill section of the ingest config.
            source_tag: Value written to the ``source`` column of backfilled rows.
            pacer:      Delay policy between windows (defaults to config.pace_ms).
            clock:      Returns "now"; window bounds are relative to it.
        """
        self._client = client
        self._executor = executor
        self._config = config
        self._source_tag = source_tag
        self._pacer = pacer or FixedDelayPacer(config.pace_ms)
        self._clock = clock
        self._dedup = InMemoryDedupCache()

    async def run(self, credentials: Credentials, request: BackfillRequest) -> BackfillReport:
        """Run a backfill to completion and return its totals.

        Raises:
            AuthenticationError: Login failed; no window was processed.
            FetchError:          A window read failed; later windows were skipped.
            BatchExecutionError: A write failed; later windows were skipped.
        """
        report = BackfillReport(dry_run=self._executor.dry_run)
        async for result in self.iter_run(credentials, request):
            report.record(result)

        logger.info(
            "Backfill done: %d glucose readings, %d insulin doses, %d workouts, "
            "%d activity days (%d windows, %d statements)",
            report.glucose_readings,
            report.insulin_doses,
            report.workouts,
            report.activity_days,
            report.windows,
            report.statements,
        )
        return report

    async def iter_run(
        self, credentials: Credentials, request: BackfillRequest
    ) -> AsyncIterator[WindowResult]:
        """Run a backfill, yielding one WindowResult per processed window.

        Authenticates once, then walks glucose, insulin and activity windows
        in order.  Stopping iteration stops the run before the next window.
        """
        plan = plan_windows(request, self._config)
        session = await self._client.login(credentials.email, credentials.password)
        now = self._clock()
        self._dedup.clear()

        if request.has_range:
            logger.info("Range: %d→%d days ago", request.from_days, request.to_days)
        else:
            logger.info("No range given; using legacy gap windows")

        handlers = {
            "glucose": self._glucose_window,
            "insulin": self._insulin_window,
            "activity": self._activity_window,
        }

        for metric, windows in plan.items():
            for window in windows:
                start, end = window.bounds(now)
                logger.info(
                    "%s %s (%s → %s)",
                    metric.capitalize(),
                    window,
                    start.date().isoformat(),
                    end.date().isoformat(),
                )
                result = await handlers[metric](session, window, start, end)
                yield result
                await self._pacer.pause()

    async def sync_recent_glucose(self, credentials: Credentials, lookback_hours: int) -> int:
        """Pull the last ``lookback_hours`` of glucose readings and insert-or-ignore them.

        Returns:
            Readings fetched from the source.
        """
        session = await self._client.login(credentials.email, credentials.password)
        end = self._clock()
        start = end - timedelta(hours=lookback_hours)
        window = Window(from_days=0, to_days=0)
        result = await self._glucose_window(session, window, start, end)
        return result.fetched

    # ------------------------------------------------------------------
    # Per-metric window processing
    # ------------------------------------------------------------------

    async def _flush(self, statements: list[Statement]) -> ExecutionReport:
        if not statements:
            return ExecutionReport(dry_run=self._executor.dry_run)
        return await self._executor.execute(statements)

    async def _glucose_window(
        self, session: TidepoolSession, window: Window, start: datetime, end: datetime
    ) -> WindowResult:
        raw = await self._client.fetch_glucose(session, start, end)
        build = partial(GlucoseReading.from_source, source=self._source_tag)
        readings = _normalize("glucose", raw, build)
        execution = await self._flush(build_statements(readings))
        logger.info("  Fetched %d readings, queued %d statements", len(raw), execution.statements)
        return WindowResult(
            metric="glucose",
            window=window,
            start=start,
            end=end,
            fetched=len(raw),
            records=len(readings),
            execution=execution,
        )

    async def _insulin_window(
        self, session: TidepoolSession, window: Window, start: datetime, end: datetime
    ) -> WindowResult:
        raw = await self._client.fetch_insulin(session, start, end)
        build = partial(InsulinDose.from_source, source=self._source_tag)
        doses = _normalize("insulin", raw, build)
        boluses = sum(1 for d in doses if d.type == "bolus")
        execution = await self._flush(build_statements(doses))
        logger.info(
            "  Fetched %d doses (%d bolus, %d basal)", len(doses), boluses, len(doses) - boluses
        )
        return WindowResult(
            metric="insulin",
            window=window,
            start=start,
            end=end,
            fetched=len(raw),
            records=len(doses),
            execution=execution,
        )

    async def _activity_window(
        self, session: TidepoolSession, window: Window, start: datetime, end: datetime
    ) -> WindowResult:
        raw = await self._client.fetch_activity(session, start, end)

        build = partial(RunningSession.from_source, source=self._source_tag)
        sessions: list[RunningSession] = []
        for workout in _normalize("activity", raw, build):
            key = session_key(self._source_tag, workout.start_time)
            if self._dedup.is_seen(key):
                logger.debug("Skipping workout already queued this run: %s", key)
                continue
            self._dedup.mark_seen(key)
            sessions.append(workout)

        deltas = aggregate_by_date(sessions)
        statements = build_statements(sessions) + build_statements(deltas.values())
        execution = await self._flush(statements)
        logger.info("  Fetched %d workouts, %d daily summaries", len(sessions), len(deltas))
        return WindowResult(
            metric="activity",
            window=window,
            start=start,
            end=end,
            fetched=len(raw),
            records=len(sessions),
            aggregates=len(deltas),
            execution=execution,
        )
