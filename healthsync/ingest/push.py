"""Push sync handler for device health exports.

Flow for one payload:
1. Validate against the record schemas (rejects before any write)
2. Build one merge statement per record, per present metric array
3. Append the sync cursor update (payload timestamp normalized to UTC)
4. Submit everything through the batch executor
5. Return accepted counts per metric kind

The cursor statement is the last statement of the last batch, so a failed
batch leaves the cursor untouched and the device can resend the payload.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from healthsync.ingest.errors import ValidationError
from healthsync.ingest.executor import BatchExecutor, StatementStore
from healthsync.ingest.records import SYNC_CURSOR_KEY, SyncCursor, iso_utc
from healthsync.ingest.statements import Statement, build_statement, build_statements
from healthsync.models.push import METRIC_MODELS, SyncPayload

logger = logging.getLogger("healthsync.ingest.push")


def _to_validation_error(exc: PydanticValidationError, prefix: tuple[Any, ...] = ()) -> ValidationError:
    issues = [
        (".".join(str(p) for p in (*prefix, *err["loc"])), err["msg"])
        for err in exc.errors()
    ]
    path, message = issues[0]
    return ValidationError(path or "<root>", message, issues)


def parse_payload(raw: Any) -> SyncPayload:
    """Validate a decoded JSON body as a sync payload.

    Args:
        raw: Decoded JSON value.

    Returns:
        The validated SyncPayload.

    Raises:
        ValidationError: Naming the first offending field path.
    """
    try:
        return SyncPayload.model_validate(raw)
    except PydanticValidationError as exc:
        raise _to_validation_error(exc) from exc


def validate_metric_array(kind: str, items: Any) -> list[Any]:
    """Validate one metric array on its own.

    All-or-nothing within the array; other arrays are unaffected.

    Args:
        kind:  Payload key ('dailyActivity', 'workouts', ...).
        items: The raw array.

    Returns:
        Validated record models.

    Raises:
        KeyError:        Unknown metric kind.
        ValidationError: Any entry is malformed.
    """
    model = METRIC_MODELS[kind]
    try:
        return TypeAdapter(list[model]).validate_python(items)  # type: ignore[valid-type]
    except PydanticValidationError as exc:
        raise _to_validation_error(exc, prefix=(kind,)) from exc


def build_payload_statements(payload: SyncPayload) -> tuple[list[Statement], dict[str, int]]:
    """Build every statement for a payload, cursor update last.

    Returns:
        (statements, accepted counts keyed by metric kind).
    """
    statements: list[Statement] = []
    counts: dict[str, int] = {}

    for kind, rows in payload.metric_arrays().items():
        statements.extend(build_statements(rows))
        counts[kind] = len(rows)

    statements.append(build_statement(SyncCursor(value=iso_utc(payload.sync_timestamp))))
    return statements, counts


async def read_cursor(store: StatementStore) -> str | None:
    """Return the last ingested push timestamp, or None before the first sync."""
    return await store.fetch_value(
        f"SELECT value FROM {SyncCursor.TABLE.name} WHERE key = $1", SYNC_CURSOR_KEY
    )


class PushSyncHandler:
    """Ingest device push payloads into the merge tables.

    Usage::

        handler = PushSyncHandler(BatchExecutor(store))
        counts = await handler.handle(request_json)
    """

    def __init__(self, executor: BatchExecutor) -> None:
        self._executor = executor

    async def handle(self, raw: Any) -> dict[str, int]:
        """Validate and ingest a decoded JSON body."""
        return await self.ingest(parse_payload(raw))

    async def ingest(self, payload: SyncPayload) -> dict[str, int]:
        """Ingest a validated payload.

        Args:
            payload: Validated SyncPayload.

        Returns:
            Records accepted per metric kind (present, non-empty arrays only).

        Raises:
            BatchExecutionError: A batch failed; the cursor was not advanced.
        """
        statements, counts = build_payload_statements(payload)
        report = await self._executor.execute(statements)
        logger.info(
            "Push sync %s: %s (%d statements in %d batches)",
            iso_utc(payload.sync_timestamp),
            counts or "no records",
            report.statements,
            report.batches,
        )
        return counts
