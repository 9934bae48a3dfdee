"""Idempotent write statements built from ingest records.

Every statement is a single ``INSERT ... ON CONFLICT (<natural key>)``.
Re-submitting the same statement never creates a duplicate row, which is
what lets the batch executor retry a half-committed batch wholesale.

Conflict clauses by mode:
    MERGE       DO UPDATE SET <col> = EXCLUDED.<col>, ..., updated_at = NOW()
    IGNORE      DO NOTHING
    ACCUMULATE  DO UPDATE SET <col> = COALESCE(<table>.<col>, 0) + EXCLUDED.<col>
    ADVANCE     DO UPDATE SET <col> = EXCLUDED.<col> WHERE <table>.<col> < EXCLUDED.<col>

Placeholders use the ``$n`` style.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable

from healthsync.ingest.records import ConflictMode, IngestRecord, TableSpec


@dataclass(frozen=True)
class Statement:
    """One parameterized write.

    Attributes:
        table:    Target table.
        sql:      Parameterized SQL text.
        params:   Positional parameters for ``$1..$n``.
        conflict: Conflict mode of the target table.
    """

    table: str
    sql: str
    params: tuple[Any, ...]
    conflict: ConflictMode

    @property
    def is_insert_or_ignore(self) -> bool:
        return self.conflict is ConflictMode.IGNORE

    @property
    def size_bytes(self) -> int:
        """Approximate wire size: SQL text plus JSON-encoded parameters."""
        return len(self.sql.encode()) + len(json.dumps(self.params, default=str).encode())


@lru_cache(maxsize=None)
def build_upsert_query(spec: TableSpec) -> str:
    """Build the ``INSERT ... ON CONFLICT`` SQL for a table spec.

    Args:
        spec: Target table description.

    Returns:
        Parameterized SQL string.
    """
    columns = list(spec.columns)
    placeholders = [f"${i + 1}" for i in range(len(columns))]
    if spec.stamp_updated_at:
        columns.append("updated_at")
        placeholders.append("NOW()")

    col_list = ", ".join(columns)
    conflict_target = ", ".join(spec.key)
    value_columns = spec.value_columns

    if spec.conflict is ConflictMode.IGNORE or not value_columns:
        do_clause = "DO NOTHING"
    elif spec.conflict is ConflictMode.MERGE:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in value_columns)
        if spec.stamp_updated_at:
            update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    elif spec.conflict is ConflictMode.ACCUMULATE:
        update_set = ", ".join(
            f"{col} = COALESCE({spec.name}.{col}, 0) + EXCLUDED.{col}"
            for col in value_columns
        )
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in value_columns)
        guard = " AND ".join(f"{spec.name}.{col} < EXCLUDED.{col}" for col in value_columns)
        do_clause = f"DO UPDATE SET {update_set} WHERE {guard}"

    return (
        f"INSERT INTO {spec.name} ({col_list}) "
        f"VALUES ({', '.join(placeholders)}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )


def build_statement(record: IngestRecord) -> Statement:
    """Build the idempotent write for one record.

    Args:
        record: Any record variant (push metric row, backfill row, cursor).

    Returns:
        A Statement targeting the record's table.
    """
    spec = record.TABLE
    row = record.row()
    return Statement(
        table=spec.name,
        sql=build_upsert_query(spec),
        params=tuple(row.get(col) for col in spec.columns),
        conflict=spec.conflict,
    )


def build_statements(records: Iterable[IngestRecord]) -> list[Statement]:
    return [build_statement(r) for r in records]
