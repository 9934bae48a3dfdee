"""Batch executor: submits write statements to the store in atomic groups.

Statements are split into groups no larger than the store's per-batch
ceiling and submitted one group at a time, never concurrently.  A group is
either fully durable or, on failure, the run stops with
``BatchExecutionError``; the only exception is a natural-key collision in a
group made solely of insert-or-ignore statements, which means "already
ingested" and is treated as success.

There is no partial-group rollback: every statement is idempotent, so a
failed group is safe to resubmit wholesale.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

from healthsync.ingest.errors import BatchExecutionError, DuplicateKeyError
from healthsync.ingest.statements import Statement

logger = logging.getLogger("healthsync.ingest.executor")

#: Maximum statements one atomic batch may carry.
DEFAULT_MAX_BATCH_STATEMENTS = 500

#: Wall-clock ceiling for one batch submission.
DEFAULT_BATCH_TIMEOUT_S = 120.0


class StatementStore(ABC):
    """What the ingest engine needs from a relational store.

    Writes go through ``execute_batch`` only; ``fetch_value`` serves the
    occasional single-value read (the sync cursor).
    """

    #: Hard ceiling on statements per ``execute_batch`` call.
    MAX_BATCH_STATEMENTS: int = DEFAULT_MAX_BATCH_STATEMENTS

    @abstractmethod
    async def fetch_value(self, sql: str, *params: Any) -> Any:
        """Return the first column of the first row, or None."""

    @abstractmethod
    async def execute_batch(self, statements: Sequence[Statement]) -> None:
        """Execute all statements atomically.

        Args:
            statements: At most ``MAX_BATCH_STATEMENTS`` statements.

        Raises:
            DuplicateKeyError: A statement collided on a natural key.
            Exception:         Any other backend failure.
        """


@dataclass
class ExecutionReport:
    """Outcome of one ``BatchExecutor.execute`` call.

    Attributes:
        statements: Statements submitted (or measured, in dry-run).
        batches:    Groups submitted.
        size_bytes: Total approximate wire size.
        dry_run:    True when nothing was written.
    """

    statements: int = 0
    batches: int = 0
    size_bytes: int = 0
    dry_run: bool = False



def chunk_statements(statements: Sequence[Statement], size: int) -> list[list[Statement]]:
    """Split statements into ordered groups of at most ``size``."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(statements[i : i + size]) for i in range(0, len(statements), size)]


class BatchExecutor:
    """Submit statement lists to a store in sequential atomic batches.

    Usage::

        executor = BatchExecutor(PostgresStore(pool))
        report = await executor.execute(statements)
    """

    def __init__(
        self,
        store: StatementStore | None,
        max_batch_statements: int | None = None,
        timeout_s: float = DEFAULT_BATCH_TIMEOUT_S,
        dry_run: bool = False,
    ) -> None:
        """Initialize the executor.

        Args:
            store:                Target store. May be None only in dry-run mode.
            max_batch_statements: Group size; capped at the store's ceiling.
            timeout_s:            Per-batch wall-clock timeout.
            dry_run:              Measure and log batches instead of executing them.
        """
        if store is None and not dry_run:
            raise ValueError("A store is required unless dry_run is set")

        ceiling = store.MAX_BATCH_STATEMENTS if store is not None else DEFAULT_MAX_BATCH_STATEMENTS
        self._store = store
        self._batch_size = min(max_batch_statements or ceiling, ceiling)
        self._timeout_s = timeout_s
        self.dry_run = dry_run

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def execute(self, statements: Sequence[Statement]) -> ExecutionReport:
        """Submit statements in order, one atomic group at a time.

        Args:
            statements: Ordered statements, possibly spanning several tables.

        Returns:
            ExecutionReport for the submitted groups.

        Raises:
            BatchExecutionError: A group failed or timed out; later groups were
                                 not submitted.
        """
        groups = chunk_statements(statements, self._batch_size)
        report = ExecutionReport(dry_run=self.dry_run)

        for committed, group in enumerate(groups):
            size = sum(s.size_bytes for s in group)

            if self.dry_run or self._store is None:
                logger.info("[dry-run] %d statements, %d bytes", len(group), size)
            else:
                await self._submit(self._store, group, committed, len(groups))

            report.statements += len(group)
            report.batches += 1
            report.size_bytes += size

        return report

    async def _submit(
        self, store: StatementStore, group: list[Statement], committed: int, total: int
    ) -> None:
        try:
            await asyncio.wait_for(store.execute_batch(group), timeout=self._timeout_s)
        except DuplicateKeyError as exc:
            if all(s.is_insert_or_ignore for s in group):
                logger.info("Batch %d/%d already ingested (%s)", committed + 1, total, exc)
                return
            logger.error("Batch %d/%d hit a key collision: %s", committed + 1, total, exc)
            raise BatchExecutionError(str(exc), committed, total) from exc
        except asyncio.TimeoutError as exc:
            logger.error(
                "Batch %d/%d timed out after %.0fs", committed + 1, total, self._timeout_s
            )
            raise BatchExecutionError(
                f"batch timed out after {self._timeout_s:.0f}s", committed, total
            ) from exc
        except Exception as exc:
            logger.error("Batch %d/%d failed: %s", committed + 1, total, exc)
            raise BatchExecutionError(str(exc), committed, total) from exc
