"""Postgres access through asyncpg.

The API process holds one module-level pool, created at startup and closed
at shutdown.  ``PostgresStore`` wraps a pool as the ingest engine's
``StatementStore``: each batch runs inside a single transaction, so a batch
is either fully durable or not written at all.
"""

from __future__ import annotations

import itertools
import logging
from pathlib import Path
from typing import Any, Sequence

import asyncpg

from healthsync.config import Settings, get_settings
from healthsync.ingest.errors import DuplicateKeyError
from healthsync.ingest.executor import StatementStore
from healthsync.ingest.statements import Statement

logger = logging.getLogger("healthsync.db")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.db_pool_min_size, s.db_pool_max_size
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized; call init_pool() first")
    return _pool


async def ensure_schema(pool: asyncpg.Pool | None = None) -> None:
    """Create every ingest table that does not exist yet."""
    ddl = SCHEMA_PATH.read_text(encoding="utf-8")
    async with (pool or get_pool()).acquire() as conn:
        await conn.execute(ddl)
    logger.info("Schema ensured from %s", SCHEMA_PATH.name)


class PostgresStore(StatementStore):
    """StatementStore backed by an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def fetch_value(self, sql: str, *params: Any) -> Any:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(sql, *params)

    async def execute_batch(self, statements: Sequence[Statement]) -> None:
        """Run the batch in one transaction.

        Consecutive statements sharing SQL text go through one
        ``executemany`` call.

        Raises:
            DuplicateKeyError: A unique constraint rejected a row.
        """
        async with self._pool.acquire() as conn:
            try:
                async with conn.transaction():
                    for sql, group in itertools.groupby(statements, key=lambda s: s.sql):
                        await conn.executemany(sql, [s.params for s in group])
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateKeyError(str(exc)) from exc
