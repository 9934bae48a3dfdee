"""Ingestion and backfill engine.

Two ways data enters the store:
    push      — the device export posts a payload; every row is merged on its natural key
    backfill  — historical glucose, insulin and activity pulled from Tidepool, insert-or-ignore

Both paths turn records into idempotent statements and hand them to one
batch executor, so retrying a failed run is always safe.

Subpackages:
    sources/ — External source clients (Tidepool)
    tests/   — pytest suite

Core modules:
    records       — Record variants and their target table specs
    units         — Distance / duration / activity-name normalization
    statements    — INSERT ... ON CONFLICT builder
    executor      — Sequential atomic batch submission
    push          — Push payload validation and ingestion
    backfill      — Windowed historical backfill orchestrator
    config_loader — Load and validate ingest_config.yaml
"""

from healthsync.ingest.config_loader import IngestConfig, get_ingest_config
from healthsync.ingest.executor import BatchExecutor, StatementStore
from healthsync.ingest.statements import Statement, build_statement, build_statements

__all__ = [
    "BatchExecutor",
    "StatementStore",
    "Statement",
    "build_statement",
    "build_statements",
    "IngestConfig",
    "get_ingest_config",
]
