"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException

from healthsync.config import Settings, get_settings
from healthsync.ingest.backfill import BackfillOrchestrator
from healthsync.ingest.config_loader import get_ingest_config
from healthsync.ingest.executor import BatchExecutor, StatementStore
from healthsync.ingest.pacing import NoDelayPacer
from healthsync.ingest.push import PushSyncHandler
from healthsync.ingest.sources.tidepool import TidepoolClient
from healthsync.services.database import PostgresStore, get_pool


async def require_sync_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_sync_secret: str | None = Header(default=None, alias="x-sync-secret"),
) -> None:
    """Reject callers that do not present the shared push secret.

    With no secret configured every caller is unprivileged.
    """
    if not settings.sync_secret or not x_sync_secret:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(x_sync_secret.encode(), settings.sync_secret.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_store() -> StatementStore:
    return PostgresStore(get_pool())


def get_optional_store() -> StatementStore | None:
    """The store, or None while the database pool is down."""
    try:
        return get_store()
    except RuntimeError:
        return None


def get_batch_executor(store: Annotated[StatementStore, Depends(get_store)]) -> BatchExecutor:
    batch = get_ingest_config().batch
    return BatchExecutor(store, batch.max_statements, batch.timeout_seconds)


def get_push_handler(
    executor: Annotated[BatchExecutor, Depends(get_batch_executor)],
) -> PushSyncHandler:
    return PushSyncHandler(executor)


def get_glucose_orchestrator(
    executor: Annotated[BatchExecutor, Depends(get_batch_executor)],
) -> BackfillOrchestrator:
    """Orchestrator for the single-window recent glucose pull (no pacing needed)."""
    config = get_ingest_config()
    client = TidepoolClient(config.source.base_url, config.source.timeout_seconds)
    return BackfillOrchestrator(
        client,
        executor,
        config.backfill,
        source_tag=config.source.tag,
        pacer=NoDelayPacer(),
    )


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_settings)]
Store = Annotated[StatementStore, Depends(get_store)]
OptionalStore = Annotated[StatementStore | None, Depends(get_optional_store)]
PushHandler = Annotated[PushSyncHandler, Depends(get_push_handler)]
GlucoseOrchestrator = Annotated[BackfillOrchestrator, Depends(get_glucose_orchestrator)]
SyncCaller = Depends(require_sync_secret)
