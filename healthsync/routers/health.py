"""Public liveness endpoint; reports store reachability and push freshness."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from healthsync.dependencies import AppSettings, OptionalStore
from healthsync.ingest.config_loader import get_ingest_config
from healthsync.ingest.push import read_cursor
from healthsync.ingest.records import iso_utc

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthsync.health")


@router.get("/health")
async def health_check(settings: AppSettings, store: OptionalStore) -> dict:
    """Always 200 while the process is up.

    The sync cursor read doubles as the store check: ``status`` is
    "degraded" when it fails, and ``lastSync`` is the last accepted push.
    """
    last_sync: str | None = None
    store_ok = False
    if store is None:
        logger.warning("Health check: database pool not initialized")
    else:
        try:
            last_sync = await read_cursor(store)
            store_ok = True
        except Exception as exc:
            logger.warning("Health check cursor read failed: %s", exc)

    return {
        "status": "healthy" if store_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "store": "connected" if store_ok else "unreachable",
        "lastSync": last_sync,
        "ingestConfig": get_ingest_config().version,
        "checkedAt": iso_utc(datetime.now(timezone.utc)),
    }
