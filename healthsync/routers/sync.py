"""Sync endpoints: device push ingest, cursor read, recent glucose pull.

All routes require the shared ``x-sync-secret`` header.
"""

from __future__ import annotations

import json
import logging
import zlib
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from healthsync.dependencies import (
    AppSettings,
    GlucoseOrchestrator,
    PushHandler,
    Store,
    SyncCaller,
)
from healthsync.ingest.backfill import Credentials
from healthsync.ingest.config_loader import get_ingest_config
from healthsync.ingest.errors import (
    AuthenticationError,
    BatchExecutionError,
    FetchError,
    ValidationError,
)
from healthsync.ingest.push import read_cursor
from healthsync.models.push import SyncResponse

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[SyncCaller])
logger = logging.getLogger("healthsync.sync")


async def _read_json_body(request: Request) -> Any:
    """Decode the request body, inflating ``Content-Encoding: deflate`` first."""
    body = await request.body()
    if request.headers.get("content-encoding", "").lower() == "deflate":
        try:
            body = zlib.decompress(body)
        except zlib.error as exc:
            raise HTTPException(status_code=400, detail="Invalid deflate body") from exc
    try:
        return json.loads(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc


@router.post("/apple-health", response_model=SyncResponse)
async def push_apple_health(request: Request, handler: PushHandler) -> Any:
    raw = await _read_json_body(request)
    try:
        counts = await handler.handle(raw)
    except ValidationError as exc:
        logger.warning("Rejected push payload: %s", exc)
        return JSONResponse(
            status_code=400,
            content={
                "error": "Validation failed",
                "issues": [{"path": path, "message": message} for path, message in exc.issues],
            },
        )
    except BatchExecutionError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return SyncResponse(ok=True, result=counts)


@router.get("/cursor")
async def get_cursor(store: Store) -> dict:
    return {"lastSync": await read_cursor(store)}


@router.post("/glucose")
async def sync_recent_glucose(settings: AppSettings, orchestrator: GlucoseOrchestrator) -> dict:
    """Pull the last few hours of glucose readings from Tidepool."""
    if not settings.tidepool_email or not settings.tidepool_password:
        raise HTTPException(status_code=503, detail="Tidepool credentials not configured")

    credentials = Credentials(settings.tidepool_email, settings.tidepool_password)
    try:
        fetched = await orchestrator.sync_recent_glucose(
            credentials, get_ingest_config().recent_lookback_hours
        )
    except (AuthenticationError, FetchError) as exc:
        logger.error("Recent glucose pull failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except BatchExecutionError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"fetched": fetched}
