"""HealthSync API: FastAPI application entry point.

Run locally:
    uvicorn healthsync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from healthsync.config import get_settings
from healthsync.ingest.config_loader import get_ingest_config
from healthsync.routers import health, sync
from healthsync.services.database import close_pool, ensure_schema, init_pool

# ---------- Logging ----------

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format=LOG_FORMAT,
    datefmt=LOG_DATEFMT,
    stream=sys.stdout,
)
logger = logging.getLogger("healthsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info("Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment)
    get_ingest_config()
    pool = await init_pool(settings)
    await ensure_schema(pool)
    yield
    await close_pool()
    logger.info("%s shut down", settings.app_name)


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="HealthSync API",
        description="Push sync and historical backfill for a personal health dashboard.",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Health check lives outside the v1 prefix
    app.include_router(health.router)

    app.include_router(sync.router, prefix="/api/v1")

    return app


app = create_app()
