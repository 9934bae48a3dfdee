"""Health dashboard data layer.

Subpackages:
    ingest/   — Push sync, statement building, batch execution, historical backfill
    models/   — Pydantic request schemas
    routers/  — FastAPI routes
    services/ — Database access
"""
