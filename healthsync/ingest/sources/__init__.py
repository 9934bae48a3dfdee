"""External data sources pulled by the backfill orchestrator.

Available clients:
    TidepoolClient — Tidepool diabetes-data platform (session-token auth)
"""

from healthsync.ingest.sources.tidepool import TidepoolClient, TidepoolSession

__all__ = ["TidepoolClient", "TidepoolSession"]
