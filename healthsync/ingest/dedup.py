"""In-run deduplication for backfilled source records.

Database UNIQUE constraints are the authoritative dedup mechanism for every
table.  The one place they are not enough is the additive
``activity_summaries`` aggregate: a workout the source returns for two
adjacent windows would be added to its day twice.  The orchestrator keeps
one ``InMemoryDedupCache`` per run and drops any workout it has already
queued.

Dedup keys:
    running_sessions:   (source, start_time)
"""

from __future__ import annotations

import logging

logger = logging.getLogger("healthsync.ingest.dedup")


def session_key(source: str, start_time: str) -> str:
    """Dedup key for a backfilled workout, matching its natural key."""
    return f"{source}:session:{start_time}"


class InMemoryDedupCache:
    """In-process dedup cache for one backfill run.

    Usage::

        cache = InMemoryDedupCache()
        if cache.is_seen(key):
            logger.debug("Skipping duplicate: %s", key)
        else:
            cache.mark_seen(key)
            # queue the record
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def is_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        self._seen.add(key)

    def clear(self) -> None:
        """Reset the cache."""
        self._seen.clear()

