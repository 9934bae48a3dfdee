"""Error taxonomy for the ingestion and backfill engine.

    ValidationError      — malformed push payload, rejected before any write
    AuthenticationError  — external source login failed; backfill aborts
    FetchError           — one window/metric read failed; backfill aborts
    BatchExecutionError  — a statement batch failed; remaining batches skipped
    DuplicateKeyError    — natural-key collision reported by a store

Every write beneath these errors is idempotent, so re-running the same
push or backfill is always the recovery procedure.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every error raised by the ingest package."""


class ValidationError(IngestError):
    """An inbound payload failed schema validation.

    Attributes:
        path:    Dotted path of the first offending field (e.g. ``workouts.2.startTime``).
        message: Human-readable reason.
        issues:  All (path, message) pairs reported for the offending array.
    """

    def __init__(
        self,
        path: str,
        message: str,
        issues: list[tuple[str, str]] | None = None,
    ) -> None:
        self.path = path
        self.message = message
        self.issues = issues or [(path, message)]
        super().__init__(f"{path}: {message}")


class AuthenticationError(IngestError):
    """Login against the external source failed."""


class FetchError(IngestError):
    """A read from the external source returned a non-success response."""

    def __init__(self, metric: str, detail: str, status_code: int | None = None) -> None:
        self.metric = metric
        self.status_code = status_code
        super().__init__(f"{metric} fetch failed: {detail}")


class BatchExecutionError(IngestError):
    """A batch failed for a reason other than a swallowed duplicate-key collision.

    Attributes:
        committed_batches: Batches that were durable before the failure.
        total_batches:     Batches the executor was asked to submit.
    """

    def __init__(self, message: str, committed_batches: int, total_batches: int) -> None:
        self.committed_batches = committed_batches
        self.total_batches = total_batches
        super().__init__(
            f"{message} ({committed_batches}/{total_batches} batches committed)"
        )


class DuplicateKeyError(IngestError):
    """A store rejected a statement because its natural key already exists."""
