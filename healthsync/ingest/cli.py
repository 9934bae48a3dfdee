"""Command line entry point for the historical backfill.

Usage::

    healthsync-backfill                          # legacy gap windows
    healthsync-backfill --from 270 --to 180      # every window in 270→180 days ago
    healthsync-backfill --from 30 --to 0 --dry-run --skip-activity

Tidepool credentials (``TIDEPOOL_EMAIL`` / ``TIDEPOOL_PASSWORD``) are read
from ``.dev.vars`` at the project root.  A dry run still logs in and reads
from Tidepool but never opens a database connection.

Exit codes: 0 success, 1 run failure, 2 bad arguments, 130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from healthsync.config import get_settings
from healthsync.ingest.backfill import (
    BackfillOrchestrator,
    BackfillReport,
    BackfillRequest,
    Credentials,
)
from healthsync.ingest.config_loader import ConfigValidationError, IngestConfig, get_ingest_config
from healthsync.ingest.errors import IngestError
from healthsync.ingest.executor import BatchExecutor
from healthsync.ingest.sources.tidepool import TidepoolClient
from healthsync.services.database import PostgresStore, close_pool, ensure_schema, init_pool

logger = logging.getLogger("healthsync.ingest.cli")

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEV_VARS_PATH = PROJECT_ROOT / ".dev.vars"

#: Failure messages are cut to this length before being printed.
MAX_ERROR_CHARS = 300


class BackfillCredentials(BaseSettings):
    """Tidepool login read from ``.dev.vars`` (environment variables override)."""

    tidepool_email: str
    tidepool_password: SecretStr

    model_config = SettingsConfigDict(
        env_file=DEV_VARS_PATH, env_file_encoding="utf-8", extra="ignore"
    )

    def to_credentials(self) -> Credentials:
        return Credentials(self.tidepool_email, self.tidepool_password.get_secret_value())


def load_credentials(path: Path = DEV_VARS_PATH) -> Credentials:
    """Read the Tidepool login from a key-value file.

    Raises:
        IngestError: The file or one of the keys is missing.
    """
    try:
        settings = BackfillCredentials(_env_file=path)  # type: ignore[call-arg]
    except PydanticValidationError as exc:
        missing = ", ".join(str(err["loc"][0]).upper() for err in exc.errors())
        raise IngestError(f"Missing Tidepool credentials in {path}: {missing}") from exc
    return settings.to_credentials()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="healthsync-backfill",
        description="Backfill glucose, insulin and activity history from Tidepool.",
    )
    parser.add_argument(
        "--from", dest="from_days", type=int, metavar="DAYS",
        help="start of the range, in days ago",
    )
    parser.add_argument(
        "--to", dest="to_days", type=int, metavar="DAYS",
        help="end of the range, in days ago (must be less than --from)",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="fetch and measure batches without writing anything",
    )
    parser.add_argument("--skip-glucose", action="store_true")
    parser.add_argument("--skip-insulin", action="store_true")
    parser.add_argument("--skip-activity", action="store_true")
    return parser


def parse_args(argv: list[str] | None = None) -> tuple[BackfillRequest, bool]:
    """Parse arguments into a request and the dry-run flag.

    Exits with status 2 on invalid arguments.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if (args.from_days is None) != (args.to_days is None):
        parser.error("--from and --to must be given together")
    try:
        request = BackfillRequest(
            from_days=args.from_days,
            to_days=args.to_days,
            skip_glucose=args.skip_glucose,
            skip_insulin=args.skip_insulin,
            skip_activity=args.skip_activity,
        )
    except ValueError as exc:
        parser.error(str(exc))
    return request, args.dry_run


async def run_backfill(
    credentials: Credentials,
    request: BackfillRequest,
    dry_run: bool,
    config: IngestConfig | None = None,
) -> BackfillReport:
    """Wire the client, store and executor together and run one backfill."""
    config = config or get_ingest_config()
    client = TidepoolClient(config.source.base_url, config.source.timeout_seconds)

    if dry_run:
        logger.info("DRY RUN: nothing will be written")
        executor = BatchExecutor(None, config.batch.max_statements, dry_run=True)
        orchestrator = BackfillOrchestrator(
            client, executor, config.backfill, source_tag=config.source.tag
        )
        return await orchestrator.run(credentials, request)

    pool = await init_pool(get_settings())
    try:
        await ensure_schema(pool)
        executor = BatchExecutor(
            PostgresStore(pool), config.batch.max_statements, config.batch.timeout_seconds
        )
        orchestrator = BackfillOrchestrator(
            client, executor, config.backfill, source_tag=config.source.tag
        )
        return await orchestrator.run(credentials, request)
    finally:
        await close_pool()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    request, dry_run = parse_args(argv)

    try:
        credentials = load_credentials()
        report = asyncio.run(run_backfill(credentials, request, dry_run))
    except (IngestError, ConfigValidationError) as exc:
        message = str(exc)[:MAX_ERROR_CHARS]
        logger.error("Backfill failed: %s", message)
        print(f"Backfill failed: {message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("Backfill interrupted; rerun with --to at the last completed window")
        return 130

    mode = "Would write" if report.dry_run else "Wrote"
    print(
        f"{mode} {report.glucose_readings} glucose readings, {report.insulin_doses} insulin doses, "
        f"{report.workouts} workouts across {report.activity_days} activity days "
        f"({report.statements} statements, {report.size_bytes} bytes)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
