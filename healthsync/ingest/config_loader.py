"""Load and validate the ingest engine configuration.

The config lives in ``ingest_config.yaml`` alongside this module.  It is
loaded once per process and cached; edits take effect on the next start.

Entry points (the CLI, the FastAPI dependencies) read the config and pass
the typed sections into the components they build; nothing deeper in the
engine looks it up on its own.

Usage::

    from healthsync.ingest.config_loader import get_ingest_config

    config = get_ingest_config()
    config.backfill.chunk_days["glucose"]   # 5
    config.batch.max_statements             # 500
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from healthsync.ingest.windows import Window

logger = logging.getLogger("healthsync.ingest.config")

_CONFIG_PATH = Path(__file__).parent / "ingest_config.yaml"

METRICS = ("glucose", "insulin", "activity")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class BatchConfig:
    """Store batch limits."""

    max_statements: int = 500
    timeout_seconds: float = 120.0


@dataclass
class BackfillConfig:
    """Historical backfill settings.

    Attributes:
        chunk_days:     Window width per metric, in days.
        pace_ms:        Delay between windows.
        legacy_windows: Fixed gap windows per metric, used when no range is given.
    """

    chunk_days: dict[str, int] = field(
        default_factory=lambda: {"glucose": 5, "insulin": 5, "activity": 30}
    )
    pace_ms: int = 500
    legacy_windows: dict[str, list[Window]] = field(default_factory=dict)


@dataclass
class SourceConfig:
    """External diabetes-data platform settings."""

    base_url: str = "https://api.tidepool.org"
    timeout_seconds: float = 30.0
    tag: str = "tidepool"


@dataclass
class IngestConfig:
    """Complete, validated ingest configuration."""

    version: str
    batch: BatchConfig
    backfill: BackfillConfig
    source: SourceConfig
    recent_lookback_hours: int = 2


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when ingest_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError:     If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Ingest config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _positive_int(value: Any, name: str, errors: list[str], default: int) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer, got {value!r}")
        return default
    if number < 1:
        errors.append(f"{name} must be positive, got {number}")
    return number


def _validate_and_build(raw: dict) -> IngestConfig:
    """Validate the raw YAML dict and construct an IngestConfig.

    Raises:
        ConfigValidationError: Listing every problem found.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Batch ──
    batch_raw = raw.get("batch") or {}
    batch = BatchConfig(
        max_statements=_positive_int(
            batch_raw.get("max_statements"), "batch.max_statements", errors, 500
        ),
        timeout_seconds=float(
            _positive_int(batch_raw.get("timeout_seconds"), "batch.timeout_seconds", errors, 120)
        ),
    )

    # ── Backfill ──
    bf_raw = raw.get("backfill") or {}
    chunk_raw = bf_raw.get("chunk_days") or {}
    defaults = BackfillConfig().chunk_days
    chunk_days = {
        metric: _positive_int(
            chunk_raw.get(metric), f"backfill.chunk_days.{metric}", errors, defaults[metric]
        )
        for metric in METRICS
    }

    legacy_windows: dict[str, list[Window]] = {}
    for metric, pairs in (bf_raw.get("legacy_windows") or {}).items():
        if metric not in METRICS:
            errors.append(f"backfill.legacy_windows.{metric} is not a known metric")
            continue
        windows: list[Window] = []
        for pair in pairs or []:
            if (
                not isinstance(pair, (list, tuple))
                or len(pair) != 2
                or not all(isinstance(p, int) for p in pair)
                or pair[0] <= pair[1]
            ):
                errors.append(
                    f"backfill.legacy_windows.{metric} entry {pair!r} must be "
                    "[from_days, to_days] with from_days > to_days"
                )
                continue
            windows.append(Window(from_days=pair[0], to_days=pair[1]))
        legacy_windows[metric] = windows

    pace_ms = bf_raw.get("pace_ms", 500)
    if not isinstance(pace_ms, int) or pace_ms < 0:
        errors.append(f"backfill.pace_ms must be a non-negative integer, got {pace_ms!r}")
        pace_ms = 500

    backfill = BackfillConfig(
        chunk_days=chunk_days,
        pace_ms=pace_ms,
        legacy_windows=legacy_windows,
    )

    # ── Source ──
    src_raw = raw.get("source") or {}
    source = SourceConfig(
        base_url=str(src_raw.get("base_url", "https://api.tidepool.org")).rstrip("/"),
        timeout_seconds=float(
            _positive_int(src_raw.get("timeout_seconds"), "source.timeout_seconds", errors, 30)
        ),
        tag=str(src_raw.get("tag", "tidepool")),
    )

    recent_raw = raw.get("recent_sync") or {}
    lookback = _positive_int(
        recent_raw.get("lookback_hours"), "recent_sync.lookback_hours", errors, 2
    )

    if errors:
        raise ConfigValidationError(
            f"ingest_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return IngestConfig(
        version=version,
        batch=batch,
        backfill=backfill,
        source=source,
        recent_lookback_hours=lookback,
    )


def load_ingest_config(path: Path | None = None) -> IngestConfig:
    """Load and validate the ingest config from disk.

    Args:
        path: Override path to YAML. Uses the bundled ingest_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded ingest config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton
# ---------------------------------------------------------------------------

_config: IngestConfig | None = None
_config_lock = threading.Lock()


def get_ingest_config() -> IngestConfig:
    """Return the global IngestConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_ingest_config()
    return _config
