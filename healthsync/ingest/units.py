"""Unit normalization for source records.

Pure functions, no I/O.  Unrecognised unit labels are treated as already
canonical and pass through unchanged.

Canonical units:
    distance  — kilometers
    duration  — seconds
"""

from __future__ import annotations

KM_PER_MILE = 1.60934

ACTIVITY_NAME_SEPARATOR = " - "


def to_kilometers(value: float, units: str | None) -> float:
    """Convert a distance to kilometers.

    Args:
        value: Distance in ``units``.
        units: Source unit label ('miles', 'meters', 'm', 'kilometers', ...).

    Returns:
        Distance in kilometers.
    """
    if units == "miles":
        return value * KM_PER_MILE
    if units in ("meters", "m"):
        return value / 1000
    return value


def to_seconds(value: float, units: str | None) -> float:
    """Convert a duration to seconds.

    Args:
        value: Duration in ``units``.
        units: Source unit label ('hours', 'minutes', 'milliseconds', 'ms', 'seconds', ...).

    Returns:
        Duration in seconds.
    """
    if units == "hours":
        return value * 3600
    if units == "minutes":
        return value * 60
    if units in ("milliseconds", "ms"):
        return value / 1000
    return value


def activity_type_from_name(name: str) -> str:
    """Return the activity type from a display name like ``"Running - 6.50 miles"``.

    The type is everything before the first ``" - "``; a name without the
    separator (or one that starts with it) is returned whole.
    """
    idx = name.find(ACTIVITY_NAME_SEPARATOR)
    return name[:idx] if idx > 0 else name
