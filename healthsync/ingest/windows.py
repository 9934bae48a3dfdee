"""Backfill windowing.

A historical range is expressed in days-ago bounds (``from_days > to_days``)
and split into contiguous, non-overlapping windows, furthest-in-the-past
first.  Windows are resolved to absolute ``[start, end)`` timestamps against
a single ``now`` so that every window of one run shares the same clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class Window:
    """One backfill window, ``from_days`` → ``to_days`` days ago."""

    from_days: int
    to_days: int

    @property
    def days(self) -> int:
        return self.from_days - self.to_days

    def bounds(self, now: datetime) -> tuple[datetime, datetime]:
        """Return the absolute ``[start, end)`` of this window relative to ``now``."""
        return now - timedelta(days=self.from_days), now - timedelta(days=self.to_days)

    def __str__(self) -> str:
        return f"{self.from_days}→{self.to_days}"


def generate_windows(from_days: int, to_days: int, chunk_days: int) -> list[Window]:
    """Split ``[to_days, from_days)`` days-ago into windows of ``chunk_days``.

    The last window is truncated at ``to_days``.  An empty list is returned
    when ``from_days <= to_days``.

    Example::

        generate_windows(12, 0, 5)
        # [Window(12, 7), Window(7, 2), Window(2, 0)]

    Raises:
        ValueError: If ``chunk_days`` is not positive.
    """
    if chunk_days < 1:
        raise ValueError(f"chunk_days must be positive, got {chunk_days}")

    windows: list[Window] = []
    current = from_days
    while current > to_days:
        windows.append(Window(from_days=current, to_days=max(current - chunk_days, to_days)))
        current -= chunk_days
    return windows
