"""Pacing between backfill windows.

The orchestrator calls ``pause()`` after each window; swapping the pacer
changes the rate-limit policy without touching the orchestration logic.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger("healthsync.ingest.pacing")


class Pacer(ABC):
    @abstractmethod
    async def pause(self) -> None:
        """Wait before the next window's work begins."""


class FixedDelayPacer(Pacer):
    """Sleep a fixed interval between windows."""

    def __init__(self, delay_ms: int = 500) -> None:
        self.delay_s = delay_ms / 1000.0

    async def pause(self) -> None:
        if self.delay_s > 0:
            await asyncio.sleep(self.delay_s)


class NoDelayPacer(Pacer):
    """No pacing; counts pauses (used in tests and for local stores)."""

    def __init__(self) -> None:
        self.pauses = 0

    async def pause(self) -> None:
        self.pauses += 1
