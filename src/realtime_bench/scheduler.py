"""Periodic write loop across all sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from .session import ClientSession
from .stats import StatsAggregator

logger = logging.getLogger("realtime-bench")


async def sleep_or_stop(stop: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; return True as soon as ``stop`` is set."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return stop.is_set()
    return True


class WriteScheduler:
    """Issues one write per session per tick.

    Writes inside a tick run sequentially and a tick is never started while
    the previous one is still in progress. After each tick, crossing a
    multiple of ``report_every_batches * len(sessions)`` sent writes fires
    ``on_volume`` for an immediate summary.
    """

    def __init__(
        self,
        sessions: Sequence[ClientSession],
        stats: StatsAggregator,
        interval: float = 10.0,
        on_volume: Callable[[], object] | None = None,
        report_every_batches: int = 5,
    ) -> None:
        self._sessions = sessions
        self._stats = stats
        self.interval = interval
        self._on_volume = on_volume
        self._report_every = report_every_batches
        self.ticks = 0
        self.skipped = 0

    @property
    def volume_threshold(self) -> int:
        return len(self._sessions) * self._report_every

    async def tick(self) -> int:
        """Run one batch. Returns the number of successful writes."""
        before = self._stats.sent
        started = time.monotonic()
        for session in self._sessions:
            await session.issue_write()
        after = self._stats.sent
        self.ticks += 1

        elapsed = time.monotonic() - started
        if elapsed > self.interval:
            logger.warning(
                f"Tick {self.ticks} took {elapsed:.1f}s, longer than the "
                f"{self.interval:.1f}s write interval"
            )

        threshold = self.volume_threshold
        if self._on_volume and threshold > 0 and after // threshold > before // threshold:
            self._on_volume()
        return after - before

    async def run(self, stop: asyncio.Event) -> None:
        """Tick on a fixed ``interval`` grid until ``stop`` is set.

        Slots are measured from startup, not from the end of the previous
        tick. Slots a slow tick ran over are skipped, never queued.
        """
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self.interval
        while not await sleep_or_stop(stop, max(0.0, next_at - loop.time())):
            await self.tick()
            next_at += self.interval
            now = loop.time()
            if self.interval > 0 and next_at <= now:
                missed = int((now - next_at) // self.interval) + 1
                next_at += missed * self.interval
                self.skipped += missed
                logger.debug(f"Skipped {missed} write slot(s) after tick {self.ticks}")
