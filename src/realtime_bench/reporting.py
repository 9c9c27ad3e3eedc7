"""Periodic one-line summaries of the run."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import click

from .scheduler import sleep_or_stop
from .stats import StatsAggregator, StatsSnapshot

logger = logging.getLogger("realtime-bench")


class ReportingLoop:
    """Emits a cumulative summary on its own timer and on demand."""

    def __init__(
        self,
        stats: StatsAggregator,
        interval: float = 15.0,
        emit: Callable[[str], None] = click.echo,
    ) -> None:
        self._stats = stats
        self.interval = interval
        self._emit = emit
        self.reports = 0

    def report(self, reason: str = "interval") -> StatsSnapshot:
        snapshot = self._stats.snapshot()
        self._emit(snapshot.format_line())
        self.reports += 1
        logger.debug("Summary #%d (%s)", self.reports, reason)
        return snapshot

    def report_volume(self) -> StatsSnapshot:
        return self.report("volume")

    async def run(self, stop: asyncio.Event) -> None:
        while not await sleep_or_stop(stop, self.interval):
            self.report()
