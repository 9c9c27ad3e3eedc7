"""Bench run context — owns the sessions, router, scheduler and reporter.

A run goes through three phases:
  - start(): connect, subscribe, create N sessions and write their first rows
  - run(): write loop and reporting loop side by side until stopped
  - close(): unsubscribe, close connections, print a final summary
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable

import click

from .backend.base import BenchBackend
from .backend.factory import BackendFactory, create_backend_factory
from .config import BenchConfig
from .models import make_client_id, now_ms
from .reporting import ReportingLoop
from .router import NotificationRouter
from .scheduler import WriteScheduler
from .session import ClientSession
from .stats import StatsAggregator

logger = logging.getLogger("realtime-bench")


class BenchHarness:
    """Single context object shared by every part of a run."""

    def __init__(
        self,
        config: BenchConfig,
        backend_factory: BackendFactory | None = None,
        emit: Callable[[str], None] = click.echo,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self.config = config
        self._factory = backend_factory or create_backend_factory(config.backend)
        self._emit = emit
        self._clock = clock
        self.stats = StatsAggregator(max_samples=config.run.max_samples)
        self.router = NotificationRouter(self.stats, config.backend.topic)
        self.sessions: list[ClientSession] = []
        self.backends: list[BenchBackend] = []
        self.reporter = ReportingLoop(self.stats, config.run.report_interval, emit=emit)
        self.scheduler = WriteScheduler(
            self.sessions,
            self.stats,
            interval=config.run.write_interval,
            on_volume=self.reporter.report_volume,
            report_every_batches=config.run.report_every_batches,
        )
        self.stop_event = asyncio.Event()
        self.initial_writes_ok = 0

    @property
    def per_client(self) -> bool:
        return self.config.run.per_client_connections

    async def _open_backend(self) -> BenchBackend:
        backend = self._factory()
        await backend.connect()
        self.backends.append(backend)
        return backend

    async def start(self) -> int:
        """Create and initialise every session. Returns successful first writes."""
        count = self.config.run.client_count
        shared: BenchBackend | None = None
        feed_failures = 0

        if not self.per_client:
            shared = await self._open_backend()
            self._emit(f"Starting benchmark: {count} clients => {shared.endpoint}")
            try:
                await self.router.attach(shared)
            except Exception as e:
                feed_failures = 1
                self.stats.increment_error()
                logger.warning(f"Change-feed subscription failed: {e}")

        for i in range(count):
            backend = shared if shared is not None else await self._open_backend()
            if i == 0 and shared is None:
                self._emit(f"Starting benchmark: {count} clients => {backend.endpoint}")
            session = ClientSession(make_client_id(i), backend, self.stats, clock=self._clock)
            self.sessions.append(session)
            if await session.initialize(self.router, own_subscription=self.per_client):
                self.initial_writes_ok += 1

        if self.per_client:
            feed_failures = sum(1 for s in self.sessions if s.subscription is None)

        if not feed_failures:
            self._emit("All clients created and subscribed.")
        elif self.per_client:
            self._emit(
                f"All clients created; {feed_failures}/{count} change-feed subscriptions failed."
            )
        else:
            self._emit("All clients created; change-feed subscription failed, writing only.")
        if self.initial_writes_ok < count:
            logger.warning(f"{count - self.initial_writes_ok}/{count} initial upserts failed")
        return self.initial_writes_ok

    def stop(self) -> None:
        self.stop_event.set()

    async def _stop_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        logger.info(f"Run duration of {seconds:.0f}s reached")
        self.stop()

    async def run(self) -> None:
        """Run the write and reporting loops until stop() is called."""
        tasks = [
            asyncio.create_task(self.scheduler.run(self.stop_event)),
            asyncio.create_task(self.reporter.run(self.stop_event)),
        ]
        if self.config.run.duration > 0:
            timer = asyncio.create_task(self._stop_after(self.config.run.duration))
        else:
            timer = None
        try:
            await asyncio.gather(*tasks)
        finally:
            if timer is not None:
                timer.cancel()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Tear down subscriptions and connections, then print the final line."""
        await self.router.detach_all()
        results = await asyncio.gather(
            *(b.close() for b in self.backends), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.debug(f"Backend close failed: {result}")
        self.backends.clear()
        self.reporter.report("final")

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                pass  # Windows loops, or not on the main thread


async def run_bench(
    config: BenchConfig,
    backend_factory: BackendFactory | None = None,
    emit: Callable[[str], None] = click.echo,
    install_signals: bool = True,
) -> BenchHarness:
    """Start, run and close a harness. Returns it for inspection."""
    harness = BenchHarness(config, backend_factory=backend_factory, emit=emit)
    if install_signals:
        harness.install_signal_handlers()
    try:
        await harness.start()
        await harness.run()
    finally:
        await harness.close()
    return harness
