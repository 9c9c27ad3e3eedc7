"""One simulated client: its identity, write handle and round-trip bookkeeping."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .backend.base import BenchBackend
from .models import ChangeEvent, bench_record, now_ms
from .stats import StatsAggregator

if TYPE_CHECKING:
    from .router import NotificationRouter

logger = logging.getLogger("realtime-bench")


class ClientSession:
    """A logical client writing its own row and waiting for the echo.

    Only the latest write is tracked: every write overwrites the outstanding
    send timestamp, and an echo is measured only if it carries exactly that
    timestamp. Echoes of superseded writes, and repeats of an echo already
    measured, are ignored.

    Write failures are counted (per session and in the shared aggregator)
    and never raised, so one broken client cannot stall a tick.
    """

    def __init__(
        self,
        identity: str,
        backend: BenchBackend,
        stats: StatsAggregator,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self._identity = identity
        self.backend = backend
        self._stats = stats
        self._clock = clock
        self._sent_ts: int | None = None
        self.subscription: Any = None
        self.errors = 0

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def outstanding_ts(self) -> int | None:
        """Send timestamp of the latest write still awaiting its echo."""
        return self._sent_ts

    async def initialize(self, router: NotificationRouter, own_subscription: bool = False) -> bool:
        """Register with the router, optionally subscribe, then write the first row.

        Returns True if the initial upsert succeeded.
        """
        router.register(self)
        if own_subscription:
            try:
                self.subscription = await router.attach(self.backend, only=self._identity)
            except Exception as e:
                self._count_error()
                logger.warning(f"[{self._identity}] Subscription failed: {e}")
        return await self._upsert("init", initial=True)

    async def issue_write(self) -> bool:
        """Write a fresh value stamped with the current time."""
        ok = await self._upsert(None)
        if ok:
            self._stats.increment_sent()
        return ok

    async def _upsert(self, value: str | None, initial: bool = False) -> bool:
        sent_ts = int(self._clock())
        # Stamp before the write: the echo may beat the write's own response.
        self._sent_ts = sent_ts
        try:
            await self.backend.write(
                self._identity, bench_record(self._identity, value or f"v{sent_ts}", sent_ts)
            )
        except Exception as e:
            self._count_error()
            if initial:
                logger.warning(f"[{self._identity}] Initial upsert failed: {e}")
            else:
                logger.debug(f"[{self._identity}] Upsert failed: {e}")
            return False
        return True

    def _count_error(self) -> None:
        self.errors += 1
        self._stats.increment_error()

    def on_matched_event(self, event: ChangeEvent) -> bool:
        """Record the round trip for an echo of this client's latest write.

        Returns True if a latency sample was recorded.
        """
        if self._sent_ts is None or event.sent_ts != self._sent_ts:
            return False
        self._sent_ts = None
        latency = self._clock() - event.sent_ts
        self._stats.record_sample(latency)
        self._stats.increment_received()
        return True
