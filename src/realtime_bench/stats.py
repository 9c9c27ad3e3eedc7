"""Run-wide counters and latency statistics."""

from __future__ import annotations

import math
import random
import threading
from dataclasses import dataclass


def _fmt(value: float | None, digits: int = 1) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


def percentile(samples: list[float], pct: float) -> float | None:
    """Nearest-rank percentile without interpolation. None when empty."""
    if not samples:
        return None
    ordered = sorted(samples)
    idx = math.floor(pct * len(ordered) / 100)
    return ordered[min(idx, len(ordered) - 1)]


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the aggregator.

    Derived latency fields are None when no sample has been recorded yet,
    so "no data" is never confused with "zero latency".
    """

    sent: int
    received: int
    errors: int
    samples: int
    avg_ms: float | None = None
    min_ms: float | None = None
    max_ms: float | None = None
    p95_ms: float | None = None

    @property
    def has_samples(self) -> bool:
        return self.samples > 0

    def format_line(self) -> str:
        return (
            f"SENT:{self.sent} RECV:{self.received} ERR:{self.errors} | "
            f"avg:{_fmt(self.avg_ms)}ms min:{_fmt(self.min_ms)}ms "
            f"max:{_fmt(self.max_ms)}ms p95:{_fmt(self.p95_ms)}ms "
            f"samples:{self.samples}"
        )

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "received": self.received,
            "errors": self.errors,
            "samples": self.samples,
            "avg_ms": self.avg_ms,
            "min_ms": self.min_ms,
            "max_ms": self.max_ms,
            "p95_ms": self.p95_ms,
        }


class StatsAggregator:
    """Thread-safe counters and latency sample set.

    Every mutation and every snapshot goes through one lock, so the write
    loop, the notification path and worker threads can all report at once.
    With ``max_samples > 0`` the sample set becomes a fixed-size reservoir;
    the counters stay exact either way.
    """

    def __init__(self, max_samples: int = 0, rng: random.Random | None = None) -> None:
        self._lock = threading.Lock()
        self._max_samples = max_samples
        self._rng = rng or random.Random()
        self._sent = 0
        self._received = 0
        self._errors = 0
        self._seen = 0  # Samples offered, including ones the reservoir skipped
        self._latencies: list[float] = []

    def record_sample(self, ms: float) -> None:
        with self._lock:
            self._seen += 1
            if self._max_samples <= 0 or len(self._latencies) < self._max_samples:
                self._latencies.append(ms)
                return
            slot = self._rng.randrange(self._seen)
            if slot < self._max_samples:
                self._latencies[slot] = ms

    def increment_sent(self) -> None:
        with self._lock:
            self._sent += 1

    def increment_received(self) -> None:
        with self._lock:
            self._received += 1

    def increment_error(self) -> None:
        with self._lock:
            self._errors += 1

    @property
    def sent(self) -> int:
        with self._lock:
            return self._sent

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            latencies = list(self._latencies)
            sent, received, errors = self._sent, self._received, self._errors

        if not latencies:
            return StatsSnapshot(sent=sent, received=received, errors=errors, samples=0)

        return StatsSnapshot(
            sent=sent,
            received=received,
            errors=errors,
            samples=len(latencies),
            avg_ms=sum(latencies) / len(latencies),
            min_ms=min(latencies),
            max_ms=max(latencies),
            p95_ms=percentile(latencies, 95),
        )
