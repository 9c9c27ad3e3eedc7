"""Tests for StatsAggregator — counters, nearest-rank p95, empty snapshots."""

import random

from realtime_bench.stats import StatsAggregator, StatsSnapshot, percentile


class TestPercentile:
    def test_p95_of_ten_values_is_last(self):
        """floor(0.95 * 10) = 9 -> the largest value, no interpolation."""
        samples = [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
        assert percentile(samples, 95) == 100

    def test_unsorted_input(self):
        assert percentile([100, 10, 50, 30, 20, 90, 40, 80, 60, 70], 95) == 100

    def test_index_clamped_for_single_sample(self):
        assert percentile([42.0], 95) == 42.0

    def test_twenty_samples(self):
        """floor(0.95 * 20) = 19 -> last of 20."""
        samples = list(range(1, 21))
        assert percentile(samples, 95) == 20

    def test_hundred_samples(self):
        samples = list(range(100))
        assert percentile(samples, 95) == 95

    def test_empty_is_none(self):
        assert percentile([], 95) is None


class TestStatsAggregator:
    def test_counters_start_at_zero(self):
        snap = StatsAggregator().snapshot()
        assert (snap.sent, snap.received, snap.errors, snap.samples) == (0, 0, 0, 0)

    def test_empty_snapshot_reports_unavailable(self):
        """No samples -> None, never 0."""
        snap = StatsAggregator().snapshot()
        assert snap.avg_ms is None
        assert snap.min_ms is None
        assert snap.max_ms is None
        assert snap.p95_ms is None
        assert snap.has_samples is False

    def test_counters_increment_independently(self):
        stats = StatsAggregator()
        stats.increment_sent()
        stats.increment_sent()
        stats.increment_received()
        stats.increment_error()
        stats.increment_error()
        stats.increment_error()
        snap = stats.snapshot()
        assert snap.sent == 2
        assert snap.received == 1
        assert snap.errors == 3
        assert stats.sent == 2

    def test_derived_stats(self):
        stats = StatsAggregator()
        for ms in [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]:
            stats.record_sample(ms)
        snap = stats.snapshot()
        assert snap.samples == 10
        assert snap.avg_ms == 55
        assert snap.min_ms == 10
        assert snap.max_ms == 100
        assert snap.p95_ms == 100

    def test_snapshot_does_not_reset(self):
        stats = StatsAggregator()
        stats.record_sample(5)
        stats.increment_sent()
        stats.snapshot()
        snap = stats.snapshot()
        assert snap.samples == 1
        assert snap.sent == 1

    def test_reservoir_bounds_sample_set(self):
        stats = StatsAggregator(max_samples=100, rng=random.Random(7))
        for i in range(5000):
            stats.record_sample(float(i))
        snap = stats.snapshot()
        assert snap.samples == 100
        assert 0 <= snap.min_ms <= snap.max_ms < 5000

    def test_reservoir_keeps_everything_below_bound(self):
        stats = StatsAggregator(max_samples=10)
        for i in range(4):
            stats.record_sample(float(i))
        assert stats.snapshot().samples == 4


class TestSnapshotFormatting:
    def test_format_line_with_samples(self):
        snap = StatsSnapshot(
            sent=3, received=3, errors=0, samples=3,
            avg_ms=50.333, min_ms=49.0, max_ms=52.0, p95_ms=52.0,
        )
        assert snap.format_line() == (
            "SENT:3 RECV:3 ERR:0 | avg:50.3ms min:49.0ms max:52.0ms p95:52.0ms samples:3"
        )

    def test_format_line_without_samples(self):
        snap = StatsSnapshot(sent=0, received=0, errors=2, samples=0)
        assert snap.format_line() == (
            "SENT:0 RECV:0 ERR:2 | avg:-ms min:-ms max:-ms p95:-ms samples:0"
        )

    def test_to_dict(self):
        snap = StatsSnapshot(sent=1, received=0, errors=0, samples=0)
        d = snap.to_dict()
        assert d["sent"] == 1
        assert d["p95_ms"] is None
