"""Tests for NotificationRouter — identity demultiplexing of the change feed."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from realtime_bench.backend.memory import InMemoryBackend, SimulatedTable
from realtime_bench.models import SENT_TS_FIELD
from realtime_bench.router import NotificationRouter
from realtime_bench.session import ClientSession
from realtime_bench.stats import StatsAggregator


class FakeClock:
    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _backend() -> MagicMock:
    backend = MagicMock()
    backend.write = AsyncMock()
    backend.endpoint = "fake://bench"
    return backend


def _raw(identity: str, ts) -> dict:
    return {"eventType": "UPDATE", "new": {"id": identity, "value": "v", SENT_TS_FIELD: ts}}


async def _setup(count: int = 3):
    clock = FakeClock()
    stats = StatsAggregator()
    router = NotificationRouter(stats, "public:bench")
    sessions = []
    for i in range(count):
        session = ClientSession(f"client-{i}", _backend(), stats, clock=clock)
        router.register(session)
        await session.issue_write()
        sessions.append(session)
    return clock, stats, router, sessions


class TestRegistration:
    def test_register_and_lookup(self):
        stats = StatsAggregator()
        router = NotificationRouter(stats, "public:bench")
        session = ClientSession("client-0", _backend(), stats)
        router.register(session)
        assert router.session_for("client-0") is session
        assert router.session_for("client-1") is None
        assert len(router) == 1

    def test_duplicate_identity_rejected(self):
        stats = StatsAggregator()
        router = NotificationRouter(stats, "public:bench")
        router.register(ClientSession("client-0", _backend(), stats))
        with pytest.raises(ValueError):
            router.register(ClientSession("client-0", _backend(), stats))


class TestRouting:
    @pytest.mark.asyncio
    async def test_matched_event_reaches_owner_only(self):
        clock, stats, router, sessions = await _setup()
        clock.now += 30

        assert router.handle(_raw("client-1", str(sessions[1].outstanding_ts))) is True

        assert sessions[1].outstanding_ts is None
        assert sessions[0].outstanding_ts is not None
        assert sessions[2].outstanding_ts is not None
        assert stats.snapshot().received == 1

    @pytest.mark.asyncio
    async def test_foreign_identity_ignored(self):
        """Another run sharing the table must not disturb anything."""
        clock, stats, router, sessions = await _setup()
        before = stats.snapshot()

        assert router.handle(_raw("client-99", str(sessions[0].outstanding_ts))) is False
        assert router.handle(_raw("other-run-client-0", "1")) is False

        after = stats.snapshot()
        assert after == before
        assert all(s.outstanding_ts is not None for s in sessions)

    @pytest.mark.asyncio
    async def test_malformed_timestamp_dropped_without_error(self):
        _, stats, router, sessions = await _setup()

        assert router.handle(_raw("client-0", "not-a-number")) is False
        assert router.handle({"eventType": "UPDATE", "new": {"id": "client-0"}}) is False

        snap = stats.snapshot()
        assert snap.errors == 0
        assert snap.received == 0
        assert sessions[0].outstanding_ts is not None

    @pytest.mark.asyncio
    async def test_garbage_events_dropped(self):
        _, stats, router, _ = await _setup()
        for raw in (None, 42, "x", {}, {"new": None}, {"new": ["client-0"]}):
            assert router.handle(raw) is False
        assert stats.snapshot().errors == 0

    @pytest.mark.asyncio
    async def test_crash_in_handler_counted_as_error(self):
        _, stats, router, sessions = await _setup()
        sessions[0].on_matched_event = MagicMock(side_effect=RuntimeError("bug"))

        assert router.handle(_raw("client-0", str(sessions[0].outstanding_ts))) is False
        assert stats.snapshot().errors == 1


class TestAttach:
    @pytest.mark.asyncio
    async def test_shared_subscription_routes_everything(self):
        table = SimulatedTable()
        backend = InMemoryBackend(table, echo_delay=0)
        await backend.connect()
        stats = StatsAggregator()
        router = NotificationRouter(stats, table.topic)
        await router.attach(backend)

        assert table.listener_count == 1
        await router.detach_all()
        assert table.listener_count == 0
        await backend.close()

    @pytest.mark.asyncio
    async def test_filtered_subscription_ignores_other_identities(self):
        clock, stats, router, sessions = await _setup(2)
        captured = {}

        async def subscribe(topic, handler):
            captured["handler"] = handler
            return 7

        backend = _backend()
        backend.subscribe = AsyncMock(side_effect=subscribe)
        handle = await router.attach(backend, only="client-0")
        assert handle == 7

        handler = captured["handler"]
        assert handler(_raw("client-1", str(sessions[1].outstanding_ts))) is False
        assert sessions[1].outstanding_ts is not None
        assert handler(_raw("client-0", str(sessions[0].outstanding_ts))) is True

    @pytest.mark.asyncio
    async def test_detach_all_tolerates_failures(self):
        stats = StatsAggregator()
        router = NotificationRouter(stats, "public:bench")
        backend = _backend()
        backend.subscribe = AsyncMock(return_value=1)
        backend.unsubscribe = AsyncMock(side_effect=OSError("socket gone"))
        await router.attach(backend)
        await router.detach_all()
        backend.unsubscribe.assert_awaited_once_with(1)
