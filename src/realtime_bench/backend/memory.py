"""Simulated backend — an in-process table that echoes writes to subscribers.

Used by the test-suite and by ``--backend memory`` dry runs. Each write is
merged into a shared record store and, after ``echo_delay`` seconds, handed
to every listener of the table the way a realtime change feed would. Drops
and write failures can be injected to exercise the harness's error paths.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from typing import Any

from ..events import ChangeHandler, deliver
from ..exceptions import SubscribeError, WriteError
from .base import BenchBackend

logger = logging.getLogger("realtime-bench")


class SimulatedTable:
    """Record store plus the change listeners of every connection to it.

    The table is its own and only topic. Listeners are called one after
    another in subscription order, like frames arriving on one socket.
    """

    def __init__(self, schema_name: str = "public", table: str = "bench") -> None:
        self.schema_name = schema_name
        self.name = table
        self.records: dict[str, dict[str, Any]] = {}
        self.write_log: list[tuple[str, dict[str, Any]]] = []
        self._listeners: dict[int, ChangeHandler] = {}
        self._listener_ids = itertools.count(1)

    @property
    def topic(self) -> str:
        return f"{self.schema_name}:{self.name}"

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def listen(self, handler: ChangeHandler) -> int:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = handler
        return listener_id

    def unlisten(self, listener_id: int) -> bool:
        return self._listeners.pop(listener_id, None) is not None

    def upsert(self, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge ``fields`` into the row and return the resulting change event."""
        previous = self.records.get(record_id)
        merged = {**(previous or {}), **fields, "id": record_id}
        self.records[record_id] = merged
        self.write_log.append((record_id, dict(fields)))
        return {
            "eventType": "UPDATE" if previous else "INSERT",
            "schema": self.schema_name,
            "table": self.name,
            "new": dict(merged),
            "old": dict(previous or {}),
        }

    async def broadcast(self, event: dict[str, Any]) -> int:
        """Hand a change event to the current listeners. Returns how many."""
        listeners = list(self._listeners.values())
        for handler in listeners:
            await deliver(handler, event, self.topic)
        return len(listeners)


class InMemoryBackend(BenchBackend):
    """Backend connection to a SimulatedTable.

    Usage:
        table = SimulatedTable()
        backend = InMemoryBackend(table, echo_delay=0.05)
        await backend.connect()
        await backend.subscribe(table.topic, handler)
        await backend.write("client-0", {"value": "init"})
    """

    def __init__(
        self,
        table: SimulatedTable | None = None,
        echo_delay: float = 0.05,
        drop_rate: float = 0.0,
        fail_rate: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        self.table = table or SimulatedTable()
        self._echo_delay = echo_delay
        self._drop_rate = drop_rate
        self._fail_rate = fail_rate
        self._rng = rng or random.Random()
        self._connected = False
        self._subscriptions: set[int] = set()
        self._pending: set[asyncio.Task] = set()

    @property
    def endpoint(self) -> str:
        return f"memory://{self.table.topic}"

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False
        for listener_id in list(self._subscriptions):
            self.table.unlisten(listener_id)
        self._subscriptions.clear()
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

    async def write(self, record_id: str, fields: dict[str, Any]) -> None:
        if not self._connected:
            raise WriteError(f"{self.endpoint} is not connected")
        if self._fail_rate and self._rng.random() < self._fail_rate:
            raise WriteError(f"Simulated write failure for {record_id}")

        event = self.table.upsert(record_id, fields)
        if self._drop_rate and self._rng.random() < self._drop_rate:
            logger.debug("Simulated drop of change event for %s", record_id)
            return

        task = asyncio.create_task(self._echo(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _echo(self, event: dict[str, Any]) -> None:
        if self._echo_delay > 0:
            await asyncio.sleep(self._echo_delay)
        await self.table.broadcast(event)

    async def subscribe(self, topic: str, handler: ChangeHandler) -> int:
        if not self._connected:
            raise SubscribeError(f"{self.endpoint} is not connected")
        if topic != self.table.topic:
            raise SubscribeError(f"No simulated table for topic '{topic}'")
        listener_id = self.table.listen(handler)
        self._subscriptions.add(listener_id)
        return listener_id

    async def unsubscribe(self, handle: int) -> None:
        self._subscriptions.discard(handle)
        self.table.unlisten(handle)
