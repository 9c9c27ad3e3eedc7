"""Backend abstraction — the record store and change feed a bench run drives."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..events import ChangeHandler


class BenchBackend(ABC):
    """Abstract interface for all backends.

    ``write`` is an idempotent upsert keyed by ``record_id`` and raises
    ``WriteError`` on failure. ``subscribe`` delivers best-effort, unordered
    change events for a topic and raises ``SubscribeError`` when the
    subscription cannot be established.
    """

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def write(self, record_id: str, fields: dict[str, Any]) -> None: ...

    @abstractmethod
    async def subscribe(self, topic: str, handler: ChangeHandler) -> Any: ...

    @abstractmethod
    async def unsubscribe(self, handle: Any) -> None: ...

    @property
    @abstractmethod
    def endpoint(self) -> str: ...
