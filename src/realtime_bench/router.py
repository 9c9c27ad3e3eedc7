"""Demultiplexes the shared change feed onto client sessions."""

from __future__ import annotations

import functools
import logging
from typing import Any

from .backend.base import BenchBackend
from .models import ChangeEvent
from .session import ClientSession
from .stats import StatsAggregator

logger = logging.getLogger("realtime-bench")


class NotificationRouter:
    """Single ingress for change events.

    Events are matched to sessions by exact record identity. Events for
    identities this run does not own (other runs sharing the table, rows
    written by hand) and events without a usable send timestamp are dropped
    without being counted. An exception while handling a matched event is
    counted as an error and swallowed so the feed keeps flowing.
    """

    def __init__(self, stats: StatsAggregator, topic: str) -> None:
        self._stats = stats
        self.topic = topic
        self._sessions: dict[str, ClientSession] = {}
        self._subscriptions: list[tuple[BenchBackend, Any]] = []

    def register(self, session: ClientSession) -> None:
        if session.identity in self._sessions:
            raise ValueError(f"Session {session.identity!r} is already registered")
        self._sessions[session.identity] = session

    def session_for(self, identity: str) -> ClientSession | None:
        return self._sessions.get(identity)

    @property
    def sessions(self) -> list[ClientSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    async def attach(self, backend: BenchBackend, only: str | None = None) -> Any:
        """Subscribe to the topic on ``backend`` and route what arrives.

        With ``only`` set, the subscription serves that one identity and
        ignores everything else, which is how per-client connections avoid
        each echo being counted once per open socket.
        """
        handler = self.handle if only is None else functools.partial(self._handle_only, only)
        handle = await backend.subscribe(self.topic, handler)
        self._subscriptions.append((backend, handle))
        return handle

    def _handle_only(self, identity: str, raw: Any) -> bool:
        if ChangeEvent.extract_identity(raw) != identity:
            return False
        return self.handle(raw)

    def handle(self, raw: Any) -> bool:
        """Route one raw event. Returns True if it produced a latency sample."""
        try:
            identity = ChangeEvent.extract_identity(raw)
            if identity is None:
                return False
            session = self._sessions.get(identity)
            if session is None:
                return False
            event = ChangeEvent.from_payload(raw)
            if event is None:
                return False
            return session.on_matched_event(event)
        except Exception as e:
            self._stats.increment_error()
            logger.debug(f"Change event handling failed: {e}")
            return False

    async def detach_all(self) -> None:
        """Drop every subscription opened through this router."""
        subscriptions, self._subscriptions = self._subscriptions, []
        for backend, handle in subscriptions:
            try:
                await backend.unsubscribe(handle)
            except Exception as e:
                logger.debug(f"Unsubscribe on {backend.endpoint} failed: {e}")
