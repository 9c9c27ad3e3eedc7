"""Supabase backend — PostgREST upserts and Realtime change subscriptions.

Writes go over HTTP to ``/rest/v1/<table>`` as merge-duplicate upserts.
Change notifications arrive over one Realtime websocket per backend
instance (Phoenix channel protocol): each subscribed topic is joined once
with a ``postgres_changes`` filter, a heartbeat keeps the socket alive, and
incoming change messages are normalised to

    {"eventType": "UPDATE", "schema": ..., "table": ..., "new": {...}, "old": {...}}

before being handed to the subscribers of that topic.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import aiohttp

from ..events import ChangeHandler, deliver
from ..exceptions import SubscribeError, WriteError
from ..models import IDENTITY_FIELD
from .base import BenchBackend

logger = logging.getLogger("realtime-bench")

_LEGACY_CHANGE_EVENTS = ("INSERT", "UPDATE", "DELETE")


def realtime_url(url: str, api_key: str) -> str:
    """Websocket endpoint for a project URL (http -> ws, https -> wss)."""
    base = url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/realtime/v1/websocket?apikey={api_key}&vsn=1.0.0"


def normalize_change(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Map a Realtime change payload onto the ``eventType/new/old`` shape."""
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return None
    return {
        "eventType": data.get("type") or data.get("eventType") or "",
        "schema": data.get("schema", ""),
        "table": data.get("table", ""),
        "commit_timestamp": data.get("commit_timestamp"),
        "new": data.get("record") or {},
        "old": data.get("old_record") or {},
    }


class SupabaseBackend(BenchBackend):
    """One Supabase client: an HTTP session plus a lazily opened socket."""

    def __init__(
        self,
        url: str,
        api_key: str,
        schema_name: str = "public",
        table: str = "bench",
        request_timeout: float = 15.0,
        heartbeat_interval: float = 25.0,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._schema = schema_name
        self._table = table
        self._timeout = request_timeout
        self._heartbeat_interval = heartbeat_interval
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._ws_lock = asyncio.Lock()
        self._reader: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        self._refs = itertools.count(1)
        self._handle_ids = itertools.count(1)
        self._replies: dict[str, asyncio.Future] = {}
        # channel topic ("realtime:public:bench") -> {handle: handler}
        self._channels: dict[str, dict[int, ChangeHandler]] = {}
        self._handle_to_channel: dict[int, str] = {}

    @property
    def endpoint(self) -> str:
        return self._url

    def _headers(self) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }
        if self._schema != "public":
            headers["Content-Profile"] = self._schema
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def connect(self) -> None:
        self._get_session()

    # ── Writes ───────────────────────────────────────────────

    async def write(self, record_id: str, fields: dict[str, Any]) -> None:
        """Upsert one row. Raises WriteError on HTTP or transport failure."""
        session = self._get_session()
        row = {**fields, IDENTITY_FIELD: record_id}
        target = f"{self._url}/rest/v1/{self._table}"
        try:
            async with session.post(target, json=[row], headers=self._headers()) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise WriteError(f"HTTP {resp.status} upserting {record_id}: {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise WriteError(f"Upsert of {record_id} failed: {e}") from e

    # ── Realtime socket ──────────────────────────────────────

    async def _ensure_socket(self) -> aiohttp.ClientWebSocketResponse:
        async with self._ws_lock:
            if self._ws is not None and not self._ws.closed:
                return self._ws
            session = self._get_session()
            try:
                self._ws = await session.ws_connect(realtime_url(self._url, self._api_key))
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise SubscribeError(f"Realtime connect to {self._url} failed: {e}") from e
            self._reader = asyncio.create_task(self._read_loop(self._ws))
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(self._ws))
            logger.debug("Realtime socket open: %s", self._url)
            return self._ws

    async def _send(self, message: dict[str, Any]) -> None:
        ws = await self._ensure_socket()
        await ws.send_json(message)

    async def _request(self, message: dict[str, Any]) -> dict[str, Any]:
        """Send a message and wait for its ``phx_reply``."""
        ref = message["ref"]
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._replies[ref] = future
        try:
            await self._send(message)
            return await asyncio.wait_for(future, self._timeout)
        finally:
            self._replies.pop(ref, None)

    async def _heartbeat_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while not ws.closed:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await ws.send_json(
                    {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": self._next_ref()}
                )
            except (aiohttp.ClientError, ConnectionResetError) as e:
                logger.warning(f"Realtime heartbeat failed: {e}")
                return

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = msg.json()
                except ValueError:
                    logger.debug("Ignoring non-JSON realtime frame")
                    continue
                if not isinstance(data, dict):
                    continue
                await self._on_message(data)
            elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                break

        for future in self._replies.values():
            if not future.done():
                future.set_exception(SubscribeError("Realtime socket closed"))
        logger.warning(f"Realtime socket closed: {self._url}")

    async def _on_message(self, data: dict[str, Any]) -> None:
        event = data.get("event")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if event == "phx_reply":
            future = self._replies.get(str(data.get("ref")))
            if future is not None and not future.done():
                future.set_result(payload)
            return

        if event == "postgres_changes" or event in _LEGACY_CHANGE_EVENTS:
            change = normalize_change(payload)
            if change is None:
                return
            channel = str(data.get("topic", ""))
            handlers = list(self._channels.get(channel, {}).values())
            for handler in handlers:
                await deliver(handler, change, channel)
            return

        if event == "phx_error":
            logger.warning(f"Realtime channel error on {data.get('topic')}: {payload}")
        elif event == "system" and payload.get("status") == "error":
            logger.warning(f"Realtime system error: {payload.get('message', payload)}")

    # ── Subscriptions ────────────────────────────────────────

    async def subscribe(self, topic: str, handler: ChangeHandler) -> int:
        """Join ``realtime:<topic>`` (once) and route its changes to handler."""
        schema_name, _, table = topic.partition(":")
        channel = f"realtime:{topic}"
        handle = next(self._handle_ids)

        if channel not in self._channels:
            ref = self._next_ref()
            join = {
                "topic": channel,
                "event": "phx_join",
                "payload": {
                    "config": {
                        "broadcast": {"ack": False, "self": False},
                        "presence": {"key": ""},
                        "postgres_changes": [
                            {"event": "*", "schema": schema_name, "table": table or self._table}
                        ],
                    },
                    "access_token": self._api_key,
                },
                "ref": ref,
                "join_ref": ref,
            }
            self._channels[channel] = {}
            joined = False
            try:
                reply = await self._request(join)
                if reply.get("status") != "ok":
                    raise SubscribeError(f"Join of {channel} rejected: {reply.get('response')}")
                joined = True
            except SubscribeError:
                raise
            except Exception as e:
                raise SubscribeError(f"Join of {channel} failed: {e}") from e
            finally:
                # A channel entry without a completed join would swallow later subscribes
                if not joined:
                    self._channels.pop(channel, None)
            logger.debug("Joined %s", channel)

        self._channels[channel][handle] = handler
        self._handle_to_channel[handle] = channel
        return handle

    async def unsubscribe(self, handle: int) -> None:
        channel = self._handle_to_channel.pop(handle, "")
        handlers = self._channels.get(channel)
        if handlers is None:
            return
        handlers.pop(handle, None)
        if handlers:
            return
        self._channels.pop(channel, None)
        if self._ws is not None and not self._ws.closed:
            await self._ws.send_json(
                {"topic": channel, "event": "phx_leave", "payload": {}, "ref": self._next_ref()}
            )

    async def close(self) -> None:
        """Stop background tasks and close the socket and HTTP session."""
        for task in (self._heartbeat, self._reader):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._heartbeat = self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._channels.clear()
        self._handle_to_channel.clear()
