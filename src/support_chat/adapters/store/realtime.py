"""Realtime change-feed client for the hosted store.

Speaks the Phoenix channel protocol over one shared websocket: each
``subscribe`` joins its own channel with a ``postgres_changes`` INSERT
filter, a background task keeps the socket alive with heartbeats, and a
reader task routes frames to channels by topic.

Frames (JSON):
    -> {"topic": "realtime:...", "event": "phx_join", "payload": {...}, "ref": "1", "join_ref": "1"}
    <- {"topic": "realtime:...", "event": "phx_reply", "payload": {"status": "ok", ...}, "ref": "1"}
    <- {"topic": "realtime:...", "event": "postgres_changes", "payload": {"data": {"record": {...}}}}
    -> {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": "2"}
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import uuid
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ...models.message import ChatMessage
from ...utils.async_helpers import StoreReadError, SubscriptionDropped
from ...utils.security import validate_filter_value

if TYPE_CHECKING:
    from ...config.schema import SupabaseConfig
    from ...interfaces.store import DropCallback, EventCallback, InsertFilter

log = structlog.get_logger()

PROTOCOL_VERSION = "1.0.0"
HEARTBEAT_TOPIC = "phoenix"


def realtime_url(config: SupabaseConfig) -> str:
    """Websocket endpoint for a project URL."""
    base = config.base_url
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}/realtime/v1/websocket?apikey={config.anon_key}&vsn={PROTOCOL_VERSION}"


class RealtimeChannel:
    """One joined channel; closing it sends ``phx_leave``."""

    def __init__(
        self,
        client: RealtimeClient,
        topic: str,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_drop: DropCallback | None,
    ) -> None:
        self._client = client
        self.topic = topic
        self.insert_filter = insert_filter
        self._on_event = on_event
        self._on_drop = on_drop
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client._leave(self)

    def _deliver(self, record: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            message = ChatMessage.from_row(record)
        except (KeyError, ValueError) as e:
            log.warning("realtime_record_invalid", topic=self.topic, error=str(e))
            return
        self._on_event(message)

    def _drop(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_drop is not None:
            self._on_drop(SubscriptionDropped(reason, topic=self.topic))


class RealtimeClient:
    """Shared websocket connection carrying every channel of one store.

    Example:
        client = RealtimeClient(config)
        channel = await client.subscribe(InsertFilter("sender_type", "member"), on_event)
        ...
        await channel.close()
        await client.aclose()
    """

    def __init__(
        self,
        config: SupabaseConfig,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self._config = config
        self._connect = connect or websockets.connect
        self._url = realtime_url(config)
        self._ws: Any = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._refs = itertools.count(1)
        self._channels: dict[str, RealtimeChannel] = {}
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def channels(self) -> list[RealtimeChannel]:
        return list(self._channels.values())

    async def subscribe(
        self,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_drop: DropCallback | None = None,
    ) -> RealtimeChannel:
        """Join a channel for inserts matching ``insert_filter``.

        Raises:
            StoreReadError: If the socket cannot connect or the join is refused
        """
        validate_filter_value(insert_filter.value)
        await self._ensure_connected()

        topic = (
            f"realtime:{self._config.schema_name}:{self._config.table}:"
            f"{insert_filter.to_postgrest()}:{uuid.uuid4().hex[:8]}"
        )
        channel = RealtimeChannel(self, topic, insert_filter, on_event, on_drop)
        self._channels[topic] = channel

        payload = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {
                        "event": "INSERT",
                        "schema": self._config.schema_name,
                        "table": self._config.table,
                        "filter": insert_filter.to_postgrest(),
                    }
                ],
            },
            "access_token": self._config.anon_key,
        }
        joined = False
        try:
            reply = await self._request(topic, "phx_join", payload)
            if reply.get("status") != "ok":
                raise StoreReadError(f"Join refused for {topic}: {reply.get('response')}")
            joined = True
        finally:
            if not joined:
                # Timed out or cancelled joins may still be acked later
                channel._closed = True
                self._channels.pop(topic, None)
                self._spawn(self._leave(channel))

        log.info("realtime_channel_joined", topic=topic)
        return channel

    async def aclose(self) -> None:
        """Close the socket without reporting drops."""
        for channel in list(self._channels.values()):
            channel._closed = True
        self._channels.clear()
        await self._teardown()

    async def _ensure_connected(self) -> None:
        async with self._lock:
            if self._ws is not None:
                return
            try:
                self._ws = await self._connect(self._url)
            except (OSError, WebSocketException) as e:
                raise StoreReadError(f"Realtime connection failed: {e}") from e
            self._reader_task = asyncio.create_task(self._read_loop(), name="realtime_reader")
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(), name="realtime_heartbeat"
            )
            log.info("realtime_connected")

    async def _request(self, topic: str, event: str, payload: dict[str, Any]) -> dict[str, Any]:
        ref = str(next(self._refs))
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        try:
            await self._send({"topic": topic, "event": event, "payload": payload, "ref": ref, "join_ref": ref})
            return await asyncio.wait_for(future, timeout=self._config.request_timeout)
        except TimeoutError as e:
            raise StoreReadError(f"No reply to {event} on {topic}") from e
        finally:
            self._pending.pop(ref, None)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send(self, frame: dict[str, Any]) -> None:
        if self._ws is None:
            raise StoreReadError("Realtime socket is not connected")
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise StoreReadError(f"Realtime socket closed: {e}") from e

    async def _leave(self, channel: RealtimeChannel) -> None:
        self._channels.pop(channel.topic, None)
        if self._ws is None:
            return
        try:
            await self._send(
                {"topic": channel.topic, "event": "phx_leave", "payload": {}, "ref": str(next(self._refs))}
            )
        except StoreReadError as e:
            log.debug("realtime_leave_failed", topic=channel.topic, error=str(e))

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            try:
                await self._send(
                    {"topic": HEARTBEAT_TOPIC, "event": "heartbeat", "payload": {}, "ref": str(next(self._refs))}
                )
            except StoreReadError as e:
                log.warning("realtime_heartbeat_failed", error=str(e))
                return

    async def _read_loop(self) -> None:
        reason = "socket closed"
        try:
            async for raw in self._ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            reason = f"socket closed: {e}"
        finally:
            if self._reader_task is asyncio.current_task():
                self._reader_task = None
                await self._on_connection_lost(reason)

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("realtime_frame_invalid")
            return

        topic = frame.get("topic")
        event = frame.get("event")
        payload = frame.get("payload") or {}

        if event == "phx_reply":
            future = self._pending.get(str(frame.get("ref")))
            if future is not None and not future.done():
                future.set_result(payload)
            return

        channel = self._channels.get(topic)
        if channel is None:
            return

        if event == "postgres_changes":
            record = (payload.get("data") or {}).get("record")
            if record is not None:
                channel._deliver(record)
        elif event in ("phx_error", "phx_close"):
            self._channels.pop(topic, None)
            log.warning("realtime_channel_lost", topic=topic, event=event)
            channel._drop(f"server sent {event}")

    async def _on_connection_lost(self, reason: str) -> None:
        log.warning("realtime_disconnected", reason=reason, channels=len(self._channels))
        channels = list(self._channels.values())
        self._channels.clear()
        for future in self._pending.values():
            if not future.done():
                future.set_exception(StoreReadError(reason))
        await self._teardown()
        for channel in channels:
            channel._drop(reason)

    async def _teardown(self) -> None:
        heartbeat, self._heartbeat_task = self._heartbeat_task, None
        reader, self._reader_task = self._reader_task, None
        ws, self._ws = self._ws, None

        for task in (heartbeat, reader):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if ws is not None:
            with contextlib.suppress(ConnectionClosed):
                await ws.close()
