"""In-process message store.

Behaves like the hosted store as far as the chat engine can tell: ids and
timestamps are assigned on insert, pushes are delivered on the event loop
after the insert returns, and a subscription can be dropped from outside
to exercise reconnects.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from ...models.message import ChatMessage, OutgoingMessage, SenderRole
from ...utils.async_helpers import SubscriptionDropped
from ...utils.security import validate_filter_value

if TYPE_CHECKING:
    from ...interfaces.store import DropCallback, EventCallback, InsertFilter

log = structlog.get_logger()


class InMemorySubscription:
    """Listener registered with an ``InMemoryMessageStore``."""

    def __init__(
        self,
        store: InMemoryMessageStore,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_drop: DropCallback | None,
    ) -> None:
        self._store = store
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
        self._store._detach(self)

    def _deliver(self, message: ChatMessage) -> None:
        if not self._closed:
            self._on_event(message)

    def _drop(self, error: Exception) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_drop is not None:
            self._on_drop(error)


class InMemoryMessageStore:
    """MessageStore kept in a list, for tests and local development.

    Example:
        store = InMemoryMessageStore()
        await store.append_message(outgoing)
        rows = await store.fetch_thread("chat_0551234567_1700000000000")
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._rows: list[dict[str, Any]] = []
        self._subscriptions: list[InMemorySubscription] = []

    @property
    def rows(self) -> list[dict[str, Any]]:
        """Stored rows in insert order."""
        return list(self._rows)

    @property
    def subscriptions(self) -> list[InMemorySubscription]:
        """Listeners currently attached."""
        return list(self._subscriptions)

    async def fetch_session_seed_messages(self) -> list[ChatMessage]:
        messages = [
            ChatMessage.from_row(row)
            for row in self._rows
            if row["sender_type"] == SenderRole.CUSTOMER.value
        ]
        return sorted(messages, key=lambda m: m.created_at, reverse=True)

    async def fetch_thread(self, session_id: str) -> list[ChatMessage]:
        validate_filter_value(session_id)
        messages = [
            ChatMessage.from_row(row)
            for row in self._rows
            if session_id in (row["sender_id"], row.get("receiver_id"))
        ]
        return sorted(messages, key=lambda m: m.created_at)

    async def append_message(self, message: OutgoingMessage) -> None:
        row = message.to_row()
        row["id"] = str(uuid.uuid4())
        row["created_at"] = self._clock().isoformat()
        self._rows.append(row)

        inserted = ChatMessage.from_row(row)
        loop = asyncio.get_running_loop()
        for subscription in self._subscriptions:
            if subscription.insert_filter.matches(row):
                loop.call_soon(subscription._deliver, inserted)

    async def subscribe_inserts(
        self,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_drop: DropCallback | None = None,
    ) -> InMemorySubscription:
        validate_filter_value(insert_filter.value)
        subscription = InMemorySubscription(self, insert_filter, on_event, on_drop)
        self._subscriptions.append(subscription)
        log.debug("memory_subscription_added", filter=insert_filter.to_postgrest())
        return subscription

    def drop_subscriptions(self, reason: str = "channel closed") -> int:
        """Kill every listener as if the server closed the channels.

        Returns:
            Number of subscriptions dropped
        """
        dropped = self._subscriptions
        self._subscriptions = []
        for subscription in dropped:
            subscription._drop(
                SubscriptionDropped(reason, topic=subscription.insert_filter.to_postgrest())
            )
        return len(dropped)

    async def aclose(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()

    def _detach(self, subscription: InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
