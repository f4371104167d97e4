"""Abstract interface for the message store and its change feed."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from ..models.message import ChatMessage, OutgoingMessage

# Columns a change-feed filter may compare against.
FILTERABLE_COLUMNS = frozenset({"sender_id", "sender_type", "receiver_id", "receiver_type"})


@dataclass(frozen=True)
class InsertFilter:
    """A single column-equality predicate evaluated by the store.

    Example:
        InsertFilter("sender_type", "member")  # every customer message
        InsertFilter("sender_id", "chat_0551234567_1700000000000")
    """

    column: str
    value: str

    def __post_init__(self) -> None:
        if self.column not in FILTERABLE_COLUMNS:
            raise ValueError(f"Column {self.column!r} cannot be used in an insert filter")

    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate the predicate locally against a store row."""
        return row.get(self.column) == self.value

    def to_postgrest(self) -> str:
        """Render as a PostgREST/realtime filter expression."""
        return f"{self.column}=eq.{self.value}"


EventCallback = Callable[[ChatMessage], None]
DropCallback = Callable[[Exception], None]


class Subscription(Protocol):
    """Handle for a live change-feed registration."""

    @property
    def closed(self) -> bool:
        """True once the subscription no longer delivers events."""
        ...

    async def close(self) -> None:
        """
        Stop delivery and release the server-side listener.

        Must be idempotent and must not raise for an already dropped channel.
        """
        ...


class MessageStore(Protocol):
    """Abstract interface for the append-only message table.

    Implementations only build filters and translate rows; no chat logic
    lives behind this protocol.
    """

    async def fetch_session_seed_messages(self) -> list[ChatMessage]:
        """
        Return every customer-sent message, newest first.

        Raises:
            StoreReadError: If the query fails
        """
        ...

    async def fetch_thread(self, session_id: str) -> list[ChatMessage]:
        """
        Return every message sent by or to a session, oldest first.

        Args:
            session_id: Customer session identifier

        Raises:
            StoreReadError: If the query fails
            FilterValueError: If session_id is unsafe to embed in a filter
        """
        ...

    async def append_message(self, message: OutgoingMessage) -> None:
        """
        Insert one message. The store assigns id and created_at.

        Raises:
            StoreWriteError: If the insert fails for any reason
        """
        ...

    async def subscribe_inserts(
        self,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_drop: DropCallback | None = None,
    ) -> Subscription:
        """
        Register a push listener for inserts matching a filter.

        Delivery is at-least-once and happens on the event loop. ``on_drop``
        is called once, with a SubscriptionDropped, if the channel closes
        without ``Subscription.close()`` having been called.

        Args:
            insert_filter: Server-side predicate
            on_event: Called with each matching inserted message
            on_drop: Called if the channel dies unexpectedly

        Returns:
            A subscription handle; callers must close it

        Raises:
            StoreReadError: If the subscription cannot be established
        """
        ...
