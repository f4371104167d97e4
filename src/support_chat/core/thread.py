"""Message list of the open conversation.

Messages reach an open thread three ways: the optimistic copy written
right after a successful send, the scoped push feed, and a ``fetch_thread``
hydration that may complete after pushes have already landed. The thread
merges all three without losing or doubling anything:

- a message id already present is dropped
- an authoritative copy that matches a still-pending optimistic entry
  (same sender, receiver and body, timestamps within the window) takes
  the optimistic entry's place instead of being appended

Display order is ``created_at`` ascending, ties broken by arrival.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta

import structlog

from support_chat.models.message import ChatMessage

log = structlog.get_logger()

LOCAL_ID_PREFIX = "local-"


@dataclass(frozen=True)
class ThreadEntry:
    """One displayed message plus its arrival sequence."""

    message: ChatMessage
    seq: int
    pending: bool = False


class MessageThread:
    """Ordered, de-duplicated message list for one session."""

    def __init__(self, session_id: str, duplicate_window: timedelta) -> None:
        self.session_id = session_id
        self._window = duplicate_window
        self._entries: list[ThreadEntry] = []
        self._ids: set[str] = set()
        self._seq = 0
        self.suppressed = 0

    @property
    def messages(self) -> list[ChatMessage]:
        """Messages in display order."""
        ordered = sorted(self._entries, key=lambda e: (e.message.created_at, e.seq))
        return [e.message for e in ordered]

    @property
    def pending(self) -> list[ChatMessage]:
        """Optimistic messages not yet matched by an authoritative copy."""
        return [e.message for e in self._entries if e.pending]

    def __len__(self) -> int:
        return len(self._entries)

    def add_optimistic(self, message: ChatMessage) -> None:
        """Show a locally synthesized copy of a message the store accepted."""
        self._append(message, pending=True)

    def apply_pushed(self, message: ChatMessage) -> bool:
        """Merge one message from the scoped feed.

        Returns:
            True if the message became a new visible entry
        """
        return self._merge(message, source="push")

    def merge_fetched(self, messages: Iterable[ChatMessage]) -> int:
        """Merge a hydration result into whatever is already displayed.

        Returns:
            Number of new visible entries
        """
        return sum(1 for message in messages if self._merge(message, source="fetch"))

    def _merge(self, message: ChatMessage, source: str) -> bool:
        if message.id in self._ids:
            self._suppress(message, source, reason="same_id")
            return False

        index = self._find_pending_match(message)
        if index is not None:
            entry = self._entries[index]
            self._ids.discard(entry.message.id)
            self._entries[index] = ThreadEntry(message=message, seq=entry.seq)
            self._ids.add(message.id)
            self._suppress(message, source, reason="optimistic_match")
            return False

        self._append(message, pending=False)
        return True

    def _find_pending_match(self, message: ChatMessage) -> int | None:
        # Oldest pending first: the store commits in send order.
        for index, entry in enumerate(self._entries):
            if not entry.pending:
                continue
            local = entry.message
            if (
                local.sender_id == message.sender_id
                and local.receiver_id == message.receiver_id
                and local.body == message.body
                and abs(local.created_at - message.created_at) <= self._window
            ):
                return index
        return None

    def _append(self, message: ChatMessage, pending: bool) -> None:
        self._seq += 1
        self._entries.append(ThreadEntry(message=message, seq=self._seq, pending=pending))
        self._ids.add(message.id)

    def _suppress(self, message: ChatMessage, source: str, reason: str) -> None:
        self.suppressed += 1
        log.debug(
            "duplicate_suppressed",
            session_id=self.session_id,
            message_id=message.id,
            source=source,
            reason=reason,
        )
