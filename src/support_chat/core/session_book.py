"""Canonical session state for the admin console.

The book is the only shared mutable state of the admin side. Every change
replaces a whole ``ChatSession`` by id, so two updates for different
sessions arriving back to back can never overwrite each other.

Unread rules:
- selecting a session zeroes its unread count at once
- a customer message for the selected session leaves the count alone
- any other customer message adds one, once per message id
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from enum import Enum

import structlog

from support_chat.core.sessions import apply_preview, filter_sessions, new_session, total_unread
from support_chat.models.message import ChatMessage, SenderRole
from support_chat.models.session import ChatSession, Priority, SessionFilter, SessionStatus
from support_chat.utils.async_helpers import SessionNotFoundError

log = structlog.get_logger()


class ReceiveResult(Enum):
    """What a pushed message did to the book."""

    CREATED = "created"
    UPDATED = "updated"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclasses.dataclass(frozen=True)
class _Annotations:
    priority: Priority
    status: SessionStatus
    tags: frozenset[str]


class SessionBook:
    """Session collection plus the selection that drives unread counts."""

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}
        self._order: tuple[str, ...] = ()
        self._counted_ids: set[str] = set()
        self._selected_id: str | None = None
        self._annotations: dict[str, _Annotations] = {}

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> tuple[ChatSession, ...]:
        """Sessions in collection order (new push sessions first)."""
        return tuple(self._sessions[sid] for sid in self._order)

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    @property
    def total_unread(self) -> int:
        return total_unread(self._sessions.values())

    def get(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def visible(
        self,
        query: str = "",
        session_filter: SessionFilter = SessionFilter.ALL,
    ) -> list[ChatSession]:
        """Sessions as the console lists them: searched, filtered, sorted."""
        return filter_sessions(self._sessions.values(), query, session_filter)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select(self, session_id: str) -> None:
        """Select a session and mark it read locally.

        Selecting an id the book has not seen yet is allowed (a notification
        click can race the initial load); it is marked read when it arrives.
        """
        self._selected_id = session_id
        session = self._sessions.get(session_id)
        if session is not None and session.unread_count:
            self._replace(dataclasses.replace(session, unread_count=0))

    def deselect(self) -> None:
        self._selected_id = None

    def receive(self, message: ChatMessage) -> ReceiveResult:
        """Apply a customer message delivered by the global feed.

        New sessions go to the front of the collection.
        """
        return self._absorb(message, prepend=True)

    def merge_loaded(self, messages: Iterable[ChatMessage]) -> int:
        """Fold a bulk-loaded batch (newest first) into the current state.

        Pushes that arrived while the load was in flight are already in the
        book; messages they carried are skipped by id so nothing is counted
        twice, and nothing already in the book is thrown away.

        Returns:
            Number of sessions created by this batch
        """
        results = [self._absorb(message, prepend=False) for message in messages]
        return results.count(ReceiveResult.CREATED)

    def set_priority(self, session_id: str, priority: Priority) -> ChatSession:
        session = self._require(session_id)
        return self._replace(dataclasses.replace(session, priority=priority))

    def set_status(self, session_id: str, status: SessionStatus) -> ChatSession:
        """Overwrite the status. Any status may follow any other."""
        session = self._require(session_id)
        return self._replace(dataclasses.replace(session, status=status))

    def add_tag(self, session_id: str, tag: str) -> ChatSession:
        session = self._require(session_id)
        return self._replace(dataclasses.replace(session, tags=session.tags | {tag}))

    def remove_tag(self, session_id: str, tag: str) -> ChatSession:
        session = self._require(session_id)
        return self._replace(dataclasses.replace(session, tags=session.tags - {tag}))

    def reset(self) -> None:
        """Forget all derived state before a full re-derivation.

        Admin annotations (priority, status, tags) survive a reset for the
        lifetime of this object and are re-applied when a session with the
        same id is derived again.
        """
        for session in self._sessions.values():
            self._annotations[session.session_id] = _Annotations(
                priority=session.priority,
                status=session.status,
                tags=session.tags,
            )
        self._sessions = {}
        self._order = ()
        self._counted_ids = set()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _absorb(self, message: ChatMessage, prepend: bool) -> ReceiveResult:
        if message.sender_role is not SenderRole.CUSTOMER:
            return ReceiveResult.IGNORED
        if message.id in self._counted_ids:
            return ReceiveResult.DUPLICATE
        self._counted_ids.add(message.id)

        session_id = message.sender_id
        existing = self._sessions.get(session_id)
        is_selected = session_id == self._selected_id

        if existing is None:
            session = self._annotated(new_session(message))
            if is_selected:
                session = dataclasses.replace(session, unread_count=0)
            self._sessions = {**self._sessions, session_id: session}
            self._order = (session_id, *self._order) if prepend else (*self._order, session_id)
            return ReceiveResult.CREATED

        updated = apply_preview(existing, message)
        if not is_selected:
            updated = dataclasses.replace(updated, unread_count=updated.unread_count + 1)
        self._replace(updated)
        return ReceiveResult.UPDATED

    def _require(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _replace(self, session: ChatSession) -> ChatSession:
        self._sessions = {**self._sessions, session.session_id: session}
        return session

    def _annotated(self, session: ChatSession) -> ChatSession:
        saved = self._annotations.get(session.session_id)
        if saved is None:
            return session
        return dataclasses.replace(
            session,
            priority=saved.priority,
            status=saved.status,
            tags=saved.tags,
        )
