"""Session derivation and session-list presentation.

Sessions are not stored anywhere: they are rebuilt from the message log on
every load. The fold below is shared by the bulk load and by the global
push feed so both create sessions identically.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

import structlog

from support_chat.core.extraction import extract_contact
from support_chat.models.message import ChatMessage, SenderRole
from support_chat.models.session import ChatSession, Priority, SessionFilter

log = structlog.get_logger()

BADGE_LIMIT = 99


def new_session(message: ChatMessage) -> ChatSession:
    """Create a session from the first message seen for its sender."""
    contact = extract_contact(message.body)
    if contact.fell_back:
        log.debug(
            "contact_extraction_fell_back",
            session_id=message.sender_id,
            name_found=contact.name_found,
            phone_found=contact.phone_found,
        )
    return ChatSession(
        session_id=message.sender_id,
        display_name=contact.display_name,
        contact_phone=contact.contact_phone,
        last_message_preview=message.body,
        last_message_at=message.created_at,
        unread_count=1,
        contact_fell_back=contact.fell_back,
    )


def apply_preview(session: ChatSession, message: ChatMessage) -> ChatSession:
    """Move the preview forward if the message is strictly newer."""
    if message.created_at > session.last_message_at:
        return dataclasses.replace(
            session,
            last_message_preview=message.body,
            last_message_at=message.created_at,
        )
    return session


def fold_message(session: ChatSession | None, message: ChatMessage) -> ChatSession:
    """Apply one customer message to its session (or create the session)."""
    if session is None:
        return new_session(message)
    updated = apply_preview(session, message)
    return dataclasses.replace(updated, unread_count=updated.unread_count + 1)


def derive_sessions(messages: Iterable[ChatMessage]) -> dict[str, ChatSession]:
    """Build sessions from a batch of messages, normally newest first.

    Only customer messages seed sessions. ``unread_count`` is the number of
    customer messages seen for the session in this batch; it is not a real
    read receipt. The final preview does not depend on batch order.

    Returns:
        Sessions keyed by session id, in first-seen order
    """
    sessions: dict[str, ChatSession] = {}
    for message in messages:
        if message.sender_role is not SenderRole.CUSTOMER:
            continue
        sessions[message.sender_id] = fold_message(sessions.get(message.sender_id), message)
    return sessions


def sort_sessions(sessions: Iterable[ChatSession]) -> list[ChatSession]:
    """Order for display: priority high→low, then most recent activity first."""
    return sorted(
        sessions,
        key=lambda s: (s.priority.rank, s.last_message_at),
        reverse=True,
    )


def filter_sessions(
    sessions: Iterable[ChatSession],
    query: str = "",
    session_filter: SessionFilter = SessionFilter.ALL,
) -> list[ChatSession]:
    """Search and filter the session list, returned in display order.

    Args:
        sessions: Sessions to filter
        query: Matches display name or preview case-insensitively, or the
            phone as typed
        session_filter: ALL, UNREAD (unread_count > 0) or PRIORITY (high only)
    """
    result = list(sessions)

    needle = query.strip()
    if needle:
        lowered = needle.lower()
        result = [
            s
            for s in result
            if lowered in s.display_name.lower()
            or needle in s.contact_phone
            or lowered in s.last_message_preview.lower()
        ]

    if session_filter is SessionFilter.UNREAD:
        result = [s for s in result if s.unread_count > 0]
    elif session_filter is SessionFilter.PRIORITY:
        result = [s for s in result if s.priority is Priority.HIGH]

    return sort_sessions(result)


def total_unread(sessions: Iterable[ChatSession]) -> int:
    return sum(s.unread_count for s in sessions)


def unread_badge(total: int) -> str:
    """Text for the unread badge; empty when nothing is unread."""
    if total <= 0:
        return ""
    return f"{BADGE_LIMIT}+" if total > BADGE_LIMIT else str(total)
