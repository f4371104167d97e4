"""Data models for derived chat sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

UNKNOWN_USER = "Unknown User"
UNKNOWN_PHONE = "Unknown Phone"


class Priority(Enum):
    """Admin-assigned session priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Sort weight, higher first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 3, Priority.NORMAL: 2, Priority.LOW: 1}


class SessionStatus(Enum):
    """Admin-assigned session status. No transition is terminal."""

    ACTIVE = "active"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class SessionFilter(Enum):
    """Session list filters offered by the admin console."""

    ALL = "all"
    UNREAD = "unread"
    PRIORITY = "priority"


@dataclass(frozen=True)
class ContactExtraction:
    """Result of pulling a display name and phone out of a greeting.

    ``fell_back`` is True when either field had to be replaced by its
    sentinel, so callers and tests can see the loss instead of guessing
    from the sentinel strings.
    """

    display_name: str
    contact_phone: str
    name_found: bool
    phone_found: bool

    @property
    def fell_back(self) -> bool:
        return not (self.name_found and self.phone_found)


@dataclass(frozen=True)
class ChatSession:
    """A customer conversation derived from the message log.

    Instances are immutable; state changes produce a replacement via
    ``dataclasses.replace``.
    """

    session_id: str
    display_name: str
    contact_phone: str
    last_message_preview: str
    last_message_at: datetime
    unread_count: int = 0
    priority: Priority = Priority.NORMAL
    status: SessionStatus = SessionStatus.ACTIVE
    tags: frozenset[str] = field(default_factory=frozenset)
    contact_fell_back: bool = False
