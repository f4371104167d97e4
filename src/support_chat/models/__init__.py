"""Data models and transfer objects."""

from .message import (
    ChatMessage,
    OutgoingMessage,
    SenderRole,
    SendOutcome,
    SendStatus,
    parse_timestamp,
)
from .session import (
    UNKNOWN_PHONE,
    UNKNOWN_USER,
    ChatSession,
    ContactExtraction,
    Priority,
    SessionFilter,
    SessionStatus,
)

__all__ = [
    # Message models
    "SenderRole",
    "ChatMessage",
    "OutgoingMessage",
    "SendStatus",
    "SendOutcome",
    "parse_timestamp",
    # Session models
    "UNKNOWN_USER",
    "UNKNOWN_PHONE",
    "Priority",
    "SessionStatus",
    "SessionFilter",
    "ContactExtraction",
    "ChatSession",
]
