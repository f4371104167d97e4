"""Data models for chat messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class SenderRole(Enum):
    """Who wrote a message. Values are the store's wire values."""

    ADMIN = "admin"
    CUSTOMER = "member"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a store timestamp into an aware UTC datetime.

    The store emits ISO 8601 strings, sometimes with a trailing ``Z`` and
    sometimes without any offset; naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


@dataclass(frozen=True)
class ChatMessage:
    """A message row from the store's append-only message table."""

    id: str
    sender_id: str
    sender_role: SenderRole
    body: str
    created_at: datetime
    receiver_id: str | None = None
    receiver_role: SenderRole | None = None
    is_broadcast: bool = False

    @property
    def session_id(self) -> str | None:
        """The customer session this message belongs to.

        Customer messages belong to their sender; admin replies belong to
        the customer they were sent to. Broadcasts without a receiver have
        no session.
        """
        if self.sender_role is SenderRole.CUSTOMER:
            return self.sender_id
        return self.receiver_id

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ChatMessage:
        """Build a message from a store row (or a change-feed record).

        Raises:
            KeyError: If a required column is missing
            ValueError: If a role or timestamp cannot be parsed
        """
        receiver_role = row.get("receiver_type")
        return cls(
            id=str(row["id"]),
            sender_id=row["sender_id"],
            sender_role=SenderRole(row["sender_type"]),
            body=row.get("message") or "",
            created_at=parse_timestamp(row["created_at"]),
            receiver_id=row.get("receiver_id"),
            receiver_role=SenderRole(receiver_role) if receiver_role else None,
            is_broadcast=bool(row.get("is_group_message", False)),
        )


@dataclass(frozen=True)
class OutgoingMessage:
    """A message about to be inserted. The store assigns id and timestamp."""

    sender_id: str
    sender_role: SenderRole
    body: str
    receiver_id: str | None = None
    receiver_role: SenderRole | None = None
    is_broadcast: bool = False

    def to_row(self) -> dict[str, Any]:
        """Serialize to the store's column names."""
        row: dict[str, Any] = {
            "sender_id": self.sender_id,
            "sender_type": self.sender_role.value,
            "message": self.body,
            "is_group_message": self.is_broadcast,
        }
        if self.receiver_id is not None:
            row["receiver_id"] = self.receiver_id
        if self.receiver_role is not None:
            row["receiver_type"] = self.receiver_role.value
        return row

    def materialize(self, message_id: str, created_at: datetime) -> ChatMessage:
        """Turn this draft into a displayable message with the given identity."""
        return ChatMessage(
            id=message_id,
            sender_id=self.sender_id,
            sender_role=self.sender_role,
            body=self.body,
            created_at=created_at,
            receiver_id=self.receiver_id,
            receiver_role=self.receiver_role,
            is_broadcast=self.is_broadcast,
        )


class SendStatus(Enum):
    """Outcome of a send attempt."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SendOutcome:
    """Result handed back to the surface after a send."""

    status: SendStatus
    message: ChatMessage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is SendStatus.SENT
