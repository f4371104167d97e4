"""Role profiles for the two chat surfaces.

The admin console and the customer widget share one engine; a profile
carries the only things that differ between them: who is sending, who
receives, and which scoped-feed predicate delivers the other side's
messages.
"""

from __future__ import annotations

from dataclasses import dataclass

from support_chat.interfaces.store import InsertFilter
from support_chat.models.message import OutgoingMessage, SenderRole
from support_chat.utils.security import validate_filter_value


@dataclass(frozen=True)
class RoleProfile:
    """How one side of a conversation addresses the other."""

    role: SenderRole
    admin_sender_id: str = "admin"

    @property
    def counterpart(self) -> SenderRole:
        if self.role is SenderRole.ADMIN:
            return SenderRole.CUSTOMER
        return SenderRole.ADMIN

    def scoped_filter(self, session_id: str) -> InsertFilter:
        """Predicate for messages from the other side of this session.

        Raises:
            FilterValueError: If session_id is unsafe to embed in a filter
        """
        validate_filter_value(session_id)
        if self.role is SenderRole.ADMIN:
            return InsertFilter("sender_id", session_id)
        return InsertFilter("receiver_id", session_id)

    def outgoing(self, session_id: str, body: str) -> OutgoingMessage:
        """Address a new message into a session."""
        if self.role is SenderRole.ADMIN:
            return OutgoingMessage(
                sender_id=self.admin_sender_id,
                sender_role=SenderRole.ADMIN,
                body=body,
                receiver_id=session_id,
                receiver_role=SenderRole.CUSTOMER,
            )
        return OutgoingMessage(
            sender_id=session_id,
            sender_role=SenderRole.CUSTOMER,
            body=body,
            receiver_role=SenderRole.ADMIN,
        )


ADMIN = RoleProfile(role=SenderRole.ADMIN)
CUSTOMER = RoleProfile(role=SenderRole.CUSTOMER)

# The global feed: every customer-originated insert.
GLOBAL_FILTER = InsertFilter("sender_type", SenderRole.CUSTOMER.value)
