"""Core chat engine components.

This module exports the main engine classes:
- AdminConsole: Every customer session, with a global and a scoped feed
- CustomerWidget: One anonymous customer chat
- SessionBook: Session list derived from customer messages
- MessageThread: De-duplicated message list of the open conversation
- FeedMultiplexer: Lifecycle of the global and scoped push feeds
- SendCoordinator: Write-through sends with optimistic display
"""

from support_chat.core.extraction import (
    build_greeting,
    extract_contact,
    generate_chat_id,
)
from support_chat.core.feeds import FeedMultiplexer, FeedState, LiveFeed
from support_chat.core.roles import ADMIN, CUSTOMER, GLOBAL_FILTER, RoleProfile
from support_chat.core.sender import SendCoordinator
from support_chat.core.session_book import ReceiveResult, SessionBook
from support_chat.core.sessions import derive_sessions, sort_sessions
from support_chat.core.surfaces import (
    AdminConsole,
    ChatSurface,
    CustomerWidget,
    create_admin_console,
    create_customer_widget,
)
from support_chat.core.thread import MessageThread

__all__ = [
    "ADMIN",
    "CUSTOMER",
    "GLOBAL_FILTER",
    "AdminConsole",
    "ChatSurface",
    "CustomerWidget",
    "FeedMultiplexer",
    "FeedState",
    "LiveFeed",
    "MessageThread",
    "ReceiveResult",
    "RoleProfile",
    "SendCoordinator",
    "SessionBook",
    "build_greeting",
    "create_admin_console",
    "create_customer_widget",
    "derive_sessions",
    "extract_contact",
    "generate_chat_id",
    "sort_sessions",
]
