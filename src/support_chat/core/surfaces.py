"""Admin console and customer widget.

Both surfaces run the same engine (``ChatSurface``): a scoped feed for the
open conversation, a ``MessageThread`` that merges pushes, hydration and
optimistic sends, and a ``SendCoordinator``. They differ only in their
``RoleProfile`` and in what they do around it:

- ``AdminConsole`` adds the global feed and the ``SessionBook``
- ``CustomerWidget`` adds the anonymous chat identity, the admin alert on
  the first message, and the "new messages while closed" flag

Everything runs on one event loop. State is only mutated synchronously
between awaits; every await that returns data re-checks that the
conversation it was started for is still the open one.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from datetime import timedelta
from functools import partial
from typing import TYPE_CHECKING, Any

import structlog

from support_chat.core.extraction import build_greeting, generate_chat_id
from support_chat.core.feeds import FeedMultiplexer
from support_chat.core.roles import ADMIN, CUSTOMER, GLOBAL_FILTER, RoleProfile
from support_chat.core.sender import Clock, SendCoordinator, utc_now
from support_chat.core.session_book import ReceiveResult, SessionBook
from support_chat.core.sessions import unread_badge
from support_chat.core.thread import MessageThread
from support_chat.interfaces.notify import AdminAlert
from support_chat.models.message import SendOutcome, SendStatus
from support_chat.models.session import ChatSession, Priority, SessionFilter, SessionStatus
from support_chat.utils.async_helpers import AdminAlertError, FilterValueError, StoreReadError
from support_chat.utils.metrics import MetricsRegistry, Timer, get_metrics
from support_chat.utils.security import mask_phone

if TYPE_CHECKING:
    from support_chat.config.schema import ChatSyncConfig
    from support_chat.interfaces.notify import AdminAlertService, DesktopNotifier
    from support_chat.interfaces.store import MessageStore
    from support_chat.models.message import ChatMessage

log = structlog.get_logger()


class ChatSurface(ABC):
    """Engine shared by both surfaces."""

    def __init__(
        self,
        store: MessageStore,
        notifier: DesktopNotifier,
        profile: RoleProfile,
        config: ChatSyncConfig,
        clock: Clock = utc_now,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._profile = profile
        self._config = config
        self._clock = clock
        self._metrics = metrics or get_metrics()

        self._feeds = FeedMultiplexer(store, config.feeds, self._metrics)
        self._sender = SendCoordinator(store, profile, clock, self._metrics)
        self._window = timedelta(seconds=config.reconciliation.duplicate_window_seconds)
        self._resources = contextlib.AsyncExitStack()

        self._thread: MessageThread | None = None
        self._generation = 0

        # Compose box contents; kept when a send fails
        self.draft = ""

    @property
    def thread(self) -> MessageThread | None:
        return self._thread

    @property
    def messages(self) -> list[ChatMessage]:
        """Open conversation in display order."""
        return self._thread.messages if self._thread is not None else []

    @property
    def is_live(self) -> bool:
        """False whenever a feed this surface needs is not delivering."""
        return self._feeds.is_live

    @property
    def feeds(self) -> FeedMultiplexer:
        return self._feeds

    def own(self, closer: Any) -> None:
        """Register an async ``aclose``-style callable to run on ``aclose()``."""
        self._resources.push_async_callback(closer)

    async def send(self, body: str | None = None) -> SendOutcome:
        """Send ``body``, or the current draft when no body is given.

        The draft is cleared only after the store accepted the message.
        """
        text = self.draft if body is None else body
        session_id = self._current_session_id()
        if session_id is None:
            return SendOutcome(status=SendStatus.SKIPPED)

        outcome = await self._sender.send(self._thread, session_id, text)
        if outcome.ok and body is None:
            self.draft = ""
        return outcome

    async def aclose(self) -> None:
        """Release every feed and owned resource, whatever state we are in."""
        self._generation += 1
        self._thread = None
        try:
            await self._feeds.close()
        finally:
            await self._resources.aclose()

    async def __aenter__(self) -> ChatSurface:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    @abstractmethod
    def _current_session_id(self) -> str | None:
        """Session that sends go to, if any."""

    def _after_scoped_append(self, message: ChatMessage) -> None:
        """Hook run when the scoped feed adds a visible message."""

    async def _open_thread(self, session_id: str) -> MessageThread | None:
        """Make ``session_id`` the open conversation.

        Subscribes before hydrating so nothing committed in between is
        missed; the hydration merges into whatever the feed already
        delivered.

        Returns:
            The new thread, or None when the id cannot be filtered on. The
            previous conversation is closed either way.
        """
        try:
            scoped_filter = self._profile.scoped_filter(session_id)
        except FilterValueError as e:
            log.error("thread_unavailable", error=str(e))
            await self._close_thread()
            return None

        self._generation += 1
        generation = self._generation
        thread = MessageThread(session_id, self._window)
        self._thread = thread

        await self._feeds.switch_scope(
            scoped_filter,
            partial(self._on_scoped_event, thread),
            on_resumed=partial(self._hydrate, thread, generation),
        )
        await self._hydrate(thread, generation)
        return thread

    async def _close_thread(self) -> None:
        self._generation += 1
        self._thread = None
        await self._feeds.clear_scope()

    async def _hydrate(self, thread: MessageThread, generation: int) -> None:
        try:
            with Timer(self._metrics.store_call_duration, labels={"operation": "fetch_thread"}):
                rows = await self._store.fetch_thread(thread.session_id)
        except StoreReadError as e:
            self._metrics.store_errors.inc(labels={"operation": "fetch_thread"})
            log.error("store_read_failed", operation="fetch_thread", error=str(e))
            return

        if generation != self._generation or thread is not self._thread:
            log.debug("stale_fetch_discarded", session_id=thread.session_id)
            return

        before = thread.suppressed
        added = thread.merge_fetched(rows)
        self._count_duplicates(thread.suppressed - before)
        log.info(
            "thread_hydrated",
            session_id=thread.session_id,
            fetched=len(rows),
            added=added,
        )

    def _on_scoped_event(self, thread: MessageThread, message: ChatMessage) -> None:
        if thread is not self._thread:
            return
        if thread.apply_pushed(message):
            self._after_scoped_append(message)
        else:
            self._count_duplicates(1)

    def _count_duplicates(self, count: int) -> None:
        if count > 0:
            self._metrics.duplicates_suppressed.inc(count, labels={"role": self._profile.role.value})


class AdminConsole(ChatSurface):
    """The admin's view over every customer session.

    Example:
        console = AdminConsole(store, notifier, config)
        await console.open()
        await console.select_session(console.visible_sessions()[0].session_id)
        await console.send("Hi, how can I help?")
        await console.close()
    """

    def __init__(
        self,
        store: MessageStore,
        notifier: DesktopNotifier,
        config: ChatSyncConfig,
        clock: Clock = utc_now,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        profile = RoleProfile(role=ADMIN.role, admin_sender_id=config.console.admin_sender_id)
        super().__init__(store, notifier, profile, config, clock, metrics)
        self.book = SessionBook()
        self.is_open = False
        self.is_typing = False
        self._typing_reset: asyncio.TimerHandle | None = None

    @property
    def selected_session_id(self) -> str | None:
        return self.book.selected_id

    @property
    def sessions(self) -> tuple[ChatSession, ...]:
        return self.book.sessions

    @property
    def total_unread(self) -> int:
        return self.book.total_unread

    @property
    def unread_badge(self) -> str:
        return unread_badge(self.book.total_unread)

    @property
    def quick_replies(self) -> list[str]:
        return list(self._config.console.quick_replies)

    def visible_sessions(
        self,
        query: str = "",
        session_filter: SessionFilter = SessionFilter.ALL,
    ) -> list[ChatSession]:
        return self.book.visible(query, session_filter)

    async def open(self) -> None:
        """Open the console: start the global feed and derive sessions."""
        if self.is_open:
            return
        self.is_open = True
        self.book.reset()
        log.info("console_opened")

        await self._feeds.open_global(
            GLOBAL_FILTER,
            self._on_global_event,
            on_resumed=self._load_sessions,
        )
        await self._load_sessions()

    async def close(self) -> None:
        """Close the console and release both feeds."""
        if not self.is_open:
            return
        self.is_open = False
        self.book.deselect()
        self._clear_typing()
        self._generation += 1
        self._thread = None
        await self._feeds.close()
        log.info("console_closed")

    async def aclose(self) -> None:
        self.is_open = False
        self._clear_typing()
        await super().aclose()

    async def select_session(self, session_id: str) -> MessageThread | None:
        """Open a conversation; its unread count drops to zero at once.

        Returns:
            The open thread, or None if the session cannot be subscribed
            to. The selection is then cleared and no scoped feed is held.
        """
        self.book.select(session_id)
        self._clear_typing()
        log.info("session_selected", session_id=session_id)
        thread = await self._open_thread(session_id)
        if thread is None:
            self.book.deselect()
        return thread

    async def deselect(self) -> None:
        self.book.deselect()
        self._clear_typing()
        await self._close_thread()

    async def send_quick_reply(self, index: int) -> SendOutcome:
        """Send one of the configured canned replies.

        Raises:
            IndexError: If there is no reply at ``index``
        """
        return await self.send(self._config.console.quick_replies[index])

    def set_priority(self, session_id: str, priority: Priority) -> ChatSession:
        session = self.book.set_priority(session_id, priority)
        log.info("session_updated", session_id=session_id, priority=priority.value)
        return session

    def set_status(self, session_id: str, status: SessionStatus) -> ChatSession:
        session = self.book.set_status(session_id, status)
        log.info("session_updated", session_id=session_id, status=status.value)
        return session

    def add_tag(self, session_id: str, tag: str) -> ChatSession:
        return self.book.add_tag(session_id, tag)

    def remove_tag(self, session_id: str, tag: str) -> ChatSession:
        return self.book.remove_tag(session_id, tag)

    def _current_session_id(self) -> str | None:
        return self.book.selected_id

    async def _load_sessions(self) -> None:
        try:
            with Timer(self._metrics.store_call_duration, labels={"operation": "fetch_seed"}):
                rows = await self._store.fetch_session_seed_messages()
        except StoreReadError as e:
            self._metrics.store_errors.inc(labels={"operation": "fetch_seed"})
            log.error("store_read_failed", operation="fetch_seed", error=str(e))
            return

        if not self.is_open:
            log.debug("stale_fetch_discarded", operation="fetch_seed")
            return

        created = self.book.merge_loaded(rows)
        self._metrics.sessions_created.inc(created, labels={"origin": "load"})
        log.info(
            "sessions_loaded",
            messages=len(rows),
            created=created,
            sessions=len(self.book),
        )

    def _on_global_event(self, message: ChatMessage) -> None:
        result = self.book.receive(message)
        if result is ReceiveResult.DUPLICATE:
            self._count_duplicates(1)
            return
        if result is not ReceiveResult.CREATED:
            return

        session = self.book.get(message.sender_id)
        if session is None:
            return
        self._metrics.sessions_created.inc(labels={"origin": "push"})
        log.info(
            "session_created",
            session_id=session.session_id,
            contact_fell_back=session.contact_fell_back,
        )
        if session.session_id != self.book.selected_id:
            self._notify(
                f"New chat from {session.display_name}",
                message.body,
                partial(self._focus_session, session.session_id),
            )

    async def _focus_session(self, session_id: str) -> None:
        await self.open()
        await self.select_session(session_id)

    def _after_scoped_append(self, message: ChatMessage) -> None:
        delay = self._config.feeds.typing_indicator_seconds
        if delay <= 0:
            return
        self._clear_typing()
        self.is_typing = True
        self._typing_reset = asyncio.get_running_loop().call_later(delay, self._clear_typing)

    def _clear_typing(self) -> None:
        if self._typing_reset is not None:
            self._typing_reset.cancel()
            self._typing_reset = None
        self.is_typing = False

    def _notify(self, title: str, body: str, on_click: Any) -> None:
        try:
            self._notifier.notify(title, body, on_click=on_click)
            self._metrics.notifications.inc(labels={"kind": "desktop"})
        except Exception as e:
            log.warning("notification_failed", error=str(e))


class CustomerWidget(ChatSurface):
    """The customer's side of one anonymous chat.

    Example:
        widget = CustomerWidget(store, notifier, alerts, config)
        await widget.open()
        await widget.start_chat("Ama", "0551234567")
        widget.draft = "Is the Corolla available?"
        await widget.send()
    """

    def __init__(
        self,
        store: MessageStore,
        notifier: DesktopNotifier,
        alerts: AdminAlertService | None,
        config: ChatSyncConfig,
        clock: Clock = utc_now,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        super().__init__(store, notifier, CUSTOMER, config, clock, metrics)
        self._alerts = alerts
        self._alerted = False

        self.chat_id: str | None = None
        self.customer_name = ""
        self.customer_phone = ""
        self.is_open = False
        self.has_new_messages = False
        self.loading = False

    @property
    def is_info_provided(self) -> bool:
        return self.chat_id is not None

    async def start_chat(self, name: str, phone: str) -> SendOutcome:
        """Mint a new chat identity and send the greeting.

        Starting again later creates a new, unrelated session.

        Raises:
            ValueError: If name or phone is blank
        """
        if not name.strip() or not phone.strip():
            raise ValueError("Name and phone are required to start a chat")

        self.customer_name = name.strip()
        self.customer_phone = phone.strip()
        self.chat_id = generate_chat_id(self.customer_phone, self._clock())
        self._alerted = False
        self.loading = True
        log.info("chat_started", session_id=self.chat_id, phone=mask_phone(self.customer_phone))

        try:
            await self._open_thread(self.chat_id)
            return await self.send(build_greeting(self.customer_name, self.customer_phone))
        finally:
            self.loading = False

    async def send(self, body: str | None = None) -> SendOutcome:
        outcome = await super().send(body)
        if outcome.ok and outcome.message is not None:
            await self._alert_admin(outcome.message.body)
        return outcome

    async def open(self) -> None:
        """Show the widget; clears the new-message flag and catches up."""
        self.is_open = True
        self.has_new_messages = False
        if self._thread is not None:
            await self._hydrate(self._thread, self._generation)

    def close(self) -> None:
        """Hide the widget. The chat's feed stays live."""
        self.is_open = False

    async def toggle(self) -> None:
        if self.is_open:
            self.close()
        else:
            await self.open()

    async def aclose(self) -> None:
        self.is_open = False
        await super().aclose()
        log.info("widget_closed", session_id=self.chat_id)

    def _current_session_id(self) -> str | None:
        return self.chat_id

    def _after_scoped_append(self, message: ChatMessage) -> None:
        if self.is_open:
            return
        self.has_new_messages = True
        try:
            self._notifier.notify("New message from admin", message.body, on_click=self.open)
            self._metrics.notifications.inc(labels={"kind": "desktop"})
        except Exception as e:
            log.warning("notification_failed", error=str(e))

    async def _alert_admin(self, body: str) -> None:
        if self._alerts is None or not self._config.alerts.enabled or self.chat_id is None:
            return
        if self._alerted and not self._config.alerts.every_message:
            return
        self._alerted = True

        alert = AdminAlert(
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            message=body,
            chat_id=self.chat_id,
        )
        try:
            await self._alerts.send_alert(alert)
            self._metrics.notifications.inc(labels={"kind": "admin_alert"})
            log.info("admin_alert_sent", session_id=self.chat_id)
        except AdminAlertError as e:
            log.warning("admin_alert_failed", session_id=self.chat_id, error=str(e))


# =============================================================================
# Factories
# =============================================================================


def create_store(config: ChatSyncConfig) -> MessageStore:
    """Create a message store based on configuration.

    Raises:
        ValueError: If the provider is not supported or not configured
    """
    provider = config.store.provider

    if provider == "memory":
        from support_chat.adapters.store.memory import InMemoryMessageStore

        return InMemoryMessageStore()

    if provider == "supabase":
        if not config.store.supabase:
            raise ValueError("Supabase configuration required when provider is 'supabase'")
        from support_chat.adapters.store.supabase import SupabaseMessageStore

        return SupabaseMessageStore(config.store.supabase, config.retry)

    raise ValueError(f"Unsupported store provider: {provider}")


def create_alert_service(config: ChatSyncConfig) -> AdminAlertService | None:
    """Create the admin alert webhook client, or None when alerts are off."""
    url = config.alert_url
    if not config.alerts.enabled or url is None:
        return None

    from support_chat.adapters.notify.webhook import WebhookAdminAlertService

    api_key = config.store.supabase.anon_key if config.store.supabase else None
    return WebhookAdminAlertService(url, config.alerts, config.retry, api_key=api_key)


def create_admin_console(
    config: ChatSyncConfig,
    notifier: DesktopNotifier | None = None,
    store: MessageStore | None = None,
) -> AdminConsole:
    """Build an admin console with adapters chosen by configuration.

    A store created here is closed with the console; a store passed in
    belongs to the caller.
    """
    from support_chat.adapters.notify.desktop import LogNotifier

    console_store = store or create_store(config)
    console = AdminConsole(console_store, notifier or LogNotifier(), config)
    if store is None:
        _own_if_closable(console, console_store)
    return console


def create_customer_widget(
    config: ChatSyncConfig,
    notifier: DesktopNotifier | None = None,
    store: MessageStore | None = None,
) -> CustomerWidget:
    """Build a customer widget with adapters chosen by configuration."""
    from support_chat.adapters.notify.desktop import LogNotifier

    widget_store = store or create_store(config)
    alerts = create_alert_service(config)
    widget = CustomerWidget(widget_store, notifier or LogNotifier(), alerts, config)
    if store is None:
        _own_if_closable(widget, widget_store)
    if alerts is not None:
        _own_if_closable(widget, alerts)
    return widget


def _own_if_closable(surface: ChatSurface, resource: object) -> None:
    closer = getattr(resource, "aclose", None)
    if closer is not None:
        surface.own(closer)
