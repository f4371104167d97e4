"""Tests for the admin console and the customer widget."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from support_chat.adapters.store.memory import InMemoryMessageStore
from support_chat.config.schema import DEFAULT_QUICK_REPLIES, AlertConfig, ChatSyncConfig
from support_chat.core.roles import ADMIN
from support_chat.core.surfaces import (
    AdminConsole,
    ChatSurface,
    CustomerWidget,
    create_admin_console,
    create_customer_widget,
)
from support_chat.models.message import OutgoingMessage, SendStatus, SenderRole
from support_chat.models.session import Priority, SessionFilter
from support_chat.utils.async_helpers import AdminAlertError, StoreReadError, StoreWriteError
from support_chat.utils.metrics import get_metrics

KOFI = "chat_0209998888_1700000005000"


async def drain(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def greeting_from(sender_id: str, name: str, phone: str) -> OutgoingMessage:
    return OutgoingMessage(
        sender_id=sender_id,
        sender_role=SenderRole.CUSTOMER,
        body=f"Hello! I'm {name} ({phone}). I'd like to chat with an admin.",
        receiver_role=SenderRole.ADMIN,
    )


@pytest.fixture
def alerts() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def console(store, notifier, config, clock) -> AdminConsole:
    return AdminConsole(store, notifier, config, clock=clock)


@pytest.fixture
def widget(store, config, clock, alerts) -> CustomerWidget:
    from support_chat.adapters.notify.desktop import LogNotifier

    return CustomerWidget(store, LogNotifier(), alerts, config, clock=clock)


class TestChatSurface:
    """Test the shared surface engine."""

    def test_engine_requires_a_role_surface(self, store, notifier, config) -> None:
        """Test the engine cannot be built without a session hook."""
        with pytest.raises(TypeError):
            ChatSurface(store, notifier, ADMIN, config)


class TestAdminConsole:
    """Test AdminConsole."""

    async def test_open_derives_sessions(self, console, store) -> None:
        """Test opening loads sessions from customer messages."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))

        await console.open()

        assert [s.session_id for s in console.sessions] == [KOFI]
        assert console.sessions[0].display_name == "Kofi"
        assert console.total_unread == 2
        assert console.unread_badge == "2"
        assert console.is_live

    async def test_new_chat_notifies_and_click_selects(self, console, widget, notifier) -> None:
        """Test a pushed first message creates a session and a notification."""
        await console.open()

        await widget.start_chat("Ama", "0551234567")
        await drain()

        session = console.sessions[0]
        assert session.session_id == widget.chat_id
        assert session.unread_count == 1
        assert notifier.history[-1].title == "New chat from Ama"

        await notifier.click()

        assert console.selected_session_id == widget.chat_id
        assert console.total_unread == 0
        assert [m.body for m in console.messages] == [session.last_message_preview]

    async def test_select_hydrates_and_follows_scoped_feed(self, console, store) -> None:
        """Test the open conversation receives the customer's new messages."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()

        await console.select_session(KOFI)
        await store.append_message(
            OutgoingMessage(KOFI, SenderRole.CUSTOMER, "Is it available?", None, SenderRole.ADMIN)
        )
        await drain()

        assert [m.body for m in console.messages][-1] == "Is it available?"
        assert console.total_unread == 0
        assert console.is_typing is True
        await asyncio.sleep(0.1)
        assert console.is_typing is False

    async def test_switching_keeps_one_scoped_listener(self, console, store) -> None:
        """Test a switch never leaves the previous listener attached."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await store.append_message(greeting_from("chat_1_2", "Esi", "1"))
        await console.open()

        await console.select_session(KOFI)
        await console.select_session("chat_1_2")
        await console.select_session(KOFI)

        filters = sorted(s.insert_filter.to_postgrest() for s in store.subscriptions)
        assert filters == [f"sender_id=eq.{KOFI}", "sender_type=eq.member"]

    async def test_unfilterable_session_releases_previous_feed(self, console, store) -> None:
        """Test selecting an id that cannot be filtered on closes the old conversation."""
        await store.append_message(greeting_from("chat_1_2", "Esi", "1"))
        await store.append_message(greeting_from("web.42", "Yaw", "0241112222"))
        await console.open()
        await console.select_session("chat_1_2")

        assert await console.select_session("web.42") is None

        assert console.selected_session_id is None
        assert console.thread is None
        assert console.messages == []
        assert console.feeds.scoped_feed is None
        filters = [s.insert_filter.to_postgrest() for s in store.subscriptions]
        assert filters == ["sender_type=eq.member"]
        assert console.is_live

    async def test_push_for_other_session_stays_out_of_open_thread(self, console, store) -> None:
        """Test a message for another session only bumps that session's unread."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await store.append_message(greeting_from("chat_1_2", "Esi", "1"))
        await console.open()
        await console.select_session(KOFI)
        shown = [m.id for m in console.messages]

        await store.append_message(
            OutgoingMessage("chat_1_2", SenderRole.CUSTOMER, "Still there?", None, SenderRole.ADMIN)
        )
        await drain()

        assert [m.id for m in console.messages] == shown
        assert console.is_typing is False
        unread = {s.session_id: s.unread_count for s in console.sessions}
        assert unread == {KOFI: 0, "chat_1_2": 2}
        assert console.total_unread == 2

    async def test_selected_session_stays_read_while_others_arrive(self, console, store) -> None:
        """Test pushes for other sessions leave the selected session at zero."""
        for _ in range(5):
            await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()
        assert console.book.get(KOFI).unread_count == 5

        await console.select_session(KOFI)
        await store.append_message(greeting_from("chat_1_2", "Esi", "1"))
        await drain()

        assert console.book.get(KOFI).unread_count == 0
        assert console.book.get("chat_1_2").unread_count == 1

    async def test_stale_hydration_discarded(self, console, store) -> None:
        """Test a fetch for a session no longer open is thrown away."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await store.append_message(greeting_from("chat_1_2", "Esi", "1"))
        await console.open()

        gate = asyncio.Event()
        fetch = store.fetch_thread

        async def slow_fetch(session_id: str):
            if session_id == "chat_1_2":
                await gate.wait()
            return await fetch(session_id)

        store.fetch_thread = slow_fetch

        first = asyncio.create_task(console.select_session("chat_1_2"))
        await drain()
        await console.select_session(KOFI)
        gate.set()
        await first

        assert console.thread.session_id == KOFI
        assert {m.sender_id for m in console.messages} == {KOFI}

    async def test_send_reply_is_optimistic(self, console, store) -> None:
        """Test an admin reply shows at once and clears the draft."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()
        await console.select_session(KOFI)

        console.draft = "Hello Kofi"
        outcome = await console.send()

        assert outcome.status is SendStatus.SENT
        assert console.draft == ""
        assert console.messages[-1].body == "Hello Kofi"
        assert store.rows[-1]["receiver_id"] == KOFI
        assert store.rows[-1]["sender_type"] == "admin"

    async def test_failed_send_keeps_draft(self, console, store) -> None:
        """Test a rejected insert keeps the compose box populated."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()
        await console.select_session(KOFI)
        before = len(console.messages)
        store.append_message = AsyncMock(side_effect=StoreWriteError("insert rejected (403)"))

        console.draft = "Hello Kofi"
        outcome = await console.send()

        assert outcome.status is SendStatus.FAILED
        assert console.draft == "Hello Kofi"
        assert len(console.messages) == before

    async def test_send_without_selection_skipped(self, console) -> None:
        """Test sending with no open conversation does nothing."""
        await console.open()
        outcome = await console.send("hello?")
        assert outcome.status is SendStatus.SKIPPED

    async def test_quick_reply(self, console, store) -> None:
        """Test quick replies send the configured text."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()
        await console.select_session(KOFI)

        await console.send_quick_reply(0)

        assert store.rows[-1]["message"] == DEFAULT_QUICK_REPLIES[0]
        assert console.quick_replies == DEFAULT_QUICK_REPLIES
        with pytest.raises(IndexError):
            await console.send_quick_reply(len(DEFAULT_QUICK_REPLIES))

    async def test_load_failure_is_not_fatal(self, console, store) -> None:
        """Test a failed load leaves an empty list and a live feed."""
        store.fetch_session_seed_messages = AsyncMock(side_effect=StoreReadError("boom"))

        await console.open()

        assert console.sessions == ()
        assert console.is_live
        assert get_metrics().store_errors.total() == 1

    async def test_annotations_and_search(self, console, store) -> None:
        """Test priority filter and search over the session list."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await store.append_message(greeting_from("chat_1_2", "Esi", "0241112222"))
        await console.open()

        console.set_priority(KOFI, Priority.HIGH)
        console.add_tag(KOFI, "vip")

        assert [s.session_id for s in console.visible_sessions()] == [KOFI, "chat_1_2"]
        assert [s.session_id for s in console.visible_sessions("esi")] == ["chat_1_2"]
        high = console.visible_sessions(session_filter=SessionFilter.PRIORITY)
        assert [s.session_id for s in high] == [KOFI]

    async def test_annotations_survive_reopen(self, console, store) -> None:
        """Test priority is kept across a close and reopen."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()
        console.set_priority(KOFI, Priority.HIGH)

        await console.close()
        await console.open()

        assert console.sessions[0].priority is Priority.HIGH

    async def test_close_releases_all_listeners(self, console, store) -> None:
        """Test closing leaves no subscription behind."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()
        await console.select_session(KOFI)

        await console.close()

        assert store.subscriptions == []
        assert console.is_open is False
        assert console.selected_session_id is None
        assert console.is_live is False

    async def test_reconnect_rehydrates(self, console, store) -> None:
        """Test messages missed while dropped appear after reconnect."""
        await store.append_message(greeting_from(KOFI, "Kofi", "0209998888"))
        await console.open()
        await console.select_session(KOFI)

        store.drop_subscriptions()
        await store.append_message(
            OutgoingMessage(KOFI, SenderRole.CUSTOMER, "missed", None, SenderRole.ADMIN)
        )
        await drain(50)

        assert console.is_live
        assert console.messages[-1].body == "missed"


class TestCustomerWidget:
    """Test CustomerWidget."""

    async def test_start_chat_sends_greeting(self, widget, store, alerts) -> None:
        """Test starting a chat mints an id, greets and alerts."""
        outcome = await widget.start_chat("Ama", " 055 123 4567 ")

        assert outcome.ok
        assert widget.chat_id.startswith("chat_0551234567_")
        assert widget.is_info_provided
        assert store.rows[0]["sender_id"] == widget.chat_id
        assert store.rows[0]["message"] == (
            "Hello! I'm Ama (055 123 4567). I'd like to chat with an admin."
        )
        alerts.send_alert.assert_awaited_once()
        alert = alerts.send_alert.await_args.args[0]
        assert alert.chat_id == widget.chat_id
        assert alert.customer_name == "Ama"

    async def test_alert_only_on_first_message(self, widget, alerts) -> None:
        """Test later messages do not alert by default."""
        await widget.start_chat("Ama", "0551234567")
        await widget.send("Is the Corolla available?")

        assert alerts.send_alert.await_count == 1

    async def test_alert_on_every_message_when_configured(self, store, config, clock, alerts) -> None:
        """Test every_message alerts on each send."""
        config.alerts = AlertConfig(every_message=True)
        widget = CustomerWidget(store, MagicMock(), alerts, config, clock=clock)

        await widget.start_chat("Ama", "0551234567")
        await widget.send("second")

        assert alerts.send_alert.await_count == 2

    async def test_alert_failure_is_not_fatal(self, widget, alerts) -> None:
        """Test a webhook failure does not fail the send."""
        alerts.send_alert.side_effect = AdminAlertError("502")

        outcome = await widget.start_chat("Ama", "0551234567")

        assert outcome.ok
        assert widget.loading is False

    @pytest.mark.parametrize(("name", "phone"), [("", "055"), ("Ama", "  "), (" ", " ")])
    async def test_blank_identity_rejected(self, widget, store, name, phone) -> None:
        """Test name and phone are required."""
        with pytest.raises(ValueError):
            await widget.start_chat(name, phone)
        assert store.rows == []

    async def test_reply_while_closed_flags_and_notifies(self, store, clock, config) -> None:
        """Test an admin reply to a closed widget raises the flag."""
        from support_chat.adapters.notify.desktop import LogNotifier

        notifier = LogNotifier()
        widget = CustomerWidget(store, notifier, None, config, clock=clock)
        await widget.start_chat("Ama", "0551234567")
        assert widget.is_open is False

        await store.append_message(
            OutgoingMessage("admin", SenderRole.ADMIN, "Hi Ama", widget.chat_id, SenderRole.CUSTOMER)
        )
        await drain()

        assert widget.has_new_messages is True
        assert notifier.history[-1].title == "New message from admin"
        assert widget.messages[-1].body == "Hi Ama"

        await notifier.click()

        assert widget.is_open is True
        assert widget.has_new_messages is False

    async def test_reply_while_open_does_not_flag(self, widget, store) -> None:
        """Test an open widget just shows the reply."""
        await widget.open()
        await widget.start_chat("Ama", "0551234567")

        await store.append_message(
            OutgoingMessage("admin", SenderRole.ADMIN, "Hi Ama", widget.chat_id, SenderRole.CUSTOMER)
        )
        await drain()

        assert widget.has_new_messages is False
        assert widget.messages[-1].body == "Hi Ama"

    async def test_reopen_confirms_pending(self, widget) -> None:
        """Test hydrating on open reconciles the optimistic greeting."""
        await widget.start_chat("Ama", "0551234567")
        assert len(widget.thread.pending) == 1

        await widget.toggle()

        assert widget.is_open is True
        assert widget.thread.pending == []
        assert len(widget.messages) == 1

    async def test_aclose_releases_listener(self, widget, store) -> None:
        """Test teardown releases the scoped feed."""
        await widget.start_chat("Ama", "0551234567")
        async with widget:
            pass
        assert store.subscriptions == []


class TestConversation:
    """End-to-end conversation over one store."""

    async def test_customer_and_admin_exchange(self, console, widget, store) -> None:
        """Test a full exchange: greeting, reply, follow-up."""
        await widget.open()
        await widget.start_chat("Ama", "0551234567")

        await console.open()
        assert console.total_unread == 1
        session = console.sessions[0]
        assert (session.display_name, session.contact_phone) == ("Ama", "0551234567")

        await console.select_session(widget.chat_id)
        assert console.total_unread == 0
        await console.send("Hi Ama, how can I help?")
        await drain()

        assert widget.messages[-1].body == "Hi Ama, how can I help?"
        assert widget.messages[-1].sender_role is SenderRole.ADMIN

        await widget.send("Is the Corolla still available?")
        await drain()

        assert console.messages[-1].body == "Is the Corolla still available?"
        assert console.total_unread == 0
        assert console.sessions[0].last_message_preview == "Is the Corolla still available?"
        assert [m.body for m in console.messages] == [
            "Hello! I'm Ama (0551234567). I'd like to chat with an admin.",
            "Hi Ama, how can I help?",
            "Is the Corolla still available?",
        ]
        assert len(store.rows) == 3


class TestFactories:
    """Test surface factories."""

    async def test_admin_console_memory(self) -> None:
        """Test the memory provider builds a working console."""
        console = create_admin_console(ChatSyncConfig())
        await console.open()
        assert console.is_live
        await console.aclose()
        assert console.is_live is False

    async def test_customer_widget_without_alert_url(self) -> None:
        """Test no alert service is built without a webhook URL."""
        widget = create_customer_widget(ChatSyncConfig())
        outcome = await widget.start_chat("Ama", "0551234567")
        assert outcome.ok
        await widget.aclose()

    async def test_shared_store_is_not_closed(self) -> None:
        """Test a caller-supplied store outlives the surface."""
        store = InMemoryMessageStore()
        widget = create_customer_widget(ChatSyncConfig(), store=store)
        await widget.start_chat("Ama", "0551234567")
        await widget.aclose()
        assert len(store.rows) == 1
