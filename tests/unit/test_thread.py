"""Tests for the open conversation's message thread."""

from __future__ import annotations

from datetime import timedelta

from support_chat.core.thread import MessageThread
from support_chat.models.message import SenderRole

AMA = "chat_0551234567_1700000000000"
WINDOW = timedelta(seconds=10)


def admin_reply(make_message, message_id: str, body: str = "Hi Ama", at: int = 0):
    return make_message(
        message_id, "admin", body, role=SenderRole.ADMIN, at=at, receiver_id=AMA
    )


class TestMessageThread:
    """Test merging pushes, fetches and optimistic sends."""

    def test_ordered_by_created_at(self, make_message) -> None:
        """Test display order follows timestamps, not arrival."""
        thread = MessageThread(AMA, WINDOW)
        thread.apply_pushed(make_message("2", AMA, "second", at=10))
        thread.apply_pushed(make_message("1", AMA, "first", at=0))

        assert [m.body for m in thread.messages] == ["first", "second"]

    def test_ties_broken_by_arrival(self, make_message) -> None:
        """Test equal timestamps keep arrival order."""
        thread = MessageThread(AMA, WINDOW)
        thread.apply_pushed(make_message("b", AMA, "one", at=0))
        thread.apply_pushed(make_message("a", AMA, "two", at=0))

        assert [m.body for m in thread.messages] == ["one", "two"]

    def test_duplicate_push_dropped(self, make_message) -> None:
        """Test a redelivered id is not shown twice."""
        thread = MessageThread(AMA, WINDOW)
        message = make_message("1", AMA)

        assert thread.apply_pushed(message) is True
        assert thread.apply_pushed(message) is False
        assert len(thread) == 1
        assert thread.suppressed == 1

    def test_fetch_after_push(self, make_message) -> None:
        """Test hydration completing after a push does not double it."""
        thread = MessageThread(AMA, WINDOW)
        pushed = make_message("2", AMA, "pushed", at=10)
        thread.apply_pushed(pushed)

        added = thread.merge_fetched([make_message("1", AMA, at=0), pushed])

        assert added == 1
        assert [m.id for m in thread.messages] == ["1", "2"]

    def test_optimistic_replaced_by_authoritative(self, make_message) -> None:
        """Test the store copy takes the optimistic entry's place."""
        thread = MessageThread(AMA, WINDOW)
        thread.add_optimistic(admin_reply(make_message, "local-abc", at=0))
        assert len(thread.pending) == 1

        merged = thread.merge_fetched([admin_reply(make_message, "99", at=2)])

        assert merged == 0
        assert [m.id for m in thread.messages] == ["99"]
        assert thread.pending == []

    def test_optimistic_outside_window_not_matched(self, make_message) -> None:
        """Test identical text far apart in time is two messages."""
        thread = MessageThread(AMA, WINDOW)
        thread.add_optimistic(admin_reply(make_message, "local-abc", at=0))

        thread.merge_fetched([admin_reply(make_message, "99", at=60)])

        assert len(thread) == 2

    def test_repeated_text_matches_one_each(self, make_message) -> None:
        """Test two sends of the same text reconcile one-to-one, oldest first."""
        thread = MessageThread(AMA, WINDOW)
        thread.add_optimistic(admin_reply(make_message, "local-1", "ok", at=0))
        thread.add_optimistic(admin_reply(make_message, "local-2", "ok", at=1))

        thread.apply_pushed(admin_reply(make_message, "10", "ok", at=0))

        assert [m.id for m in thread.messages] == ["10", "local-2"]
        assert [m.id for m in thread.pending] == ["local-2"]

    def test_different_receiver_not_matched(self, make_message) -> None:
        """Test matching requires the same receiver."""
        thread = MessageThread(AMA, WINDOW)
        thread.add_optimistic(admin_reply(make_message, "local-1", at=0))
        other = make_message(
            "5", "admin", "Hi Ama", role=SenderRole.ADMIN, at=0, receiver_id="chat_9_9"
        )

        assert thread.apply_pushed(other) is True
        assert len(thread) == 2
