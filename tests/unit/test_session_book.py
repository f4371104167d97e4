"""Tests for the admin console's session book."""

from __future__ import annotations

import pytest

from support_chat.core.session_book import ReceiveResult, SessionBook
from support_chat.models.message import SenderRole
from support_chat.models.session import Priority, SessionFilter, SessionStatus
from support_chat.utils.async_helpers import SessionNotFoundError

AMA = "chat_0551234567_1700000000000"
KOFI = "chat_0209998888_1700000005000"


class TestReceive:
    """Test applying pushed customer messages."""

    def test_new_session_created_with_one_unread(self, make_message) -> None:
        """Test a first message creates a session."""
        book = SessionBook()

        assert book.receive(make_message("1", AMA)) is ReceiveResult.CREATED
        session = book.get(AMA)
        assert session is not None
        assert session.unread_count == 1
        assert session.display_name == "Ama"
        assert session.contact_phone == "0551234567"

    def test_new_sessions_go_first(self, make_message) -> None:
        """Test pushed sessions are prepended."""
        book = SessionBook()
        book.receive(make_message("1", AMA))
        book.receive(make_message("2", KOFI, at=5))
        assert [s.session_id for s in book.sessions] == [KOFI, AMA]

    def test_existing_session_updates(self, make_message) -> None:
        """Test a later message updates preview and unread."""
        book = SessionBook()
        book.receive(make_message("1", AMA))

        result = book.receive(make_message("2", AMA, "Is it available?", at=10))

        assert result is ReceiveResult.UPDATED
        session = book.get(AMA)
        assert session.unread_count == 2
        assert session.last_message_preview == "Is it available?"

    def test_same_id_counted_once(self, make_message) -> None:
        """Test redelivery of a message id is a no-op."""
        book = SessionBook()
        message = make_message("1", AMA)
        book.receive(message)

        assert book.receive(message) is ReceiveResult.DUPLICATE
        assert book.get(AMA).unread_count == 1

    def test_admin_message_ignored(self, make_message) -> None:
        """Test admin messages never touch the book."""
        book = SessionBook()
        result = book.receive(make_message("1", "admin", role=SenderRole.ADMIN, receiver_id=AMA))
        assert result is ReceiveResult.IGNORED
        assert len(book) == 0

    def test_older_message_keeps_preview(self, make_message) -> None:
        """Test a late-arriving older message does not rewind the preview."""
        book = SessionBook()
        book.receive(make_message("2", AMA, "newer", at=10))
        book.receive(make_message("1", AMA, "older", at=0))
        assert book.get(AMA).last_message_preview == "newer"


class TestSelection:
    """Test unread handling around selection."""

    def test_select_zeroes_unread(self, make_message) -> None:
        """Test selecting a session marks it read."""
        book = SessionBook()
        book.receive(make_message("1", AMA))
        book.receive(make_message("2", AMA, "again", at=1))

        book.select(AMA)

        assert book.get(AMA).unread_count == 0
        assert book.total_unread == 0

    def test_selected_session_stays_read(self, make_message) -> None:
        """Test messages for the selected session do not add unread."""
        book = SessionBook()
        book.receive(make_message("1", AMA))
        book.select(AMA)

        book.receive(make_message("2", AMA, "still there?", at=5))

        session = book.get(AMA)
        assert session.unread_count == 0
        assert session.last_message_preview == "still there?"

    def test_select_before_arrival(self, make_message) -> None:
        """Test a session selected before it loads arrives read."""
        book = SessionBook()
        book.select(AMA)
        book.receive(make_message("1", AMA))
        assert book.get(AMA).unread_count == 0

    def test_deselect_resumes_counting(self, make_message) -> None:
        """Test unread counts resume after deselecting."""
        book = SessionBook()
        book.receive(make_message("1", AMA))
        book.select(AMA)
        book.deselect()

        book.receive(make_message("2", AMA, at=5))

        assert book.selected_id is None
        assert book.get(AMA).unread_count == 1


class TestMergeLoaded:
    """Test folding a bulk load into pushed state."""

    def test_counts_created(self, make_message) -> None:
        """Test merge returns the number of new sessions."""
        book = SessionBook()
        created = book.merge_loaded(
            [make_message("2", KOFI, at=5), make_message("1", AMA, at=0)]
        )
        assert created == 2
        assert [s.session_id for s in book.sessions] == [KOFI, AMA]

    def test_push_during_load_not_double_counted(self, make_message) -> None:
        """Test a message seen by push and by load is counted once."""
        book = SessionBook()
        pushed = make_message("3", KOFI, "Hello! I'm Kofi (020). Hi", at=60)
        book.receive(pushed)

        book.merge_loaded([pushed, make_message("1", AMA, at=0)])

        assert book.get(KOFI).unread_count == 1
        assert book.get(AMA).unread_count == 1
        assert len(book) == 2


class TestAnnotations:
    """Test admin-only session metadata."""

    def test_set_priority_and_status(self, make_message) -> None:
        """Test annotations replace the session."""
        book = SessionBook()
        book.receive(make_message("1", AMA))

        book.set_priority(AMA, Priority.HIGH)
        book.set_status(AMA, SessionStatus.RESOLVED)
        book.set_status(AMA, SessionStatus.ACTIVE)

        session = book.get(AMA)
        assert session.priority is Priority.HIGH
        assert session.status is SessionStatus.ACTIVE
        assert book.visible(session_filter=SessionFilter.PRIORITY) == [session]

    def test_tags(self, make_message) -> None:
        """Test adding and removing tags."""
        book = SessionBook()
        book.receive(make_message("1", AMA))

        book.add_tag(AMA, "vip")
        book.add_tag(AMA, "sales")
        book.remove_tag(AMA, "vip")

        assert book.get(AMA).tags == frozenset({"sales"})

    def test_unknown_session_raises(self) -> None:
        """Test annotating an unknown session raises."""
        book = SessionBook()
        with pytest.raises(SessionNotFoundError):
            book.set_priority("chat_missing_1", Priority.HIGH)

    def test_annotations_survive_reset(self, make_message) -> None:
        """Test annotations are re-applied after a re-derivation."""
        book = SessionBook()
        book.receive(make_message("1", AMA))
        book.set_priority(AMA, Priority.HIGH)
        book.add_tag(AMA, "vip")

        book.reset()
        assert len(book) == 0

        book.merge_loaded([make_message("1", AMA)])
        session = book.get(AMA)
        assert session.priority is Priority.HIGH
        assert session.tags == frozenset({"vip"})
        assert session.unread_count == 1
