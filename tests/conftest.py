"""Shared test fixtures for the support chat engine."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

import pytest

from support_chat.adapters.notify.desktop import LogNotifier
from support_chat.adapters.store.memory import InMemoryMessageStore
from support_chat.config.schema import ChatSyncConfig, FeedConfig
from support_chat.models.message import ChatMessage, SenderRole
from support_chat.utils.metrics import MetricsRegistry

BASE_TIME = datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC)


class StepClock:
    """Deterministic clock: each call moves forward by ``step``."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current


@pytest.fixture(autouse=True)
def fresh_metrics() -> Iterator[None]:
    """Give every test its own metrics registry."""
    MetricsRegistry.reset()
    yield
    MetricsRegistry.reset()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def config() -> ChatSyncConfig:
    """In-memory store, no waiting between reconnect attempts."""
    return ChatSyncConfig(
        feeds=FeedConfig(
            subscribe_timeout=1.0,
            reconnect_attempts=3,
            reconnect_min_wait=0.0,
            reconnect_max_wait=0.0,
            typing_indicator_seconds=0.05,
        ),
    )


@pytest.fixture
def store(clock: StepClock) -> InMemoryMessageStore:
    return InMemoryMessageStore(clock=clock)


@pytest.fixture
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture
def make_message() -> Callable[..., ChatMessage]:
    """Factory for store messages with sensible defaults."""

    def _make(
        message_id: str,
        sender_id: str = "chat_0551234567_1700000000000",
        body: str = "Hello! I'm Ama (0551234567). I'd like to chat with an admin.",
        role: SenderRole = SenderRole.CUSTOMER,
        at: datetime | int = 0,
        receiver_id: str | None = None,
    ) -> ChatMessage:
        created_at = BASE_TIME + timedelta(seconds=at) if isinstance(at, int) else at
        return ChatMessage(
            id=message_id,
            sender_id=sender_id,
            sender_role=role,
            body=body,
            created_at=created_at,
            receiver_id=receiver_id,
            receiver_role=SenderRole.ADMIN if role is SenderRole.CUSTOMER else SenderRole.CUSTOMER,
        )

    return _make


@pytest.fixture
def supabase_rows() -> list[dict[str, object]]:
    """Rows as PostgREST returns them, newest first."""
    return [
        {
            "id": "3",
            "sender_id": "chat_0551234567_1700000000000",
            "sender_type": "member",
            "receiver_id": None,
            "receiver_type": "admin",
            "message": "Is the Corolla still available?",
            "is_group_message": False,
            "created_at": "2024-03-01T09:05:00.000000Z",
        },
        {
            "id": "1",
            "sender_id": "chat_0551234567_1700000000000",
            "sender_type": "member",
            "receiver_id": None,
            "receiver_type": "admin",
            "message": "Hello! I'm Ama (0551234567). I'd like to chat with an admin.",
            "is_group_message": False,
            "created_at": "2024-03-01T09:00:00+00:00",
        },
    ]
