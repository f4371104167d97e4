"""Optimistic send coordination.

A send writes through the store first. Only a confirmed write puts a
local copy into the open thread; a failed write leaves the thread alone
and hands the failure back to the surface.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from support_chat.core.thread import LOCAL_ID_PREFIX
from support_chat.models.message import SendOutcome, SendStatus
from support_chat.utils.async_helpers import StoreWriteError
from support_chat.utils.metrics import MetricsRegistry, Timer, get_metrics

if TYPE_CHECKING:
    from support_chat.core.roles import RoleProfile
    from support_chat.core.thread import MessageThread
    from support_chat.interfaces.store import MessageStore

log = structlog.get_logger()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def local_message_id() -> str:
    """An id that can never collide with a store-assigned one."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


class SendCoordinator:
    """Writes a message, then shows it before the push copy arrives.

    Example:
        coordinator = SendCoordinator(store, ADMIN)
        outcome = await coordinator.send(thread, "chat_0551234567_1700000000000", "Hi!")
        if not outcome.ok:
            ...  # keep the compose box populated
    """

    def __init__(
        self,
        store: MessageStore,
        profile: RoleProfile,
        clock: Clock = utc_now,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._profile = profile
        self._clock = clock
        self._metrics = metrics or get_metrics()

    async def send(self, thread: MessageThread | None, session_id: str, body: str) -> SendOutcome:
        """Send ``body`` into ``session_id``.

        Args:
            thread: The thread open when the send started; the optimistic
                copy goes there even if the user switched away meanwhile
            session_id: Target session
            body: Message text; blank text is skipped

        Returns:
            SendOutcome with SENT, FAILED or SKIPPED
        """
        if not body.strip() or not session_id:
            return SendOutcome(status=SendStatus.SKIPPED)

        outgoing = self._profile.outgoing(session_id, body)

        try:
            with Timer(self._metrics.store_call_duration, labels={"operation": "append"}):
                await self._store.append_message(outgoing)
        except StoreWriteError as e:
            log.error(
                "message_send_failed",
                session_id=session_id,
                role=self._profile.role.value,
                error=str(e),
            )
            self._metrics.sends.inc(labels={"status": "failed"})
            self._metrics.store_errors.inc(labels={"operation": "append"})
            return SendOutcome(status=SendStatus.FAILED, error=str(e))

        local = outgoing.materialize(local_message_id(), self._clock())
        if thread is not None:
            thread.add_optimistic(local)

        self._metrics.sends.inc(labels={"status": "sent"})
        log.info(
            "message_sent",
            session_id=session_id,
            role=self._profile.role.value,
            local_id=local.id,
        )
        return SendOutcome(status=SendStatus.SENT, message=local)
