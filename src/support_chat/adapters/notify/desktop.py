"""Desktop notification sinks.

The engine only decides *when* to notify; showing anything is up to the
host application, which plugs in its own ``DesktopNotifier``. These two
cover the common cases.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from ...interfaces.notify import ClickCallback

log = structlog.get_logger()


@dataclass(frozen=True)
class Notification:
    """A notification as it was raised."""

    title: str
    body: str
    on_click: ClickCallback | None = None


class LogNotifier:
    """Logs notifications and remembers the most recent ones.

    ``click`` lets a host (or a test) act on a notification later.
    """

    def __init__(self, history: int = 50) -> None:
        self.history: deque[Notification] = deque(maxlen=history)

    def notify(self, title: str, body: str, on_click: ClickCallback | None = None) -> None:
        self.history.append(Notification(title, body, on_click))
        log.info("notification_fired", title=title)

    async def click(self, index: int = -1) -> None:
        """Run the click action of a remembered notification.

        Raises:
            IndexError: If there is no such notification
        """
        notification = self.history[index]
        if notification.on_click is not None:
            await notification.on_click()


class CallbackNotifier:
    """Hands notifications to a host callback.

    A click action is scheduled as a task when the host calls the
    function it was given.

    Example:
        def show(title, body, clicked):
            toast(title, body, on_activate=clicked)

        notifier = CallbackNotifier(show)
    """

    def __init__(self, callback: Callable[[str, str, Callable[[], None]], None]) -> None:
        self._callback = callback
        self._tasks: set[asyncio.Task[None]] = set()

    def notify(self, title: str, body: str, on_click: ClickCallback | None = None) -> None:
        def clicked() -> None:
            if on_click is None:
                return
            task = asyncio.get_running_loop().create_task(on_click())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._callback(title, body, clicked)
