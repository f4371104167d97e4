"""Abstract interfaces for outbound notifications."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

ClickCallback = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class AdminAlert:
    """Payload for the admin alert webhook."""

    customer_name: str
    customer_phone: str
    message: str
    chat_id: str


class DesktopNotifier(Protocol):
    """Side channel to the OS/browser notification layer."""

    def notify(self, title: str, body: str, on_click: ClickCallback | None = None) -> None:
        """
        Show a notification. Fire-and-forget, must not raise.

        Args:
            title: Notification title
            body: Notification body
            on_click: Coroutine factory to run when the user clicks it; it
                brings the relevant surface forward and opens the session
        """
        ...


class AdminAlertService(Protocol):
    """External service that tells an admin a customer is waiting."""

    async def send_alert(self, alert: AdminAlert) -> None:
        """
        Deliver an alert.

        Raises:
            AdminAlertError: If delivery fails
        """
        ...
