"""Notification adapters."""

from .desktop import CallbackNotifier, LogNotifier, Notification
from .webhook import WebhookAdminAlertService

__all__ = [
    "CallbackNotifier",
    "LogNotifier",
    "Notification",
    "WebhookAdminAlertService",
]
