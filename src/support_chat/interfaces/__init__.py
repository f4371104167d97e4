"""Protocol definitions for pluggable adapters."""

from .notify import AdminAlert, AdminAlertService, DesktopNotifier
from .store import InsertFilter, MessageStore, Subscription

__all__ = [
    "AdminAlert",
    "AdminAlertService",
    "DesktopNotifier",
    "InsertFilter",
    "MessageStore",
    "Subscription",
]
