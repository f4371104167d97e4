"""Concrete implementations of provider interfaces."""

from .notify.desktop import CallbackNotifier, LogNotifier
from .notify.webhook import WebhookAdminAlertService
from .store.memory import InMemoryMessageStore
from .store.realtime import RealtimeClient
from .store.supabase import SupabaseMessageStore

__all__ = [
    "CallbackNotifier",
    "InMemoryMessageStore",
    "LogNotifier",
    "RealtimeClient",
    "SupabaseMessageStore",
    "WebhookAdminAlertService",
]
