"""Message store adapters."""

from .memory import InMemoryMessageStore, InMemorySubscription
from .supabase import SupabaseMessageStore

__all__ = [
    "InMemoryMessageStore",
    "InMemorySubscription",
    "SupabaseMessageStore",
]
