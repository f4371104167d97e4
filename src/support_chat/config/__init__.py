"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    DEFAULT_QUICK_REPLIES,
    AlertConfig,
    ChatSyncConfig,
    ConsoleConfig,
    FeedConfig,
    LoggingConfig,
    ReconciliationConfig,
    RetryConfig,
    StoreConfig,
    SupabaseConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "ChatSyncConfig",
    # Sections
    "StoreConfig",
    "AlertConfig",
    "ReconciliationConfig",
    "FeedConfig",
    "ConsoleConfig",
    "LoggingConfig",
    "RetryConfig",
    "DEFAULT_QUICK_REPLIES",
    # Provider-specific configs
    "SupabaseConfig",
]
