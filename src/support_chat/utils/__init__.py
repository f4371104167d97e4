"""Utility functions and helpers.

This module provides various utilities for the chat engine:
- async_helpers: Exception taxonomy, retry, reconnect backoff, timeouts
- security: Secret redaction, filter-value validation
- logging: Structured logging with secret sanitization
- metrics: Application metrics collection
"""

from support_chat.utils.async_helpers import (
    AdminAlertError,
    ChatSyncError,
    FilterValueError,
    SessionNotFoundError,
    StoreError,
    StoreReadError,
    StoreWriteError,
    SubscriptionDropped,
)
from support_chat.utils.logging import (
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from support_chat.utils.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    Timer,
    get_metrics,
)
from support_chat.utils.security import (
    RedactionError,
    SecretRedactor,
    validate_filter_value,
)

__all__ = [
    # Errors
    "AdminAlertError",
    "ChatSyncError",
    "Counter",
    "FilterValueError",
    "Gauge",
    "Histogram",
    # Logging
    "LogFormat",
    "LogLevel",
    # Metrics
    "MetricsRegistry",
    # Security
    "RedactionError",
    "SecretRedactor",
    "SessionNotFoundError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "SubscriptionDropped",
    "Timer",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "get_metrics",
    "unbind_context",
    "validate_filter_value",
]
