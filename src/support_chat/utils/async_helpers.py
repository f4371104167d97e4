"""Async utility functions for resilient store and webhook calls.

This module provides:
- The chat engine's exception taxonomy
- Retry decorators with exponential backoff
- A reconnect policy for dropped push subscriptions
- Timeout wrappers for async operations
"""

from __future__ import annotations

import asyncio
import builtins
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


# =============================================================================
# Custom Exceptions
# =============================================================================


class ChatSyncError(Exception):
    """Base exception for all chat engine errors."""


class StoreError(ChatSyncError):
    """The message store rejected or failed a call."""


class StoreReadError(StoreError):
    """A query or subscribe call failed (network, auth, malformed filter)."""


class StoreWriteError(StoreError):
    """An insert failed. Nothing was written."""


class SubscriptionDropped(ChatSyncError):
    """A push channel closed without being asked to.

    Attributes:
        topic: Channel topic that dropped, if known.
    """

    def __init__(self, message: str, topic: str | None = None) -> None:
        super().__init__(message)
        self.topic = topic


class AdminAlertError(ChatSyncError):
    """The admin alert webhook call failed."""


class SessionNotFoundError(ChatSyncError, KeyError):
    """An admin action named a session the console has never seen."""


class FilterValueError(ChatSyncError, ValueError):
    """A value is unsafe to interpolate into a store filter."""


class TimeoutError(ChatSyncError):
    """Operation timed out."""


# =============================================================================
# Retry Decorator
# =============================================================================


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts for debugging."""
    if retry_state.outcome is None:
        return

    exception = retry_state.outcome.exception()
    if exception:
        log.warning(
            "retrying_operation",
            attempt=retry_state.attempt_number,
            exception_type=type(exception).__name__,
            exception_message=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )


# Default retry decorator for HTTP calls
api_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
    before_sleep=_log_retry,
    reraise=True,
)


def create_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on: tuple[type[Exception], ...] = (httpx.TimeoutException, httpx.NetworkError),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Create a customized retry decorator.

    Args:
        max_attempts: Maximum number of retry attempts.
        min_wait: Minimum wait time between retries (seconds).
        max_wait: Maximum wait time between retries (seconds).
        retry_on: Tuple of exception types to retry on.

    Returns:
        A retry decorator configured with the given parameters.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )


def reconnect_retrying(
    max_attempts: int,
    min_wait: float,
    max_wait: float,
) -> AsyncRetrying:
    """Build the backoff loop used to re-establish a dropped push feed.

    Usage:
        async for attempt in reconnect_retrying(5, 0.5, 30):
            with attempt:
                await subscribe()

    Raises (from the loop):
        The last StoreReadError or TimeoutError once attempts are exhausted.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type((StoreReadError, TimeoutError)),
        before_sleep=_log_retry,
        reraise=True,
    )


# =============================================================================
# Timeout Utilities
# =============================================================================


async def with_timeout(
    coro: Awaitable[T],
    timeout: float,
    error_message: str | None = None,
) -> T:
    """Execute an awaitable with a timeout.

    Args:
        coro: The coroutine to execute.
        timeout: Timeout in seconds.
        error_message: Custom error message for timeout.

    Returns:
        The result of the coroutine.

    Raises:
        TimeoutError: If the operation times out.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except builtins.TimeoutError as e:
        msg = error_message or f"Operation timed out after {timeout}s"
        log.warning("operation_timeout", timeout=timeout)
        raise TimeoutError(msg) from e
