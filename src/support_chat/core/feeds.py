"""Live push feeds and their lifecycle.

A surface holds at most two feeds:

- the global feed (admin console only): every customer insert, alive
  while the console is open
- the scoped feed: inserts for the open conversation, replaced whenever
  the selection changes

A leaked scoped listener shows every message of the old conversation a
second time, so teardown is unconditional: ``LiveFeed.stop`` releases
the subscription in a ``finally`` block, a subscription that completes
after ``stop`` is closed on arrival, and ``FeedMultiplexer`` serializes
scope switches so an old feed is always gone before its successor starts.

A feed that drops reconnects with exponential backoff; once live again
it calls ``on_resumed`` so the surface can re-hydrate what it missed.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from support_chat.utils.async_helpers import (
    StoreReadError,
    TimeoutError,
    reconnect_retrying,
    with_timeout,
)
from support_chat.utils.metrics import MetricsRegistry, get_metrics

if TYPE_CHECKING:
    from support_chat.config.schema import FeedConfig
    from support_chat.interfaces.store import (
        EventCallback,
        InsertFilter,
        MessageStore,
        Subscription,
    )
    from support_chat.models.message import ChatMessage

log = structlog.get_logger()

ResumeCallback = Callable[[], Awaitable[None]]


class FeedState(Enum):
    """Lifecycle of a push feed."""

    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    DROPPED = "dropped"
    CLOSED = "closed"


class LiveFeed:
    """One push subscription with reconnect and guaranteed release.

    A feed is single-use: once stopped it stays CLOSED.
    """

    def __init__(
        self,
        store: MessageStore,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        config: FeedConfig,
        name: str,
        on_resumed: ResumeCallback | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._filter = insert_filter
        self._on_event = on_event
        self._config = config
        self._name = name
        self._on_resumed = on_resumed
        self._metrics = metrics or get_metrics()

        self._state = FeedState.IDLE
        self._subscription: Subscription | None = None
        self._connect_task: asyncio.Task[bool] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def insert_filter(self) -> InsertFilter:
        return self._filter

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state is FeedState.LIVE

    async def start(self) -> bool:
        """Subscribe, retrying with backoff.

        The attempts run in a task that ``stop`` cancels, so stopping a
        feed never waits for its backoff schedule.

        Returns:
            True if the feed is live; False if every attempt failed (the
            feed is then DROPPED) or it was stopped meanwhile
        """
        if self._closed:
            return False
        self._state = FeedState.CONNECTING
        task = asyncio.create_task(self._subscribe_with_backoff(), name=f"connect_{self._name}")
        self._connect_task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._closed and current is not None and not current.cancelling():
                return False
            raise
        except Exception:
            if not self._closed:
                self._state = FeedState.DROPPED
            raise
        finally:
            if self._connect_task is task:
                self._connect_task = None

    async def stop(self) -> None:
        """Release the subscription. Safe to call more than once."""
        self._closed = True
        tasks = [t for t in (self._connect_task, self._reconnect_task) if t is not None]
        self._connect_task = None
        self._reconnect_task = None
        try:
            for task in tasks:
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
        finally:
            await self._release()
            if self._state is not FeedState.CLOSED:
                self._state = FeedState.CLOSED
                log.debug("feed_closed", feed=self._name, filter=self._filter.to_postgrest())

    async def _subscribe_once(self) -> None:
        if self._closed:
            return
        subscription = await with_timeout(
            self._store.subscribe_inserts(self._filter, self._deliver, self._handle_drop),
            self._config.subscribe_timeout,
            error_message=f"Subscribing {self._name} timed out",
        )
        if self._closed:
            # stop() ran while the subscribe was in flight
            await subscription.close()
            return
        self._subscription = subscription
        self._state = FeedState.LIVE
        self._metrics.active_subscriptions.inc()
        log.info("feed_subscribed", feed=self._name, filter=self._filter.to_postgrest())

    async def _subscribe_with_backoff(self) -> bool:
        try:
            async for attempt in reconnect_retrying(
                self._config.reconnect_attempts,
                self._config.reconnect_min_wait,
                self._config.reconnect_max_wait,
            ):
                with attempt:
                    await self._subscribe_once()
        except (StoreReadError, TimeoutError) as e:
            if not self._closed:
                self._state = FeedState.DROPPED
                log.error("feed_reconnect_failed", feed=self._name, error=str(e))
            return False
        return self._state is FeedState.LIVE

    def _deliver(self, message: ChatMessage) -> None:
        # Late events from a released listener are dropped here.
        if self._closed or self._state is not FeedState.LIVE:
            return
        self._metrics.push_events.inc(labels={"feed": self._name})
        self._on_event(message)

    def _handle_drop(self, error: Exception) -> None:
        if self._closed or self._state is not FeedState.LIVE:
            return
        self._subscription = None
        self._metrics.active_subscriptions.dec()
        self._state = FeedState.RECONNECTING
        log.warning("feed_dropped", feed=self._name, error=str(error))
        self._reconnect_task = asyncio.create_task(
            self._reconnect(), name=f"reconnect_{self._name}"
        )

    async def _reconnect(self) -> None:
        try:
            resumed = await self._subscribe_with_backoff()
        except Exception as e:
            # Nobody awaits this task; errors outside the retry policy end here
            if self._closed:
                return
            self._state = FeedState.DROPPED
            self._metrics.reconnects.inc(labels={"outcome": "failed"})
            log.exception("feed_reconnect_failed", feed=self._name, error=str(e))
            return
        if self._closed:
            return
        self._metrics.reconnects.inc(labels={"outcome": "succeeded" if resumed else "failed"})
        if not resumed:
            return
        log.info("feed_reconnected", feed=self._name)
        if self._on_resumed is not None:
            try:
                await self._on_resumed()
            except Exception as e:
                log.exception("feed_resume_handler_failed", feed=self._name, error=str(e))

    async def _release(self) -> None:
        subscription = self._subscription
        self._subscription = None
        if subscription is None:
            return
        self._metrics.active_subscriptions.dec()
        try:
            await subscription.close()
        except Exception as e:
            log.warning("feed_close_error", feed=self._name, error=str(e))


class FeedMultiplexer:
    """Owns the global and scoped feeds of one surface.

    Example:
        feeds = FeedMultiplexer(store, config.feeds)
        await feeds.open_global(GLOBAL_FILTER, book_handler)
        await feeds.switch_scope(InsertFilter("sender_id", chat_id), thread_handler)
        ...
        await feeds.close()
    """

    def __init__(
        self,
        store: MessageStore,
        config: FeedConfig,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._metrics = metrics or get_metrics()
        self._global: LiveFeed | None = None
        self._scoped: LiveFeed | None = None
        self._lock = asyncio.Lock()

    @property
    def global_feed(self) -> LiveFeed | None:
        return self._global

    @property
    def scoped_feed(self) -> LiveFeed | None:
        return self._scoped

    @property
    def is_live(self) -> bool:
        """True when every feed currently held is delivering."""
        feeds = [f for f in (self._global, self._scoped) if f is not None]
        return bool(feeds) and all(f.is_live for f in feeds)

    async def open_global(
        self,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_resumed: ResumeCallback | None = None,
    ) -> LiveFeed:
        """Start the global feed, replacing any previous one."""
        async with self._lock:
            previous, self._global = self._global, None
            if previous is not None:
                await previous.stop()
            feed = self._make_feed("global", insert_filter, on_event, on_resumed)
            self._global = feed
        await feed.start()
        return feed

    async def switch_scope(
        self,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_resumed: ResumeCallback | None = None,
    ) -> LiveFeed:
        """Tear down the current scoped feed, then start one for a new scope.

        The new feed is registered before it connects, so a later switch or
        ``close`` stops it even while it is still retrying.
        """
        async with self._lock:
            previous, self._scoped = self._scoped, None
            if previous is not None:
                await previous.stop()
            feed = self._make_feed("scoped", insert_filter, on_event, on_resumed)
            self._scoped = feed
        await feed.start()
        log.info("scoped_feed_switched", filter=insert_filter.to_postgrest(), live=feed.is_live)
        return feed

    async def clear_scope(self) -> None:
        async with self._lock:
            previous, self._scoped = self._scoped, None
            if previous is not None:
                await previous.stop()

    async def close(self) -> None:
        """Stop both feeds."""
        async with self._lock:
            scoped, self._scoped = self._scoped, None
            global_feed, self._global = self._global, None
            try:
                if scoped is not None:
                    await scoped.stop()
            finally:
                if global_feed is not None:
                    await global_feed.stop()

    def _make_feed(
        self,
        name: str,
        insert_filter: InsertFilter,
        on_event: EventCallback,
        on_resumed: ResumeCallback | None,
    ) -> LiveFeed:
        return LiveFeed(
            self._store,
            insert_filter,
            on_event,
            self._config,
            name=name,
            on_resumed=on_resumed,
            metrics=self._metrics,
        )
