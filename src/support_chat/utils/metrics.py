"""Metrics collection for observability.

This module provides in-process metrics for the chat engine:
- Push event counters per feed
- Suppressed duplicate counters
- Send outcome counters
- Store error counters and call duration histograms
- Active subscription gauge

Metrics are compatible with Prometheus-style text exposition.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from threading import Lock
from typing import Any

import structlog

log = structlog.get_logger()


class MetricType(StrEnum):
    """Types of metrics."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """A single metric value with metadata."""

    name: str
    type: MetricType
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    help_text: str = ""


def _label_key(labels: dict[str, str] | None) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(labels.items())) if labels else ()


class Counter:
    """A monotonically increasing counter.

    Example:
        counter = Counter("push_events_total", "Push events received")
        counter.inc()
        counter.inc(labels={"feed": "global"})
    """

    def __init__(self, name: str, help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._values: dict[tuple[tuple[str, str], ...], float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, labels: dict[str, str] | None = None) -> None:
        """Increment the counter.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Counter can only increase")

        with self._lock:
            self._values[_label_key(labels)] += value

    def get(self, labels: dict[str, str] | None = None) -> float:
        """Get current counter value for the given labels."""
        with self._lock:
            return self._values.get(_label_key(labels), 0)

    def total(self) -> float:
        """Sum across all label sets."""
        with self._lock:
            return sum(self._values.values())

    def get_all(self) -> list[MetricValue]:
        with self._lock:
            return [
                MetricValue(
                    name=self.name,
                    type=MetricType.COUNTER,
                    value=value,
                    labels=dict(label_key),
                    help_text=self.help_text,
                )
                for label_key, value in self._values.items()
            ]


class Gauge:
    """A metric that can go up or down."""

    def __init__(self, name: str, help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._values: dict[tuple[tuple[str, str], ...], float] = defaultdict(float)
        self._lock = Lock()

    def set(self, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_label_key(labels)] = value

    def inc(self, value: float = 1, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_label_key(labels)] += value

    def dec(self, value: float = 1, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._values[_label_key(labels)] -= value

    def get(self, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._values.get(_label_key(labels), 0)

    def get_all(self) -> list[MetricValue]:
        with self._lock:
            return [
                MetricValue(
                    name=self.name,
                    type=MetricType.GAUGE,
                    value=value,
                    labels=dict(label_key),
                    help_text=self.help_text,
                )
                for label_key, value in self._values.items()
            ]


class Histogram:
    """A histogram metric for tracking value distributions."""

    # Default buckets for timing (in seconds)
    DEFAULT_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf"))

    def __init__(
        self,
        name: str,
        help_text: str = "",
        buckets: tuple[float, ...] | None = None,
    ) -> None:
        self.name = name
        self.help_text = help_text
        self._buckets = buckets or self.DEFAULT_BUCKETS
        self._observations: dict[tuple[tuple[str, str], ...], list[float]] = defaultdict(list)
        self._lock = Lock()

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._observations[_label_key(labels)].append(value)

    def get_stats(self, labels: dict[str, str] | None = None) -> dict[str, float]:
        """Get count, sum, min, max and mean for one label set."""
        with self._lock:
            values = list(self._observations.get(_label_key(labels), []))

        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "mean": 0}

        return {
            "count": len(values),
            "sum": sum(values),
            "min": min(values),
            "max": max(values),
            "mean": sum(values) / len(values),
        }


class MetricsRegistry:
    """Registry for all chat engine metrics.

    This is a process-wide singleton; tests that need isolation call
    ``MetricsRegistry.reset()``.

    Example:
        registry = MetricsRegistry.get_instance()
        registry.push_events.inc(labels={"feed": "scoped"})
        metrics = registry.get_all_metrics()
    """

    _instance: MetricsRegistry | None = None
    _lock = Lock()

    def __init__(self) -> None:
        self.push_events = Counter(
            "support_chat_push_events_total",
            "Push events received, by feed",
        )
        self.duplicates_suppressed = Counter(
            "support_chat_duplicates_suppressed_total",
            "Pushed or fetched messages dropped as duplicates",
        )
        self.sessions_created = Counter(
            "support_chat_sessions_created_total",
            "Sessions created, by origin (load or push)",
        )
        self.sends = Counter(
            "support_chat_sends_total",
            "Send attempts, by status",
        )
        self.store_errors = Counter(
            "support_chat_store_errors_total",
            "Store call failures, by operation",
        )
        self.reconnects = Counter(
            "support_chat_feed_reconnects_total",
            "Push feed reconnect outcomes",
        )
        self.notifications = Counter(
            "support_chat_notifications_total",
            "Side-channel notifications and admin alerts, by kind",
        )
        self.active_subscriptions = Gauge(
            "support_chat_active_subscriptions",
            "Push subscriptions currently held",
        )
        self.store_call_duration = Histogram(
            "support_chat_store_call_duration_seconds",
            "Store call duration in seconds, by operation",
        )

        self._start_time = time.time()

    @classmethod
    def get_instance(cls) -> MetricsRegistry:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next caller gets fresh metrics."""
        with cls._lock:
            cls._instance = None

    def get_uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "uptime_seconds": self.get_uptime_seconds(),
            "push_events": {
                "global": self.push_events.get({"feed": "global"}),
                "scoped": self.push_events.get({"feed": "scoped"}),
            },
            "duplicates_suppressed": self.duplicates_suppressed.total(),
            "sessions_created": self.sessions_created.total(),
            "sends": {
                "sent": self.sends.get({"status": "sent"}),
                "failed": self.sends.get({"status": "failed"}),
            },
            "store_errors": self.store_errors.total(),
            "reconnects": {
                "succeeded": self.reconnects.get({"outcome": "succeeded"}),
                "failed": self.reconnects.get({"outcome": "failed"}),
            },
            "active_subscriptions": self.active_subscriptions.get(),
        }

    def to_prometheus_format(self) -> str:
        """Export metrics in Prometheus text format."""
        lines: list[str] = []

        series: list[tuple[Counter | Gauge, str]] = [
            (self.push_events, "counter"),
            (self.duplicates_suppressed, "counter"),
            (self.sessions_created, "counter"),
            (self.sends, "counter"),
            (self.store_errors, "counter"),
            (self.reconnects, "counter"),
            (self.notifications, "counter"),
            (self.active_subscriptions, "gauge"),
        ]
        for metric, kind in series:
            if metric.help_text:
                lines.append(f"# HELP {metric.name} {metric.help_text}")
            lines.append(f"# TYPE {metric.name} {kind}")
            for value in metric.get_all():
                if value.labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in value.labels.items())
                    lines.append(f"{metric.name}{{{label_str}}} {value.value}")
                else:
                    lines.append(f"{metric.name} {value.value}")

        lines.append("# HELP support_chat_uptime_seconds Process uptime in seconds")
        lines.append("# TYPE support_chat_uptime_seconds gauge")
        lines.append(f"support_chat_uptime_seconds {self.get_uptime_seconds()}")

        return "\n".join(lines)


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    return MetricsRegistry.get_instance()


class Timer:
    """Context manager for timing operations.

    Example:
        with Timer(metrics.store_call_duration, labels={"operation": "fetch_thread"}):
            ...
    """

    def __init__(
        self,
        histogram: Histogram,
        labels: dict[str, str] | None = None,
    ) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start: float | None = None

    def __enter__(self) -> Timer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        if self._start is not None:
            duration = time.perf_counter() - self._start
            self._histogram.observe(duration, labels=self._labels)
