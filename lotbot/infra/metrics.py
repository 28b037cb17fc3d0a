# lotbot/infra/metrics.py
"""
In-process counters and latency histograms, served by ``GET /metrics``.

Keys carry their labels inline (``lots_applied_total{destination=DESPERTOS}``)
so the endpoint can return two flat dicts.  Histograms keep a bounded
window of recent samples; values reset when the process restarts.
"""
from __future__ import annotations

import time
from collections import deque
from threading import Lock

from lotbot.infra.logging_config import get_logger

logger = get_logger(__name__)

HISTOGRAM_WINDOW = 2048


def _summarize(samples) -> dict:
    if not samples:
        return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

    ordered = sorted(samples)
    count = len(ordered)
    return {
        "count": count,
        "min": ordered[0],
        "max": ordered[-1],
        "avg": sum(ordered) / count,
        "p95": ordered[min(int(count * 0.95), count - 1)],
    }


def metric_key(name: str, labels: dict | None = None) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class MetricsCollector:
    """Thread-safe counter/histogram registry."""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self._window = window
        self._counters: dict[str, int] = {}
        self._samples: dict[str, deque] = {}
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = metric_key(name, labels)
        with self._lock:
            if key not in self._samples:
                self._samples[key] = deque(maxlen=self._window)
            self._samples[key].append(value)

    def get_metrics(self) -> dict:
        with self._lock:
            counters = dict(self._counters)
            windows = {key: list(values) for key, values in self._samples.items()}

        return {
            "counters": counters,
            "histograms": {key: _summarize(values) for key, values in windows.items()},
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._samples.clear()
        logger.debug("Metrics reset")


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """``with Timer("x_seconds", op="y"):`` records elapsed wall time in seconds."""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self._started: float | None = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started is not None:
            observe_histogram(self.metric_name, time.perf_counter() - self._started, **self.labels)


class AppMetrics:
    """Named metrics for the lot lifecycle and the bot flow."""

    @staticmethod
    def lot_created(destination: str) -> None:
        inc_counter("lots_created_total", destination=destination)

    @staticmethod
    def lot_applied(destination: str) -> None:
        inc_counter("lots_applied_total", destination=destination)

    @staticmethod
    def lot_reverted(destination: str) -> None:
        inc_counter("lots_reverted_total", destination=destination)

    @staticmethod
    def command_received(kind: str) -> None:
        inc_counter("bot_commands_total", kind=kind)

    @staticmethod
    def duplicate_delivery() -> None:
        inc_counter("webhook_duplicates_total")

    @staticmethod
    def ignored_sender() -> None:
        inc_counter("webhook_ignored_senders_total")

    @staticmethod
    def upstream_error(operation: str) -> None:
        inc_counter("upstream_errors_total", operation=operation)

    @staticmethod
    def access_checked(source: str, allowed: bool) -> None:
        inc_counter("access_checks_total", source=source, allowed=str(allowed).lower())

    @staticmethod
    def database_error(operation: str) -> None:
        inc_counter("database_errors_total", operation=operation)

    @staticmethod
    def webhook_validation_failed(provider: str) -> None:
        inc_counter("webhook_validation_failures_total", provider=provider)

    @staticmethod
    def track_processing_time(operation: str) -> Timer:
        return Timer("request_processing_seconds", operation=operation)
