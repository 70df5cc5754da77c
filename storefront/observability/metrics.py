"""
In-process metrics for the order desk.

Series are keyed by name plus a sorted label tuple, so
``{"method": "POST", "endpoint": "x"}`` and ``{"endpoint": "x", "method": "POST"}``
address the same counter. Latency series keep a bounded window of recent
samples for percentiles next to their running totals.
"""
from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

Labels = Tuple[Tuple[str, str], ...]
SeriesKey = Tuple[str, Labels]

MAX_EVENTS = 200
LATENCY_WINDOW = 500


def _labels_tuple(labels: Optional[Dict[str, Any]]) -> Labels:
    if not labels:
        return ()
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


class LatencySeries:
    def __init__(self, window: int = LATENCY_WINDOW) -> None:
        self.count = 0
        self.total = 0.0
        self.min_value: Optional[float] = None
        self.max_value: Optional[float] = None
        self.recent: Deque[float] = deque(maxlen=window)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = value if self.min_value is None else min(self.min_value, value)
        self.max_value = value if self.max_value is None else max(self.max_value, value)
        self.recent.append(value)

    def _percentile(self, fraction: float) -> Optional[float]:
        if not self.recent:
            return None
        ordered = sorted(self.recent)
        index = min(len(ordered) - 1, int(round(fraction * (len(ordered) - 1))))
        return ordered[index]

    def stats(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": self.min_value,
            "max": self.max_value,
            "p50": self._percentile(0.50),
            "p95": self._percentile(0.95),
        }


class MetricsRegistry:
    """Thread-safe store behind the module-level helpers."""

    def __init__(self, max_events: int = MAX_EVENTS) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[SeriesKey, float] = defaultdict(float)
        self._gauges: Dict[SeriesKey, float] = {}
        self._latencies: Dict[SeriesKey, LatencySeries] = {}
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    def increment(self, name: str, amount: float, labels: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            self._counters[(name, _labels_tuple(labels))] += amount

    def gauge(self, name: str, value: float, labels: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            self._gauges[(name, _labels_tuple(labels))] = value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, Any]]) -> None:
        key = (name, _labels_tuple(labels))
        with self._lock:
            series = self._latencies.get(key)
            if series is None:
                series = self._latencies[key] = LatencySeries()
            series.observe(value)

    def event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append({"name": name, "timestamp": time.time(), "payload": payload})

    def counter(self, name: str, labels: Optional[Dict[str, Any]]) -> float:
        with self._lock:
            return self._counters.get((name, _labels_tuple(labels)), 0.0)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": _group(self._counters.items(), lambda value: {"value": value}),
                "gauges": _group(self._gauges.items(), lambda value: {"value": value}),
                "histograms": _group(self._latencies.items(), lambda series: {"stats": series.stats()}),
                "events": list(self._events),
            }

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._latencies.clear()
            self._events.clear()


def _group(items, render) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for (name, labels), value in items:
        grouped.setdefault(name, []).append({"labels": dict(labels), **render(value)})
    return grouped


_registry = MetricsRegistry()


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> None:
    _registry.increment(name, amount, labels)


def set_gauge(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    _registry.gauge(name, value, labels)


def observe_latency(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    _registry.observe(name, value, labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    _registry.event(name, payload)


def get_counter_value(name: str, labels: Optional[Dict[str, Any]] = None) -> float:
    """Current value of one counter series (0 when never incremented)."""
    return _registry.counter(name, labels)


def get_metrics_snapshot() -> Dict[str, Any]:
    return _registry.snapshot()


def reset_metrics() -> None:
    """Testing helper."""
    _registry.clear()
