# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""In-process metrics for search and maintenance.

Counters and latency statistics are kept in memory and exposed as plain
dicts through ``get_stats()`` for a diagnostics surface.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator


@dataclass
class LatencyStats:
    """Statistics for latency measurements.

    Attributes:
        count: Number of measurements.
        total_ms: Total latency in milliseconds.
        min_ms: Minimum latency in milliseconds.
        max_ms: Maximum latency in milliseconds.
    """

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    def record(self, latency_ms: float) -> None:
        """Record a latency measurement."""
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)

    @property
    def avg_ms(self) -> float:
        """Average latency in milliseconds."""
        if self.count == 0:
            return 0.0
        return self.total_ms / self.count

    def to_dict(self) -> dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 3),
            "min_ms": round(self.min_ms, 3) if self.count else 0.0,
            "max_ms": round(self.max_ms, 3),
        }


class MetricsRecorder:
    """Thread-safe counters plus per-operation latency.

    Example:
        >>> metrics = MetricsRecorder()
        >>> metrics.increment("searches")
        >>> with metrics.timed("search"):
        ...     pass
        >>> metrics.get_stats()["counters"]["searches"]
        1
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._latencies: dict[str, LatencyStats] = defaultdict(LatencyStats)

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def record_latency(self, operation: str, latency_ms: float) -> None:
        with self._lock:
            self._latencies[operation].record(latency_ms)

    @contextmanager
    def timed(self, operation: str) -> Iterator[None]:
        """Record the wall time of the enclosed block."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_latency(operation, (time.perf_counter() - start) * 1000)

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def latency(self, operation: str) -> LatencyStats:
        with self._lock:
            stats = self._latencies.get(operation, LatencyStats())
            return LatencyStats(stats.count, stats.total_ms, stats.min_ms, stats.max_ms)

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of all counters and latency stats."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "latency": {op: s.to_dict() for op, s in self._latencies.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._latencies.clear()
