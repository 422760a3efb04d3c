# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for in-process counters and latency statistics."""

import pytest

from cortex_memory.observability.metrics import LatencyStats, MetricsRecorder


class TestLatencyStats:
    def test_empty(self) -> None:
        stats = LatencyStats()
        assert stats.avg_ms == 0.0
        assert stats.to_dict() == {"count": 0, "avg_ms": 0.0, "min_ms": 0.0, "max_ms": 0.0}

    def test_record(self) -> None:
        stats = LatencyStats()
        for value in (10.0, 30.0, 20.0):
            stats.record(value)

        assert stats.count == 3
        assert stats.avg_ms == pytest.approx(20.0)
        assert stats.min_ms == 10.0
        assert stats.max_ms == 30.0


class TestMetricsRecorder:
    def test_counters(self) -> None:
        metrics = MetricsRecorder()
        metrics.increment("searches")
        metrics.increment("lexical_hits", 5)

        assert metrics.counter("searches") == 1
        assert metrics.counter("lexical_hits") == 5
        assert metrics.counter("unknown") == 0

    def test_timed_block_recorded(self) -> None:
        metrics = MetricsRecorder()

        with metrics.timed("promotion"):
            pass

        assert metrics.latency("promotion").count == 1
        assert "promotion" in metrics.get_stats()["latency"]

    def test_timed_block_recorded_on_error(self) -> None:
        metrics = MetricsRecorder()

        with pytest.raises(RuntimeError):
            with metrics.timed("promotion"):
                raise RuntimeError("boom")

        assert metrics.latency("promotion").count == 1

    def test_reset(self) -> None:
        metrics = MetricsRecorder()
        metrics.increment("searches")
        metrics.record_latency("search", 1.5)

        metrics.reset()

        assert metrics.get_stats() == {"counters": {}, "latency": {}}
