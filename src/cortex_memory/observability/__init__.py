# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Observability helpers."""

from cortex_memory.observability.metrics import LatencyStats, MetricsRecorder

__all__ = ["LatencyStats", "MetricsRecorder"]
