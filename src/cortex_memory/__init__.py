# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Cortex Memory - retrieval and lifecycle core for a long-lived knowledge store.

Provides hybrid (BM25 + vector) retrieval with Reciprocal Rank Fusion,
a three-tier memory lifecycle (working -> short-term -> long-term), and
the resilience layer that guards both (rate limiting, circuit breaking,
retry and graceful degradation).

Usage:
    # Show tier and resilience status
    cortex-memory status

    # Preview / apply tier promotion
    cortex-memory promote
    cortex-memory promote --apply
"""

__version__ = "0.1.0"

from cortex_memory.config import CortexConfig, load_config  # noqa: E402
from cortex_memory.core import MemoryCore, build_memory_core  # noqa: E402

__all__ = [
    "CortexConfig",
    "MemoryCore",
    "__version__",
    "build_memory_core",
    "load_config",
]
