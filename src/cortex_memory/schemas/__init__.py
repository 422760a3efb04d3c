# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory schemas."""

from cortex_memory.schemas.memory_types import (
    MemoryRecord,
    MemoryStatus,
    MemoryType,
    Provenance,
    Tier,
    ensure_utc,
    utc_now,
)

__all__ = [
    "MemoryRecord",
    "MemoryStatus",
    "MemoryType",
    "Provenance",
    "Tier",
    "ensure_utc",
    "utc_now",
]
