# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Persistence: SQLite record store and JSONL tier stores."""

from cortex_memory.storage.sqlite_store import MetadataFilter, SQLiteRecordStore
from cortex_memory.storage.tier_store import TIER_FILE_NAMES, TierStore, open_tier_stores

__all__ = [
    "MetadataFilter",
    "SQLiteRecordStore",
    "TIER_FILE_NAMES",
    "TierStore",
    "open_tier_stores",
]
