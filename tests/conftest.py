# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Root pytest configuration with shared fixtures and markers.

This file is automatically loaded by pytest and provides:
- Custom markers for test categories
- A deterministic embedder so vector tests never download a model
- Temporary record and tier stores
"""

import hashlib
import math
import re
from datetime import timedelta
from typing import Any, Callable

import pytest

from cortex_memory.config import CortexConfig, SearchConfig, StorageConfig
from cortex_memory.core import MemoryCore, build_memory_core
from cortex_memory.schemas.memory_types import MemoryRecord, Tier, utc_now
from cortex_memory.storage.sqlite_store import SQLiteRecordStore
from cortex_memory.storage.tier_store import TierStore, open_tier_stores

TEST_EMBEDDING_DIM = 8


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: Mark test as integration test (several components together)",
    )
    config.addinivalue_line(
        "markers",
        "slow: Mark test as slow-running (may be skipped in quick runs)",
    )
    config.addinivalue_line(
        "markers",
        "concurrency: Mark test as exercising threads or tasks",
    )


class FakeEmbedder:
    """Hashing bag-of-words embedder.

    Texts sharing words get similar vectors; identical texts get identical
    vectors. Uses hashlib so results do not depend on PYTHONHASHSEED.
    """

    def __init__(self, dimension: int = TEST_EMBEDDING_DIM):
        self.dimension = dimension
        self.calls = 0
        self.fail_with: Exception | None = None

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        vector = [0.0] * self.dimension
        for token in re.findall(r"\w+", text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vector[digest[0] % self.dimension] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    """Deterministic embedder with a small dimension."""
    return FakeEmbedder()


@pytest.fixture
def make_record() -> Callable[..., MemoryRecord]:
    """Factory for records of a given age.

    Example:
        record = make_record("use WAL", age_days=3, usage_success_rate=0.7)
    """

    def _make(content: str = "a stored memory", age_days: float = 0.0, **fields: Any):
        created = utc_now() - timedelta(days=age_days)
        fields.setdefault("created_at", created)
        fields.setdefault("updated_at", created)
        return MemoryRecord(content=content, **fields)

    return _make


@pytest.fixture
def record_store(tmp_path):
    """SQLite record store in a temporary directory."""
    store = SQLiteRecordStore(tmp_path / "memories.db", embedding_dim=TEST_EMBEDDING_DIM)
    yield store
    store.close()


@pytest.fixture
def tier_stores(tmp_path) -> dict[Tier, TierStore]:
    """Empty working/short-term/long-term stores."""
    return open_tier_stores(tmp_path / "tiers")


@pytest.fixture
def test_config(tmp_path) -> CortexConfig:
    """Defaults rooted in tmp_path with the test embedding dimension."""
    return CortexConfig(
        storage=StorageConfig(base_path=str(tmp_path / "memory")),
        search=SearchConfig(embedding_dim=TEST_EMBEDDING_DIM),
    )


@pytest.fixture
def memory_core(test_config, fake_embedder) -> MemoryCore:
    """Fully wired core over temporary storage."""
    core = build_memory_core(test_config, embedder=fake_embedder)
    yield core
    core.close()
