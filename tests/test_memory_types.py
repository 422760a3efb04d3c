# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for the memory record schema."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from cortex_memory.schemas.memory_types import MemoryRecord, MemoryStatus, MemoryType


class TestMemoryRecord:
    def test_defaults(self) -> None:
        record = MemoryRecord(content="prefer ruff")

        assert len(record.id) == 32
        assert record.version == 1
        assert record.status == MemoryStatus.ACTIVE
        assert record.memory_type == MemoryType.LEARNING
        assert record.source == "jsonl"
        assert record.project_hash is None
        assert record.created_at.tzinfo is not None

    def test_empty_content_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MemoryRecord(content="")

    @pytest.mark.parametrize(
        "field", ["extraction_confidence", "usage_success_rate", "decay_score"]
    )
    @pytest.mark.parametrize("value", [-0.1, 1.1])
    def test_probabilities_bounded(self, field: str, value: float) -> None:
        with pytest.raises(ValidationError):
            MemoryRecord(content="x", **{field: value})

    def test_naive_datetimes_coerced_to_utc(self) -> None:
        record = MemoryRecord(content="x", created_at=datetime(2024, 1, 1, 12, 0))
        assert record.created_at.tzinfo == timezone.utc

    def test_tags_cleaned(self) -> None:
        record = MemoryRecord(content="x", tags=[" sqlite ", "", "  "])
        assert record.tags == ["sqlite"]

    def test_age_days_floored_at_zero(self) -> None:
        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert MemoryRecord(content="x", created_at=future).age_days() == 0.0

    def test_age_days(self) -> None:
        now = datetime(2024, 1, 11, tzinfo=timezone.utc)
        record = MemoryRecord(content="x", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert record.age_days(now) == pytest.approx(10.0)


class TestUsageFeedback:
    def test_success_moves_rate_up(self) -> None:
        record = MemoryRecord(content="x", usage_success_rate=0.5)

        used = record.with_usage(True, blend=0.2)

        assert used.usage_count == 1
        assert used.usage_success_rate == pytest.approx(0.6)
        assert record.usage_count == 0

    def test_failure_moves_rate_down(self) -> None:
        used = MemoryRecord(content="x", usage_success_rate=0.5).with_usage(False, blend=0.2)
        assert used.usage_success_rate == pytest.approx(0.4)

    def test_rate_stays_within_bounds(self) -> None:
        record = MemoryRecord(content="x", usage_success_rate=1.0)
        for _ in range(50):
            record = record.with_usage(True, blend=1.5)
        assert 0.0 <= record.usage_success_rate <= 1.0
        assert record.usage_count == 50
