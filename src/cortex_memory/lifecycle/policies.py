# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tier lifecycle policies.

Defines the quality score used to rank records for capacity promotion and
the helpers that decide whether a record has outgrown its tier.
"""

from datetime import datetime
from typing import Optional

from cortex_memory.config import TierThresholds
from cortex_memory.schemas.memory_types import MemoryRecord, Tier

# Quality weights (sum to 1.0)
CONFIDENCE_WEIGHT: float = 0.25
USAGE_WEIGHT: float = 0.20
SUCCESS_WEIGHT: float = 0.35
DECAY_WEIGHT: float = 0.20

# Usage counts above this no longer raise quality
USAGE_SATURATION: int = 10

QUALITY_WEIGHTS: dict[str, float] = {
    "extraction_confidence": CONFIDENCE_WEIGHT,
    "usage": USAGE_WEIGHT,
    "usage_success_rate": SUCCESS_WEIGHT,
    "decay_score": DECAY_WEIGHT,
}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def quality_score(
    extraction_confidence: float,
    usage_count: float,
    usage_success_rate: float,
    decay_score: float,
) -> float:
    """Weighted quality of a record from its raw signals.

    Every input is clamped to its domain first, so out-of-range values
    score as the nearest boundary.

    Args:
        extraction_confidence: Confidence at extraction time (0-1).
        usage_count: Times the record was used (>= 0).
        usage_success_rate: Share of useful accesses (0-1).
        decay_score: Stored recency multiplier (0-1).

    Returns:
        Quality in [0, 1].

    Example:
        >>> quality_score(1.0, 10, 1.0, 1.0)
        1.0
        >>> quality_score(-3.0, -1, 2.0, 0.0)
        0.35
    """
    usage = min(max(usage_count, 0), USAGE_SATURATION) / USAGE_SATURATION
    score = (
        CONFIDENCE_WEIGHT * _clamp(extraction_confidence)
        + USAGE_WEIGHT * usage
        + SUCCESS_WEIGHT * _clamp(usage_success_rate)
        + DECAY_WEIGHT * _clamp(decay_score)
    )
    return round(_clamp(score), 10)


def calculate_quality(record: MemoryRecord) -> float:
    """Quality score of a stored record."""
    return quality_score(
        record.extraction_confidence,
        record.usage_count,
        record.usage_success_rate,
        record.decay_score,
    )


def max_age_days(tier: Tier, thresholds: TierThresholds) -> Optional[float]:
    """Maximum age for a tier in days, None for the unbounded long-term tier."""
    if tier == Tier.WORKING:
        return thresholds.working_max_age_hours / 24.0
    if tier == Tier.SHORT_TERM:
        return thresholds.short_term_max_age_days
    return None


def max_items(tier: Tier, thresholds: TierThresholds) -> Optional[int]:
    if tier == Tier.WORKING:
        return thresholds.working_max_items
    if tier == Tier.SHORT_TERM:
        return thresholds.short_term_max_items
    return None


def is_aged_out(
    record: MemoryRecord,
    tier: Tier,
    thresholds: TierThresholds,
    now: Optional[datetime] = None,
) -> bool:
    """Whether record is older than its tier allows.

    Example:
        >>> from datetime import timedelta
        >>> from cortex_memory.schemas.memory_types import utc_now
        >>> old = MemoryRecord(content="x", created_at=utc_now() - timedelta(hours=25))
        >>> is_aged_out(old, Tier.WORKING, TierThresholds())
        True
    """
    limit = max_age_days(tier, thresholds)
    if limit is None:
        return False
    return record.age_days(now) > limit
