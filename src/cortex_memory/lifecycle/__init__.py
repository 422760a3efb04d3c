# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tier lifecycle: quality scoring, decay recompute, promotion."""

from cortex_memory.lifecycle.decay import TIER_DECAY_RATES, tier_decay_score
from cortex_memory.lifecycle.policies import QUALITY_WEIGHTS, calculate_quality, quality_score
from cortex_memory.lifecycle.tiers import (
    DecayReport,
    LifecycleAnalysis,
    PromotionReport,
    TierDecision,
    TierLifecycleManager,
)

__all__ = [
    "QUALITY_WEIGHTS",
    "TIER_DECAY_RATES",
    "DecayReport",
    "LifecycleAnalysis",
    "PromotionReport",
    "TierDecision",
    "TierLifecycleManager",
    "calculate_quality",
    "quality_score",
    "tier_decay_score",
]
