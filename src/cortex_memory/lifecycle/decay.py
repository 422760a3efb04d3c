# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Stored decay score recompute.

Distinct from the per-query temporal decay applied at fusion time: this is
the ``decay_score`` persisted on each record and refreshed by maintenance.
Faster-decaying tiers forget faster.
"""

import math

from cortex_memory.schemas.memory_types import Tier

TIER_DECAY_RATES: dict[Tier, float] = {
    Tier.WORKING: 0.1,
    Tier.SHORT_TERM: 0.05,
    Tier.LONG_TERM: 0.01,
}

# Minimum change worth a write
DECAY_EPSILON: float = 0.01
DECAY_PRECISION: int = 3


def tier_decay_score(age_days: float, tier: Tier) -> float:
    """Decay score ``exp(-rate * age_days)`` for a record in tier.

    Example:
        >>> tier_decay_score(0, Tier.WORKING)
        1.0
        >>> round(tier_decay_score(10, Tier.WORKING), 3)
        0.368
    """
    rate = TIER_DECAY_RATES[Tier(tier)]
    return math.exp(-rate * max(0.0, age_days))


def needs_update(stored: float, computed: float, epsilon: float = DECAY_EPSILON) -> bool:
    return abs(stored - computed) > epsilon
