# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Reciprocal Rank Fusion (RRF) and temporal decay.

Weighted RRF over the lexical and vector candidate lists:

    score(d) = (1 - w) / (k + r_lex(d)) + w / (k + r_vec(d))

Where:
- k is a constant (default 60)
- r is the 0-based rank of d within that path's list
- w is the vector weight (default 0.5)

A document missing from one list simply gets no contribution from it.

Fused scores are then multiplied by a power-law forgetting curve:

    decay(age) = base ** (age_days ** exponent)

With base 0.9 and exponent 0.5 this gives about 0.9 after one day, 0.76
after a week, 0.56 after a month and 0.13 after a year.

Reference: Cormack, G. V., Clarke, C. L., & Buettcher, S. (2009).
"Reciprocal Rank Fusion Outperforms Condorcet and Individual Rank
Learning Methods."
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from cortex_memory.schemas.memory_types import MemoryRecord, ensure_utc, utc_now

RetrievalPath = Literal["lexical", "vector"]

# Default k value from the original RRF paper
DEFAULT_RRF_K = 60
DEFAULT_VECTOR_WEIGHT = 0.5
DEFAULT_DECAY_BASE = 0.9
DEFAULT_DECAY_EXPONENT = 0.5


@dataclass(frozen=True)
class RankedCandidate:
    """One hit from a single retrieval path.

    Attributes:
        record_id: Record identifier.
        raw_score: Path-local relevance, higher is better.
        rank: 0-based position within the path's list.
        created_at: Record creation time, used for decay.
        path: Which retrieval path produced the hit.
    """

    record_id: str
    raw_score: float
    rank: int
    created_at: datetime
    path: RetrievalPath


@dataclass
class FusedResult:
    """A search result after fusion and decay.

    Attributes:
        record_id: Record identifier.
        score: Final score (fused or raw, times decay).
        sources: Paths that contributed, lexical first.
        lexical_rank: Rank in the lexical list, None if absent.
        vector_rank: Rank in the vector list, None if absent.
        decay: Temporal decay factor that was applied.
        created_at: Creation time carried over from the candidates.
        record: Hydrated record, set once the id has been resolved.
    """

    record_id: str
    score: float
    sources: tuple[str, ...] = ()
    lexical_rank: Optional[int] = None
    vector_rank: Optional[int] = None
    decay: float = 1.0
    created_at: Optional[datetime] = field(default=None, repr=False)
    record: Optional[MemoryRecord] = field(default=None, repr=False)


def rrf_score(rank: int, k: int = DEFAULT_RRF_K, weight: float = 1.0) -> float:
    """Weighted RRF contribution of a single 0-based rank."""
    return weight / (k + rank)


def calculate_decay(
    age_days: float,
    base: float = DEFAULT_DECAY_BASE,
    exponent: float = DEFAULT_DECAY_EXPONENT,
) -> float:
    """Power-law temporal decay factor.

    Args:
        age_days: Age in days. Negative ages are treated as zero.
        base: Retention after one day.
        exponent: Curve shape; smaller values flatten the tail.

    Returns:
        Factor in (0, 1], exactly 1.0 at age zero.
    """
    age = max(0.0, age_days)
    if age == 0.0:
        return 1.0
    return base ** (age**exponent)


def age_in_days(created_at: datetime, now: Optional[datetime] = None) -> float:
    now = ensure_utc(now or utc_now())
    return max(0.0, (now - ensure_utc(created_at)).total_seconds() / 86400)


class RRFFusion:
    """Weighted Reciprocal Rank Fusion of lexical and vector candidates.

    Example:
        >>> fusion = RRFFusion(k=60, vector_weight=0.5)
        >>> fused = fusion.fuse(lexical_candidates, vector_candidates)
        >>> fused[0].sources
        ('lexical', 'vector')

    Attributes:
        k: RRF constant. Higher values reduce the impact of rank.
        vector_weight: Share of the vector path (0-1).
    """

    def __init__(self, k: int = DEFAULT_RRF_K, vector_weight: float = DEFAULT_VECTOR_WEIGHT):
        if k < 0:
            raise ValueError("k must be non-negative")
        if not 0.0 <= vector_weight <= 1.0:
            raise ValueError("vector_weight must be between 0 and 1")
        self.k = k
        self.vector_weight = vector_weight

    def fuse(
        self,
        lexical: list[RankedCandidate],
        vector: list[RankedCandidate],
    ) -> list[FusedResult]:
        """Fuse two ranked lists.

        Args:
            lexical: Lexical candidates in rank order.
            vector: Vector candidates in rank order.

        Returns:
            Fused results sorted by score descending (no decay applied).
        """
        fused: dict[str, FusedResult] = {}
        weights = {"lexical": 1.0 - self.vector_weight, "vector": self.vector_weight}

        for candidates in (lexical, vector):
            for candidate in candidates:
                result = fused.get(candidate.record_id)
                if result is None:
                    result = FusedResult(
                        record_id=candidate.record_id,
                        score=0.0,
                        created_at=candidate.created_at,
                    )
                    fused[candidate.record_id] = result
                if candidate.path == "lexical":
                    result.lexical_rank = candidate.rank
                else:
                    result.vector_rank = candidate.rank
                result.sources = result.sources + (candidate.path,)
                result.score += rrf_score(candidate.rank, self.k, weights[candidate.path])

        return sorted(fused.values(), key=lambda r: r.score, reverse=True)


def single_path_results(candidates: list[RankedCandidate]) -> list[FusedResult]:
    """Wrap one path's candidates as results scored by their raw score."""
    results = []
    for candidate in candidates:
        results.append(
            FusedResult(
                record_id=candidate.record_id,
                score=candidate.raw_score,
                sources=(candidate.path,),
                lexical_rank=candidate.rank if candidate.path == "lexical" else None,
                vector_rank=candidate.rank if candidate.path == "vector" else None,
                created_at=candidate.created_at,
            )
        )
    return results


def apply_decay(
    results: list[FusedResult],
    now: Optional[datetime] = None,
    base: float = DEFAULT_DECAY_BASE,
    exponent: float = DEFAULT_DECAY_EXPONENT,
) -> list[FusedResult]:
    """Multiply each score by its decay factor and re-sort descending."""
    now = now or utc_now()
    for result in results:
        if result.created_at is None:
            continue
        result.decay = calculate_decay(age_in_days(result.created_at, now), base, exponent)
        result.score *= result.decay
    return sorted(results, key=lambda r: r.score, reverse=True)
