# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Memory record schemas.

Defines the Pydantic models for the atomic unit of knowledge stored by
the system, together with the enumerations used for classification,
lifecycle status and tier placement.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MemoryType(str, Enum):
    """Types of memories that can be stored.

    - LEARNING: Something learned while solving a problem
    - PATTERN: A recurring approach or structure
    - SKILL: A reusable procedure
    - CORRECTION: A fix for an earlier mistake
    - PREFERENCE: User preferences (explicit and implicit)
    - FACT: Facts learned about the codebase
    """

    LEARNING = "learning"
    PATTERN = "pattern"
    SKILL = "skill"
    CORRECTION = "correction"
    PREFERENCE = "preference"
    FACT = "fact"


class MemoryStatus(str, Enum):
    """Lifecycle status of a record."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


class Tier(str, Enum):
    """Ordered tiers of increasing permanence."""

    WORKING = "working"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


class Provenance(BaseModel):
    """Where a memory came from.

    Attributes:
        source: Source kind (jsonl, episodic, knowledge-graph, claudemd, ...).
        session_id: Session the memory was extracted from.
        project_hash: Project scope, or None for a global memory.
    """

    source: str = Field(default="jsonl", description="Source kind")
    session_id: Optional[str] = Field(default=None, description="Originating session")
    project_hash: Optional[str] = Field(
        default=None, description="Project scope (None = global)"
    )


class MemoryRecord(BaseModel):
    """A stored unit of knowledge.

    Quality fields:
    - extraction_confidence: confidence assigned at extraction time
    - usage_count / usage_success_rate: usage feedback, the rate being an
      exponential blend of access outcomes
    - decay_score: recency multiplier recomputed by maintenance

    Move bookkeeping (promoted_from, promoted_at, deleted_reason) is
    written by the tier lifecycle manager.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    version: int = Field(default=1, ge=1)
    content: str = Field(..., min_length=1, description="Full content")
    summary: str = Field(default="", description="Brief summary")
    memory_type: MemoryType = Field(default=MemoryType.LEARNING)
    tags: list[str] = Field(default_factory=list)
    provenance: Provenance = Field(default_factory=Provenance)
    extraction_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    usage_count: int = Field(default=0, ge=0)
    usage_success_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    decay_score: float = Field(default=1.0, ge=0.0, le=1.0)
    status: MemoryStatus = Field(default=MemoryStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    embedding: Optional[list[float]] = Field(default=None)
    promoted_from: Optional[Tier] = Field(default=None)
    promoted_at: Optional[datetime] = Field(default=None)
    deleted_reason: Optional[str] = Field(default=None)

    @field_validator("created_at", "updated_at", "promoted_at")
    @classmethod
    def validate_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Coerce naive datetimes to UTC."""
        if v is None:
            return v
        return ensure_utc(v)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        """Drop empty tags and surrounding whitespace."""
        return [tag.strip() for tag in v if tag and tag.strip()]

    @property
    def source(self) -> str:
        return self.provenance.source

    @property
    def project_hash(self) -> Optional[str]:
        return self.provenance.project_hash

    @property
    def is_active(self) -> bool:
        return self.status == MemoryStatus.ACTIVE

    def age_days(self, now: Optional[datetime] = None) -> float:
        """Age since creation in days, floored at zero."""
        now = now or utc_now()
        delta = ensure_utc(now) - self.created_at
        return max(0.0, delta.total_seconds() / 86400)

    def with_usage(self, success: bool, blend: float = 0.2) -> "MemoryRecord":
        """Return a copy updated for one more access.

        The success rate moves toward the outcome (1.0 or 0.0) by ``blend``,
        so it always stays a valid probability.

        Args:
            success: Whether the memory was useful on this access.
            blend: Weight of the newest outcome (0-1).

        Returns:
            Updated copy of the record.
        """
        blend = max(0.0, min(1.0, blend))
        outcome = 1.0 if success else 0.0
        rate = (1.0 - blend) * self.usage_success_rate + blend * outcome
        return self.model_copy(
            update={
                "usage_count": self.usage_count + 1,
                "usage_success_rate": max(0.0, min(1.0, rate)),
                "updated_at": utc_now(),
            }
        )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "content": "Use pytest fixtures for temporary databases",
                    "summary": "pytest tmp db fixtures",
                    "memory_type": "pattern",
                    "tags": ["pytest", "sqlite"],
                    "provenance": {"source": "jsonl", "session_id": "session-1"},
                    "extraction_confidence": 0.8,
                }
            ]
        }
    }
