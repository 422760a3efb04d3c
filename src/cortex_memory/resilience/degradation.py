# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Graceful degradation from aggregated component health.

Levels:
- FULL: every component healthy
- DEGRADED: one or two components unhealthy
- MINIMAL: three or more components unhealthy
- EMERGENCY: a critical component (storage, config) is unhealthy,
  regardless of how many others are

Each level maps to a fixed capability table that callers consult before
running an operation gated by a named capability.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from cortex_memory.schemas.memory_types import utc_now

logger = logging.getLogger(__name__)

CRITICAL_COMPONENTS = frozenset({"storage", "config"})
HISTORY_LIMIT = 100


class DegradationLevel(str, Enum):
    FULL = "Full"
    DEGRADED = "Degraded"
    MINIMAL = "Minimal"
    EMERGENCY = "Emergency"


class Capability(str, Enum):
    AI_CLASSIFICATION = "ai_classification"
    EPISODIC_MEMORY = "episodic_memory"
    KNOWLEDGE_GRAPH = "knowledge_graph"
    LOCAL_MEMORY = "local_memory"
    PATTERN_TRACKING = "pattern_tracking"
    CONFIG_EVOLUTION = "config_evolution"
    CACHING = "caching"
    WRITE_OPERATIONS = "write_operations"
    VECTOR_SEARCH = "vector_search"


# Capabilities switched off at each level. Local reads survive everything.
_DISABLED: dict[DegradationLevel, frozenset[Capability]] = {
    DegradationLevel.FULL: frozenset(),
    DegradationLevel.DEGRADED: frozenset(
        {Capability.AI_CLASSIFICATION, Capability.CONFIG_EVOLUTION}
    ),
    DegradationLevel.MINIMAL: frozenset(
        {
            Capability.AI_CLASSIFICATION,
            Capability.CONFIG_EVOLUTION,
            Capability.EPISODIC_MEMORY,
            Capability.KNOWLEDGE_GRAPH,
            Capability.PATTERN_TRACKING,
            Capability.VECTOR_SEARCH,
        }
    ),
    DegradationLevel.EMERGENCY: frozenset(
        {
            Capability.AI_CLASSIFICATION,
            Capability.CONFIG_EVOLUTION,
            Capability.EPISODIC_MEMORY,
            Capability.KNOWLEDGE_GRAPH,
            Capability.PATTERN_TRACKING,
            Capability.VECTOR_SEARCH,
            Capability.WRITE_OPERATIONS,
        }
    ),
}


def capabilities_for(level: DegradationLevel) -> dict[str, bool]:
    """Capability table for a level."""
    disabled = _DISABLED[level]
    return {cap.value: cap not in disabled for cap in Capability}


@dataclass
class ComponentHealth:
    healthy: bool
    reason: str
    last_updated: datetime


@dataclass
class LevelTransition:
    from_level: DegradationLevel
    to_level: DegradationLevel
    timestamp: datetime
    unhealthy: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_level.value,
            "to": self.to_level.value,
            "timestamp": self.timestamp.isoformat(),
            "unhealthy": list(self.unhealthy),
        }


LevelChangeCallback = Callable[[DegradationLevel, DegradationLevel, dict[str, bool]], None]


class GracefulDegradationManager:
    """Track component health and derive the system capability level.

    Example:
        >>> manager = GracefulDegradationManager()
        >>> manager.report_health("embedder", False, "timeout")
        >>> manager.level
        <DegradationLevel.DEGRADED: 'Degraded'>
        >>> manager.has_capability("vector_search")
        True
    """

    def __init__(
        self,
        on_level_change: Optional[LevelChangeCallback] = None,
        critical_components: frozenset[str] = CRITICAL_COMPONENTS,
    ):
        self._lock = threading.RLock()
        self._on_level_change = on_level_change
        self._critical = critical_components
        self._level = DegradationLevel.FULL
        self._health: dict[str, ComponentHealth] = {}
        self._history: deque[LevelTransition] = deque(maxlen=HISTORY_LIMIT)

    @property
    def level(self) -> DegradationLevel:
        with self._lock:
            return self._level

    @property
    def history(self) -> list[LevelTransition]:
        with self._lock:
            return list(self._history)

    @property
    def unhealthy_components(self) -> set[str]:
        with self._lock:
            return {name for name, h in self._health.items() if not h.healthy}

    def report_health(self, component: str, healthy: bool, reason: str = "") -> None:
        """Record a component's health and re-evaluate the level."""
        with self._lock:
            self._health[component] = ComponentHealth(healthy, reason, utc_now())
            new_level = self._evaluate_level()
            if new_level != self._level:
                self._set_level(new_level)

    def _evaluate_level(self) -> DegradationLevel:
        unhealthy = [name for name, h in self._health.items() if not h.healthy]
        if any(name in self._critical for name in unhealthy):
            return DegradationLevel.EMERGENCY
        if len(unhealthy) >= 3:
            return DegradationLevel.MINIMAL
        if unhealthy:
            return DegradationLevel.DEGRADED
        return DegradationLevel.FULL

    def _set_level(self, level: DegradationLevel) -> None:
        old_level = self._level
        self._level = level
        unhealthy = tuple(sorted(n for n, h in self._health.items() if not h.healthy))
        self._history.append(LevelTransition(old_level, level, utc_now(), unhealthy))

        if level == DegradationLevel.FULL:
            logger.info(f"Degradation level {old_level.value} -> {level.value}")
        else:
            logger.warning(
                f"Degradation level {old_level.value} -> {level.value} "
                f"(unhealthy: {', '.join(unhealthy) or 'none'})"
            )

        if self._on_level_change is not None:
            self._on_level_change(old_level, level, capabilities_for(level))

    def has_capability(self, capability: str | Capability) -> bool:
        """Whether capability is enabled at the current level.

        Unknown capability names are treated as disabled.
        """
        try:
            cap = Capability(capability)
        except ValueError:
            return False
        with self._lock:
            return cap not in _DISABLED[self._level]

    def force_level(self, level: DegradationLevel) -> None:
        """Override the computed level until the next health report changes it."""
        with self._lock:
            if level != self._level:
                self._set_level(DegradationLevel(level))

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "level": self._level.value,
                "capabilities": capabilities_for(self._level),
                "component_health": {
                    name: {
                        "healthy": h.healthy,
                        "reason": h.reason,
                        "last_updated": h.last_updated.isoformat(),
                    }
                    for name, h in self._health.items()
                },
                "history_length": len(self._history),
            }
