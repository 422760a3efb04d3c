# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for health aggregation and the capability table."""

import pytest

from cortex_memory.resilience.degradation import (
    Capability,
    DegradationLevel,
    GracefulDegradationManager,
    capabilities_for,
)


@pytest.fixture
def manager() -> GracefulDegradationManager:
    return GracefulDegradationManager()


class TestLevels:
    def test_starts_full(self, manager) -> None:
        assert manager.level == DegradationLevel.FULL
        assert all(capabilities_for(DegradationLevel.FULL).values())

    def test_one_unhealthy_component_degrades(self, manager) -> None:
        manager.report_health("embedder", False, "timeout")
        assert manager.level == DegradationLevel.DEGRADED

    def test_three_unhealthy_components_minimal(self, manager) -> None:
        for name in ("embedder", "graph", "episodes"):
            manager.report_health(name, False)
        assert manager.level == DegradationLevel.MINIMAL

    @pytest.mark.parametrize("component", ["storage", "config"])
    def test_critical_component_is_emergency(self, manager, component: str) -> None:
        manager.report_health(component, False, "disk I/O error")
        assert manager.level == DegradationLevel.EMERGENCY

    def test_recovery_returns_to_full(self, manager) -> None:
        manager.report_health("storage", False)
        manager.report_health("storage", True)
        assert manager.level == DegradationLevel.FULL
        assert manager.unhealthy_components == set()


class TestCapabilities:
    def test_local_memory_survives_every_level(self) -> None:
        for level in DegradationLevel:
            assert capabilities_for(level)[Capability.LOCAL_MEMORY.value]

    def test_vector_search_off_from_minimal(self) -> None:
        assert capabilities_for(DegradationLevel.DEGRADED)["vector_search"]
        assert not capabilities_for(DegradationLevel.MINIMAL)["vector_search"]

    def test_writes_off_only_in_emergency(self) -> None:
        assert capabilities_for(DegradationLevel.MINIMAL)["write_operations"]
        assert not capabilities_for(DegradationLevel.EMERGENCY)["write_operations"]

    def test_has_capability_follows_level(self, manager) -> None:
        manager.report_health("embedder", False)
        assert not manager.has_capability("ai_classification")
        assert manager.has_capability(Capability.VECTOR_SEARCH)

    def test_unknown_capability_disabled(self, manager) -> None:
        assert not manager.has_capability("teleportation")


class TestHistory:
    def test_transitions_recorded_and_reported(self) -> None:
        changes = []
        manager = GracefulDegradationManager(
            on_level_change=lambda old, new, caps: changes.append((old, new, caps))
        )

        manager.report_health("embedder", False)
        manager.report_health("embedder", False)
        manager.report_health("embedder", True)

        assert [(t.from_level, t.to_level) for t in manager.history] == [
            (DegradationLevel.FULL, DegradationLevel.DEGRADED),
            (DegradationLevel.DEGRADED, DegradationLevel.FULL),
        ]
        assert manager.history[0].unhealthy == ("embedder",)
        assert len(changes) == 2
        assert changes[0][2]["ai_classification"] is False

    def test_force_level(self, manager) -> None:
        manager.force_level(DegradationLevel.EMERGENCY)

        assert manager.level == DegradationLevel.EMERGENCY
        assert not manager.has_capability("write_operations")
        assert manager.get_status()["level"] == "Emergency"
