# Copyright 2024-2025 Amiable Development
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for guarded execution and admission through the coordinator."""

import pytest

from cortex_memory.config import (
    CircuitBreakerConfig,
    CortexConfig,
    OperationLimits,
    RateLimitConfig,
    RetryConfig,
)
from cortex_memory.errors import (
    CapabilityDisabledError,
    CircuitOpenError,
    OperationFailedError,
    RateLimitExceededError,
)
from cortex_memory.resilience.coordinator import (
    CAPABILITY_DISABLED,
    CIRCUIT_OPEN,
    OPERATION_FAILED,
    ResilienceCoordinator,
)
from cortex_memory.resilience.degradation import DegradationLevel
from cortex_memory.resilience.retry import RetryHandler


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def coordinator() -> ResilienceCoordinator:
    config = CortexConfig(
        circuit_breaker=CircuitBreakerConfig(threshold=2, reset_timeout_ms=60_000),
        retry=RetryConfig(max_attempts=2),
        rate_limit=RateLimitConfig(
            burst_multiplier=1.0,
            limits={"cortex__query": OperationLimits(per_minute=2, per_hour=10, per_day=10)},
        ),
    )
    return ResilienceCoordinator(config, retry_handler=RetryHandler(config.retry, sleep=_no_sleep))


def _boom():
    raise RuntimeError("backend down")


class TestGuardedExecute:
    @pytest.mark.asyncio
    async def test_success(self, coordinator) -> None:
        outcome = await coordinator.guarded_execute("embedder", lambda: [0.1, 0.2])

        assert outcome.success
        assert outcome.unwrap() == [0.1, 0.2]
        assert outcome.code is None

    @pytest.mark.asyncio
    async def test_failure_after_retries(self, coordinator) -> None:
        outcome = await coordinator.guarded_execute("embedder", _boom)

        assert not outcome.success
        assert outcome.code == OPERATION_FAILED
        assert outcome.attempts == 2
        assert outcome.errors == ["backend down", "backend down"]
        assert coordinator.degradation.level == DegradationLevel.DEGRADED
        with pytest.raises(OperationFailedError) as exc_info:
            outcome.unwrap()
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_open_breaker_blocks(self, coordinator) -> None:
        calls = []
        for _ in range(2):
            await coordinator.guarded_execute("embedder", _boom)

        outcome = await coordinator.guarded_execute("embedder", lambda: calls.append(1))

        assert outcome.blocked
        assert outcome.code == CIRCUIT_OPEN
        assert outcome.retry_after_seconds > 0
        assert calls == []
        with pytest.raises(CircuitOpenError):
            outcome.unwrap()

    @pytest.mark.asyncio
    async def test_breakers_are_per_component(self, coordinator) -> None:
        for _ in range(2):
            await coordinator.guarded_execute("embedder", _boom)

        outcome = await coordinator.guarded_execute("storage", lambda: "fine")

        assert outcome.success

    @pytest.mark.asyncio
    async def test_disabled_capability_degrades(self, coordinator) -> None:
        coordinator.degradation.force_level(DegradationLevel.MINIMAL)

        outcome = await coordinator.guarded_execute(
            "embedder", lambda: [0.1], capability="vector_search"
        )

        assert outcome.degraded
        assert outcome.code == CAPABILITY_DISABLED
        assert outcome.level == "Minimal"
        with pytest.raises(CapabilityDisabledError):
            outcome.unwrap()

    @pytest.mark.asyncio
    async def test_storage_failure_is_emergency(self, coordinator) -> None:
        await coordinator.guarded_execute("storage", _boom)

        assert coordinator.degradation.level == DegradationLevel.EMERGENCY
        assert not coordinator.has_capability("write_operations")


class TestAdmission:
    def test_admit_until_limit(self, coordinator) -> None:
        coordinator.admit("cortex__query")
        coordinator.admit("cortex__query")

        with pytest.raises(RateLimitExceededError) as exc_info:
            coordinator.admit("cortex__query")
        assert exc_info.value.retry_after_seconds == 60

    def test_check_does_not_record(self, coordinator) -> None:
        for _ in range(5):
            assert coordinator.check_admission("cortex__query").allowed

    def test_ensure_available(self, coordinator) -> None:
        coordinator.ensure_available("storage", "local_memory")

        breaker = coordinator.get_breaker("storage")
        breaker.record_failure("x")
        breaker.record_failure("y")
        with pytest.raises(CircuitOpenError):
            coordinator.ensure_available("storage")

    def test_ensure_available_capability(self, coordinator) -> None:
        coordinator.degradation.force_level(DegradationLevel.EMERGENCY)
        with pytest.raises(CapabilityDisabledError):
            coordinator.ensure_available("embedder", "vector_search")


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_lists_circuits(self, coordinator) -> None:
        await coordinator.guarded_execute("embedder", lambda: 1)

        status = coordinator.get_status()

        assert status["circuits"]["embedder"]["state"] == "closed"
        assert status["degradation"]["level"] == "Full"
        assert "cortex__query" in status["rate_limits"]["operations"]
