# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Resilience layer: rate limiting, circuit breaking, retry, degradation."""

from cortex_memory.resilience.circuit_breaker import CircuitBreaker, CircuitState
from cortex_memory.resilience.coordinator import GuardedOutcome, ResilienceCoordinator
from cortex_memory.resilience.degradation import (
    Capability,
    DegradationLevel,
    GracefulDegradationManager,
)
from cortex_memory.resilience.rate_limiter import RateLimitDecision, RateLimiter
from cortex_memory.resilience.retry import RetryHandler, RetryResult

__all__ = [
    "Capability",
    "CircuitBreaker",
    "CircuitState",
    "DegradationLevel",
    "GracefulDegradationManager",
    "GuardedOutcome",
    "RateLimitDecision",
    "RateLimiter",
    "ResilienceCoordinator",
    "RetryHandler",
    "RetryResult",
]
