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

"""
Resilience coordinator.

Single entry point for guarded calls to external components. For a
component X a guarded call:

1. Checks X's circuit breaker (blocked outcome, code CIRCUIT_OPEN).
2. Checks the required capability against the degradation level
   (degraded outcome, code CAPABILITY_DISABLED).
3. Runs the operation through the retry handler.
4. Reports the result to X's breaker and to the degradation manager.

Admission control for named operations is delegated to the rate limiter.
All state lives on the coordinator instance; there are no module-level
singletons.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from cortex_memory.config import CortexConfig
from cortex_memory.errors import (
    CapabilityDisabledError,
    CircuitOpenError,
    OperationFailedError,
    RateLimitExceededError,
)
from cortex_memory.resilience.circuit_breaker import CircuitBreaker
from cortex_memory.resilience.degradation import Capability, GracefulDegradationManager
from cortex_memory.resilience.rate_limiter import RateLimitDecision, RateLimiter
from cortex_memory.resilience.retry import Operation, RetryHandler, RetryPredicate

logger = logging.getLogger(__name__)

CIRCUIT_OPEN = "CIRCUIT_OPEN"
CAPABILITY_DISABLED = "CAPABILITY_DISABLED"
OPERATION_FAILED = "OPERATION_FAILED"


@dataclass
class GuardedOutcome:
    """Result of a guarded execution.

    Attributes:
        success: Whether the operation ran and succeeded.
        result: Operation return value.
        blocked: Rejected by an open circuit breaker.
        degraded: Rejected because the capability is disabled.
        code: Failure code (CIRCUIT_OPEN, CAPABILITY_DISABLED,
            OPERATION_FAILED), None on success.
        message: Human-readable failure message.
        attempts: Attempts made by the retry handler.
        errors: Message of every failed attempt.
        retry_after_seconds: Hint for blocked outcomes.
    """

    success: bool
    result: Any = None
    blocked: bool = False
    degraded: bool = False
    code: Optional[str] = None
    message: Optional[str] = None
    attempts: int = 0
    errors: list[str] = field(default_factory=list)
    retry_after_seconds: Optional[float] = None
    capability: Optional[str] = None
    level: Optional[str] = None

    def unwrap(self) -> Any:
        """Return the result or raise the matching exception."""
        if self.success:
            return self.result
        if self.blocked:
            raise CircuitOpenError(self.message or CIRCUIT_OPEN, self.retry_after_seconds)
        if self.degraded:
            raise CapabilityDisabledError(self.capability or "", self.level or "")
        raise OperationFailedError(
            self.message or OPERATION_FAILED, attempts=self.attempts, errors=self.errors
        )


class ResilienceCoordinator:
    """Owns the rate limiter, circuit breakers, retry handler and
    degradation manager for one memory core instance.

    Example:
        >>> coordinator = ResilienceCoordinator()
        >>> outcome = await coordinator.guarded_execute(
        ...     "embedder", lambda: embedder.embed("query"), capability="vector_search"
        ... )
        >>> vector = outcome.unwrap()
    """

    def __init__(
        self,
        config: Optional[CortexConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_handler: Optional[RetryHandler] = None,
        degradation: Optional[GracefulDegradationManager] = None,
    ):
        self.config = config or CortexConfig()
        self.rate_limiter = rate_limiter or RateLimiter(self.config.rate_limit)
        self.retry_handler = retry_handler or RetryHandler(self.config.retry)
        self.degradation = degradation or GracefulDegradationManager()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._breakers_lock = threading.Lock()

    def get_breaker(self, component: str) -> CircuitBreaker:
        """Breaker for component, created on first use."""
        with self._breakers_lock:
            breaker = self._breakers.get(component)
            if breaker is None:
                breaker = CircuitBreaker(component, self.config.circuit_breaker)
                self._breakers[component] = breaker
            return breaker

    # Admission control

    def check_admission(self, operation: str) -> RateLimitDecision:
        return self.rate_limiter.check(operation)

    def record_call(self, operation: str) -> None:
        self.rate_limiter.record(operation)

    def admit(self, operation: str) -> None:
        """Check and record in one step.

        Raises:
            RateLimitExceededError: The operation is over its limits.
        """
        decision = self.rate_limiter.check(operation)
        if not decision.allowed:
            raise RateLimitExceededError(
                decision.reason or f"Rate limit exceeded for {operation}",
                decision.retry_after_seconds,
            )
        self.rate_limiter.record(operation)

    # Policy checks without execution

    def ensure_available(self, component: str, capability: Optional[str] = None) -> None:
        """Raise if component's breaker or capability would reject a call.

        Raises:
            CircuitOpenError: The breaker is open.
            CapabilityDisabledError: The capability is disabled.
        """
        breaker = self.get_breaker(component)
        if not breaker.can_execute():
            raise CircuitOpenError(
                f"Circuit breaker for {component} is open", breaker.retry_after_seconds()
            )
        if capability is not None and not self.degradation.has_capability(capability):
            raise CapabilityDisabledError(capability, self.degradation.level.value)

    def has_capability(self, capability: str | Capability) -> bool:
        return self.degradation.has_capability(capability)

    # Guarded execution

    async def guarded_execute(
        self,
        component: str,
        operation: Operation,
        capability: Optional[str] = None,
        should_retry: Optional[RetryPredicate] = None,
        timeout_seconds: Optional[float] = None,
    ) -> GuardedOutcome:
        """Run operation against component with full protection.

        Args:
            component: Component name (e.g. "storage", "embedder").
            operation: Zero-argument callable, sync or async.
            capability: Capability the operation requires, if any.
            should_retry: Predicate marking errors retryable.
            timeout_seconds: Per-attempt time limit.

        Returns:
            GuardedOutcome; never raises for operation failures.
        """
        breaker = self.get_breaker(component)

        if not breaker.can_execute():
            return GuardedOutcome(
                success=False,
                blocked=True,
                code=CIRCUIT_OPEN,
                message=f"Circuit breaker for {component} is open",
                retry_after_seconds=breaker.retry_after_seconds(),
            )

        if capability is not None and not self.degradation.has_capability(capability):
            level = self.degradation.level.value
            return GuardedOutcome(
                success=False,
                degraded=True,
                code=CAPABILITY_DISABLED,
                message=f"Capability {capability} is disabled in {level} mode",
                capability=capability,
                level=level,
            )

        def on_retry(attempt: int, error: BaseException, delay_ms: float) -> None:
            logger.info(
                f"Retrying {component} after attempt {attempt} failed: {error} "
                f"(next delay {delay_ms:.0f}ms)"
            )

        outcome = await self.retry_handler.execute(
            operation,
            should_retry=should_retry,
            on_retry=on_retry,
            timeout_seconds=timeout_seconds,
        )

        if outcome.success:
            breaker.record_success()
            self.degradation.report_health(component, True)
            return GuardedOutcome(
                success=True,
                result=outcome.result,
                attempts=outcome.attempts,
                errors=outcome.errors,
            )

        last_error = outcome.errors[-1] if outcome.errors else "unknown error"
        breaker.record_failure(last_error)
        self.degradation.report_health(component, False, last_error)
        logger.error(f"{component} operation failed after {outcome.attempts} attempts: {last_error}")
        return GuardedOutcome(
            success=False,
            code=OPERATION_FAILED,
            message=last_error,
            attempts=outcome.attempts,
            errors=outcome.errors,
        )

    def get_status(self) -> dict[str, Any]:
        with self._breakers_lock:
            breakers = dict(self._breakers)
        return {
            "degradation": self.degradation.get_status(),
            "circuits": {name: b.get_status().to_dict() for name, b in breakers.items()},
            "rate_limits": self.rate_limiter.get_stats(),
        }
