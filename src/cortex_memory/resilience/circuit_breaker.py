# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Circuit breaker for external components (store, embedder).

States:
- CLOSED: Normal operation. Consecutive failures are counted and reaching
  the threshold opens the circuit.
- OPEN: Calls are rejected until the reset timeout has elapsed since the
  last failure; the next check then moves to HALF_OPEN.
- HALF_OPEN: A limited number of trial calls are allowed. Any failure
  reopens the circuit; enough successes close it.

Thread-safe: each breaker serializes its own state changes.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from cortex_memory.config import CircuitBreakerConfig

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failures exceeded threshold
    HALF_OPEN = "half_open"  # Testing if component recovered


@dataclass
class CircuitStats:
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0
    times_opened: int = 0
    last_error: Optional[str] = None


@dataclass
class CircuitStatus:
    """Snapshot of a breaker for diagnostics."""

    name: str
    state: CircuitState
    failures: int
    successes: int
    last_failure_time: Optional[float]
    last_state_change: float
    stats: CircuitStats = field(default_factory=CircuitStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "successes": self.successes,
            "last_failure_time": self.last_failure_time,
            "last_state_change": self.last_state_change,
            "stats": dict(self.stats.__dict__),
        }


class CircuitBreaker:
    """Three-state circuit breaker for one named component.

    Example:
        breaker = CircuitBreaker("embedder")
        if breaker.can_execute():
            try:
                vector = embedder.embed(text)
                breaker.record_success()
            except Exception as e:
                breaker.record_failure(e)
    """

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_time: Optional[float] = None
        self._stats = CircuitStats()

        # Time offset for testing
        self._time_offset: float = 0.0
        self._last_state_change = self._current_time()

    def _current_time(self) -> float:
        """Get current time with test offset."""
        return time.monotonic() + self._time_offset

    def _advance_time(self, seconds: float) -> None:
        """Advance time for testing purposes."""
        self._time_offset += seconds

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def threshold(self) -> int:
        return self.config.threshold

    @property
    def reset_timeout_seconds(self) -> float:
        return self.config.reset_timeout_ms / 1000.0

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._last_state_change = self._current_time()

        if new_state == CircuitState.OPEN:
            self._stats.times_opened += 1
            logger.warning(f"Circuit breaker '{self.name}' opened ({old_state.value} -> open)")
        else:
            self._failures = 0
            self._successes = 0
            logger.info(f"Circuit breaker '{self.name}': {old_state.value} -> {new_state.value}")

    def can_execute(self) -> bool:
        """Whether a call may proceed now.

        An open breaker whose reset timeout has elapsed moves to half-open
        and admits the call.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                elapsed = self._current_time() - (self._last_failure_time or 0.0)
                if elapsed >= self.reset_timeout_seconds:
                    self._transition(CircuitState.HALF_OPEN)
                    return True
                return False

            return self._successes < self.config.half_open_requests

    def retry_after_seconds(self) -> Optional[float]:
        """Seconds until an open breaker will admit a trial call."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._last_failure_time is None:
                return None
            elapsed = self._current_time() - self._last_failure_time
            return max(0.0, self.reset_timeout_seconds - elapsed)

    def record_success(self) -> None:
        with self._lock:
            self._stats.total_calls += 1
            self._stats.total_successes += 1
            self._successes += 1

            if self._state == CircuitState.HALF_OPEN:
                if self._successes >= self.config.half_open_requests:
                    self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failures = 0

    def record_failure(self, error: Optional[BaseException | str] = None) -> None:
        with self._lock:
            self._stats.total_calls += 1
            self._stats.total_failures += 1
            self._stats.last_error = str(error) if error is not None else None
            self._failures += 1
            self._last_failure_time = self._current_time()

            if self._state == CircuitState.CLOSED:
                if self._failures >= self.config.threshold:
                    self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Manually close the circuit."""
        with self._lock:
            self._transition(CircuitState.CLOSED)

    def get_status(self) -> CircuitStatus:
        with self._lock:
            return CircuitStatus(
                name=self.name,
                state=self._state,
                failures=self._failures,
                successes=self._successes,
                last_failure_time=self._last_failure_time,
                last_state_change=self._last_state_change,
                stats=CircuitStats(**self._stats.__dict__),
            )
