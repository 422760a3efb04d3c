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
Sliding-window rate limiter for memory operations.

Each operation has per-minute, per-hour and per-day limits. Checks run in
a fixed order:

1. Cooldown: while active, every call is denied.
2. Minute window, inflated by the burst multiplier. A breach starts the
   cooldown.
3. Hour window.
4. Day window.

Windows keep timestamps for the last 24 hours only. Operations without
configured limits are always allowed.

Thread-safe: each operation's window is guarded by its own lock.
"""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from cortex_memory.concurrency import KeyedLocks
from cortex_memory.config import OperationLimits, RateLimitConfig

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0


@dataclass
class RateLimitDecision:
    """
    Result of a rate limit check.

    Attributes:
        allowed: Whether the call may proceed
        reason: Reason for denial (if not allowed)
        retry_after_seconds: Seconds until a retry could succeed
    """

    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None


@dataclass
class RateWindow:
    """Call history and cooldown for one operation."""

    timestamps: deque[float] = field(default_factory=deque)
    cooldown_until: Optional[float] = None
    total_calls: int = 0

    def prune(self, now: float) -> None:
        horizon = now - DAY
        while self.timestamps and self.timestamps[0] <= horizon:
            self.timestamps.popleft()

    def count_since(self, since: float) -> int:
        return sum(1 for ts in self.timestamps if ts > since)

    def oldest_since(self, since: float) -> Optional[float]:
        for ts in self.timestamps:
            if ts > since:
                return ts
        return None


LimitCallback = Callable[[str, dict[str, Any]], None]


class RateLimiter:
    """
    Per-operation sliding-window rate limiter.

    Example:
        limiter = RateLimiter()

        decision = limiter.check("cortex__query")
        if decision.allowed:
            limiter.record("cortex__query")
            run_query()
        else:
            print(f"Rate limited: {decision.reason}")
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        on_limit_reached: Optional[LimitCallback] = None,
    ):
        """Initialize rate limiter with configuration."""
        self.config = config or RateLimitConfig()
        self.enabled = self.config.enabled
        self._limits: dict[str, OperationLimits] = dict(self.config.limits)
        self._on_limit_reached = on_limit_reached

        self._locks = KeyedLocks()
        self._windows_guard = threading.Lock()
        self._windows: dict[str, RateWindow] = {}
        self._stats_lock = threading.Lock()
        self._limited_calls = 0
        self._total_calls = 0

        # Time offset for testing
        self._time_offset: float = 0.0
        self._last_reset = self._current_time()

    def _current_time(self) -> float:
        """Get current time with test offset."""
        return time.time() + self._time_offset

    def _advance_time(self, seconds: float) -> None:
        """Advance time for testing purposes."""
        self._time_offset += seconds

    def _window(self, operation: str) -> RateWindow:
        with self._windows_guard:
            window = self._windows.get(operation)
            if window is None:
                window = RateWindow()
                self._windows[operation] = window
            return window

    def burst_limit(self, operation: str) -> Optional[int]:
        limits = self._limits.get(operation)
        if limits is None:
            return None
        return math.floor(limits.per_minute * self.config.burst_multiplier)

    def check(self, operation: str) -> RateLimitDecision:
        """
        Check whether a call to operation would be admitted.

        Args:
            operation: Operation (tool) name

        Returns:
            RateLimitDecision; a minute-window breach also starts a cooldown
        """
        if not self.enabled:
            return RateLimitDecision(allowed=True)

        limits = self._limits.get(operation)
        if limits is None:
            return RateLimitDecision(allowed=True)

        with self._locks.hold(operation):
            now = self._current_time()
            window = self._window(operation)

            if window.cooldown_until is not None and now < window.cooldown_until:
                return RateLimitDecision(
                    allowed=False,
                    reason=f"Operation {operation} is in cooldown",
                    retry_after_seconds=math.ceil(window.cooldown_until - now),
                )

            window.prune(now)
            calls_last_minute = window.count_since(now - MINUTE)
            calls_last_hour = window.count_since(now - HOUR)
            calls_last_day = len(window.timestamps)

            if calls_last_minute >= self.burst_limit(operation):
                self._trigger_cooldown(operation, window, now)
                return RateLimitDecision(
                    allowed=False,
                    reason=(
                        f"Rate limit exceeded: {calls_last_minute}/{limits.per_minute} "
                        f"calls/minute"
                    ),
                    retry_after_seconds=math.ceil(self.config.cooldown_seconds),
                )

            if calls_last_hour >= limits.per_hour:
                oldest = window.oldest_since(now - HOUR)
                return RateLimitDecision(
                    allowed=False,
                    reason=f"Hourly limit exceeded: {calls_last_hour}/{limits.per_hour} calls/hour",
                    retry_after_seconds=max(1, math.ceil((oldest or now) + HOUR - now)),
                )

            if calls_last_day >= limits.per_day:
                oldest = window.timestamps[0] if window.timestamps else now
                return RateLimitDecision(
                    allowed=False,
                    reason=f"Daily limit exceeded: {calls_last_day}/{limits.per_day} calls/day",
                    retry_after_seconds=max(1, math.ceil(oldest + DAY - now)),
                )

            return RateLimitDecision(allowed=True)

    def record(self, operation: str) -> None:
        """Record an admitted call. Call only after a successful check."""
        if not self.enabled:
            return
        with self._locks.hold(operation):
            window = self._window(operation)
            window.timestamps.append(self._current_time())
            window.total_calls += 1
        with self._stats_lock:
            self._total_calls += 1

    def _trigger_cooldown(self, operation: str, window: RateWindow, now: float) -> None:
        window.cooldown_until = now + self.config.cooldown_seconds
        with self._stats_lock:
            self._limited_calls += 1
        logger.warning(
            f"Rate limit reached for {operation}; cooling down for "
            f"{self.config.cooldown_seconds:.0f}s"
        )
        if self._on_limit_reached is not None:
            self._on_limit_reached(
                operation,
                {"cooldown_until": window.cooldown_until, "stats": self._operation_stats(operation)},
            )

    def _operation_stats(self, operation: str) -> dict[str, Any]:
        now = self._current_time()
        window = self._window(operation)
        limits = self._limits.get(operation)
        return {
            "operation": operation,
            "limits": limits.__dict__ if limits else None,
            "usage": {
                "last_minute": window.count_since(now - MINUTE),
                "last_hour": window.count_since(now - HOUR),
                "last_day": window.count_since(now - DAY),
            },
            "cooldown_until": window.cooldown_until,
            "total_calls": window.total_calls,
        }

    @property
    def limited_calls(self) -> int:
        with self._stats_lock:
            return self._limited_calls

    def get_stats(self, operation: Optional[str] = None) -> dict[str, Any]:
        """Usage statistics for one operation, or for all configured ones."""
        if operation is not None:
            with self._locks.hold(operation):
                return self._operation_stats(operation)

        operations = {}
        for name in list(self._limits):
            with self._locks.hold(name):
                operations[name] = self._operation_stats(name)
        with self._stats_lock:
            return {
                "enabled": self.enabled,
                "total_calls": self._total_calls,
                "limited_calls": self._limited_calls,
                "uptime_seconds": self._current_time() - self._last_reset,
                "operations": operations,
            }

    def set_limits(
        self,
        operation: str,
        per_minute: Optional[int] = None,
        per_hour: Optional[int] = None,
        per_day: Optional[int] = None,
    ) -> OperationLimits:
        """Create or update limits for an operation."""
        with self._locks.hold(operation):
            current = self._limits.get(
                operation, OperationLimits(per_minute=30, per_hour=300, per_day=1000)
            )
            updated = OperationLimits(
                per_minute=per_minute if per_minute is not None else current.per_minute,
                per_hour=per_hour if per_hour is not None else current.per_hour,
                per_day=per_day if per_day is not None else current.per_day,
            )
            self._limits[operation] = updated
            return updated

    def reset(self) -> None:
        """Clear every window, cooldown and counter."""
        with self._windows_guard:
            self._windows.clear()
        with self._stats_lock:
            self._total_calls = 0
            self._limited_calls = 0
        self._last_reset = self._current_time()

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False
