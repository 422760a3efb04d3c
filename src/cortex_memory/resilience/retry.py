# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Bounded exponential-backoff retry."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from cortex_memory.config import RetryConfig
from cortex_memory.errors import is_retryable

logger = logging.getLogger(__name__)

Operation = Callable[[], Any]
RetryPredicate = Callable[[BaseException], bool]
RetryCallback = Callable[[int, BaseException, float], Optional[Awaitable[None]]]


@dataclass
class RetryResult:
    """Outcome of a retried operation.

    Attributes:
        success: Whether any attempt succeeded.
        result: Return value of the successful attempt.
        attempts: Attempts made.
        errors: Message of every failed attempt, in order.
        last_error: Exception from the final failed attempt.
        non_retryable: Stopped early because the predicate rejected an error.
    """

    success: bool
    result: Any = None
    attempts: int = 0
    errors: list[str] = field(default_factory=list)
    last_error: Optional[BaseException] = None
    non_retryable: bool = False


class RetryHandler:
    """Retry an operation with exponential backoff.

    The delay before attempt n+1 is
    ``initial_delay_ms * backoff_multiplier ** (n - 1)``, capped at
    ``max_delay_ms``.

    Example:
        >>> handler = RetryHandler(RetryConfig(max_attempts=3))
        >>> outcome = await handler.execute(fetch_embedding)
        >>> outcome.success, outcome.attempts
        (True, 1)
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def get_delay(self, attempt: int) -> float:
        """Delay in milliseconds after the given (1-based) failed attempt."""
        delay = self.config.initial_delay_ms * self.config.backoff_multiplier ** (attempt - 1)
        return min(delay, self.config.max_delay_ms)

    async def execute(
        self,
        operation: Operation,
        should_retry: Optional[RetryPredicate] = None,
        on_retry: Optional[RetryCallback] = None,
        timeout_seconds: Optional[float] = None,
    ) -> RetryResult:
        """Run operation until it succeeds or attempts run out.

        Args:
            operation: Zero-argument callable. Coroutine functions are
                awaited; plain callables run in a worker thread.
            should_retry: Predicate deciding whether an error is worth
                retrying. Defaults to ``errors.is_retryable``.
            on_retry: Called with (attempt, error, next_delay_ms) before
                each retry.
            timeout_seconds: Per-attempt time limit.

        Returns:
            RetryResult with the result or every attempt's error.
        """
        should_retry = should_retry or is_retryable
        errors: list[str] = []

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                result = await self._run_once(operation, timeout_seconds)
                return RetryResult(success=True, result=result, attempts=attempt, errors=errors)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                message = str(e) or type(e).__name__
                errors.append(message)

                if attempt == self.config.max_attempts:
                    return RetryResult(
                        success=False, attempts=attempt, errors=errors, last_error=e
                    )

                if not should_retry(e):
                    return RetryResult(
                        success=False,
                        attempts=attempt,
                        errors=errors,
                        last_error=e,
                        non_retryable=True,
                    )

                delay_ms = self.get_delay(attempt)
                logger.debug(f"Attempt {attempt} failed ({message}); retrying in {delay_ms}ms")
                if on_retry is not None:
                    callback_result = on_retry(attempt, e, delay_ms)
                    if inspect.isawaitable(callback_result):
                        await callback_result
                await self._sleep(delay_ms / 1000.0)

        return RetryResult(success=False, attempts=self.config.max_attempts, errors=errors)

    async def _run_once(self, operation: Operation, timeout_seconds: Optional[float]) -> Any:
        async def call() -> Any:
            if inspect.iscoroutinefunction(operation):
                return await operation()
            result = await asyncio.to_thread(operation)
            if inspect.isawaitable(result):
                result = await result
            return result

        if timeout_seconds is None:
            return await call()
        return await asyncio.wait_for(call(), timeout=timeout_seconds)
