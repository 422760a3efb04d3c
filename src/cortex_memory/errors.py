# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Exception hierarchy for the memory core.

Errors fall into five groups:
- Admission denied: rate limit, open circuit, disabled capability.
  Never retried automatically; may carry a retry-after hint.
- Transient: momentary store or provider unavailability. Retried.
- Malformed input: rejected before any external call.
- Lexical syntax: absorbed by the search engine as "no lexical results".
- Operation failed: retries exhausted.
"""

from typing import Optional


class CortexError(Exception):
    """Base exception for the memory core."""

    code = "CORTEX_ERROR"


class AdmissionDeniedError(CortexError):
    """A request was refused by policy before it ran."""

    code = "ADMISSION_DENIED"

    def __init__(self, message: str, retry_after_seconds: Optional[float] = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RateLimitExceededError(AdmissionDeniedError):
    """Operation exceeded its per-minute/hour/day window or is cooling down."""

    code = "RATE_LIMITED"


class CircuitOpenError(AdmissionDeniedError):
    """The component's circuit breaker is rejecting calls."""

    code = "CIRCUIT_OPEN"


class CapabilityDisabledError(AdmissionDeniedError):
    """The capability is disabled at the current degradation level."""

    code = "CAPABILITY_DISABLED"

    def __init__(self, capability: str, level: str):
        super().__init__(f"Capability {capability} is disabled in {level} mode")
        self.capability = capability
        self.level = level


class TransientError(CortexError):
    """A failure that may succeed when retried."""

    code = "TRANSIENT"


class StoreUnavailableError(TransientError):
    """The persistent store could not be reached."""

    code = "STORE_UNAVAILABLE"


class MalformedInputError(CortexError):
    """Input rejected synchronously."""

    code = "MALFORMED_INPUT"


class InvalidQueryError(MalformedInputError):
    """Search query is empty or not a string."""

    code = "INVALID_QUERY"


class InvalidSearchOptionsError(MalformedInputError):
    """Search options failed validation."""

    code = "INVALID_SEARCH_OPTIONS"


class EmbeddingDimensionError(MalformedInputError):
    """Embedding length does not match the configured model."""

    code = "EMBEDDING_DIMENSION"

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected embedding dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class LexicalSyntaxError(CortexError):
    """The full-text index rejected the query syntax."""

    code = "LEXICAL_SYNTAX"


class StoreError(CortexError):
    """Generic record or tier store failure."""

    code = "STORE_ERROR"


class OperationFailedError(CortexError):
    """A guarded operation failed after all retry attempts."""

    code = "OPERATION_FAILED"

    def __init__(self, message: str, attempts: int = 0, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.attempts = attempts
        self.errors = list(errors or [])


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate.

    Malformed input and admission decisions are never retried.
    """
    return not isinstance(error, (MalformedInputError, AdmissionDeniedError))
