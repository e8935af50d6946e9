"""
Resilience Patterns

Retry with backoff, cancellation contexts and the error classification
shared by the retry executor and the identity resolver.
"""

from src.common.resilience.classification import (
    NETWORK_PATTERNS,
    NOT_FOUND_PATTERNS,
    RATE_LIMIT_PATTERNS,
    RETRYABLE_PATTERNS,
    classify_error,
    is_not_found,
    is_retryable,
)
from src.common.resilience.context import OperationContext
from src.common.resilience.retry import (
    RetryExecutor,
    RetryOutcome,
    RetryPolicy,
    api_policy,
    network_policy,
    rate_limit_policy,
    retry_with_backoff,
)

__all__ = [
    "OperationContext",
    "RetryExecutor",
    "RetryOutcome",
    "RetryPolicy",
    "api_policy",
    "network_policy",
    "rate_limit_policy",
    "retry_with_backoff",
    "classify_error",
    "is_retryable",
    "is_not_found",
    "NOT_FOUND_PATTERNS",
    "RETRYABLE_PATTERNS",
    "NETWORK_PATTERNS",
    "RATE_LIMIT_PATTERNS",
]
