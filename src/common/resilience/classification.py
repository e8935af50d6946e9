"""
Error Classification

Single predicate shared by the retry executor (should this be retried?) and
the identity resolver (should this negative result be cached?).
"""

from __future__ import annotations

from collections.abc import Iterable

from src.common.exceptions import ErrorKind, OperationCancelledError, SyncError

# Stable negatives: safe to cache, pointless to retry
NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "not found",
    "404",
    "no such user",
    "does not exist",
)

# Transient conditions: retry, never cache
RETRYABLE_PATTERNS: tuple[str, ...] = (
    "timeout",
    "connection refused",
    "network error",
    "rate limit",
    "429",
    "503",
    "502",
    "500",
    "temporary failure",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "too many requests",
    "internal server error",
)

NETWORK_PATTERNS: tuple[str, ...] = (
    "connection refused",
    "network error",
    "timeout",
    "connection reset",
    "no route to host",
)

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "429",
    "too many requests",
)


def _matches(text: str, patterns: Iterable[str]) -> bool:
    return any(pattern.lower() in text for pattern in patterns)


def classify_error(
    error: BaseException,
    retryable_patterns: Iterable[str] = RETRYABLE_PATTERNS,
) -> ErrorKind:
    """
    Classify an error for retry and caching decisions.

    Explicit kinds on SyncError win. Opaque errors fall back to a
    case-insensitive substring match: not-found patterns first, then the
    caller-supplied retryable patterns.

    Args:
        error: The error raised by an operation
        retryable_patterns: Substrings that mark an opaque error as transient

    Returns:
        The ErrorKind for the error
    """
    if isinstance(error, OperationCancelledError):
        return ErrorKind.CANCELLED

    if isinstance(error, SyncError):
        return error.kind

    text = str(error).lower()
    if _matches(text, NOT_FOUND_PATTERNS):
        return ErrorKind.NOT_FOUND
    if _matches(text, retryable_patterns):
        return ErrorKind.TRANSIENT

    return ErrorKind.PERMANENT


def is_retryable(
    error: BaseException,
    retryable_patterns: Iterable[str] = RETRYABLE_PATTERNS,
) -> bool:
    """Return True if the error should trigger another attempt."""
    return classify_error(error, retryable_patterns) == ErrorKind.TRANSIENT


def is_not_found(error: BaseException) -> bool:
    """Return True if the error is a stable "does not exist" answer."""
    return classify_error(error) == ErrorKind.NOT_FOUND
