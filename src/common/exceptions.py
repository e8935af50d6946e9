"""
nobl9-sync Exception Hierarchy

Provides structured exception types shared by the resilience layer and the
sync pipeline. All project-specific exceptions inherit from SyncError.

Every SyncError carries an explicit ErrorKind. The kind is the primary signal
used by error classification; substring matching on the message is only a
fallback for errors raised by third-party code.

Usage:
    from src.common.exceptions import NotFoundError, TransientError

    try:
        user_id = await provider.lookup(ctx, email)
    except NotFoundError:
        ...
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failure for retry and caching decisions."""

    NOT_FOUND = "not_found"  # Stable negative, cacheable, never retried
    TRANSIENT = "transient"  # Network/timeout/rate-limit/5xx, retried, never cached
    PERMANENT = "permanent"  # Anything else, neither retried nor cached
    CANCELLED = "cancelled"  # Caller gave up; distinct from failure


class SyncError(Exception):
    """
    Base exception for all nobl9-sync errors.

    Attributes:
        message: Human-readable error description
        code: Optional machine-readable error code for programmatic handling
        kind: Classification used by the retry executor and the resolver
    """

    default_kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        code: str | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.kind = kind or self.default_kind
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Whether the failure is worth another attempt."""
        return self.kind == ErrorKind.TRANSIENT

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}" if self.code else self.message
        if self.__cause__ is not None:
            text += f": {self.__cause__}"
        return text


# =============================================================================
# Remote Call Errors
# =============================================================================


class NotFoundError(SyncError):
    """The requested object (user, project, ...) does not exist remotely."""

    default_kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code=code)


class TransientError(SyncError):
    """A failure that is expected to go away on its own (network, 5xx, timeout)."""

    default_kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, code: str = "TRANSIENT") -> None:
        super().__init__(message, code=code)


class RateLimitError(TransientError):
    """The remote API asked us to slow down."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, code="RATE_LIMIT")
        self.retry_after = retry_after


class AuthenticationError(SyncError):
    """Credentials were rejected by the remote API."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="AUTH")


class ApiError(SyncError):
    """The remote API rejected a request for a non-transient reason."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, code="API")
        self.status_code = status_code


class OperationCancelledError(SyncError):
    """
    The operation context was cancelled or its deadline passed.

    Cancellation is reported as its own outcome, never as a failed attempt.
    """

    default_kind = ErrorKind.CANCELLED

    def __init__(
        self,
        message: str = "operation cancelled",
        deadline_exceeded: bool = False,
    ) -> None:
        super().__init__(message, code="CANCELLED")
        self.deadline_exceeded = deadline_exceeded


class RetryExhaustedError(SyncError):
    """All attempts allowed by the retry policy failed with retryable errors."""

    default_kind = ErrorKind.TRANSIENT

    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(
            f"operation '{operation}' failed after {attempts} attempts",
            code="RETRY_EXHAUSTED",
        )
        self.operation = operation
        self.attempts = attempts


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(SyncError):
    """Base class for configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid or malformed."""

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(
            f"Invalid configuration for '{field}': {value}. {reason}",
            code="CONFIG_INVALID",
        )
        self.field = field
        self.value = value
        self.reason = reason


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, field: str, hint: str | None = None) -> None:
        message = f"Missing required configuration: '{field}'"
        if hint:
            message += f". {hint}"
        super().__init__(message, code="CONFIG_MISSING")
        self.field = field


# =============================================================================
# Manifest Errors
# =============================================================================


class ManifestError(SyncError):
    """A manifest file could not be read, decoded or validated."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid manifest {path}: {reason}", code="MANIFEST_INVALID")
        self.path = path
        self.reason = reason
