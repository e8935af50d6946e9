"""
Process Exit Codes

Maps failures to the exit codes the CI workflow branches on.
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import ValidationError

from src.common.exceptions import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    ManifestError,
    NotFoundError,
    OperationCancelledError,
    RateLimitError,
    RetryExhaustedError,
    SyncError,
    TransientError,
)


class ExitCode(IntEnum):
    SUCCESS = 0
    GENERAL = 1
    CONFIG = 2
    VALIDATION = 3
    API = 4
    FILE = 5
    AUTH = 6
    NETWORK = 7
    RATE_LIMIT = 8
    TIMEOUT = 9


def exit_code_for(error: BaseException) -> ExitCode:
    """Pick the exit code for an error. Exhausted retries use their last error."""
    if isinstance(error, RetryExhaustedError) and error.__cause__ is not None:
        return exit_code_for(error.__cause__)

    if isinstance(error, (ConfigurationError, ValidationError)):
        return ExitCode.CONFIG
    if isinstance(error, ManifestError):
        return ExitCode.VALIDATION
    if isinstance(error, AuthenticationError):
        return ExitCode.AUTH
    if isinstance(error, RateLimitError):
        return ExitCode.RATE_LIMIT
    if isinstance(error, OperationCancelledError):
        return ExitCode.TIMEOUT
    if isinstance(error, TransientError):
        return ExitCode.TIMEOUT if error.code == "TIMEOUT" else ExitCode.NETWORK
    if isinstance(error, (ApiError, NotFoundError, SyncError)):
        return ExitCode.API
    if isinstance(error, OSError):
        return ExitCode.FILE
    return ExitCode.GENERAL
