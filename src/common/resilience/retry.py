"""
Retry with Exponential Backoff

Retries failed operations with configurable backoff strategy, jitter and
error classification. The executor returns a structured outcome instead of
raising, so callers decide what a failure means for them.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from src.common.exceptions import (
    ErrorKind,
    InvalidConfigError,
    OperationCancelledError,
    RetryExhaustedError,
)
from src.common.resilience.classification import (
    NETWORK_PATTERNS,
    RATE_LIMIT_PATTERNS,
    RETRYABLE_PATTERNS,
    classify_error,
)
from src.common.resilience.context import OperationContext
from src.common.telemetry import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")

Operation = Callable[[OperationContext], Awaitable[T]]
RetryCallback = Callable[[int, Exception, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior. Safe to share between operations."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter_factor: float = 0.1  # Symmetric: +/- this fraction of the delay
    retryable_patterns: tuple[str, ...] = RETRYABLE_PATTERNS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise InvalidConfigError("max_attempts", self.max_attempts, "Must be at least 1.")
        if self.initial_delay < 0:
            raise InvalidConfigError("initial_delay", self.initial_delay, "Must not be negative.")
        if self.max_delay < 0:
            raise InvalidConfigError("max_delay", self.max_delay, "Must not be negative.")
        if self.backoff_factor <= 1.0:
            raise InvalidConfigError(
                "backoff_factor", self.backoff_factor, "Must be greater than 1.0."
            )
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise InvalidConfigError(
                "jitter_factor", self.jitter_factor, "Must be between 0.0 and 1.0."
            )
        # Accept any iterable of patterns but keep the policy hashable
        object.__setattr__(self, "retryable_patterns", tuple(self.retryable_patterns))

    def base_delay(self, attempt: int) -> float:
        """Deterministic delay after the given (1-based) failed attempt."""
        delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay)

    def compute_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """
        Delay to wait after the given failed attempt, jitter included.

        Args:
            attempt: 1-based number of the attempt that just failed
            rng: Random source (module-level random if not provided)

        Returns:
            Non-negative delay in seconds
        """
        delay = self.base_delay(attempt)

        # Spread retries out to prevent thundering herd
        if self.jitter_factor > 0:
            jitter = delay * self.jitter_factor
            delay += (rng or random).uniform(-jitter, jitter)

        return max(0.0, delay)


def api_policy(max_attempts: int = 3) -> RetryPolicy:
    """Policy for management API calls."""
    return RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=1.0,
        max_delay=30.0,
        backoff_factor=2.0,
        jitter_factor=0.1,
        retryable_patterns=RETRYABLE_PATTERNS,
    )


def network_policy(max_attempts: int = 3) -> RetryPolicy:
    """Policy for connectivity checks: retries sooner, gives up sooner."""
    return RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=0.5,
        max_delay=10.0,
        backoff_factor=1.5,
        jitter_factor=0.2,
        retryable_patterns=NETWORK_PATTERNS,
    )


def rate_limit_policy(max_attempts: int = 5) -> RetryPolicy:
    """Policy for endpoints known to throttle aggressively."""
    return RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=2.0,
        max_delay=60.0,
        backoff_factor=2.0,
        jitter_factor=0.1,
        retryable_patterns=RATE_LIMIT_PATTERNS,
    )


@dataclass
class RetryOutcome(Generic[T]):
    """Result of one executor invocation."""

    operation: str
    attempts: int
    success: bool
    total_delay: float = 0.0
    final_result: T | None = None
    last_error: Exception | None = None
    cancelled: bool = False
    error_kind: ErrorKind | None = None

    @property
    def exhausted(self) -> bool:
        """True if the executor gave up on a retryable error."""
        return not self.success and self.error_kind == ErrorKind.TRANSIENT

    def unwrap(self) -> T:
        """
        Return the final result or raise.

        Raises:
            OperationCancelledError: If the context was cancelled
            RetryExhaustedError: If retryable errors used up every attempt
            Exception: The original error if it was not retryable
        """
        if self.success:
            return self.final_result  # type: ignore[return-value]
        if self.cancelled:
            raise self.last_error or OperationCancelledError()
        if self.exhausted:
            raise RetryExhaustedError(self.operation, self.attempts) from self.last_error
        if self.last_error is None:
            raise RuntimeError(f"Operation '{self.operation}' failed without recording an error")
        raise self.last_error


class RetryExecutor:
    """
    Runs asynchronous operations with retry-on-transient-failure semantics.

    The executor is independent of what the operation does. It is reused for
    identity lookups, manifest applies and connectivity checks.

    Example:
        executor = RetryExecutor(api_policy())

        async def fetch(ctx: OperationContext) -> dict:
            response = await client.get("/api/organization")
            response.raise_for_status()
            return response.json()

        outcome = await executor.execute(ctx, None, "get organization", fetch)
        if outcome.success:
            print(f"Succeeded after {outcome.attempts} attempts")
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
        on_retry: RetryCallback | None = None,
    ):
        """
        Initialize the executor.

        Args:
            policy: Default policy when execute() is called without one
            rng: Random source for jitter (injectable for tests)
            on_retry: Optional callback(attempt, error, delay) on each retry
        """
        self._policy = policy or api_policy()
        self._rng = rng or random.Random()
        self._on_retry = on_retry

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self,
        ctx: OperationContext,
        policy: RetryPolicy | None,
        label: str,
        operation: Operation[T],
    ) -> RetryOutcome[T]:
        """
        Execute an operation, retrying classified-transient failures.

        Args:
            ctx: Cancellation context observed during calls and sleeps
            policy: Retry policy (executor default if None)
            label: Operation name for logs and traces
            operation: Async callable taking the context

        Returns:
            RetryOutcome describing attempts, delay and the final result/error.
            Never raises for operation failures or context cancellation.
        """
        policy = policy or self._policy
        attempts = 0
        total_delay = 0.0

        with tracer.start_as_current_span("retry.execute") as span:
            span.set_attribute("retry.operation", label)
            span.set_attribute("retry.max_attempts", policy.max_attempts)

            while True:
                try:
                    ctx.raise_if_cancelled()
                    attempts += 1
                    logger.debug(f"Executing '{label}' attempt {attempts}/{policy.max_attempts}")
                    result = await ctx.run(operation(ctx))
                except Exception as e:
                    kind = classify_error(e, policy.retryable_patterns)

                    if kind == ErrorKind.CANCELLED:
                        logger.info(f"Operation '{label}' cancelled after {attempts} attempts")
                        span.set_attribute("retry.cancelled", True)
                        return self._outcome(
                            label, attempts, total_delay, error=e, kind=kind, cancelled=True
                        )

                    if kind != ErrorKind.TRANSIENT:
                        logger.warning(
                            f"Operation '{label}' failed with non-retryable error "
                            f"on attempt {attempts}: {e}"
                        )
                        span.set_attribute("retry.attempts", attempts)
                        return self._outcome(label, attempts, total_delay, error=e, kind=kind)

                    if attempts >= policy.max_attempts:
                        logger.warning(f"Retry exhausted for '{label}' after {attempts} attempts: {e}")
                        span.set_attribute("retry.attempts", attempts)
                        return self._outcome(label, attempts, total_delay, error=e, kind=kind)

                    delay = policy.compute_delay(attempts, self._rng)
                    retry_after = getattr(e, "retry_after", None)
                    if retry_after:
                        # Server hint is a floor, still bounded by the policy cap
                        delay = max(delay, min(retry_after, policy.max_delay))
                    logger.info(
                        f"Retry attempt {attempts}/{policy.max_attempts} for '{label}' failed: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    if self._on_retry:
                        self._on_retry(attempts, e, delay)

                    try:
                        await ctx.sleep(delay)
                    except OperationCancelledError as cancel_error:
                        logger.info(f"Operation '{label}' cancelled while waiting to retry")
                        span.set_attribute("retry.cancelled", True)
                        return self._outcome(
                            label,
                            attempts,
                            total_delay,
                            error=cancel_error,
                            kind=ErrorKind.CANCELLED,
                            cancelled=True,
                        )
                    total_delay += delay
                else:
                    if attempts > 1:
                        logger.info(f"Operation '{label}' succeeded after {attempts} attempts")
                    span.set_attribute("retry.attempts", attempts)
                    return RetryOutcome(
                        operation=label,
                        attempts=attempts,
                        success=True,
                        total_delay=total_delay,
                        final_result=result,
                    )

    @staticmethod
    def _outcome(
        label: str,
        attempts: int,
        total_delay: float,
        error: Exception,
        kind: ErrorKind,
        cancelled: bool = False,
    ) -> RetryOutcome[Any]:
        return RetryOutcome(
            operation=label,
            attempts=attempts,
            success=False,
            total_delay=total_delay,
            last_error=error,
            cancelled=cancelled,
            error_kind=kind,
        )


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy | None = None,
    ctx: OperationContext | None = None,
    on_retry: RetryCallback | None = None,
    label: str | None = None,
    **kwargs: Any,
) -> T:
    """
    Retry an async function with exponential backoff.

    Convenience wrapper around RetryExecutor for call sites that prefer
    exceptions over outcome objects.

    Args:
        func: Async function to retry
        *args: Positional arguments for func
        policy: Retry policy
        ctx: Cancellation context (a fresh background context if omitted)
        on_retry: Optional callback(attempt, error, delay) on each retry
        label: Operation name for logs (defaults to the function name)
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        RetryExhaustedError: Retryable errors used up every attempt
        OperationCancelledError: The context was cancelled
        Exception: The first non-retryable error

    Example:
        result = await retry_with_backoff(fetch_data, policy=RetryPolicy(max_attempts=5))
    """
    executor = RetryExecutor(policy, on_retry=on_retry)

    async def _call(_: OperationContext) -> T:
        return await func(*args, **kwargs)

    outcome = await executor.execute(
        ctx or OperationContext.background(),
        None,
        label or getattr(func, "__name__", "operation"),
        _call,
    )
    return outcome.unwrap()
