"""
Tracing Utilities.

Provides a decorator and helpers for tracing the sync pipeline.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from src.common.telemetry.setup import get_tracer, is_telemetry_enabled

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def trace_async(
    name: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Callable[[F], F]:
    """
    Decorator for tracing async functions.

    Args:
        name: Span name (defaults to function name)
        attributes: Static attributes to add to span

    Example:
        @trace_async("manifest.apply")
        async def apply(ctx: OperationContext, content: str) -> None:
            ...
    """

    def decorator(func: F) -> F:
        span_name = name or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not is_telemetry_enabled():
                return await func(*args, **kwargs)

            with get_tracer().start_as_current_span(span_name) as span:
                if attributes:
                    span.set_attributes(attributes)

                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    record_exception(e, span)
                    raise

        return wrapper  # type: ignore

    return decorator


def add_span_attributes(attributes: dict[str, Any]) -> None:
    """
    Add attributes to the current span.

    Example:
        add_span_attributes({"resolution.total": 12, "resolution.cached": 4})
    """
    if not is_telemetry_enabled():
        return

    span = trace.get_current_span()
    if span.is_recording():
        span.set_attributes(attributes)


def record_exception(exception: Exception, span: Any = None) -> None:
    """
    Record an exception on the current or specified span.

    Args:
        exception: The exception to record
        span: Optional span (uses current span if not provided)
    """
    if not is_telemetry_enabled():
        return

    span = span or trace.get_current_span()
    if span.is_recording():
        span.record_exception(exception)
        span.set_status(Status(StatusCode.ERROR, str(exception)))


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Any, None, None]:
    """
    Context manager for creating a traced span inline.

    Args:
        name: Span name (e.g., "identity.resolve_many")
        attributes: Optional initial span attributes

    Yields:
        The active span (non-recording if telemetry is disabled)

    Example:
        with trace_span("manifest.process", {"manifest.path": str(path)}) as span:
            result = await process(path)
            span.set_attribute("manifest.objects", result.objects)
    """
    with get_tracer().start_as_current_span(name) as span:
        if attributes:
            span.set_attributes(attributes)
        try:
            yield span
        except Exception as e:
            record_exception(e, span)
            raise
