"""
Telemetry Module for nobl9-sync.

Provides OpenTelemetry tracing for the sync pipeline: retry attempts,
identity resolution batches and manifest applies.

Usage:
    from src.common.telemetry import init_telemetry, get_tracer

    # Initialize at startup
    init_telemetry(otlp_endpoint="http://localhost:4317")

    tracer = get_tracer(__name__)
    with tracer.start_as_current_span("manifest.apply") as span:
        span.set_attribute("manifest.path", path)
        ...
"""

from src.common.telemetry.setup import (
    TelemetryConfig,
    get_tracer,
    init_telemetry,
    is_telemetry_enabled,
    shutdown_telemetry,
)
from src.common.telemetry.tracing import (
    add_span_attributes,
    record_exception,
    trace_async,
    trace_span,
)

__all__ = [
    # Setup
    "init_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "is_telemetry_enabled",
    "TelemetryConfig",
    # Tracing
    "trace_async",
    "trace_span",
    "add_span_attributes",
    "record_exception",
]
