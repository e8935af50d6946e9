"""
OpenTelemetry Setup and Configuration.

Handles initialization of the tracer provider and the OTLP span exporter.
Telemetry is opt-in for a CI run: nothing is exported until init_telemetry()
is called, and NOBL9_SYNC_TELEMETRY_ENABLED=false turns tracing off entirely.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

TELEMETRY_ENV_VAR = "NOBL9_SYNC_TELEMETRY_ENABLED"

_telemetry_initialized = False


@dataclass
class TelemetryConfig:
    """Configuration for telemetry setup."""

    # Service identification
    service_name: str = "nobl9-sync"
    service_version: str = "0.1.0"
    environment: str = field(default_factory=lambda: os.getenv("NOBL9_SYNC_ENV", "ci"))

    # OTLP exporter settings
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    otlp_insecure: bool = True

    # Additional resource attributes
    resource_attributes: dict[str, str] = field(default_factory=dict)


# Global state
_config: TelemetryConfig | None = None
_tracer_provider: TracerProvider | None = None


def _is_telemetry_disabled_by_env() -> bool:
    """Check if telemetry is disabled via environment variable."""
    telemetry_enabled = os.getenv(TELEMETRY_ENV_VAR, "true").lower()
    return telemetry_enabled in ("false", "0", "no", "off")


def init_telemetry(
    service_name: str | None = None,
    otlp_endpoint: str | None = None,
    config: TelemetryConfig | None = None,
) -> bool:
    """
    Initialize OpenTelemetry tracing.

    Call this once at startup. Can be disabled by setting
    NOBL9_SYNC_TELEMETRY_ENABLED=false.

    Args:
        service_name: Service name for telemetry (overrides config)
        otlp_endpoint: OTLP collector endpoint (overrides config)
        config: Full telemetry configuration

    Returns:
        True if telemetry was initialized, False if disabled or setup failed
    """
    global _telemetry_initialized, _config, _tracer_provider

    if _telemetry_initialized:
        logger.debug("Telemetry already initialized")
        return _tracer_provider is not None

    if _is_telemetry_disabled_by_env():
        logger.info(f"Telemetry disabled via {TELEMETRY_ENV_VAR}")
        _telemetry_initialized = True
        return False

    _config = config or TelemetryConfig()
    if service_name:
        _config.service_name = service_name
    if otlp_endpoint:
        _config.otlp_endpoint = otlp_endpoint

    try:
        resource_attrs = {
            SERVICE_NAME: _config.service_name,
            SERVICE_VERSION: _config.service_version,
            "deployment.environment": _config.environment,
        }
        resource_attrs.update(_config.resource_attributes)

        _tracer_provider = TracerProvider(resource=Resource.create(resource_attrs))
        span_exporter = OTLPSpanExporter(
            endpoint=_config.otlp_endpoint,
            insecure=_config.otlp_insecure,
        )
        _tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(_tracer_provider)
        logger.info(f"Tracing initialized, exporting to {_config.otlp_endpoint}")

        _telemetry_initialized = True
        return True

    except Exception as e:
        logger.error(f"Failed to initialize telemetry: {e}")
        _tracer_provider = None
        _telemetry_initialized = True
        return False


def shutdown_telemetry() -> None:
    """
    Flush pending spans and shut the tracer provider down.

    Call this before the process exits.
    """
    global _tracer_provider, _telemetry_initialized

    if not _telemetry_initialized or _tracer_provider is None:
        return

    try:
        _tracer_provider.force_flush(timeout_millis=5000)
        _tracer_provider.shutdown()
        logger.debug("Tracer provider shut down")
    except Exception as e:
        logger.warning(f"Error during telemetry shutdown: {e}")
    finally:
        _tracer_provider = None
        _telemetry_initialized = False


def get_tracer(name: str = "nobl9_sync") -> Any:
    """
    Get a tracer for creating spans.

    Args:
        name: Tracer name (typically module or component name)

    Returns:
        OpenTelemetry Tracer, or a NoOpTracer when disabled by environment
    """
    if _is_telemetry_disabled_by_env():
        return trace.NoOpTracer()

    return trace.get_tracer(name)


def is_telemetry_enabled() -> bool:
    """Check if telemetry is initialized and exporting."""
    return _telemetry_initialized and _tracer_provider is not None
