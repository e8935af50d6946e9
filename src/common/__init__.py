"""
Shared infrastructure for nobl9-sync.

- exceptions: Structured error hierarchy with explicit error kinds
- resilience: Retry executor, backoff policies, cancellation context
- logging: Log sanitization and formatting
- telemetry: OpenTelemetry tracing helpers
"""
