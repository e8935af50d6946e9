"""
Pytest configuration for unit tests.

Disables telemetry and clears credentials picked up from the environment.
"""

import os

import pytest


def pytest_configure(config):
    """Configure telemetry for unit tests."""
    # Disable telemetry for unit tests to avoid OTEL SDK conflicts with mocks
    # This ensures get_tracer() returns NoOpTracer instead of real tracer
    os.environ["NOBL9_SYNC_TELEMETRY_ENABLED"] = "false"


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep real credentials, action inputs and .env files out of unit tests."""
    for name in list(os.environ):
        if name.startswith(("NOBL9_", "INPUT_", "GITHUB_")) and name != "NOBL9_SYNC_TELEMETRY_ENABLED":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
