"""
Tests for SyncConfig.
"""

import pytest
from pydantic import ValidationError

from src.common.exceptions import MissingConfigError
from src.nobl9_sync.config import SyncConfig


class TestSyncConfig:
    """Tests for SyncConfig loading and validation."""

    def test_defaults(self):
        config = SyncConfig()
        assert config.api_url == "https://app.nobl9.com"
        assert config.repo_path == "."
        assert config.file_pattern == "**/*.yaml"
        assert config.retry_max_attempts == 3
        assert config.resolver_max_concurrency == 10
        assert config.cache_ttl_seconds == 1800.0
        assert config.log_level == "info"
        assert config.log_format == "text"
        assert not config.dry_run
        assert not config.telemetry_enabled

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("NOBL9_CLIENT_ID", "env-id")
        monkeypatch.setenv("NOBL9_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("NOBL9_DRY_RUN", "true")
        monkeypatch.setenv("NOBL9_RESOLVER_MAX_CONCURRENCY", "4")

        config = SyncConfig()

        assert config.require_credentials() == ("env-id", "env-secret")
        assert config.dry_run
        assert config.resolver_max_concurrency == 4

    def test_secret_is_masked(self):
        config = SyncConfig(client_secret="hunter2-hunter2")
        assert "hunter2" not in repr(config)

    @pytest.mark.parametrize("level", ["DEBUG", "info", "Warn", "error"])
    def test_valid_log_levels(self, level):
        assert SyncConfig(log_level=level).log_level == level.lower()

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError, match="invalid log level"):
            SyncConfig(log_level="verbose")

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError, match="invalid log format"):
            SyncConfig(log_format="xml")

    def test_invalid_ttl(self):
        with pytest.raises(ValidationError):
            SyncConfig(cache_ttl_seconds=0)

    def test_missing_credentials(self):
        with pytest.raises(MissingConfigError, match="client_id"):
            SyncConfig().require_credentials()
        with pytest.raises(MissingConfigError, match="client_secret"):
            SyncConfig(client_id="id").require_credentials()

    @pytest.mark.parametrize(
        "client_id,environment",
        [("dev-client", "dev"), ("acme-staging", "staging"), ("PROD-1", "prod"), ("x", "unknown")],
    )
    def test_environment(self, client_id, environment):
        assert SyncConfig(client_id=client_id).environment == environment


class TestActionInputs:
    """Tests for SyncConfig.from_action_inputs."""

    def test_inputs_override_environment(self, monkeypatch):
        monkeypatch.setenv("NOBL9_CLIENT_ID", "env-id")
        environ = {
            "INPUT_CLIENT_ID": "input-id",
            "INPUT_CLIENT_SECRET": "input-secret",
            "INPUT_DRY_RUN": "true",
            "INPUT_LOG_FORMAT": "json",
            "INPUT_FILE_PATTERN": "",
        }

        config = SyncConfig.from_action_inputs(environ)

        assert config.require_credentials() == ("input-id", "input-secret")
        assert config.dry_run
        assert config.log_format == "json"
        assert config.file_pattern == "**/*.yaml"

    def test_falls_back_to_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("NOBL9_CLIENT_ID", "env-id")
        monkeypatch.setenv("NOBL9_CLIENT_SECRET", "env-secret")

        config = SyncConfig.from_action_inputs({})

        assert config.require_credentials() == ("env-id", "env-secret")

    def test_workspace_is_default_repo_path(self):
        config = SyncConfig.from_action_inputs({"GITHUB_WORKSPACE": "/github/workspace"})
        assert config.repo_path == "/github/workspace"

    def test_explicit_overrides_win(self):
        config = SyncConfig.from_action_inputs(
            {"INPUT_REPO_PATH": "manifests"}, repo_path="other", dry_run=None
        )
        assert config.repo_path == "other"
        assert not config.dry_run

    def test_invalid_input_rejected(self):
        with pytest.raises(ValidationError):
            SyncConfig.from_action_inputs({"INPUT_LOG_LEVEL": "loud"})
