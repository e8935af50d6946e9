"""
nobl9-sync Configuration

Configuration settings using pydantic-settings for environment variable support.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.common.exceptions import MissingConfigError

VALID_LOG_LEVELS = ("debug", "info", "warn", "error")
VALID_LOG_FORMATS = ("json", "text")

# GitHub Actions input name -> SyncConfig field
ACTION_INPUTS: dict[str, str] = {
    "INPUT_CLIENT_ID": "client_id",
    "INPUT_CLIENT_SECRET": "client_secret",
    "INPUT_API_URL": "api_url",
    "INPUT_REPO_PATH": "repo_path",
    "INPUT_FILE_PATTERN": "file_pattern",
    "INPUT_DRY_RUN": "dry_run",
    "INPUT_FORCE": "force",
    "INPUT_VALIDATE_ONLY": "validate_only",
    "INPUT_ALLOW_UNRESOLVED": "allow_unresolved",
    "INPUT_LOG_LEVEL": "log_level",
    "INPUT_LOG_FORMAT": "log_format",
}


class SyncConfig(BaseSettings):
    """
    Configuration for a sync run.

    Reads from environment variables with NOBL9_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOBL9_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Settings
    api_url: str = Field(
        default="https://app.nobl9.com",
        description="Base URL of the Nobl9 management API",
    )
    client_id: str | None = Field(
        default=None,
        description="Nobl9 client ID",
    )
    client_secret: SecretStr | None = Field(
        default=None,
        description="Nobl9 client secret",
    )
    organization: str | None = Field(
        default=None,
        description="Organization sent with every request (optional)",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request HTTP timeout",
    )

    # Resilience Settings
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum attempts per remote call",
    )
    resolver_max_concurrency: int = Field(
        default=10,
        ge=1,
        description="Maximum concurrent identity lookups",
    )
    cache_ttl_seconds: float | None = Field(
        default=1800.0,
        description="Identity cache TTL; unset disables expiry",
    )

    # Repository Settings
    repo_path: str = Field(
        default=".",
        min_length=1,
        description="Repository root to scan for manifests",
    )
    file_pattern: str = Field(
        default="**/*.yaml",
        min_length=1,
        description="Glob pattern for manifest files",
    )

    # Processing Settings
    dry_run: bool = Field(
        default=False,
        description="Validate against the API without applying changes",
    )
    force: bool = Field(
        default=False,
        description="Apply files even when some of them failed to parse",
    )
    validate_only: bool = Field(
        default=False,
        description="Parse and resolve only; never call apply",
    )
    allow_unresolved: bool = Field(
        default=False,
        description="Apply manifests even when some users could not be resolved",
    )

    # Logging Settings
    log_level: str = Field(
        default="info",
        description="Log level (debug, info, warn, error)",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format",
    )

    # Telemetry Settings
    telemetry_enabled: bool = Field(
        default=False,
        description="Export traces over OTLP",
    )
    otlp_endpoint: str | None = Field(
        default=None,
        description="OTLP collector endpoint (OTEL_EXPORTER_OTLP_ENDPOINT if unset)",
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in VALID_LOG_LEVELS:
            raise ValueError(f"invalid log level: {value} (valid: {', '.join(VALID_LOG_LEVELS)})")
        return value

    @field_validator("log_format", mode="before")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = str(value).lower()
        if value not in VALID_LOG_FORMATS:
            raise ValueError(
                f"invalid log format: {value} (valid: {', '.join(VALID_LOG_FORMATS)})"
            )
        return value

    @field_validator("cache_ttl_seconds")
    @classmethod
    def _check_ttl(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("cache TTL must be positive")
        return value

    def require_credentials(self) -> tuple[str, str]:
        """Get the client credentials, or raise if either is missing."""
        if not self.client_id:
            raise MissingConfigError("client_id", "Set NOBL9_CLIENT_ID or the client-id input.")
        if self.client_secret is None or not self.client_secret.get_secret_value():
            raise MissingConfigError(
                "client_secret", "Set NOBL9_CLIENT_SECRET or the client-secret input."
            )
        return self.client_id, self.client_secret.get_secret_value()

    @property
    def environment(self) -> str:
        """Best-effort environment name derived from the client ID."""
        client_id = (self.client_id or "").lower()
        for name in ("dev", "staging", "prod"):
            if name in client_id:
                return name
        return "unknown"

    @classmethod
    def from_action_inputs(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> SyncConfig:
        """
        Load configuration with GitHub Actions inputs layered on top.

        INPUT_* variables win over NOBL9_* variables; explicit keyword
        overrides win over both. Empty inputs are ignored.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for env_name, field_name in ACTION_INPUTS.items():
            value = environ.get(env_name)
            if value:
                values[field_name] = value
        if environ.get("GITHUB_WORKSPACE") and "repo_path" not in values:
            values["repo_path"] = environ["GITHUB_WORKSPACE"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
