"""
Log Sanitization

Provides filters and utilities for redacting credentials from logs.
"""

from __future__ import annotations

import logging
import re
from re import Pattern
from typing import Any

# Patterns for sensitive data that should be redacted
SENSITIVE_PATTERNS: list[tuple[str, Pattern[str]]] = [
    (
        "CLIENT_SECRET",
        re.compile(r"(client[_-]?secret)\s*[=:]\s*['\"]?[^\s'\"&,]{8,}['\"]?", re.IGNORECASE),
    ),
    (
        "ACCESS_TOKEN",
        re.compile(
            r"(access[_-]?token|auth[_-]?token)['\"]?\s*[=:]\s*['\"]?[\w\-\.]{20,}['\"]?",
            re.IGNORECASE,
        ),
    ),
    (
        "SECRET",
        re.compile(
            r"(secret|password|passwd|pwd)\s*[=:]\s*['\"]?[^\s'\"]{8,}['\"]?", re.IGNORECASE
        ),
    ),
    # Bearer tokens in headers
    ("BEARER", re.compile(r"Bearer\s+[a-zA-Z0-9\-_\.]+", re.IGNORECASE)),
    # Basic auth headers (base64 encoded client credentials)
    ("BASIC_AUTH", re.compile(r"Basic\s+[a-zA-Z0-9+/=]{20,}", re.IGNORECASE)),
]

# Placeholder for redacted content
REDACTION_PLACEHOLDER = "[REDACTED]"


class SanitizingFilter(logging.Filter):
    """
    A logging filter that redacts credentials from log messages.

    Applies pattern matching to detect and redact client secrets, access
    tokens and authorization headers.

    Usage:
        handler.addFilter(SanitizingFilter())
    """

    def __init__(
        self,
        name: str = "",
        additional_patterns: list[tuple[str, Pattern[str]]] | None = None,
        redaction_placeholder: str = REDACTION_PLACEHOLDER,
        secrets: list[str] | None = None,
    ):
        """
        Initialize the sanitizing filter.

        Args:
            name: Filter name (passed to parent)
            additional_patterns: Extra patterns to redact beyond defaults
            redaction_placeholder: Text to replace sensitive data with
            secrets: Literal values (e.g. the configured client secret) to redact
        """
        super().__init__(name)
        self._patterns = list(SENSITIVE_PATTERNS)
        if additional_patterns:
            self._patterns.extend(additional_patterns)
        self._placeholder = redaction_placeholder
        self._secrets = [s for s in (secrets or []) if s]

    def filter(self, record: logging.LogRecord) -> bool:
        """Sanitize the record in place. Always lets the record through."""
        if record.msg:
            record.msg = self._sanitize(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._sanitize_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._sanitize_value(arg) for arg in record.args)

        return True

    def _sanitize(self, text: str) -> str:
        result = text
        for secret in self._secrets:
            result = result.replace(secret, self._placeholder)
        for pattern_name, pattern in self._patterns:
            result = pattern.sub(f"{pattern_name}={self._placeholder}", result)
        return result

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._sanitize(value)
        return value
