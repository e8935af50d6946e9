"""
Common Logging Utilities

Provides log formatting, setup and credential redaction.
"""

from src.common.logging.formatters import LEVELS, JsonFormatter, configure_logging
from src.common.logging.sanitizer import REDACTION_PLACEHOLDER, SanitizingFilter

__all__ = [
    "LEVELS",
    "JsonFormatter",
    "configure_logging",
    "REDACTION_PLACEHOLDER",
    "SanitizingFilter",
]
