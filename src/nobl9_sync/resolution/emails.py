"""
Email Helpers

Lightweight email validation and extraction from free-form manifest text.
"""

from __future__ import annotations

from src.nobl9_sync.resolution.models import normalize_identity

_STRIP_CHARS = "[]{}:,\"'"


def is_valid_email(email: str) -> bool:
    """
    Check that a string looks like an email address.

    This is a structural check only: exactly one "@", a local part of 1-64
    characters and a dotted domain of 1-255 characters.
    """
    parts = email.split("@")
    if len(parts) != 2:
        return False

    local, domain = parts
    if not 0 < len(local) <= 64:
        return False
    if not 0 < len(domain) <= 255:
        return False
    return "." in domain


def validate_emails(emails: list[str]) -> list[str]:
    """Return a message for every malformed address."""
    return [f"invalid email format: {email}" for email in emails if not is_valid_email(email)]


def extract_emails_from_text(text: str) -> list[str]:
    """
    Extract unique email addresses from YAML or any other text.

    Scans whitespace-separated words, strips YAML punctuation around them,
    and keeps valid addresses. Results are normalized and deduplicated in
    order of first appearance.
    """
    emails: dict[str, None] = {}
    for line in text.splitlines():
        if "@" not in line or "." not in line:
            continue
        for word in line.split():
            word = word.strip(_STRIP_CHARS)
            if is_valid_email(word):
                emails.setdefault(normalize_identity(word), None)
    return list(emails)
