"""
Identity Resolution

Resolves email addresses in manifests to the user IDs the management API
expects, with caching, retries and bounded concurrency.
"""

from src.nobl9_sync.resolution.cache import DEFAULT_TTL_SECONDS, IdentityCache
from src.nobl9_sync.resolution.emails import (
    extract_emails_from_text,
    is_valid_email,
    validate_emails,
)
from src.nobl9_sync.resolution.models import (
    BatchOutcome,
    CacheEntry,
    ResolutionOutcome,
    normalize_identity,
)
from src.nobl9_sync.resolution.protocols import IdentityProvider
from src.nobl9_sync.resolution.resolver import DEFAULT_MAX_CONCURRENCY, BatchResolver

__all__ = [
    "BatchOutcome",
    "BatchResolver",
    "CacheEntry",
    "DEFAULT_MAX_CONCURRENCY",
    "DEFAULT_TTL_SECONDS",
    "IdentityCache",
    "IdentityProvider",
    "ResolutionOutcome",
    "extract_emails_from_text",
    "is_valid_email",
    "normalize_identity",
    "validate_emails",
]
