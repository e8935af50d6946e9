"""
Identity Resolution Models

Value types passed between the cache, the resolver and its callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field


def normalize_identity(identity: str) -> str:
    """Canonical cache key for an identity: trimmed and lower-cased."""
    return identity.strip().lower()


@dataclass(frozen=True)
class CacheEntry:
    """
    A remembered lookup result.

    A positive entry has found=True and a value; a negative entry has
    found=False and the error that proved the identity does not exist.
    """

    key: str
    value: str | None = None
    found: bool = True
    error: Exception | None = None
    inserted_at: float = 0.0

    def __post_init__(self) -> None:
        if self.found and (self.value is None or self.error is not None):
            raise ValueError("positive cache entry needs a value and no error")
        if not self.found and (self.value is not None or self.error is None):
            raise ValueError("negative cache entry needs an error and no value")

    @classmethod
    def positive(cls, key: str, value: str, inserted_at: float = 0.0) -> CacheEntry:
        return cls(key=key, value=value, found=True, inserted_at=inserted_at)

    @classmethod
    def negative(cls, key: str, error: Exception, inserted_at: float = 0.0) -> CacheEntry:
        return cls(key=key, found=False, error=error, inserted_at=inserted_at)


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of resolving one identity."""

    input: str  # As supplied by the caller
    identity: str  # Normalized key
    resolved_value: str | None = None
    resolved: bool = False
    error: Exception | None = None
    duration: float = 0.0
    from_cache: bool = False
    cancelled: bool = False
    attempts: int = 0


@dataclass
class BatchOutcome:
    """Results of one resolve_many call, in input order."""

    results: list[ResolutionOutcome] = field(default_factory=list)
    total: int = 0
    resolved_count: int = 0
    error_count: int = 0
    cache_hits: int = 0
    cancelled_count: int = 0
    duration: float = 0.0

    @classmethod
    def from_results(cls, results: list[ResolutionOutcome], duration: float) -> BatchOutcome:
        return cls(
            results=results,
            total=len(results),
            resolved_count=sum(1 for r in results if r.resolved),
            error_count=sum(1 for r in results if not r.resolved and not r.cancelled),
            cache_hits=sum(1 for r in results if r.from_cache),
            cancelled_count=sum(1 for r in results if r.cancelled),
            duration=duration,
        )

    def resolved_ids(self) -> dict[str, str]:
        """Map of normalized identity to resolved value for resolved items."""
        return {r.identity: r.resolved_value for r in self.results if r.resolved and r.resolved_value}

    def unresolved(self) -> list[str]:
        """Normalized identities that were not resolved, first occurrence order."""
        seen: dict[str, None] = {}
        for r in self.results:
            if not r.resolved:
                seen.setdefault(r.identity, None)
        return list(seen)

    @property
    def errors(self) -> list[Exception]:
        return [r.error for r in self.results if r.error is not None]
