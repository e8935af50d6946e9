"""
Batch Identity Resolver

Resolves identities (email addresses) to user IDs through an IdentityProvider:
- Cache of positive and negative results
- Retry with exponential backoff for transient failures
- Bounded concurrency for batches
- Cooperative cancellation through an OperationContext
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from src.common.exceptions import ErrorKind, NotFoundError, OperationCancelledError
from src.common.resilience import (
    OperationContext,
    RetryExecutor,
    RetryPolicy,
    api_policy,
)
from src.common.telemetry import get_tracer
from src.nobl9_sync.resolution.cache import IdentityCache
from src.nobl9_sync.resolution.emails import extract_emails_from_text
from src.nobl9_sync.resolution.models import (
    BatchOutcome,
    CacheEntry,
    ResolutionOutcome,
    normalize_identity,
)
from src.nobl9_sync.resolution.protocols import IdentityProvider

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

DEFAULT_MAX_CONCURRENCY = 10


class BatchResolver:
    """
    Resolves single identities and batches of identities.

    Remote failures never raise out of resolve_one/resolve_many: every
    input gets a ResolutionOutcome describing what happened to it. Only
    native asyncio task cancellation propagates.

    Example:
        resolver = BatchResolver(client, IdentityCache(ttl=1800))
        batch = await resolver.resolve_many(ctx, ["alice@example.com", "bob@example.com"])
        user_ids = batch.resolved_ids()
    """

    def __init__(
        self,
        provider: IdentityProvider,
        cache: IdentityCache | None = None,
        executor: RetryExecutor | None = None,
        policy: RetryPolicy | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        """
        Initialize the resolver.

        Args:
            provider: Remote lookup used on cache misses
            cache: Cache owned by this resolver (a fresh one if not provided)
            executor: Retry executor for provider calls
            policy: Retry policy for provider calls (API preset by default)
            max_concurrency: Maximum in-flight provider calls per batch
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._provider = provider
        self._cache = cache if cache is not None else IdentityCache()
        self._executor = executor or RetryExecutor()
        self._policy = policy or api_policy()
        self._max_concurrency = max_concurrency

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    async def resolve_one(self, ctx: OperationContext, identity: str) -> ResolutionOutcome:
        """
        Resolve a single identity, consulting the cache first.

        Returns:
            ResolutionOutcome for the identity (never raises for remote failures)
        """
        return await self._resolve(ctx, identity, gate=None)

    async def resolve_many(self, ctx: OperationContext, identities: list[str]) -> BatchOutcome:
        """
        Resolve a batch of identities concurrently.

        Each position is resolved independently, duplicates included. At most
        max_concurrency provider calls are in flight at once.

        Returns:
            BatchOutcome whose results line up with identities by index
        """
        if not identities:
            return BatchOutcome()

        start = time.perf_counter()
        with tracer.start_as_current_span("identity.resolve_many") as span:
            span.set_attribute("resolution.total", len(identities))
            span.set_attribute("resolution.max_concurrency", self._max_concurrency)

            gate = asyncio.Semaphore(self._max_concurrency)
            results = await asyncio.gather(
                *(self._resolve(ctx, identity, gate) for identity in identities)
            )
            batch = BatchOutcome.from_results(list(results), time.perf_counter() - start)

            span.set_attribute("resolution.resolved", batch.resolved_count)
            span.set_attribute("resolution.errors", batch.error_count)
            span.set_attribute("resolution.cache_hits", batch.cache_hits)
            span.set_attribute("resolution.cancelled", batch.cancelled_count)

        logger.info(
            f"Resolved {batch.resolved_count}/{batch.total} identities "
            f"({batch.cache_hits} cached, {batch.error_count} failed, "
            f"{batch.cancelled_count} cancelled) in {batch.duration:.2f}s"
        )
        return batch

    async def resolve_text(self, ctx: OperationContext, text: str) -> BatchOutcome:
        """Extract email addresses from manifest text and resolve them."""
        emails = extract_emails_from_text(text)
        if not emails:
            logger.info("No emails found in manifest content")
            return BatchOutcome()
        logger.info(f"Extracted {len(emails)} emails from manifest content")
        return await self.resolve_many(ctx, emails)

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("Identity cache cleared")

    async def _resolve(
        self,
        ctx: OperationContext,
        identity: str,
        gate: asyncio.Semaphore | None,
    ) -> ResolutionOutcome:
        start = time.perf_counter()
        key = normalize_identity(identity)

        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {key} (found={cached.found})")
            return ResolutionOutcome(
                input=identity,
                identity=key,
                resolved_value=cached.value,
                resolved=cached.found,
                error=cached.error,
                duration=time.perf_counter() - start,
                from_cache=True,
            )

        if gate is None:
            return await self._lookup(ctx, identity, key, start)

        try:
            await ctx.run(gate.acquire())
        except OperationCancelledError as e:
            logger.debug(f"Lookup of {key} cancelled while waiting for a slot")
            return ResolutionOutcome(
                input=identity,
                identity=key,
                error=e,
                duration=time.perf_counter() - start,
                cancelled=True,
            )
        try:
            return await self._lookup(ctx, identity, key, start)
        finally:
            gate.release()

    async def _lookup(
        self,
        ctx: OperationContext,
        identity: str,
        key: str,
        start: float,
    ) -> ResolutionOutcome:
        async def lookup(op_ctx: OperationContext) -> str:
            value = await self._provider.lookup(op_ctx, key)
            if value is None:
                raise NotFoundError(f"user not found: {key}")
            return value

        outcome = await self._executor.execute(ctx, self._policy, f"lookup {key}", lookup)
        duration = time.perf_counter() - start

        if outcome.success:
            self._cache.set(key, CacheEntry.positive(key, outcome.final_result))
            logger.debug(f"Resolved {key} after {outcome.attempts} attempts")
            return ResolutionOutcome(
                input=identity,
                identity=key,
                resolved_value=outcome.final_result,
                resolved=True,
                duration=duration,
                attempts=outcome.attempts,
            )

        if outcome.cancelled:
            return ResolutionOutcome(
                input=identity,
                identity=key,
                error=outcome.last_error,
                duration=duration,
                cancelled=True,
                attempts=outcome.attempts,
            )

        if outcome.error_kind == ErrorKind.NOT_FOUND:
            self._cache.set(key, CacheEntry.negative(key, outcome.last_error))
            logger.info(f"User not found: {key}")
        else:
            logger.warning(f"Failed to resolve {key}: {outcome.last_error}")

        return ResolutionOutcome(
            input=identity,
            identity=key,
            error=outcome.last_error,
            duration=duration,
            attempts=outcome.attempts,
        )

