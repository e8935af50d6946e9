"""
Nobl9 Management API Client

HTTP client for the management API. Acts as the IdentityProvider for the
resolver and exposes the manifest apply and connectivity check operations.

Every request made here is a single attempt. Retrying is the job of the
RetryExecutor: lookup() is retried by the resolver, while apply_manifest()
and check_connection() wrap themselves in an executor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from src.common.exceptions import (
    ApiError,
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    TransientError,
)
from src.common.resilience import (
    OperationContext,
    RetryExecutor,
    RetryPolicy,
    api_policy,
    network_policy,
)
from src.common.telemetry import get_tracer, trace_async
from src.nobl9_sync.config import SyncConfig

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

TOKEN_PATH = "/api/accessToken"
USERS_PATH = "/api/usrmgmt/v2/users"
ORGANIZATION_PATH = "/api/organization"
APPLY_PATH = "/api/apply"

YAML_CONTENT_TYPE = "application/x-yaml"


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_status(response: httpx.Response) -> None:
    """
    Map an unsuccessful response to the matching SyncError.

    404 is NotFoundError, 401/403 AuthenticationError, 429 RateLimitError,
    5xx TransientError and any other 4xx ApiError.
    """
    if response.is_success:
        return

    status = response.status_code
    detail = response.text.strip()[:200] or response.reason_phrase
    message = f"{response.request.method} {response.request.url.path} returned {status}: {detail}"

    if status == 404:
        raise NotFoundError(message)
    if status in (401, 403):
        raise AuthenticationError(message)
    if status == 429:
        raise RateLimitError(message, retry_after=_parse_retry_after(response))
    if status >= 500:
        raise TransientError(message, code=f"HTTP_{status}")
    raise ApiError(message, status_code=status)


class ManagementClient:
    """
    Async client for the Nobl9 management API.

    Authenticates with client credentials: the first request exchanges them
    for an access token, which is reused until the API rejects it.

    Example:
        async with ManagementClient.from_config(config) as client:
            await client.check_connection(ctx)
            user_id = await client.lookup(ctx, "alice@example.com")
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        organization: str | None = None,
        timeout_seconds: float = 30.0,
        retry_max_attempts: int = 3,
        executor: RetryExecutor | None = None,
        apply_policy: RetryPolicy | None = None,
        probe_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the management API
            client_id: Client ID for the token exchange
            client_secret: Client secret for the token exchange
            organization: Organization header value (optional)
            timeout_seconds: Per-request timeout
            retry_max_attempts: Attempts for apply and connectivity calls
            executor: Retry executor for apply and connectivity calls
            apply_policy: Policy for apply calls (API preset by default)
            probe_policy: Policy for connectivity checks (network preset by default)
            transport: httpx transport override (used by tests)
        """
        self._base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._organization = organization
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._executor = executor or RetryExecutor()
        self._apply_policy = apply_policy or api_policy(retry_max_attempts)
        self._probe_policy = probe_policy or network_policy(retry_max_attempts)

        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        executor: RetryExecutor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ManagementClient:
        """Build a client from configuration. Raises if credentials are missing."""
        client_id, client_secret = config.require_credentials()
        return cls(
            base_url=config.api_url,
            client_id=client_id,
            client_secret=client_secret,
            organization=config.organization,
            timeout_seconds=config.timeout_seconds,
            retry_max_attempts=config.retry_max_attempts,
            executor=executor,
            transport=transport,
        )

    async def __aenter__(self) -> ManagementClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._organization:
                headers["Organization"] = self._organization

            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request, translating transport failures to TransientError."""
        client = await self._get_client()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"timeout calling {path}", code="TIMEOUT") from e
        except httpx.TransportError as e:
            raise TransientError(f"network error calling {path}", code="NETWORK") from e

    async def _get_token(self) -> str:
        async with self._token_lock:
            if self._access_token is None:
                response = await self._send(
                    "POST",
                    TOKEN_PATH,
                    auth=httpx.BasicAuth(self._client_id, self._client_secret),
                )
                raise_for_status(response)
                token = response.json().get("access_token")
                if not token:
                    raise AuthenticationError("token response did not include an access token")
                self._access_token = token
                logger.debug("Obtained access token")
            return self._access_token

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Authenticated request. A rejected token is dropped for the next call."""
        token = await self._get_token()
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {token}"

        response = await self._send(method, path, headers=headers, **kwargs)
        if response.status_code == 401:
            self._access_token = None
        raise_for_status(response)
        return response

    @trace_async("nobl9.lookup_user")
    async def lookup(self, ctx: OperationContext, identity: str) -> str | None:
        """
        Look up the user ID for an email address.

        Returns:
            The user ID, or None if no user has that email
        """
        ctx.raise_if_cancelled()
        response = await ctx.run(self._request("GET", USERS_PATH, params={"email": identity}))
        data = response.json()

        users = data.get("users", []) if isinstance(data, dict) else data
        for user in users or []:
            user_id = user.get("userId") or user.get("id")
            if user_id:
                return str(user_id)
        return None

    @trace_async("nobl9.get_organization")
    async def get_organization(self, ctx: OperationContext) -> str:
        """Get the organization the credentials belong to (one attempt)."""
        ctx.raise_if_cancelled()
        response = await ctx.run(self._request("GET", ORGANIZATION_PATH))
        data = response.json()
        return str(data.get("name") or data.get("organization") or "")

    async def check_connection(self, ctx: OperationContext) -> str:
        """
        Verify credentials and connectivity, retrying network failures.

        Returns:
            The organization name

        Raises:
            SyncError: If the API cannot be reached or rejects the credentials
        """
        with tracer.start_as_current_span("nobl9.check_connection"):
            outcome = await self._executor.execute(
                ctx, self._probe_policy, "check connection", self.get_organization
            )
            organization = outcome.unwrap()
            logger.info(f"Connected to Nobl9 organization '{organization}'")
            return organization

    async def apply_manifest(
        self,
        ctx: OperationContext,
        content: str,
        dry_run: bool = False,
    ) -> None:
        """
        Apply a YAML manifest, retrying transient failures.

        Args:
            ctx: Cancellation context
            content: Multi-document YAML to apply
            dry_run: Ask the API to validate without persisting

        Raises:
            SyncError: If the manifest is rejected or every attempt failed
        """
        with tracer.start_as_current_span("nobl9.apply_manifest") as span:
            span.set_attribute("manifest.dry_run", dry_run)
            span.set_attribute("manifest.bytes", len(content))

            async def apply(op_ctx: OperationContext) -> None:
                await self._request(
                    "PUT",
                    APPLY_PATH,
                    params={"dryRun": "true" if dry_run else "false"},
                    content=content.encode("utf-8"),
                    headers={"Content-Type": YAML_CONTENT_TYPE},
                )

            label = "apply manifest (dry run)" if dry_run else "apply manifest"
            outcome = await self._executor.execute(ctx, self._apply_policy, label, apply)
            outcome.unwrap()
