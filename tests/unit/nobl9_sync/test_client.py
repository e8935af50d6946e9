"""
Tests for the management API client.
"""

import httpx
import pytest

from src.common.exceptions import (
    ApiError,
    AuthenticationError,
    MissingConfigError,
    NotFoundError,
    RateLimitError,
    RetryExhaustedError,
    TransientError,
)
from src.common.resilience import OperationContext, RetryPolicy
from src.nobl9_sync.client import ManagementClient, raise_for_status
from src.nobl9_sync.config import SyncConfig

NO_DELAY = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0, jitter_factor=0.0)


class FakeApi:
    """Routes requests to canned responses and records them."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.users = {"alice@example.com": "00u-alice"}
        self.apply_responses: list[httpx.Response] = []
        self.organization_responses: list[httpx.Response] = []
        self.token_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/accessToken":
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="invalid client")
            return httpx.Response(200, json={"access_token": "token-123"})

        if request.headers.get("Authorization") != "Bearer token-123":
            return httpx.Response(401, text="unauthorized")

        if path == "/api/usrmgmt/v2/users":
            email = request.url.params["email"]
            if email == "boom@example.com":
                return httpx.Response(503, text="service unavailable")
            user_id = self.users.get(email)
            return httpx.Response(200, json={"users": [{"userId": user_id}] if user_id else []})

        if path == "/api/organization":
            if self.organization_responses:
                return self.organization_responses.pop(0)
            return httpx.Response(200, json={"name": "acme"})

        if path == "/api/apply":
            if self.apply_responses:
                return self.apply_responses.pop(0)
            return httpx.Response(200, json={})

        return httpx.Response(404, text="no route")

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def client(api):
    return ManagementClient(
        base_url="https://nobl9.test",
        client_id="client-id",
        client_secret="client-secret",
        organization="acme",
        apply_policy=NO_DELAY,
        probe_policy=NO_DELAY,
        transport=httpx.MockTransport(api),
    )


@pytest.fixture
def ctx():
    return OperationContext.background()


class TestStatusMapping:
    """Tests for raise_for_status."""

    @staticmethod
    def response(status: int, **kwargs) -> httpx.Response:
        request = httpx.Request("GET", "https://nobl9.test/api/thing")
        return httpx.Response(status, request=request, **kwargs)

    def test_success_does_not_raise(self):
        raise_for_status(self.response(200))

    @pytest.mark.parametrize(
        "status,error_type",
        [
            (404, NotFoundError),
            (401, AuthenticationError),
            (403, AuthenticationError),
            (429, RateLimitError),
            (500, TransientError),
            (502, TransientError),
            (503, TransientError),
            (400, ApiError),
            (422, ApiError),
        ],
    )
    def test_status_to_error(self, status, error_type):
        with pytest.raises(error_type):
            raise_for_status(self.response(status, text="details"))

    def test_rate_limit_retry_after(self):
        with pytest.raises(RateLimitError) as exc_info:
            raise_for_status(self.response(429, headers={"Retry-After": "7"}))
        assert exc_info.value.retry_after == 7.0

    def test_api_error_keeps_status(self):
        with pytest.raises(ApiError) as exc_info:
            raise_for_status(self.response(409, text="already exists"))
        assert exc_info.value.status_code == 409
        assert "already exists" in str(exc_info.value)


class TestManagementClient:
    """Tests for ManagementClient."""

    async def test_lookup_found(self, client, api, ctx):
        """Lookup exchanges credentials once and returns the user ID."""
        assert await client.lookup(ctx, "alice@example.com") == "00u-alice"
        assert await client.lookup(ctx, "alice@example.com") == "00u-alice"

        assert api.paths().count("/api/accessToken") == 1
        token_request = api.requests[0]
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert api.requests[1].headers["Organization"] == "acme"
        await client.close()

    async def test_lookup_missing_returns_none(self, client, ctx):
        assert await client.lookup(ctx, "ghost@example.com") is None
        await client.close()

    async def test_lookup_server_error_is_transient(self, client, ctx):
        with pytest.raises(TransientError):
            await client.lookup(ctx, "boom@example.com")
        await client.close()

    async def test_rejected_credentials(self, client, api, ctx):
        api.token_status = 401
        with pytest.raises(AuthenticationError):
            await client.lookup(ctx, "alice@example.com")
        await client.close()

    async def test_transport_error_is_transient(self, ctx):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ManagementClient(
            base_url="https://nobl9.test",
            client_id="id",
            client_secret="secret",
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(TransientError) as exc_info:
            await client.lookup(ctx, "alice@example.com")
        assert exc_info.value.code == "NETWORK"
        await client.close()

    async def test_check_connection(self, client, ctx):
        assert await client.check_connection(ctx) == "acme"
        await client.close()

    async def test_check_connection_retries(self, client, api, ctx):
        """Connectivity checks retry transient failures."""
        api.organization_responses = [httpx.Response(502), httpx.Response(503)]
        assert await client.check_connection(ctx) == "acme"
        assert api.paths().count("/api/organization") == 3
        await client.close()

    async def test_check_connection_gives_up(self, client, api, ctx):
        api.organization_responses = [httpx.Response(503)] * 3
        with pytest.raises(RetryExhaustedError):
            await client.check_connection(ctx)
        await client.close()

    async def test_apply_manifest(self, client, api, ctx):
        """Apply sends the YAML body with the dry-run flag."""
        await client.apply_manifest(ctx, "kind: Project\n", dry_run=True)

        request = api.requests[-1]
        assert request.method == "PUT"
        assert request.url.params["dryRun"] == "true"
        assert request.headers["Content-Type"] == "application/x-yaml"
        assert request.content == b"kind: Project\n"
        await client.close()

    async def test_apply_manifest_retries_rate_limit(self, client, api, ctx):
        api.apply_responses = [httpx.Response(429, text="too many requests")]
        await client.apply_manifest(ctx, "kind: Project\n")
        assert api.paths().count("/api/apply") == 2
        await client.close()

    async def test_apply_manifest_rejected(self, client, api, ctx):
        """Validation errors are not retried."""
        api.apply_responses = [httpx.Response(400, text="invalid manifest")]
        with pytest.raises(ApiError):
            await client.apply_manifest(ctx, "kind: Project\n")
        assert api.paths().count("/api/apply") == 1
        await client.close()

    async def test_context_manager_closes(self, api):
        async with ManagementClient(
            "https://nobl9.test", "id", "secret", transport=httpx.MockTransport(api)
        ) as client:
            await client.lookup(OperationContext.background(), "alice@example.com")
        assert client._client is None

    def test_from_config_requires_credentials(self):
        with pytest.raises(MissingConfigError):
            ManagementClient.from_config(SyncConfig())

    def test_from_config(self):
        config = SyncConfig(client_id="id", client_secret="secret", api_url="https://x.test/")
        client = ManagementClient.from_config(config)
        assert client._base_url == "https://x.test"
