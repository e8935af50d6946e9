"""
Tests for ManifestProcessor.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from src.common.exceptions import ApiError, ManifestError, NotFoundError, TransientError
from src.common.resilience import OperationContext, RetryPolicy
from src.nobl9_sync.processor import ManifestProcessor
from src.nobl9_sync.resolution import BatchResolver

NO_DELAY = RetryPolicy(max_attempts=2, initial_delay=0.0, max_delay=0.0, jitter_factor=0.0)

PROJECT = """\
apiVersion: n9/v1alpha
kind: Project
metadata:
  name: payments
"""

BINDING = """\
apiVersion: n9/v1alpha
kind: RoleBinding
metadata:
  name: payments-owner
spec:
  user: {user}
  roleRef: project-owner
  projectRef: payments
"""


class DictProvider:
    def __init__(self, users):
        self.users = users
        self.calls = []

    async def lookup(self, ctx, identity):
        self.calls.append(identity)
        if identity in self.users:
            return self.users[identity]
        raise NotFoundError(f"user not found: {identity}")


@pytest.fixture
def client():
    client = MagicMock()
    client.apply_manifest = AsyncMock(return_value=None)
    return client


@pytest.fixture
def provider():
    return DictProvider({"alice@example.com": "00u-alice", "bob@example.com": "00u-bob"})


@pytest.fixture
def resolver(provider):
    return BatchResolver(provider, policy=NO_DELAY)


@pytest.fixture
def ctx():
    return OperationContext.background()


def write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)
    return path


class TestManifestProcessor:
    """Tests for ManifestProcessor.process_files."""

    async def test_applies_with_resolved_user_ids(self, tmp_path, client, resolver, ctx):
        """Emails are replaced by user IDs before applying."""
        paths = [
            write(tmp_path, "project.yaml", PROJECT),
            write(tmp_path, "binding.yaml", BINDING.format(user="Alice@Example.com")),
        ]

        result = await ManifestProcessor(client, resolver).process_files(ctx, paths)

        assert result.is_success
        assert result.files_processed == 2
        assert result.manifests_applied == 2
        assert result.projects == 1
        assert result.role_bindings == 1
        assert result.users_resolved == 1
        assert client.apply_manifest.await_count == 2

        applied = client.apply_manifest.await_args_list[1].args[1]
        document = yaml.safe_load(applied)
        assert document["spec"]["user"] == "00u-alice"
        assert client.apply_manifest.await_args_list[1].kwargs["dry_run"] is False

    async def test_emails_resolved_once_across_files(self, tmp_path, client, resolver, provider, ctx):
        paths = [
            write(tmp_path, "a.yaml", BINDING.format(user="alice@example.com")),
            write(tmp_path, "b.yaml", BINDING.format(user="ALICE@example.com")),
        ]

        await ManifestProcessor(client, resolver).process_files(ctx, paths)

        assert provider.calls == ["alice@example.com"]

    async def test_dry_run(self, tmp_path, client, resolver, ctx):
        paths = [write(tmp_path, "project.yaml", PROJECT)]

        result = await ManifestProcessor(client, resolver).process_files(ctx, paths, dry_run=True)

        assert result.is_success
        assert client.apply_manifest.await_args.kwargs["dry_run"] is True

    async def test_validate_only_never_applies(self, tmp_path, client, resolver, ctx):
        paths = [write(tmp_path, "binding.yaml", BINDING.format(user="bob@example.com"))]

        result = await ManifestProcessor(client, resolver).process_files(
            ctx, paths, validate_only=True
        )

        assert result.is_success
        assert result.users_resolved == 1
        assert result.manifests_applied == 0
        client.apply_manifest.assert_not_awaited()

    async def test_skips_foreign_files(self, tmp_path, client, resolver, ctx):
        paths = [
            write(tmp_path, "workflow.yaml", "name: ci\non: push\n"),
            write(tmp_path, "template.yaml", "{{ not yaml: [\n"),
        ]

        result = await ManifestProcessor(client, resolver).process_files(ctx, paths)

        assert result.is_success
        assert result.files_skipped == 2
        assert result.files_processed == 0
        client.apply_manifest.assert_not_awaited()

    async def test_unresolved_users_block_apply(self, tmp_path, client, resolver, ctx):
        paths = [
            write(tmp_path, "project.yaml", PROJECT),
            write(tmp_path, "binding.yaml", BINDING.format(user="ghost@example.com")),
        ]

        result = await ManifestProcessor(client, resolver).process_files(ctx, paths)

        assert not result.is_success
        assert result.unresolved_emails == ["ghost@example.com"]
        assert result.users_unresolved == 1
        assert result.files_with_errors == 1
        assert isinstance(result.errors[0], ManifestError)
        # The file without unresolved users is still applied
        assert client.apply_manifest.await_count == 1

    async def test_allow_unresolved(self, tmp_path, client, resolver, ctx):
        paths = [write(tmp_path, "binding.yaml", BINDING.format(user="ghost@example.com"))]

        result = await ManifestProcessor(client, resolver, allow_unresolved=True).process_files(
            ctx, paths
        )

        assert result.is_success
        assert len(result.warnings) == 1
        applied = yaml.safe_load(client.apply_manifest.await_args.args[1])
        assert applied["spec"]["user"] == "ghost@example.com"

    async def test_invalid_file_blocks_apply(self, tmp_path, client, resolver, ctx):
        """A broken Nobl9 file stops the run from applying anything."""
        paths = [
            write(tmp_path, "project.yaml", PROJECT),
            write(tmp_path, "broken.yaml", "apiVersion: n9/v1alpha\nkind: [Project\n"),
        ]

        result = await ManifestProcessor(client, resolver).process_files(ctx, paths)

        assert not result.is_success
        assert result.files_with_errors == 1
        assert isinstance(result.errors[0], ManifestError)
        client.apply_manifest.assert_not_awaited()

    async def test_force_applies_valid_files(self, tmp_path, client, resolver, ctx):
        paths = [
            write(tmp_path, "project.yaml", PROJECT),
            write(tmp_path, "broken.yaml", "apiVersion: n9/v1alpha\nkind: [Project\n"),
        ]

        result = await ManifestProcessor(client, resolver, force=True).process_files(ctx, paths)

        assert not result.is_success
        assert result.manifests_applied == 1

    async def test_apply_failure_is_recorded(self, tmp_path, client, resolver, ctx):
        client.apply_manifest.side_effect = [TransientError("503"), None]
        paths = [
            write(tmp_path, "a.yaml", PROJECT),
            write(tmp_path, "b.yaml", PROJECT.replace("payments", "billing")),
        ]

        result = await ManifestProcessor(client, resolver).process_files(ctx, paths)

        assert not result.is_success
        assert result.files_with_errors == 1
        assert result.manifests_applied == 1
        assert isinstance(result.errors[0], TransientError)

    async def test_conflict_is_a_warning(self, tmp_path, client, resolver, ctx):
        client.apply_manifest.side_effect = ApiError("project already exists", status_code=409)
        paths = [write(tmp_path, "project.yaml", PROJECT)]

        result = await ManifestProcessor(client, resolver).process_files(ctx, paths)

        assert result.is_success
        assert result.warnings

    async def test_stats(self, tmp_path, client, resolver, ctx):
        paths = [write(tmp_path, "project.yaml", PROJECT)]
        result = await ManifestProcessor(client, resolver).process_files(ctx, paths)

        stats = result.stats()
        assert stats["files_processed"] == 1
        assert stats["manifests_applied"] == 1
        assert stats["is_success"] is True
