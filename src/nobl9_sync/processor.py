"""
Manifest Processor

Runs the sync pipeline for a set of manifest files:
read -> decode -> resolve user emails -> substitute user IDs -> apply.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.common.exceptions import (
    ApiError,
    ManifestError,
    OperationCancelledError,
    SyncError,
)
from src.common.resilience import OperationContext
from src.common.telemetry import add_span_attributes, trace_span
from src.nobl9_sync.client import ManagementClient
from src.nobl9_sync.manifests import (
    Manifest,
    dump_documents,
    is_nobl9_document,
    load_manifest,
    substitute_user_ids,
)
from src.nobl9_sync.resolution import BatchResolver

logger = logging.getLogger(__name__)


@dataclass
class FileResult:
    """Result of processing one manifest file."""

    path: Path
    skipped: bool = False
    applied: bool = False
    projects: int = 0
    role_bindings: int = 0
    users_resolved: int = 0
    unresolved: list[str] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ProcessingResult:
    """Aggregate result of a processing run."""

    files_processed: int = 0
    files_skipped: int = 0
    files_with_errors: int = 0
    manifests_applied: int = 0
    projects: int = 0
    role_bindings: int = 0
    users_resolved: int = 0
    users_unresolved: int = 0
    unresolved_emails: list[str] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    files: list[FileResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def is_success(self) -> bool:
        return not self.errors

    def add(self, file_result: FileResult) -> None:
        self.files.append(file_result)
        if file_result.skipped:
            self.files_skipped += 1
            return
        self.files_processed += 1
        if file_result.errors:
            self.files_with_errors += 1
        if file_result.applied:
            self.manifests_applied += 1
        self.projects += file_result.projects
        self.role_bindings += file_result.role_bindings
        self.errors.extend(file_result.errors)
        self.warnings.extend(file_result.warnings)

    def stats(self) -> dict[str, Any]:
        return {
            "files_processed": self.files_processed,
            "files_skipped": self.files_skipped,
            "files_with_errors": self.files_with_errors,
            "manifests_applied": self.manifests_applied,
            "projects": self.projects,
            "role_bindings": self.role_bindings,
            "users_resolved": self.users_resolved,
            "users_unresolved": self.users_unresolved,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "duration": round(self.duration, 3),
            "is_success": self.is_success,
        }


class ManifestProcessor:
    """
    Applies manifest files through the management API.

    All emails across the run are resolved in a single batch so that a user
    referenced by several files costs one lookup.

    Example:
        processor = ManifestProcessor(client, BatchResolver(client))
        result = await processor.process_files(ctx, paths, dry_run=True)
        if not result.is_success:
            ...
    """

    def __init__(
        self,
        client: ManagementClient,
        resolver: BatchResolver,
        allow_unresolved: bool = False,
        force: bool = False,
    ):
        """
        Initialize the processor.

        Args:
            client: Management API client used to apply manifests
            resolver: Resolver for RoleBinding user emails
            allow_unresolved: Apply files even if some users were not resolved
            force: Keep applying valid files when other files failed to decode
        """
        self._client = client
        self._resolver = resolver
        self._allow_unresolved = allow_unresolved
        self._force = force

    async def process_files(
        self,
        ctx: OperationContext,
        paths: list[Path],
        dry_run: bool = False,
        validate_only: bool = False,
    ) -> ProcessingResult:
        """
        Process manifest files.

        Args:
            ctx: Cancellation context for the whole run
            paths: Files to process, in apply order
            dry_run: Ask the API to validate without persisting
            validate_only: Decode and resolve only, never call the API apply

        Returns:
            ProcessingResult with per-file details and totals
        """
        start = time.perf_counter()
        result = ProcessingResult()

        with trace_span("manifest.process_files", {"manifest.files": len(paths)}) as span:
            manifests: list[tuple[FileResult, Manifest]] = []
            for path in paths:
                file_result, manifest = self._load(path)
                if manifest is None:
                    result.add(file_result)
                else:
                    manifests.append((file_result, manifest))

            decode_failed = result.files_with_errors > 0
            if decode_failed and not self._force:
                logger.error(
                    f"{result.files_with_errors} files failed to decode; "
                    "nothing will be applied (use force to apply the rest)"
                )

            emails = list(dict.fromkeys(e for _, m in manifests for e in m.emails()))
            batch = await self._resolver.resolve_many(ctx, emails)
            user_ids = batch.resolved_ids()
            result.users_resolved = len(user_ids)
            result.unresolved_emails = batch.unresolved()
            result.users_unresolved = len(result.unresolved_emails)
            add_span_attributes(
                {
                    "manifest.users_resolved": result.users_resolved,
                    "manifest.users_unresolved": result.users_unresolved,
                }
            )
            if batch.cancelled_count:
                result.errors.append(OperationCancelledError("identity resolution cancelled"))

            apply = not validate_only and (self._force or not decode_failed)
            for file_result, manifest in manifests:
                await self._process(ctx, manifest, file_result, user_ids, apply, dry_run)
                result.add(file_result)

            result.duration = time.perf_counter() - start
            span.set_attribute("manifest.applied", result.manifests_applied)
            span.set_attribute("manifest.errors", len(result.errors))

        logger.info(
            f"Processed {result.files_processed} files "
            f"({result.files_skipped} skipped, {result.files_with_errors} with errors, "
            f"{result.manifests_applied} applied) in {result.duration:.2f}s"
        )
        return result

    def _load(self, path: Path) -> tuple[FileResult, Manifest | None]:
        file_result = FileResult(path=path)
        try:
            manifest = load_manifest(path)
        except ManifestError as e:
            # Undecodable files that are not Nobl9 configuration are not ours
            if self._looks_foreign(path):
                logger.debug(f"Skipping {path}: not Nobl9 configuration")
                file_result.skipped = True
                return file_result, None
            logger.error(f"Failed to load {path}: {e}")
            file_result.errors.append(e)
            return file_result, None

        if not is_nobl9_document(manifest.content) or not manifest.documents:
            logger.debug(f"Skipping {path}: not Nobl9 configuration")
            file_result.skipped = True
            return file_result, None

        file_result.projects = manifest.count("Project")
        file_result.role_bindings = manifest.count("RoleBinding")
        return file_result, manifest

    @staticmethod
    def _looks_foreign(path: Path) -> bool:
        try:
            return not is_nobl9_document(path.read_text(encoding="utf-8", errors="replace"))
        except OSError:
            return False

    async def _process(
        self,
        ctx: OperationContext,
        manifest: Manifest,
        file_result: FileResult,
        user_ids: dict[str, str],
        apply: bool,
        dry_run: bool,
    ) -> None:
        emails = manifest.emails()
        file_result.unresolved = [e for e in emails if e not in user_ids]
        file_result.users_resolved = len(emails) - len(file_result.unresolved)

        if file_result.unresolved:
            unresolved = ", ".join(file_result.unresolved)
            message = f"{manifest.path}: unresolved users: {unresolved}"
            if self._allow_unresolved:
                file_result.warnings.append(message)
                logger.warning(message)
            else:
                file_result.errors.append(
                    ManifestError(str(manifest.path), f"unresolved users: {unresolved}")
                )
                logger.error(message)
                return

        documents, replaced = substitute_user_ids(manifest.documents, user_ids)
        logger.debug(f"{manifest.path}: replaced {replaced} user references")

        if not apply:
            logger.info(f"Validated {manifest.path} ({len(documents)} objects)")
            return

        try:
            await self._client.apply_manifest(ctx, dump_documents(documents), dry_run=dry_run)
        except ApiError as e:
            if e.status_code == 409 or "already exists" in e.message.lower():
                file_result.warnings.append(f"{manifest.path}: some objects already exist")
                logger.info(f"Some objects in {manifest.path} already exist")
                file_result.applied = True
                return
            logger.error(f"Failed to apply {manifest.path}: {e}")
            file_result.errors.append(e)
            return
        except SyncError as e:
            logger.error(f"Failed to apply {manifest.path}: {e}")
            file_result.errors.append(e)
            return

        file_result.applied = True
        verb = "Validated (dry run)" if dry_run else "Applied"
        logger.info(f"{verb} {manifest.path} ({len(documents)} objects)")
