"""
Manifest Handling

Discovers Nobl9 YAML manifests in a repository, decodes them, and rewrites
RoleBinding user references from email addresses to user IDs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.common.exceptions import ManifestError
from src.nobl9_sync.resolution.emails import is_valid_email
from src.nobl9_sync.resolution.models import normalize_identity

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")

ROLE_BINDING_KIND = "RoleBinding"

# Substrings that mark a file as Nobl9 configuration
NOBL9_INDICATORS: tuple[str, ...] = (
    "apiVersion: n9/v1alpha",
    "kind: Agent",
    "kind: Alert",
    "kind: AlertMethod",
    "kind: AlertPolicy",
    "kind: AlertSilence",
    "kind: Annotation",
    "kind: BudgetAdjustment",
    "kind: DataExport",
    "kind: Direct",
    "kind: Objective",
    "kind: Project",
    "kind: Report",
    "kind: RoleBinding",
    "kind: Service",
    "kind: SLO",
    "kind: UserGroup",
    # Composite SLOs
    "composite:",
    "maxDelay:",
    "components:",
    "whenDelayed:",
)


@dataclass
class Manifest:
    """A decoded manifest file."""

    path: Path
    content: str
    documents: list[dict[str, Any]] = field(default_factory=list)

    @property
    def kinds(self) -> list[str]:
        return [str(doc.get("kind", "")) for doc in self.documents]

    def count(self, kind: str) -> int:
        return sum(1 for k in self.kinds if k == kind)

    def emails(self) -> list[str]:
        """Unique normalized emails referenced by RoleBindings, in order."""
        seen: dict[str, None] = {}
        for doc in self.documents:
            for email in extract_role_binding_emails(doc):
                seen.setdefault(normalize_identity(email), None)
        return list(seen)


def discover_manifest_files(root: str | Path, pattern: str = "**/*.yaml") -> list[Path]:
    """
    Find YAML files under root matching a glob pattern.

    Returns:
        Sorted list of regular files with a .yaml or .yml suffix
    """
    root = Path(root)
    if not root.is_dir():
        raise ManifestError(str(root), "repository path is not a directory")

    files = {
        path
        for path in root.glob(pattern)
        if path.is_file() and path.suffix.lower() in YAML_SUFFIXES
    }
    logger.debug(f"Found {len(files)} YAML files under {root} matching {pattern}")
    return sorted(files)


def is_nobl9_document(content: str) -> bool:
    """True if the text looks like Nobl9 configuration."""
    return any(indicator in content for indicator in NOBL9_INDICATORS)


def parse_documents(content: str, source: str = "<string>") -> list[dict[str, Any]]:
    """
    Decode multi-document YAML into a list of mappings.

    Empty documents are dropped.

    Raises:
        ManifestError: If the YAML is malformed or a document is not a mapping
    """
    try:
        raw = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise ManifestError(source, f"malformed YAML: {e}") from e

    documents: list[dict[str, Any]] = []
    for index, doc in enumerate(raw):
        if doc is None:
            continue
        # A top-level list is a valid way to bundle objects
        items = doc if isinstance(doc, list) else [doc]
        for item in items:
            if not isinstance(item, dict):
                raise ManifestError(source, f"document {index} is not a mapping")
            if "kind" not in item:
                raise ManifestError(source, f"document {index} has no kind")
            documents.append(item)
    return documents


def load_manifest(path: str | Path) -> Manifest:
    """
    Read and decode a manifest file.

    Raises:
        ManifestError: If the file cannot be read or decoded
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(str(path), f"cannot read file: {e}") from e
    return Manifest(path=path, content=content, documents=parse_documents(content, str(path)))


def extract_role_binding_emails(document: dict[str, Any]) -> list[str]:
    """
    Email addresses referenced by a RoleBinding document.

    Looks at spec.user, the spec.users list and the comma-separated
    spec.userIds string. Other kinds yield nothing.
    """
    if document.get("kind") != ROLE_BINDING_KIND:
        return []
    spec = document.get("spec")
    if not isinstance(spec, dict):
        return []

    emails: list[str] = []

    user = spec.get("user")
    if isinstance(user, str) and is_valid_email(user.strip()):
        emails.append(user.strip())

    users = spec.get("users")
    if isinstance(users, list):
        emails.extend(u.strip() for u in users if isinstance(u, str) and is_valid_email(u.strip()))

    user_ids = spec.get("userIds")
    if isinstance(user_ids, str):
        emails.extend(u.strip() for u in user_ids.split(",") if is_valid_email(u.strip()))

    return emails


def _substitute(value: str, user_ids: dict[str, str]) -> str:
    return user_ids.get(normalize_identity(value), value)


def substitute_user_ids(
    documents: list[dict[str, Any]],
    user_ids: dict[str, str],
) -> tuple[list[dict[str, Any]], int]:
    """
    Replace resolved emails in RoleBinding specs with user IDs.

    Args:
        documents: Decoded manifest documents (not modified)
        user_ids: Normalized email -> user ID

    Returns:
        (rewritten documents, number of references replaced)
    """
    rewritten: list[dict[str, Any]] = []
    replaced = 0

    for doc in documents:
        spec = doc.get("spec")
        if doc.get("kind") != ROLE_BINDING_KIND or not isinstance(spec, dict):
            rewritten.append(doc)
            continue

        spec = dict(spec)
        user = spec.get("user")
        if isinstance(user, str):
            spec["user"] = _substitute(user.strip(), user_ids)
            replaced += spec["user"] != user.strip()

        users = spec.get("users")
        if isinstance(users, list):
            new_users = [
                _substitute(u.strip(), user_ids) if isinstance(u, str) else u for u in users
            ]
            replaced += sum(
                1
                for old, new in zip(users, new_users)
                if isinstance(old, str) and new != old.strip()
            )
            spec["users"] = new_users

        csv = spec.get("userIds")
        if isinstance(csv, str):
            parts = [p.strip() for p in csv.split(",") if p.strip()]
            new_parts = [_substitute(p, user_ids) for p in parts]
            replaced += sum(1 for old, new in zip(parts, new_parts) if new != old)
            spec["userIds"] = ",".join(new_parts)

        rewritten.append({**doc, "spec": spec})

    return rewritten, replaced


def dump_documents(documents: list[dict[str, Any]]) -> str:
    """Encode documents as multi-document YAML, preserving key order."""
    return yaml.safe_dump_all(documents, sort_keys=False, default_flow_style=False)

