"""
Identity Resolution Protocols

Defines the interface the resolver uses to look identities up remotely.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from src.common.resilience.context import OperationContext


@runtime_checkable
class IdentityProvider(Protocol):
    """
    Protocol for remote identity lookup.

    Translates a human-readable identity (an email address) into the opaque
    user ID the management API expects.
    """

    async def lookup(self, ctx: OperationContext, identity: str) -> str | None:
        """
        Look up a single identity.

        Args:
            ctx: Cancellation context for the call
            identity: Normalized identity (trimmed, lower-cased)

        Returns:
            The user ID, or None if the identity does not exist

        Raises:
            NotFoundError: The identity does not exist (equivalent to None)
            Exception: Any other failure, classified by the retry executor
        """
        ...
