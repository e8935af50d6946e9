"""
Operation Context

Carries cancellation and an optional deadline through every suspension point
of a remote call: waiting for an admission slot, sleeping between retry
attempts, and the remote call itself.

Cancelling a context makes those suspension points raise
OperationCancelledError promptly. Native asyncio task cancellation is not
converted: asyncio.CancelledError always propagates unchanged.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import weakref
from collections.abc import Awaitable
from typing import TypeVar

from src.common.exceptions import OperationCancelledError

T = TypeVar("T")


class OperationContext:
    """
    Cancellation scope with an optional deadline.

    Example:
        ctx = OperationContext(timeout=30.0)
        outcome = await executor.execute(ctx, policy, "apply manifest", apply)

        # From another task
        ctx.cancel()
    """

    def __init__(
        self,
        timeout: float | None = None,
        parent: OperationContext | None = None,
    ):
        """
        Initialize the context.

        Args:
            timeout: Seconds until the context is considered cancelled
            parent: Cancelling the parent cancels this context too
        """
        self._event = asyncio.Event()
        self._reason = "operation cancelled"
        self._children: weakref.WeakSet[OperationContext] = weakref.WeakSet()
        self._parent = parent

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None:
            if parent._deadline is not None:
                deadline = parent._deadline if deadline is None else min(deadline, parent._deadline)
            parent._children.add(self)
            if parent._event.is_set():
                self.cancel(parent._reason)
        self._deadline = deadline

    @classmethod
    def background(cls) -> OperationContext:
        """A context that is never cancelled unless cancel() is called."""
        return cls()

    def child(self, timeout: float | None = None) -> OperationContext:
        """Derive a context that is cancelled with this one."""
        return OperationContext(timeout=timeout, parent=self)

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Cancel this context and every context derived from it."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)
        if self._parent is not None:
            self._parent._children.discard(self)

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        """True once cancel() was called or the deadline passed."""
        return self._event.is_set() or self.deadline_exceeded

    @property
    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason)
        if self.deadline_exceeded:
            raise OperationCancelledError("deadline exceeded", deadline_exceeded=True)

    async def sleep(self, delay: float) -> None:
        """
        Sleep for delay seconds unless cancelled first.

        Raises:
            OperationCancelledError: If cancelled before or during the sleep
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return

        remaining = self.remaining
        wait_for = delay if remaining is None else min(delay, remaining)
        try:
            await asyncio.wait_for(self._event.wait(), timeout=wait_for)
        except TimeoutError:
            pass
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await an operation, abandoning it if the context is cancelled first.

        The abandoned operation is cancelled and awaited before returning so
        that it never outlives the caller.

        Raises:
            OperationCancelledError: If the context is cancelled first
            Exception: Any exception from the awaited operation
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            await asyncio.gather(task, waiter, return_exceptions=True)
            raise

        waiter.cancel()
        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self.raise_if_cancelled()
        # Deadline reached exactly at the wait boundary
        raise OperationCancelledError("deadline exceeded", deadline_exceeded=True)
