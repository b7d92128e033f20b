"""Cooperative cancellation for simplotask runs.

An ExecutionContext is created by the caller, handed to the runner and
passed down to every connector call. Cancelling it does not kill remote
processes; it makes every suspension point (slot acquisition, connect,
command execution) return promptly instead of waiting for completion.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContextCanceled(Exception):
    """Raised by ExecutionContext.guard when cancellation wins the race."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ExecutionContext:
    """Cancellation token shared by all host units of one run.

    Example:
        >>> ctx = ExecutionContext()
        >>> ctx.cancel("interrupted")
        True
        >>> ctx.cancel("interrupted again")
        False
        >>> ctx.reason
        'interrupted'
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Reason given by the first cancel() call."""
        return self._reason

    def cancel(self, reason: str = "canceled") -> bool:
        """Trigger cancellation.

        Only the first call has an effect, so it is safe to wire this to a
        signal handler that may fire more than once.

        Returns:
            True if this call cancelled the context
        """
        if self._event.is_set():
            logger.debug(f"Context already canceled, ignoring: {reason}")
            return False
        self._reason = reason
        self._event.set()
        logger.info(f"Execution canceled: {reason}")
        return True

    async def wait(self) -> None:
        """Block until the context is cancelled."""
        await self._event.wait()

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the context is cancelled first.

        If cancellation fires before ``aw`` completes, ``aw`` is cancelled
        and ContextCanceled is raised. Exceptions from ``aw`` propagate.

        Raises:
            ContextCanceled: If the context is (or becomes) cancelled
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise ContextCanceled(self._reason or "canceled")

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if task.done():
                return task.result()
            raise ContextCanceled(self._reason or "canceled")
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
