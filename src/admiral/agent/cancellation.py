"""
Cooperative cancellation for an agent's task.

One `CancelToken` per running loop. Every suspending call in the runtime goes
through `run()` or `sleep()`, so stopping the agent aborts whatever it is
waiting on, and a per-call timeout is applied as the same deadline rather
than as a second wrapper.
"""

import asyncio
from typing import Awaitable, TypeVar

from ..errors import AgentCancelledError, OperationTimeoutError

T = TypeVar("T")


class CancelToken:
    """A one-shot cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AgentCancelledError("Agent cancelled")

    async def run(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """Await *awaitable* until it finishes, the token fires, or *timeout* passes.

        Raises:
            AgentCancelledError: the token fired first.
            OperationTimeoutError: the timeout elapsed first.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        if self._event.is_set():
            raise AgentCancelledError("Agent cancelled")
        raise OperationTimeoutError(timeout or 0)

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds, raising early if the token fires."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise AgentCancelledError("Agent cancelled")
