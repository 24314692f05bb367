"""Cooperative cancellation token threaded through executors and workflow steps."""

import asyncio


class CancellationToken:
    """
    Single cancellation signal shared by a run and everything it launches.

    Firing the token does not interrupt running coroutines. Code observes it
    at its own checkpoints via raise_if_cancelled(), which raises
    asyncio.CancelledError so that token cancellation and native task
    cancellation are handled the same way.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("cancellation requested")

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()
