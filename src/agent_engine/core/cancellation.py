"""
Cancellation token for cooperative request cancellation.

One token is created per chat request and threaded through every
suspension point of the engine: provider calls, tool invocations and
backoff delays. The HTTP layer cancels it when the client disconnects.
"""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Cooperative cancellation backed by an asyncio.Event.

    Usage:
        token = CancellationToken()

        # In the stream consumer:
        token.cancel("client disconnected")

        # In the engine:
        token.check()  # Raises CancelledError if cancelled
        await token.sleep(2.0)  # Returns early (and raises) when cancelled
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cancel_reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. The first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait_for_cancellation(self, timeout: float | None = None) -> bool:
        """True once cancelled, False if ``timeout`` expired first."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancelled first.

        Raises:
            asyncio.CancelledError: If the token is cancelled before or during the delay
        """
        self.check()
        if delay > 0 and await self.wait_for_cancellation(timeout=delay):
            self.check()

    def check(self) -> None:
        """Raise if cancellation has been requested.

        Raises:
            asyncio.CancelledError: If token is cancelled
        """
        if self._event.is_set():
            raise asyncio.CancelledError(self._reason or "Cancellation requested")


__all__ = ["CancellationToken"]
