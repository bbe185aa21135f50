"""
Backoff governor for provider calls.

Wraps a single provider call in a tenacity ``AsyncRetrying`` that only
retries on ``ProviderRateLimitError``, waiting a fixed increasing delay
before each retry. Any other exception propagates on the first attempt.
One governor is created per request so the "already notified" flag is
shared by every round of that request's loop.
"""

from __future__ import annotations

import asyncio

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from agent_engine.core.cancellation import CancellationToken
from agent_engine.core.constants import PHASE_GENERATING
from agent_engine.core.errors import ProviderRateLimitError
from agent_engine.core.stream_emitter import StreamEmitter
from agent_engine.utils.logger import logger

T = TypeVar("T")

#: Soft notice shown to the caller before the first retry
RATE_LIMIT_NOTICE = "High demand on the AI service, retrying shortly..."


class RetryGovernor:
    """Runs provider calls with bounded backoff on rate-limit errors."""

    def __init__(
        self,
        delays: Sequence[float],
        emitter: StreamEmitter | None = None,
        token: CancellationToken | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._delays = tuple(delays)
        self._emitter = emitter
        self._token = token
        self._sleep = sleep
        self._notified = False
        self.retries = 0

    @property
    def max_retries(self) -> int:
        return len(self._delays)

    @property
    def notified(self) -> bool:
        """Whether the transient-delay notice was already emitted for this request."""
        return self._notified

    def _wait_strategy(self):
        if not self._delays:
            return wait_none()
        return wait_chain(*(wait_fixed(delay) for delay in self._delays))

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self.retries += 1
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Provider rate limited, retry {retry_state.attempt_number}/{self.max_retries} in {delay:.1f}s: {exc}"
        )

    async def _backoff(self, delay: float) -> None:
        if not self._notified and self._emitter is not None:
            self._notified = True
            await self._emitter.status(PHASE_GENERATING, RATE_LIMIT_NOTICE)

        if self._sleep is not None:
            await self._sleep(delay)
        elif self._token is not None:
            await self._token.sleep(delay)
        else:
            await asyncio.sleep(delay)

        if self._token is not None:
            self._token.check()

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Execute ``fn`` with retries.

        Raises:
            ProviderRateLimitError: When every attempt was rate limited
            asyncio.CancelledError: When the request was cancelled during backoff
            Exception: Any non rate-limit error from ``fn``, unretried
        """
        if self._token is not None:
            self._token.check()

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait_strategy(),
            retry=retry_if_exception_type(ProviderRateLimitError),
            sleep=self._backoff,
            before_sleep=self._before_sleep,
        )
        return await retrying(fn)


__all__ = ["RATE_LIMIT_NOTICE", "RetryGovernor"]
