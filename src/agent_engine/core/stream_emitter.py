"""
Ordered event channel between the engine and the HTTP stream.

The engine awaits ``emit()`` for every event; the response body iterates
the emitter and receives SSE frames in exactly that order. The queue is
bounded, so a slow client applies back-pressure to the engine instead of
letting events pile up in memory.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from typing import Any

from agent_engine.core.constants import PHASE_IDLE
from agent_engine.models.event_models import (
    ConversationInfoEvent,
    DoneEvent,
    ErrorEvent,
    StatusEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from agent_engine.utils.logger import logger

_CLOSED = object()

SERIALIZATION_ERROR_MESSAGE = "An unexpected error occurred while generating the response."


class StreamClosedError(RuntimeError):
    """Raised when emitting on an emitter that was already closed."""


class StreamEmitter:
    """Write-once, ordered event sink with a replayable transcript."""

    def __init__(self, maxsize: int = 256):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._transcript: list[StreamEvent] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def transcript(self) -> list[StreamEvent]:
        """Events emitted so far, in emission order."""
        return list(self._transcript)

    async def emit(self, event: StreamEvent) -> None:
        if self._closed:
            raise StreamClosedError(f"Cannot emit '{event.event}' after the stream closed")
        self._transcript.append(event)
        await self._queue.put(event)

    # Typed helpers, one per event name

    async def conversation_info(self, conversation_id: str, title: str) -> None:
        await self.emit(ConversationInfoEvent(conversation_id=conversation_id, title=title))

    async def status(self, phase: str, detail: str | None = None) -> None:
        await self.emit(StatusEvent(phase=phase, detail=detail))  # type: ignore[arg-type]

    async def text_delta(self, text: str) -> None:
        if text:
            await self.emit(TextDeltaEvent(text=text))

    async def tool_call_start(self, invocation_id: str, name: str, tool_input: dict[str, Any]) -> None:
        await self.emit(ToolCallStartEvent(id=invocation_id, name=name, input=tool_input))

    async def tool_call_end(self, invocation_id: str, name: str, result: Any, status: str) -> None:
        await self.emit(ToolCallEndEvent(id=invocation_id, name=name, result=result, status=status))  # type: ignore[arg-type]

    async def error(self, message: str) -> None:
        await self.emit(ErrorEvent(message=message))

    async def done(self) -> None:
        await self.emit(DoneEvent())

    async def idle(self, detail: str | None = None) -> None:
        await self.status(PHASE_IDLE, detail)

    def close(self) -> None:
        """Stop accepting events and wake the consumer once the queue drains.

        Never blocks: if the buffer is full the sentinel is appended after
        the consumer frees a slot.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            asyncio.get_running_loop().create_task(self._queue.put(_CLOSED))

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until the emitter is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE-encoded frames until the emitter is closed.

        An event that cannot be encoded ends the stream with ``error`` then
        ``done``; the frames already sent stay valid.
        """
        async for event in self.events():
            try:
                frame = event.to_sse()
            except (TypeError, ValueError) as e:  # PydanticSerializationError is a ValueError
                logger.error(f"Could not encode '{event.event}' event: {e}", exc_info=True)
                yield ErrorEvent(message=SERIALIZATION_ERROR_MESSAGE).to_sse()
                yield DoneEvent().to_sse()
                return
            yield frame

    def __aiter__(self) -> AsyncIterator[str]:
        return self.frames()


__all__ = ["StreamClosedError", "StreamEmitter"]
