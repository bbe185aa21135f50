"""
Stream event models for the agent engine.
Each event is one Server-Sent Events frame: ``event: <name>`` followed by
a ``data: <json>`` line and a blank line.
"""

from __future__ import annotations

import json

from typing import Any, Literal

from pydantic import BaseModel, Field, field_serializer

from agent_engine.core.constants import (
    EVENT_CONVERSATION_INFO,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_STATUS,
    EVENT_TEXT_DELTA,
    EVENT_TOOL_CALL_END,
    EVENT_TOOL_CALL_START,
)
from agent_engine.utils.json_utils import safe_json_dumps

StatusPhase = Literal["analyzing_pdf", "generating", "executing_tools", "idle"]


class StreamEvent(BaseModel):
    """Base event. Subclasses fix ``event`` and declare the payload fields."""

    event: str = Field(exclude=True)

    model_config = {"frozen": True}

    def payload(self) -> dict[str, Any]:
        """The ``data:`` object. The event name travels on the ``event:`` line only."""
        return self.model_dump(mode="json", exclude={"event"}, exclude_none=True)

    def to_sse(self) -> str:
        """Render as one SSE frame."""
        data = json.dumps(self.payload(), ensure_ascii=False, default=str)
        return f"event: {self.event}\ndata: {data}\n\n"


class ConversationInfoEvent(StreamEvent):
    event: Literal["conversation_info"] = EVENT_CONVERSATION_INFO
    conversation_id: str
    title: str


class StatusEvent(StreamEvent):
    event: Literal["status"] = EVENT_STATUS
    phase: StatusPhase
    detail: str | None = None


class TextDeltaEvent(StreamEvent):
    event: Literal["text_delta"] = EVENT_TEXT_DELTA
    text: str


class ToolCallStartEvent(StreamEvent):
    event: Literal["tool_call_start"] = EVENT_TOOL_CALL_START
    id: str
    name: str
    input: dict[str, Any]


class ToolCallEndEvent(StreamEvent):
    event: Literal["tool_call_end"] = EVENT_TOOL_CALL_END
    id: str
    name: str
    result: Any = None
    status: Literal["completed", "error"]

    @field_serializer("result")
    def serialize_result(self, result: Any) -> Any:
        # Handlers may return driver rows or arbitrary objects; they degrade to strings
        return json.loads(safe_json_dumps(result))


class ErrorEvent(StreamEvent):
    event: Literal["error"] = EVENT_ERROR
    message: str


class DoneEvent(StreamEvent):
    event: Literal["done"] = EVENT_DONE
