"""
Conversation context for round 1 of the tool loop.

Trims the history to the configured window and converts domain messages
into Chat Completions wire format.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from agent_engine.models.session_models import Attachment, Message


def trim_history(messages: Sequence[Message], max_messages: int) -> list[Message]:
    """Keep the last ``max_messages`` messages. The current (last) message always survives."""
    if not messages:
        return []
    return list(messages[-max(1, max_messages) :])


def _data_url(attachment: Attachment) -> str:
    data = attachment.data or ""
    if data.startswith("data:"):
        return data
    return f"data:{attachment.mime_type};base64,{data}"


def attachment_part(attachment: Attachment) -> dict[str, Any]:
    """Wire part for an attachment that still has its payload."""
    if attachment.kind == "image":
        return {"type": "image_url", "image_url": {"url": _data_url(attachment)}}
    return {
        "type": "file",
        "file": {"filename": attachment.name, "file_data": _data_url(attachment)},
    }


def to_wire_message(message: Message) -> dict[str, Any] | None:
    """Convert one message, or return None when it has nothing the model can use."""
    if message.is_empty:
        return None

    attachments = message.payload_attachments if message.role == "user" else ()
    if not attachments:
        return {"role": message.role, "content": message.content}

    parts = [attachment_part(a) for a in attachments]
    if message.content.strip():
        parts.append({"type": "text", "text": message.content})
    return {"role": message.role, "content": parts}


class ContextBuilder:
    """Builds the provider message list from the conversation history."""

    def __init__(self, max_messages: int):
        self.max_messages = max_messages

    def build(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        wire: list[dict[str, Any]] = []
        for message in trim_history(messages, self.max_messages):
            converted = to_wire_message(message)
            if converted is not None:
                wire.append(converted)
        return wire


__all__ = ["ContextBuilder", "attachment_part", "to_wire_message", "trim_history"]
