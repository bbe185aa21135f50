"""
Chat request schemas.

The chat endpoint parses its body itself (size, auth and budget checks
run in a fixed order), so these models are validated in the request
gate rather than by FastAPI's body binding.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agent_engine.models.session_models import Attachment, Message


class _CamelModel(BaseModel):
    """Accepts both camelCase (browser clients) and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AttachmentIn(_CamelModel):
    name: str = Field(..., min_length=1, description="File name shown to the model")
    mime_type: str = Field(..., description="Mime type, e.g. application/pdf or image/png")
    data: str | None = Field(default=None, description="Inline base64 payload")

    def to_domain(self) -> Attachment:
        return Attachment(name=self.name, mime_type=self.mime_type, data=self.data or None)


class MessageIn(_CamelModel):
    role: Literal["user", "assistant"]
    content: str | None = Field(default="", description="Message text")
    attachments: list[AttachmentIn] = Field(default_factory=list)

    def to_domain(self) -> Message:
        return Message(
            role=self.role,
            content=self.content or "",
            attachments=tuple(a.to_domain() for a in self.attachments),
        )


class ChatRequest(_CamelModel):
    """Chat request body."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "messages": [{"role": "user", "content": "Find PLC controllers in the catalog"}],
                "sessionId": None,
                "correlationId": "COT-2025-0042",
            }
        },
    )

    messages: list[MessageIn] = Field(default_factory=list, description="Conversation, oldest first")
    session_id: str | None = Field(default=None, description="Existing conversation identity")
    correlation_id: str | None = Field(default=None, description="Domain record the user is working on")

    def to_domain(self) -> list[Message]:
        return [m.to_domain() for m in self.messages]
