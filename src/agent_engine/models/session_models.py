"""
Conversation domain models for the agent engine.
Provides the immutable message types the engine reads and the
collaborator protocols it depends on.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, Protocol

Role = Literal["user", "assistant"]
MediaKind = Literal["document", "image"]
InvocationStatus = Literal["completed", "error"]


def media_kind_for(mime_type: str) -> MediaKind:
    """Classify an attachment by mime type: image/* is an image, anything else a document."""
    if mime_type.lower().startswith("image/"):
        return "image"
    return "document"


@dataclass(frozen=True, slots=True)
class Attachment:
    """A file attached to a message.

    ``data`` is the base64 payload. Attachments loaded from storage carry
    no payload and are skipped when building model context.
    """

    name: str
    mime_type: str
    data: str | None = None

    @property
    def kind(self) -> MediaKind:
        return media_kind_for(self.mime_type)

    @property
    def has_payload(self) -> bool:
        return bool(self.data)

    def without_payload(self) -> Attachment:
        return replace(self, data=None)


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    """One executed tool call. Immutable once the handler returned or raised."""

    id: str
    name: str
    input: dict[str, Any]
    result: Any
    status: InvocationStatus

    @property
    def is_error(self) -> bool:
        return self.status == "error"


@dataclass(frozen=True, slots=True)
class Message:
    """A conversation message. Immutable once persisted."""

    role: Role
    content: str = ""
    attachments: tuple[Attachment, ...] = ()
    tool_invocations: tuple[ToolInvocation, ...] = ()

    @property
    def payload_attachments(self) -> tuple[Attachment, ...]:
        """Attachments whose binary is present and usable by the model."""
        return tuple(a for a in self.attachments if a.has_payload)

    @property
    def documents_with_payload(self) -> tuple[Attachment, ...]:
        return tuple(a for a in self.attachments if a.kind == "document" and a.has_payload)

    @property
    def is_empty(self) -> bool:
        return not self.content.strip() and not self.payload_attachments


@dataclass
class ConversationSession:
    """A stored conversation. Created lazily, never deleted by the engine."""

    id: str
    owner_id: str
    title: str
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class ModelTier(str, Enum):
    """Model capability levels traded off against cost and latency."""

    FAST = "fast"
    CAPABLE = "capable"


@dataclass(frozen=True, slots=True)
class ModelSelection:
    """Resolved tier, model and token ceiling for one request (shared by all rounds)."""

    tier: ModelTier
    model: str
    max_tokens: int
    reason: str = ""


@dataclass(frozen=True, slots=True)
class ToolContext:
    """Caller-scoped context passed to every tool handler."""

    user_id: str
    session_id: str | None = None
    correlation_id: str | None = None


@dataclass(frozen=True, slots=True)
class MonthlyUsage:
    """Current calendar month spend as reported by the usage ledger."""

    cost: float
    limit: float

    @property
    def percent_used(self) -> float:
        if self.limit <= 0:
            return 100.0
        return round(self.cost / self.limit * 100, 2)

    @property
    def exhausted(self) -> bool:
        return self.cost >= self.limit

    def to_dict(self) -> dict[str, float]:
        return {"cost": round(self.cost, 4), "limit": self.limit, "percent_used": self.percent_used}


class UsageRecorder(Protocol):
    """Append-only provider usage ledger shared across sessions."""

    async def record(
        self,
        category: str,
        model: str,
        tokens_in: int,
        tokens_out: int,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one usage record for a provider call."""
        ...

    async def current_monthly_usage(self) -> MonthlyUsage:
        """Return spend for the current calendar month and the configured ceiling."""
        ...


class PersistenceGateway(Protocol):
    """Conversation storage used before and after the tool loop."""

    async def create_session(self, owner_id: str, title: str) -> str:
        """Create a conversation and return its identity."""
        ...

    async def append_message_pair(self, session_id: str, owner_id: str, user: Message, assistant: Message) -> None:
        """Atomically append a user/assistant pair and touch the session timestamp.

        Fails with PersistenceError when the session does not exist or belongs to another owner.
        """
        ...
