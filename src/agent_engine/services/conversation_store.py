"""
Conversation storage for the agent engine.

Sessions are created lazily on the first request without an identity.
After each completed request the user/assistant pair is appended and
the session timestamp touched in one transaction. Attachment payloads
are never stored, only their names and mime types.
"""

from __future__ import annotations

import asyncio
import secrets

from dataclasses import asdict, replace
from datetime import UTC, datetime
from typing import Any

import asyncpg

from agent_engine.core.constants import SESSION_TITLE_MAX_LENGTH
from agent_engine.core.errors import PersistenceError
from agent_engine.models.session_models import ConversationSession, Message
from agent_engine.utils.db_utils import ConnectionPoolExhausted, transaction
from agent_engine.utils.json_utils import json_compact

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, ConnectionPoolExhausted, OSError)

DEFAULT_TITLE = "New conversation"


def generate_session_id() -> str:
    return f"conv_{secrets.token_hex(8)}"


def make_title(text: str, max_length: int = SESSION_TITLE_MAX_LENGTH) -> str:
    """Title from the first user message: cut at a word boundary with an ellipsis."""
    text = " ".join(text.split())
    if not text:
        return DEFAULT_TITLE
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,.;:") + "..."


def storable(message: Message) -> Message:
    """Copy of ``message`` without attachment payloads."""
    return replace(message, attachments=tuple(a.without_payload() for a in message.attachments))


def _attachments_json(message: Message) -> str:
    return json_compact([{"name": a.name, "mime_type": a.mime_type} for a in message.attachments])


def _invocations_json(message: Message) -> str:
    return json_compact([asdict(invocation) for invocation in message.tool_invocations])


class InMemoryConversationStore:
    """Process-local conversation store, used when no database is configured and in tests."""

    def __init__(self) -> None:
        self._sessions: dict[str, ConversationSession] = {}
        self._lock = asyncio.Lock()

    def get(self, session_id: str) -> ConversationSession | None:
        return self._sessions.get(session_id)

    async def create_session(self, owner_id: str, title: str) -> str:
        session_id = generate_session_id()
        async with self._lock:
            self._sessions[session_id] = ConversationSession(id=session_id, owner_id=owner_id, title=title)
        return session_id

    async def append_message_pair(self, session_id: str, owner_id: str, user: Message, assistant: Message) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.owner_id != owner_id:
                raise PersistenceError(f"Unknown conversation for this user: {session_id}")
            session.messages.extend((storable(user), storable(assistant)))
            session.updated_at = datetime.now(UTC)


class PostgresConversationStore:
    """Store backed by the ``conversations`` and ``conversation_messages`` tables."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create_session(self, owner_id: str, title: str) -> str:
        session_id = generate_session_id()
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO conversations (id, owner_id, title)
                    VALUES ($1, $2, $3)
                    """,
                    session_id,
                    owner_id,
                    title,
                )
        except _STORE_ERRORS as e:
            raise PersistenceError(f"Failed to create conversation: {e}") from e
        return session_id

    async def append_message_pair(self, session_id: str, owner_id: str, user: Message, assistant: Message) -> None:
        """Append both messages, only to a conversation owned by ``owner_id``."""
        rows: list[tuple[Any, ...]] = [
            (session_id, m.role, m.content, _attachments_json(m), _invocations_json(m)) for m in (user, assistant)
        ]
        try:
            async with transaction(self.pool) as conn:
                result: str = await conn.execute(
                    "UPDATE conversations SET updated_at = now() WHERE id = $1 AND owner_id = $2",
                    session_id,
                    owner_id,
                )
                if result.endswith(" 0"):
                    raise PersistenceError(f"Unknown conversation for this user: {session_id}")
                await conn.executemany(
                    """
                    INSERT INTO conversation_messages (
                        conversation_id, role, content, attachments, tool_invocations
                    )
                    VALUES ($1, $2, $3, $4::jsonb, $5::jsonb)
                    """,
                    rows,
                )
        except _STORE_ERRORS as e:
            raise PersistenceError(f"Failed to append messages: {e}") from e


__all__ = [
    "DEFAULT_TITLE",
    "InMemoryConversationStore",
    "PostgresConversationStore",
    "generate_session_id",
    "make_title",
    "storable",
]
