"""
Logging for the agent engine: standard ``logging`` with a colored console
and rotating JSON files (python-json-logger).

Log destinations:
- Console (stderr): human-readable
- logs/conversations.jsonl: one record per completed request and tool call (INFO+)
- logs/errors.jsonl: ERROR and above

Message content is hidden unless ENABLE_CONTENT_LOGGING is set, and even
then only short previews with PII patterns redacted are written.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from pathlib import Path
from typing import Any

from pythonjsonlogger import json as jsonlogger

from agent_engine.api.middleware.request_context import get_request_context
from agent_engine.core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
    SESSION_ID_LENGTH,
    get_settings,
)

REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern), replacement)
    for pattern, replacement in (
        (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "[EMAIL]"),
        (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "[CARD]"),
        (r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b", "[API_KEY]"),
        (r"\b(password|secret|token)\s*[:=]\s*\S+", "[REDACTED]"),
        # Peruvian taxpayer number (RUC) on quotations and client records
        (r"\b\d{11}\b", "[RUC]"),
    )
)

CONVERSATION_FORMAT = "%(timestamp)s %(levelname)s %(message)s %(session_id)s %(request_id)s %(rounds)s %(tools)s"
ERROR_FORMAT = "%(timestamp)s %(levelname)s %(name)s %(message)s %(request_id)s"


class ColoredConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] logger - message`` with the level tag colored."""

    COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[32;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, "")
        level = f"{color}[{record.levelname}]{self.RESET if color else ''}"
        line = f"{self.formatTime(record, '%H:%M:%S')} {level} {record.name} - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_uvicorn_logging() -> None:
    """Send uvicorn's error and access logs through the console formatter."""
    logging.getLogger("uvicorn").handlers = []
    for name in ("uvicorn.error", "uvicorn.access"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredConsoleFormatter())
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def _json_file_handler(path: Path, level: int, backups: int, fmt: str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=LOG_MAX_SIZE, backupCount=backups, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(jsonlogger.JsonFormatter(fmt, timestamp=True))
    return handler


def setup_logging(name: str = "agent-engine", debug: bool | None = None) -> logging.Logger:
    """Configure ``name`` with the console and the two JSON log files.

    Args:
        name: Logger name
        debug: Console at DEBUG level (defaults to the DEBUG env var)
    """
    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ColoredConsoleFormatter())

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers = [
        console,
        _json_file_handler(
            log_dir / "conversations.jsonl", logging.INFO, LOG_BACKUP_COUNT_CONVERSATIONS, CONVERSATION_FORMAT
        ),
        _json_file_handler(log_dir / "errors.jsonl", logging.ERROR, LOG_BACKUP_COUNT_ERRORS, ERROR_FORMAT),
    ]
    return logger


def redact(text: str) -> str:
    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def preview(text: str, length: int = LOG_PREVIEW_LENGTH) -> str:
    """Single-line redacted preview of ``text``."""
    short = redact(text[:length].replace("\n", " "))
    return short + "..." if len(text) > length else short


class ChatLogger:
    """
    Logger facade used across the engine.

    Keyword arguments become structured fields; the active request's id,
    user and conversation are attached automatically.
    """

    def __init__(self, name: str = "agent-engine"):
        self.logger = setup_logging(name)
        self.component_id = uuid.uuid4().hex[:SESSION_ID_LENGTH]

    def _fields(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        fields = {"session_id": self.component_id, **kwargs}
        if ctx := get_request_context():
            fields.update(ctx.log_fields())
        return fields

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._fields(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._fields(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._fields(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._fields(kwargs), exc_info=exc_info)

    @staticmethod
    def _content_logging() -> bool:
        return get_settings().enable_content_logging

    def log_conversation_turn(
        self,
        user_input: str,
        response: str,
        session_id: str,
        tool_names: list[str] | None = None,
        rounds: int = 0,
        duration_ms: float | None = None,
        attachments_count: int = 0,
    ) -> None:
        """One record per completed request: sizes, rounds and tools, content only when enabled."""
        tool_names = tool_names or []
        show_content = self._content_logging()
        if show_content:
            summary = f"User: {preview(user_input)} -> AI: {preview(response)}"
        else:
            summary = "User: [HIDDEN] -> AI: [HIDDEN]"

        message = f"{summary} [{rounds} rounds]"
        if tool_names:
            message += f" [{len(tool_names)} tools]"
        if duration_ms:
            message += f" [{duration_ms:.0f}ms]"

        fields = self._fields(
            {
                "conversation_turn": True,
                "chars_input": len(user_input),
                "chars_response": len(response),
                "rounds": rounds,
                "tools": tool_names,
                "attachments": attachments_count,
                "content_logging": show_content,
            }
        )
        fields["session_id"] = session_id
        if duration_ms is not None:
            fields["ms"] = int(duration_ms)

        self.logger.info(message, extra=fields)

    def log_tool_call(self, tool_name: str, tool_input: dict[str, Any], status: str) -> None:
        """Tool invocation outcome; arguments only when content logging is enabled."""
        args = preview(str(tool_input)) if self._content_logging() else "..."
        self.logger.info(f"Tool call: {tool_name}({args}) -> {status}", extra=self._fields({"tools": [tool_name]}))


# Global logger instance
logger = ChatLogger()
