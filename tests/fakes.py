"""Test doubles shared across the suite."""

from __future__ import annotations

import base64
import json

from typing import Any

from agent_engine.integrations.provider import ProviderResponse, TextBlock, TokenUsage, ToolUseBlock


def text_response(text: str, tokens_in: int = 100, tokens_out: int = 20, model: str = "gpt-4.1-mini") -> ProviderResponse:
    return ProviderResponse(
        blocks=(TextBlock(text=text),),
        usage=TokenUsage(input_tokens=tokens_in, output_tokens=tokens_out),
        model=model,
        finish_reason="stop",
    )


def tool_response(*calls: tuple[str, str, dict[str, Any] | str], text: str = "") -> ProviderResponse:
    """Response requesting ``calls`` as (id, name, input) tuples. A str input is sent as raw arguments."""
    blocks: list[Any] = [TextBlock(text=text)] if text else []
    for call_id, name, tool_input in calls:
        arguments = tool_input if isinstance(tool_input, str) else json.dumps(tool_input)
        blocks.append(ToolUseBlock(id=call_id, name=name, arguments=arguments))
    return ProviderResponse(
        blocks=tuple(blocks),
        usage=TokenUsage(input_tokens=150, output_tokens=30),
        finish_reason="tool_calls",
    )


class FakeProvider:
    """Scripted ModelProvider: returns (or raises) the queued outcomes in order."""

    def __init__(self, *outcomes: ProviderResponse | BaseException):
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        tools: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        self.calls.append({"model": model, "messages": list(messages), "max_tokens": max_tokens, "tools": tools})
        if not self.outcomes:
            raise AssertionError("Unexpected provider call")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    """Zero-delay sleep that remembers the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def pdf_payload(pages: int = 2) -> str:
    """Base64 body of a minimal PDF with ``pages`` page objects."""
    objects = b"".join(b"%d 0 obj << /Type /Page /Parent 1 0 R >> endobj\n" % (i + 2) for i in range(pages))
    raw = b"%PDF-1.4\n1 0 obj << /Type /Pages /Count " + str(pages).encode() + b" >> endobj\n" + objects + b"%%EOF"
    return base64.b64encode(raw).decode("ascii")


def parse_sse(body: str) -> list[tuple[str, dict[str, Any]]]:
    """Split an SSE body into (event, data) pairs."""
    events: list[tuple[str, dict[str, Any]]] = []
    for frame in body.split("\n\n"):
        if not frame.strip():
            continue
        name = ""
        data: dict[str, Any] = {}
        for line in frame.split("\n"):
            if line.startswith("event: "):
                name = line[len("event: ") :]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: ") :])
        events.append((name, data))
    return events
