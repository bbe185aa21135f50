"""
Generative model provider boundary.

The engine talks to the provider through ``ModelProvider`` and only ever
sees ``ProviderResponse`` objects and the engine error taxonomy. The
OpenAI implementation translates SDK responses into ordered content
blocks and SDK exceptions into ``ProviderRateLimitError`` or
``ProviderError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import APIError, APIStatusError, AsyncOpenAI, RateLimitError

from agent_engine.core.errors import ProviderError, ProviderRateLimitError
from agent_engine.utils.json_utils import parse_json_object
from agent_engine.utils.logger import logger

#: HTTP statuses treated as transient throttling (529 is the "overloaded" status some gateways use)
RATE_LIMIT_STATUSES = frozenset({429, 529})


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str
    type: str = "text"


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    """A tool call requested by the model. ``arguments`` is the raw JSON text."""

    id: str
    name: str
    arguments: str = ""
    type: str = "tool_use"

    def parse_input(self) -> dict[str, Any]:
        """Decode the arguments.

        Raises:
            ValueError: If the arguments are not a JSON object
        """
        return parse_json_object(self.arguments)


ContentBlock = TextBlock | ToolUseBlock


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class ProviderResponse:
    """One completed provider call: ordered content blocks plus usage."""

    blocks: tuple[ContentBlock, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    finish_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> tuple[ToolUseBlock, ...]:
        return tuple(b for b in self.blocks if isinstance(b, ToolUseBlock))

    def to_assistant_message(self) -> dict[str, Any]:
        """The assistant's raw content in wire format, for the next round's context."""
        message: dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_uses:
            message["tool_calls"] = [
                {
                    "id": block.id,
                    "type": "function",
                    "function": {"name": block.name, "arguments": block.arguments or "{}"},
                }
                for block in self.tool_uses
            ]
        return message


class ModelProvider(Protocol):
    """Anything that can run one chat completion."""

    async def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        tools: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse: ...


def _retry_after(exc: APIStatusError) -> float | None:
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def translate_provider_error(exc: APIError) -> ProviderRateLimitError | ProviderError:
    """Map an OpenAI SDK exception onto the engine taxonomy."""
    if isinstance(exc, RateLimitError):
        return ProviderRateLimitError(str(exc), retry_after=_retry_after(exc))
    if isinstance(exc, APIStatusError):
        if exc.status_code in RATE_LIMIT_STATUSES:
            return ProviderRateLimitError(str(exc), retry_after=_retry_after(exc))
        return ProviderError(str(exc), status_code=exc.status_code)
    return ProviderError(str(exc))


class OpenAIChatProvider:
    """``ModelProvider`` backed by the OpenAI Chat Completions API."""

    def __init__(self, client: AsyncOpenAI):
        self._client = client

    async def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        tools: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = tools

        try:
            completion = await self._client.chat.completions.create(**kwargs)
        except APIError as e:
            translated = translate_provider_error(e)
            logger.warning(f"Provider call failed ({type(translated).__name__}): {e}", model=model)
            raise translated from e

        return self._to_response(completion, model)

    @staticmethod
    def _to_response(completion: Any, model: str) -> ProviderResponse:
        if not completion.choices:
            raise ProviderError("Provider returned no choices")

        choice = completion.choices[0]
        message = choice.message
        blocks: list[ContentBlock] = []
        if message.content:
            blocks.append(TextBlock(text=message.content))
        for call in message.tool_calls or []:
            function = getattr(call, "function", None)
            if function is None:
                continue
            blocks.append(ToolUseBlock(id=call.id, name=function.name, arguments=function.arguments or ""))

        usage = completion.usage
        return ProviderResponse(
            blocks=tuple(blocks),
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=getattr(completion, "model", None) or model,
            finish_reason=choice.finish_reason,
        )


__all__ = [
    "ContentBlock",
    "ModelProvider",
    "OpenAIChatProvider",
    "ProviderResponse",
    "TextBlock",
    "TokenUsage",
    "ToolUseBlock",
    "translate_provider_error",
]
