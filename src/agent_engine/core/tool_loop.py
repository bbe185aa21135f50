"""
Multi-round tool-use loop.

States: GENERATING -> EXECUTING_TOOLS -> GENERATING ... -> DONE | ERROR.

Each GENERATING step is exactly one provider call through the
RetryGovernor. Text blocks are emitted as ``text_delta`` as soon as the
response arrives, in block order; tool-use blocks are executed in
emission order, each bracketed by ``tool_call_start``/``tool_call_end``.
Tool failures become ``is_error`` tool results the model can react to.
Provider failures end the loop in ERROR and propagate to the caller.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agent_engine.core.cancellation import CancellationToken
from agent_engine.core.constants import PHASE_EXECUTING_TOOLS, PHASE_GENERATING, USAGE_CATEGORY_CHAT
from agent_engine.core.errors import ToolExecutionError
from agent_engine.core.result_compressor import ResultCompressor
from agent_engine.core.retry import RetryGovernor
from agent_engine.core.stream_emitter import StreamEmitter
from agent_engine.integrations.provider import ModelProvider, ProviderResponse, ToolUseBlock
from agent_engine.integrations.tool_registry import ToolRegistry
from agent_engine.models.session_models import Message, ModelSelection, ToolContext, ToolInvocation, UsageRecorder
from agent_engine.utils.logger import logger


class LoopState(str, Enum):
    GENERATING = "generating"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERROR = "error"


@dataclass
class ToolLoopResult:
    """Outcome of a completed loop."""

    text: str = ""
    invocations: list[ToolInvocation] = field(default_factory=list)
    rounds: int = 0
    hit_round_limit: bool = False
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def tool_names(self) -> list[str]:
        return [invocation.name for invocation in self.invocations]

    def to_message(self) -> Message:
        """The assistant message to persist for this request."""
        return Message(role="assistant", content=self.text, tool_invocations=tuple(self.invocations))


def tool_error_payload(message: str) -> dict[str, Any]:
    return {"is_error": True, "error": message}


class ToolLoopEngine:
    """Drives generation to completion for one request."""

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        usage: UsageRecorder,
        emitter: StreamEmitter,
        governor: RetryGovernor,
        compressor: ResultCompressor,
        *,
        max_rounds: int,
        token: CancellationToken | None = None,
        session_id: str | None = None,
    ):
        self._provider = provider
        self._registry = registry
        self._usage = usage
        self._emitter = emitter
        self._governor = governor
        self._compressor = compressor
        self._max_rounds = max_rounds
        self._token = token or CancellationToken()
        self.session_id = session_id
        self.state = LoopState.GENERATING

    async def run(
        self,
        messages: list[dict[str, Any]],
        selection: ModelSelection,
        context: ToolContext,
        *,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> ToolLoopResult:
        """Run rounds until a tool-free response or the round limit.

        Args:
            messages: Wire-format context for round 1 (not mutated)
            selection: Model and token ceiling shared by every round
            context: Caller-scoped context passed to tool handlers
            system: System prompt prepended to the context
            tools: Tool definitions exposed to the provider

        Raises:
            ProviderError: Terminal provider failure
            ProviderRateLimitError: Rate limited on every retry
            asyncio.CancelledError: The request was cancelled
        """
        conversation: list[dict[str, Any]] = []
        if system:
            conversation.append({"role": "system", "content": system})
        conversation.extend(messages)

        result = ToolLoopResult()
        self.state = LoopState.GENERATING

        try:
            while self.state is LoopState.GENERATING:
                result.rounds += 1
                response = await self._generate(conversation, selection, tools, result)

                for block in response.blocks:
                    if block.type == "text":
                        result.text += block.text
                        await self._emitter.text_delta(block.text)

                if not response.tool_uses:
                    self.state = LoopState.DONE
                    break

                self.state = LoopState.EXECUTING_TOOLS
                conversation.append(response.to_assistant_message())
                await self._emitter.status(PHASE_EXECUTING_TOOLS)
                for block in response.tool_uses:
                    conversation.append(await self._execute(block, context, result))

                if result.rounds >= self._max_rounds:
                    result.hit_round_limit = True
                    logger.warning(f"Tool loop stopped at the round limit ({self._max_rounds})")
                    self.state = LoopState.DONE
                else:
                    self.state = LoopState.GENERATING
        except BaseException:
            self.state = LoopState.ERROR
            raise

        return result

    async def _generate(
        self,
        conversation: list[dict[str, Any]],
        selection: ModelSelection,
        tools: list[dict[str, Any]] | None,
        result: ToolLoopResult,
    ) -> ProviderResponse:
        self._token.check()
        await self._emitter.status(PHASE_GENERATING)

        # Snapshot so retries resend the same context
        snapshot = list(conversation)

        async def call() -> ProviderResponse:
            return await self._provider.complete(
                model=selection.model,
                messages=snapshot,
                max_tokens=selection.max_tokens,
                tools=tools or None,
            )

        started = time.perf_counter()
        response = await self._governor.call(call)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        result.input_tokens += response.usage.input_tokens
        result.output_tokens += response.usage.output_tokens
        await self._record_usage(response, selection, result.rounds, duration_ms)
        self._token.check()
        return response

    async def _execute(self, block: ToolUseBlock, context: ToolContext, result: ToolLoopResult) -> dict[str, Any]:
        """Run one tool and return its tool-result entry for the next round."""
        self._token.check()

        try:
            tool_input = block.parse_input()
            parse_error = None
        except ValueError as e:
            tool_input = {}
            parse_error = f"Invalid arguments for {block.name}: {e}"

        await self._emitter.tool_call_start(block.id, block.name, tool_input)

        if parse_error is not None:
            output: Any = tool_error_payload(parse_error)
            status = "error"
        else:
            try:
                output = await self._registry.execute(block.name, tool_input, context)
                status = "completed"
            except ToolExecutionError as e:
                output = tool_error_payload(str(e))
                status = "error"

        self._token.check()
        invocation = ToolInvocation(id=block.id, name=block.name, input=tool_input, result=output, status=status)  # type: ignore[arg-type]
        result.invocations.append(invocation)
        logger.log_tool_call(block.name, tool_input, status)
        await self._emitter.tool_call_end(block.id, block.name, output, status)

        return {"role": "tool", "tool_call_id": block.id, "content": self._compressor.compress(output)}

    async def _record_usage(
        self,
        response: ProviderResponse,
        selection: ModelSelection,
        round_number: int,
        duration_ms: float,
    ) -> None:
        try:
            await self._usage.record(
                USAGE_CATEGORY_CHAT,
                selection.model,
                response.usage.input_tokens,
                response.usage.output_tokens,
                session_id=self.session_id,
                metadata={"round": round_number, "tier": selection.tier.value, "duration_ms": duration_ms},
            )
        except Exception as e:
            logger.error(f"Usage ledger unavailable, chat usage not recorded: {e}", exc_info=True)


__all__ = ["LoopState", "ToolLoopEngine", "ToolLoopResult", "tool_error_payload"]
