from __future__ import annotations

import asyncio
import json

from typing import Any

import pytest

from fakes import FakeProvider, RecordingSleep, text_response, tool_response

from agent_engine.core.cancellation import CancellationToken
from agent_engine.core.errors import ProviderError, ProviderRateLimitError
from agent_engine.core.result_compressor import ResultCompressor
from agent_engine.core.retry import RetryGovernor
from agent_engine.core.stream_emitter import StreamEmitter
from agent_engine.core.tool_loop import LoopState, ToolLoopEngine
from agent_engine.integrations.tool_registry import ToolRegistry
from agent_engine.models.session_models import ModelSelection, ModelTier, ToolContext
from agent_engine.services.usage_service import InMemoryUsageRecorder

SELECTION = ModelSelection(tier=ModelTier.FAST, model="gpt-4.1-mini", max_tokens=4096, reason="default")


def _engine(
    provider: FakeProvider,
    registry: ToolRegistry,
    usage: InMemoryUsageRecorder,
    emitter: StreamEmitter,
    *,
    max_rounds: int = 10,
    token: CancellationToken | None = None,
    max_bytes: int = 15_000,
) -> ToolLoopEngine:
    governor = RetryGovernor([1.0, 1.0], emitter=emitter, token=token, sleep=RecordingSleep())
    return ToolLoopEngine(
        provider,
        registry,
        usage,
        emitter,
        governor,
        ResultCompressor(max_bytes=max_bytes, max_items=5),
        max_rounds=max_rounds,
        token=token,
        session_id="conv_test",
    )


def _names(emitter: StreamEmitter) -> list[str]:
    return [e.event for e in emitter.transcript]


def _user(text: str) -> list[dict[str, Any]]:
    return [{"role": "user", "content": text}]


class TestToolLoopEngine:
    @pytest.mark.asyncio
    async def test_no_tools_finishes_in_one_round(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(text_response("Hola, ¿en qué te ayudo?"))
        engine = _engine(provider, registry, usage, emitter)

        result = await engine.run(_user("hola"), SELECTION, tool_context, system="You are helpful")

        assert result.rounds == 1
        assert result.text == "Hola, ¿en qué te ayudo?"
        assert result.invocations == []
        assert engine.state is LoopState.DONE
        assert _names(emitter) == ["status", "text_delta"]
        assert provider.calls[0]["messages"][0] == {"role": "system", "content": "You are helpful"}
        assert provider.calls[0]["tools"] is None

    @pytest.mark.asyncio
    async def test_tool_round_then_answer(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(
            tool_response(("call_1", "search_catalog", {"query": "PLC"}), text="Let me check."),
            text_response("We have PLC-100."),
        )
        engine = _engine(provider, registry, usage, emitter)
        tools = registry.definitions(["search_catalog"])

        result = await engine.run(_user("find PLC"), SELECTION, tool_context, tools=tools)

        assert result.rounds == 2
        assert result.text == "Let me check.We have PLC-100."
        assert result.tool_names == ["search_catalog"]
        assert result.invocations[0].status == "completed"
        assert _names(emitter) == [
            "status",
            "text_delta",
            "status",
            "tool_call_start",
            "tool_call_end",
            "status",
            "text_delta",
        ]

        second_round = provider.calls[1]["messages"]
        assistant, tool_result = second_round[-2], second_round[-1]
        assert assistant["tool_calls"][0]["function"]["name"] == "search_catalog"
        assert tool_result["role"] == "tool"
        assert tool_result["tool_call_id"] == "call_1"
        assert json.loads(tool_result["content"])["count"] == 1
        assert provider.calls[1]["tools"] == tools

        assert [r.metadata["round"] for r in usage.records] == [1, 2]
        assert all(r.category == "chat" for r in usage.records)
        assert result.input_tokens == 250

    @pytest.mark.asyncio
    async def test_tool_error_is_reported_and_loop_continues(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(
            tool_response(("call_1", "broken_lookup", {})),
            text_response("The catalog is unavailable right now."),
        )

        result = await _engine(provider, registry, usage, emitter).run(_user("lookup"), SELECTION, tool_context)

        assert result.rounds == 2
        invocation = result.invocations[0]
        assert invocation.status == "error"
        assert invocation.result == {"is_error": True, "error": "catalog service unavailable"}
        end = [e for e in emitter.transcript if e.event == "tool_call_end"][0]
        assert end.status == "error"  # type: ignore[attr-defined]
        tool_message = provider.calls[1]["messages"][-1]
        assert json.loads(tool_message["content"])["is_error"] is True

    @pytest.mark.asyncio
    async def test_unknown_tool_and_bad_arguments_are_tool_errors(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(
            tool_response(("call_1", "does_not_exist", {}), ("call_2", "search_catalog", "{not json")),
            text_response("Sorry."),
        )

        result = await _engine(provider, registry, usage, emitter).run(_user("x"), SELECTION, tool_context)

        assert [i.status for i in result.invocations] == ["error", "error"]
        assert "Unknown tool" in result.invocations[0].result["error"]
        assert "Invalid arguments" in result.invocations[1].result["error"]
        assert result.rounds == 2

    @pytest.mark.asyncio
    async def test_multiple_tools_keep_start_end_pairs_in_order(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(
            tool_response(("a", "search_catalog", {"query": "x"}), ("b", "create_quotation", {})),
            text_response("Done."),
        )

        await _engine(provider, registry, usage, emitter).run(_user("x"), SELECTION, tool_context)

        tool_events = [(e.event, e.id) for e in emitter.transcript if e.event.startswith("tool_call")]  # type: ignore[attr-defined]
        assert tool_events == [
            ("tool_call_start", "a"),
            ("tool_call_end", "a"),
            ("tool_call_start", "b"),
            ("tool_call_end", "b"),
        ]

    @pytest.mark.asyncio
    async def test_round_limit_stops_the_loop(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(
            tool_response(("c1", "search_catalog", {"query": "a"})),
            tool_response(("c2", "search_catalog", {"query": "b"})),
        )

        result = await _engine(provider, registry, usage, emitter, max_rounds=2).run(
            _user("x"), SELECTION, tool_context
        )

        assert result.rounds == 2
        assert result.hit_round_limit is True
        assert len(provider.calls) == 2
        assert all(e.detail is None for e in emitter.transcript if e.event == "status")  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_large_tool_result_is_compressed_for_the_model(
        self,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        registry = ToolRegistry()
        rows = [{"id": i, "description": "equipment " * 20} for i in range(200)]
        registry.register("list_items", lambda tool_input, context: rows)
        provider = FakeProvider(tool_response(("c1", "list_items", {})), text_response("Listed."))

        result = await _engine(provider, registry, usage, emitter, max_bytes=2000).run(
            _user("x"), SELECTION, tool_context
        )

        content = provider.calls[1]["messages"][-1]["content"]
        assert len(content.encode("utf-8")) <= 2000
        # The caller still sees the full result
        assert result.invocations[0].result == rows

    @pytest.mark.asyncio
    async def test_provider_error_aborts(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(ProviderError("invalid model", status_code=400))
        engine = _engine(provider, registry, usage, emitter)

        with pytest.raises(ProviderError):
            await engine.run(_user("x"), SELECTION, tool_context)

        assert engine.state is LoopState.ERROR
        assert len(provider.calls) == 1
        assert usage.records == []

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried_within_round(
        self,
        registry: ToolRegistry,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        provider = FakeProvider(ProviderRateLimitError(), text_response("Recovered."))

        result = await _engine(provider, registry, usage, emitter).run(_user("x"), SELECTION, tool_context)

        assert result.rounds == 1
        assert result.text == "Recovered."
        assert len(usage.records) == 1

    @pytest.mark.asyncio
    async def test_cancellation_stops_before_next_tool(
        self,
        usage: InMemoryUsageRecorder,
        emitter: StreamEmitter,
        tool_context: ToolContext,
    ) -> None:
        token = CancellationToken()
        registry = ToolRegistry()

        async def first(tool_input: dict[str, Any], context: ToolContext) -> str:
            token.cancel("client disconnected")
            return "partial"

        async def second(tool_input: dict[str, Any], context: ToolContext) -> str:
            raise AssertionError("must not run after cancellation")

        registry.register("first", first)
        registry.register("second", second)
        provider = FakeProvider(tool_response(("a", "first", {}), ("b", "second", {})))
        engine = _engine(provider, registry, usage, emitter, token=token)

        with pytest.raises(asyncio.CancelledError):
            await engine.run(_user("x"), SELECTION, tool_context)

        assert engine.state is LoopState.ERROR
        assert len(provider.calls) == 1
