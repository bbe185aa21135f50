from __future__ import annotations

import pytest

from agent_engine.core.complexity_router import RoutingPolicy, choose_max_tokens, classify, select_model
from agent_engine.core.constants import Settings
from agent_engine.models.session_models import Attachment, Message, ModelTier, ToolInvocation


@pytest.fixture
def policy(test_settings: Settings) -> RoutingPolicy:
    return RoutingPolicy.from_settings(test_settings)


def _invocation(i: int) -> ToolInvocation:
    return ToolInvocation(id=f"call_{i}", name="search_catalog", input={}, result=[], status="completed")


class TestClassify:
    def test_short_message_is_fast(self, policy: RoutingPolicy) -> None:
        assert classify([Message(role="user", content="hola")], policy) == (ModelTier.FAST, "default")

    def test_attachment_overrides_everything(self, policy: RoutingPolicy) -> None:
        message = Message(
            role="user",
            content="ok",
            attachments=(Attachment(name="a.png", mime_type="image/png", data="AAAA"),),
        )
        assert classify([message], policy) == (ModelTier.CAPABLE, "attachments")

    def test_long_message_is_capable(self, policy: RoutingPolicy) -> None:
        message = Message(role="user", content=" ".join(["palabra"] * (policy.word_threshold + 1)))
        assert classify([message], policy) == (ModelTier.CAPABLE, "word_count")

    def test_keyword_is_capable(self, policy: RoutingPolicy) -> None:
        message = Message(role="user", content="Necesito una COTIZACIÓN para el cliente")
        assert classify([message], policy) == (ModelTier.CAPABLE, "keyword")

    def test_previous_heavy_tool_use_is_capable(self, policy: RoutingPolicy) -> None:
        assistant = Message(
            role="assistant",
            content="Found several items",
            tool_invocations=tuple(_invocation(i) for i in range(policy.tool_threshold + 1)),
        )
        messages = [Message(role="user", content="busca"), assistant, Message(role="user", content="y el otro?")]
        assert classify(messages, policy) == (ModelTier.CAPABLE, "previous_tool_use")

    def test_light_previous_tool_use_stays_fast(self, policy: RoutingPolicy) -> None:
        assistant = Message(role="assistant", content="One item", tool_invocations=(_invocation(0),))
        messages = [Message(role="user", content="busca"), assistant, Message(role="user", content="gracias")]
        assert classify(messages, policy)[0] is ModelTier.FAST

    def test_is_deterministic(self, policy: RoutingPolicy) -> None:
        messages = [Message(role="user", content="compare these two projects")]
        assert select_model(messages, policy) == select_model(messages, policy)


class TestMaxTokens:
    def test_document_attachment_extends_ceiling(self, policy: RoutingPolicy) -> None:
        message = Message(
            role="user",
            content="resume",
            attachments=(Attachment(name="tdr.pdf", mime_type="application/pdf", data="AAAA"),),
        )
        assert choose_max_tokens([message], policy) == policy.extended_max_tokens

    def test_document_keyword_extends_ceiling(self, policy: RoutingPolicy) -> None:
        assert choose_max_tokens([Message(role="user", content="revisa el PDF")], policy) == policy.extended_max_tokens

    def test_standard_otherwise(self, policy: RoutingPolicy) -> None:
        assert choose_max_tokens([Message(role="user", content="hola")], policy) == policy.standard_max_tokens


class TestSelectModel:
    def test_fast_selection(self, policy: RoutingPolicy) -> None:
        selection = select_model([Message(role="user", content="hola")], policy)
        assert selection.tier is ModelTier.FAST
        assert selection.model == policy.fast_model
        assert selection.max_tokens == policy.standard_max_tokens

    def test_capable_selection(self, policy: RoutingPolicy) -> None:
        selection = select_model([Message(role="user", content="analiza este proyecto")], policy)
        assert selection.tier is ModelTier.CAPABLE
        assert selection.model == policy.capable_model
        assert selection.max_tokens == policy.extended_max_tokens
