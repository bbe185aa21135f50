"""
Model tier selection.

A pure function of the request's messages: the same message list always
yields the same ``ModelSelection``. Computed once per request and shared
by every round of the tool loop.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from agent_engine.core.constants import Settings
from agent_engine.models.session_models import Message, ModelSelection, ModelTier


@dataclass(frozen=True, slots=True)
class RoutingPolicy:
    """Thresholds, keywords and models used by the router."""

    capable_model: str
    fast_model: str
    standard_max_tokens: int
    extended_max_tokens: int
    word_threshold: int
    tool_threshold: int
    keywords: tuple[str, ...] = ()
    document_keywords: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> RoutingPolicy:
        return cls(
            capable_model=settings.capable_model,
            fast_model=settings.fast_model,
            standard_max_tokens=settings.standard_max_tokens,
            extended_max_tokens=settings.extended_max_tokens,
            word_threshold=settings.complexity_word_threshold,
            tool_threshold=settings.complexity_tool_threshold,
            keywords=tuple(settings.complexity_keywords),
            document_keywords=tuple(settings.document_keywords),
        )


def _last_assistant(messages: Sequence[Message]) -> Message | None:
    for message in reversed(messages[:-1]):
        if message.role == "assistant":
            return message
    return None


def classify(messages: Sequence[Message], policy: RoutingPolicy) -> tuple[ModelTier, str]:
    """Return the tier and the name of the rule that chose it. First match wins."""
    if not messages:
        return ModelTier.FAST, "default"

    current = messages[-1]
    text = current.content.lower()

    if current.attachments:
        return ModelTier.CAPABLE, "attachments"
    if len(current.content.split()) > policy.word_threshold:
        return ModelTier.CAPABLE, "word_count"
    if any(keyword in text for keyword in policy.keywords):
        return ModelTier.CAPABLE, "keyword"

    previous = _last_assistant(messages)
    if previous is not None and len(previous.tool_invocations) > policy.tool_threshold:
        return ModelTier.CAPABLE, "previous_tool_use"

    return ModelTier.FAST, "default"


def choose_max_tokens(messages: Sequence[Message], policy: RoutingPolicy) -> int:
    """Extended ceiling for document work, standard otherwise."""
    if not messages:
        return policy.standard_max_tokens
    current = messages[-1]
    if any(a.kind == "document" for a in current.attachments):
        return policy.extended_max_tokens
    text = current.content.lower()
    if any(keyword in text for keyword in policy.document_keywords):
        return policy.extended_max_tokens
    return policy.standard_max_tokens


def select_model(messages: Sequence[Message], policy: RoutingPolicy) -> ModelSelection:
    tier, reason = classify(messages, policy)
    model = policy.capable_model if tier is ModelTier.CAPABLE else policy.fast_model
    return ModelSelection(tier=tier, model=model, max_tokens=choose_max_tokens(messages, policy), reason=reason)


__all__ = ["RoutingPolicy", "choose_max_tokens", "classify", "select_model"]
