"""Shared test fixtures for the agent engine test suite.

Settings are pinned to test values before each test so that no .env
file, database or OpenAI key is needed.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest

from fakes import RecordingSleep

from agent_engine.core import constants
from agent_engine.core.constants import Settings
from agent_engine.core.stream_emitter import StreamEmitter
from agent_engine.integrations.tool_registry import ToolRegistry
from agent_engine.models.session_models import ToolContext
from agent_engine.services.conversation_store import InMemoryConversationStore
from agent_engine.services.usage_service import InMemoryUsageRecorder


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "app_env": "test",
        "openai_api_key": "test-openai-key",
        "database_url": None,
        "jwt_secret": "test-jwt-secret",
        "allow_localhost_noauth": False,
        "retry_delays": [2.0, 5.0, 10.0],
        "monthly_budget_usd": 25.0,
        "debug": False,
        "config_hot_reload": False,
    }
    values.update(overrides)
    return Settings(**values)


# ============================================================================
# Test Isolation: Settings Management (MUST BE FIRST)
# ============================================================================


@pytest.fixture(autouse=True)
def test_settings() -> Generator[Settings, None, None]:
    """Pin the settings singleton to test values for the duration of a test."""
    settings = make_settings()
    constants._settings_manager._instance = settings
    yield settings
    constants._settings_manager.clear()


@pytest.fixture(autouse=True)
def offline_token_counts() -> Generator[None, None, None]:
    """tiktoken downloads encodings on first use; keep the suite offline."""
    with patch(
        "agent_engine.core.document_preprocessor.count_tokens",
        return_value={"exact_tokens": 42},
    ):
        yield


# ============================================================================
# Collaborators
# ============================================================================


@pytest.fixture
def emitter() -> StreamEmitter:
    return StreamEmitter(maxsize=1024)


@pytest.fixture
def usage() -> InMemoryUsageRecorder:
    return InMemoryUsageRecorder(monthly_limit=25.0)


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def tool_context() -> ToolContext:
    return ToolContext(user_id="user-1", session_id="conv_test", correlation_id="COT-2025-0042")


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry with one tool per group plus a failing tool."""
    registry = ToolRegistry()

    @registry.tool(
        parameters={
            "type": "object",
            "properties": {"query": {"type": "string"}},
            "required": ["query"],
        },
    )
    async def search_catalog(tool_input: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        """Search the equipment catalog."""
        return {"results": [{"code": "PLC-100", "name": f"PLC for {tool_input['query']}"}], "count": 1}

    @registry.tool(group="creation")
    def create_quotation(tool_input: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        """Create a quotation draft."""
        return {"quotation_id": "COT-1", "owner": context.user_id}

    @registry.tool(group="project")
    async def project_schedule(tool_input: dict[str, Any], context: ToolContext) -> list[str]:
        """Project schedule milestones."""
        return ["kickoff", "delivery"]

    @registry.tool()
    async def broken_lookup(tool_input: dict[str, Any], context: ToolContext) -> Any:
        """Always fails."""
        raise RuntimeError("catalog service unavailable")

    return registry
