from __future__ import annotations

from unittest.mock import patch

from agent_engine.core import constants
from agent_engine.core.constants import Settings
from agent_engine.utils.logger import logger, preview, redact


def test_redact_patterns() -> None:
    text = "Escribir a ana@example.com, RUC 20123456789, password=hunter2"
    assert redact(text) == "Escribir a [EMAIL], RUC [RUC], [REDACTED]"


def test_preview_is_single_line_and_truncated() -> None:
    assert preview("línea uno\nlínea dos", length=9) == "línea uno..."
    assert preview("corto") == "corto"


class TestConversationTurnLogging:
    def test_content_hidden_by_default(self) -> None:
        with patch.object(logger.logger, "info") as info:
            logger.log_conversation_turn(
                user_input="cotiza 3 PLC para ana@example.com",
                response="Listo",
                session_id="conv_1",
                tool_names=["search_catalog"],
                rounds=2,
                duration_ms=1234.5,
            )

        message = info.call_args.args[0]
        extra = info.call_args.kwargs["extra"]
        assert "[HIDDEN]" in message
        assert "ana@example.com" not in message
        assert "[2 rounds]" in message and "[1 tools]" in message
        assert extra["session_id"] == "conv_1"
        assert extra["tools"] == ["search_catalog"]
        assert extra["ms"] == 1234

    def test_content_logging_redacts(self, test_settings: Settings) -> None:
        constants._settings_manager._instance = test_settings.model_copy(update={"enable_content_logging": True})

        with patch.object(logger.logger, "info") as info:
            logger.log_conversation_turn(user_input="para ana@example.com", response="ok", session_id="conv_1")

        message = info.call_args.args[0]
        assert "[EMAIL]" in message
        assert "ana@example.com" not in message

    def test_tool_call_arguments_hidden_by_default(self) -> None:
        with patch.object(logger.logger, "info") as info:
            logger.log_tool_call("search_catalog", {"query": "PLC"}, "completed")

        assert info.call_args.args[0] == "Tool call: search_catalog(...) -> completed"
