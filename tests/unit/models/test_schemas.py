from __future__ import annotations

import pytest

from pydantic import ValidationError

from agent_engine.models.error_models import ErrorCode, ErrorResponse, get_status_code
from agent_engine.models.schemas.chat import ChatRequest
from agent_engine.models.schemas.usage import UsageLimitUpdate, UsageResponse
from agent_engine.models.session_models import Attachment, Message, MonthlyUsage, media_kind_for


class TestChatRequest:
    def test_snake_case_keys_are_accepted(self) -> None:
        request = ChatRequest.model_validate(
            {
                "messages": [{"role": "user", "content": None, "attachments": [{"name": "x.png", "mime_type": "image/png"}]}],
                "session_id": "conv_1",
            }
        )
        [message] = request.to_domain()
        assert message.content == ""
        assert message.attachments[0].has_payload is False
        assert request.session_id == "conv_1"

    def test_unknown_fields_are_ignored(self) -> None:
        request = ChatRequest.model_validate({"messages": [], "stream": True})
        assert request.messages == []

    def test_attachment_requires_name(self) -> None:
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"messages": [{"role": "user", "attachments": [{"name": "", "mimeType": "a"}]}]})


class TestDomainModels:
    def test_media_kind(self) -> None:
        assert media_kind_for("IMAGE/PNG") == "image"
        assert media_kind_for("application/pdf") == "document"

    def test_message_is_empty(self) -> None:
        assert Message(role="user", content=" ").is_empty
        assert not Message(role="user", attachments=(Attachment("a.png", "image/png", "AA=="),)).is_empty
        assert Message(role="user", attachments=(Attachment("a.png", "image/png"),)).is_empty

    def test_monthly_usage(self) -> None:
        usage = MonthlyUsage(cost=20.0, limit=25.0)
        assert usage.percent_used == 80.0
        assert usage.to_dict() == {"cost": 20.0, "limit": 25.0, "percent_used": 80.0}
        assert MonthlyUsage(cost=1.0, limit=0).percent_used == 100.0


class TestUsageSchemas:
    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            UsageLimitUpdate(limit=0)

    def test_response_from_usage(self) -> None:
        response = UsageResponse(**MonthlyUsage(cost=5.0, limit=25.0).to_dict())
        assert response.percent_used == 20.0


class TestErrorModels:
    def test_status_codes(self) -> None:
        assert get_status_code(ErrorCode.AUTH_REQUIRED) == 401
        assert get_status_code(ErrorCode.VALIDATION_EMPTY_MESSAGES) == 400
        assert get_status_code(ErrorCode.PAYLOAD_TOO_LARGE) == 413
        assert get_status_code(ErrorCode.BUDGET_EXCEEDED) == 429

    def test_envelope(self) -> None:
        body = ErrorResponse(code=ErrorCode.BUDGET_EXCEEDED, message="Monthly AI budget exhausted").to_dict()
        assert body["error"]["code"] == "BUD_4001"
        assert "debug" not in body["error"]
