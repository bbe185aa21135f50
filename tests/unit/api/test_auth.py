from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials

from agent_engine.api.middleware.auth import get_current_user, require_admin
from agent_engine.api.middleware.exception_handlers import AppException, AuthenticationError
from agent_engine.api.services.auth_service import AuthService, TokenExpiredError
from agent_engine.core import constants
from agent_engine.core.constants import Settings
from agent_engine.models.error_models import ErrorCode
from agent_engine.models.schemas.auth import UserInfo


def _request(host: str = "10.0.0.5") -> MagicMock:
    request = MagicMock(spec=Request)
    request.client.host = host
    return request


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestAuthService:
    def test_round_trip(self, test_settings: Settings) -> None:
        auth = AuthService(test_settings)
        token = auth.issue_access_token("user-1", email="ana@example.com", role="comercial")

        user = auth.user_from_token(token)

        assert user == UserInfo(id="user-1", email="ana@example.com", role="comercial")
        assert user.is_admin is False

    def test_expired_token(self, test_settings: Settings) -> None:
        auth = AuthService(test_settings)
        token = auth.issue_access_token("user-1", expires_in=timedelta(seconds=-10))
        with pytest.raises(TokenExpiredError):
            auth.decode_access_token(token)

    def test_wrong_secret(self, test_settings: Settings) -> None:
        other = AuthService(test_settings.model_copy(update={"jwt_secret": "another-secret"}))
        token = other.issue_access_token("user-1")
        with pytest.raises(ValueError, match="Invalid token"):
            AuthService(test_settings).decode_access_token(token)

    def test_garbage_token(self, test_settings: Settings) -> None:
        with pytest.raises(ValueError):
            AuthService(test_settings).decode_access_token("not-a-jwt")

    def test_default_user_is_admin(self, test_settings: Settings) -> None:
        user = AuthService(test_settings).default_user()
        assert user.id == test_settings.default_user_id
        assert user.is_admin is True


class TestGetCurrentUser:
    @pytest.mark.asyncio
    async def test_valid_token(self, test_settings: Settings) -> None:
        token = AuthService(test_settings).issue_access_token("user-7", role="admin")
        user = await get_current_user(_request(), _bearer(token))
        assert user.id == "user-7"
        assert user.is_admin

    @pytest.mark.asyncio
    async def test_missing_credentials(self) -> None:
        with pytest.raises(AuthenticationError) as exc:
            await get_current_user(_request(), None)
        assert exc.value.code == ErrorCode.AUTH_REQUIRED
        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token(self) -> None:
        with pytest.raises(AuthenticationError) as exc:
            await get_current_user(_request(), _bearer("bad"))
        assert exc.value.code == ErrorCode.AUTH_INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_expired_token(self, test_settings: Settings) -> None:
        token = AuthService(test_settings).issue_access_token("user-1", expires_in=timedelta(seconds=-10))
        with pytest.raises(AuthenticationError) as exc:
            await get_current_user(_request(), _bearer(token))
        assert exc.value.code == ErrorCode.AUTH_EXPIRED_TOKEN

    @pytest.mark.asyncio
    async def test_localhost_bypass_when_enabled(self, test_settings: Settings) -> None:
        constants._settings_manager._instance = test_settings.model_copy(update={"allow_localhost_noauth": True})
        user = await get_current_user(_request("127.0.0.1"), None)
        assert user.id == test_settings.default_user_id

    @pytest.mark.asyncio
    async def test_no_bypass_for_remote_hosts(self, test_settings: Settings) -> None:
        constants._settings_manager._instance = test_settings.model_copy(update={"allow_localhost_noauth": True})
        with pytest.raises(AuthenticationError):
            await get_current_user(_request("203.0.113.9"), None)


class TestRequireAdmin:
    @pytest.mark.asyncio
    async def test_admin_passes(self) -> None:
        user = UserInfo(id="u", role="admin")
        assert await require_admin(user) is user

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self) -> None:
        with pytest.raises(AppException) as exc:
            await require_admin(UserInfo(id="u", role="comercial"))
        assert exc.value.status_code == 403
