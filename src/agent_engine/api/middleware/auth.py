from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agent_engine.api.middleware.exception_handlers import AppException, AuthenticationError
from agent_engine.api.middleware.request_context import update_request_context
from agent_engine.api.services.auth_service import AuthService, TokenExpiredError
from agent_engine.core.constants import get_settings
from agent_engine.models.error_models import ErrorCode
from agent_engine.models.schemas.auth import UserInfo

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> UserInfo:
    """Authenticate incoming REST requests."""
    settings = get_settings()
    auth = AuthService(settings)

    if credentials is None:
        if settings.allow_localhost_noauth and _is_localhost(request):
            user = auth.default_user()
            update_request_context(user_id=user.id)
            return user
        raise AuthenticationError(
            message="Authentication required",
            code=ErrorCode.AUTH_REQUIRED,
        )

    try:
        user = auth.user_from_token(credentials.credentials)
    except TokenExpiredError as exc:
        raise AuthenticationError(
            message="Token expired",
            code=ErrorCode.AUTH_EXPIRED_TOKEN,
        ) from exc
    except ValueError as exc:
        raise AuthenticationError(
            message="Invalid token",
            code=ErrorCode.AUTH_INVALID_TOKEN,
        ) from exc

    update_request_context(user_id=user.id)
    return user


async def require_admin(user: Annotated[UserInfo, Depends(get_current_user)]) -> UserInfo:
    """Restrict an endpoint to administrators."""
    if not user.is_admin:
        raise AppException(code=ErrorCode.AUTH_FORBIDDEN, message="Administrator role required")
    return user


def _is_localhost(request: Request) -> bool:
    """Check if the request originates from localhost."""
    host = request.client.host if request.client else ""
    return host in {"127.0.0.1", "localhost", "::1"}


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
AdminUser = Annotated[UserInfo, Depends(require_admin)]
