from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from agent_engine.core.constants import Settings, get_settings
from agent_engine.models.schemas.auth import UserInfo


class TokenExpiredError(ValueError):
    """The token signature is valid but it has expired."""


class AuthService:
    """Validates bearer tokens issued by the host application."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def issue_access_token(
        self,
        user_id: str,
        *,
        email: str | None = None,
        role: str | None = None,
        expires_in: timedelta = timedelta(hours=1),
    ) -> str:
        """Sign an access token. Used by local tooling and tests."""
        payload: dict[str, Any] = {
            "sub": user_id,
            "type": "access",
            "exp": datetime.now(UTC) + expires_in,
        }
        if email:
            payload["email"] = email
        if role:
            payload["role"] = role
        token: str = jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)
        return token

    def decode_access_token(self, token: str) -> dict[str, Any]:
        """Verify signature, expiry and token type.

        Raises:
            TokenExpiredError: If the token has expired
            ValueError: If the token is otherwise invalid
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("Token expired") from exc
        except JWTError as exc:
            raise ValueError("Invalid token") from exc

        if payload.get("type", "access") != "access":
            raise ValueError("Invalid token type")
        if not payload.get("sub"):
            raise ValueError("Token has no subject")
        return payload

    def user_from_token(self, token: str) -> UserInfo:
        payload = self.decode_access_token(token)
        return UserInfo(id=str(payload["sub"]), email=payload.get("email"), role=payload.get("role"))

    def default_user(self) -> UserInfo:
        """Identity used by the localhost development bypass."""
        return UserInfo(id=self.settings.default_user_id, role="admin")
