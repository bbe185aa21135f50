"""
Caller identity schema.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class UserInfo(BaseModel):
    """Identity resolved from the bearer token (or the localhost bypass)."""

    id: str = Field(..., description="Stable user identifier (token subject)")
    email: str | None = Field(default=None, description="User email")
    role: str | None = Field(default=None, description="Application role, e.g. admin or comercial")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
