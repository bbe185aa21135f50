"""
Usage and budget API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UsageResponse(BaseModel):
    """Current calendar month provider spend."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"cost": 12.3456, "limit": 25.0, "percent_used": 49.38}}
    )

    cost: float = Field(..., ge=0, description="Spend this month (USD)")
    limit: float = Field(..., description="Monthly ceiling (USD)")
    percent_used: float = Field(..., description="cost / limit as a percentage")


class UsageLimitUpdate(BaseModel):
    """New monthly ceiling."""

    limit: float = Field(..., gt=0, description="Monthly ceiling (USD)")
