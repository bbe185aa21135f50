"""
Usage and budget endpoints (v1).
"""

from __future__ import annotations

from fastapi import APIRouter

from agent_engine.api.dependencies import Usage
from agent_engine.api.middleware.auth import AdminUser, CurrentUser
from agent_engine.models.schemas.usage import UsageLimitUpdate, UsageResponse
from agent_engine.utils.logger import logger

router = APIRouter()


@router.get(
    "",
    response_model=UsageResponse,
    summary="Current monthly usage",
    description="Provider spend for the current calendar month against the configured ceiling.",
)
async def get_usage(user: CurrentUser, usage: Usage) -> UsageResponse:
    monthly = await usage.current_monthly_usage()
    return UsageResponse(**monthly.to_dict())


@router.put(
    "/limit",
    response_model=UsageResponse,
    summary="Update the monthly ceiling",
    description="Administrators only. The new ceiling applies to the next request.",
)
async def update_limit(body: UsageLimitUpdate, user: AdminUser, usage: Usage) -> UsageResponse:
    monthly = await usage.set_limit(body.limit)
    logger.info(f"Monthly AI budget set to ${body.limit:.2f}", user_id=user.id)
    return UsageResponse(**monthly.to_dict())
