"""
Health check endpoint (v1).
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from agent_engine import __version__
from agent_engine.api.dependencies import DB
from agent_engine.models.schemas.health import DatabaseHealth, HealthResponse
from agent_engine.utils.db_utils import check_pool_health

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Liveness plus database pool status when a database is configured.",
)
async def health_check(db: DB, request: Request) -> HealthResponse:
    if db is None:
        database = DatabaseHealth(configured=False)
    else:
        stats = await check_pool_health(db)
        database = DatabaseHealth(
            configured=True,
            healthy=stats["healthy"],
            pool_size=stats["pool_size"],
            free_connections=stats["free_connections"],
        )

    started = getattr(request.app.state, "started_at", time.monotonic())
    return HealthResponse(
        status="healthy" if database.healthy else "degraded",
        version=__version__,
        uptime_seconds=round(time.monotonic() - started, 2),
        database=database,
    )
