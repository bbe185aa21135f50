"""
API v1 Router - Aggregates all v1 endpoints.

Usage in main.py:
    from agent_engine.api.routes.v1 import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from agent_engine.api.routes.v1 import agent, health, usage

# Create the v1 API router
router = APIRouter()

# Health endpoints (no auth required)
router.include_router(
    health.router,
    tags=["Health"],
)

# Agent chat stream
router.include_router(
    agent.router,
    prefix="/agent",
    tags=["Agent"],
)

# Usage ledger and budget
router.include_router(
    usage.router,
    prefix="/agent/usage",
    tags=["Usage"],
)

__all__ = ["router"]
