from __future__ import annotations

from typing import Annotated

import asyncpg

from fastapi import Depends, Request

from agent_engine.api.services.request_gate import RequestGate
from agent_engine.services.usage_service import InMemoryUsageRecorder, PostgresUsageRecorder


async def get_db(request: Request) -> asyncpg.Pool | None:
    """Database pool from application state (None when running in-memory)."""
    return getattr(request.app.state, "db_pool", None)


def get_request_gate(request: Request) -> RequestGate:
    """Chat entry point built at startup."""
    return request.app.state.request_gate


def get_usage_recorder(request: Request) -> InMemoryUsageRecorder | PostgresUsageRecorder:
    return request.app.state.usage_recorder


# Type aliases for cleaner route signatures
DB = Annotated[asyncpg.Pool | None, Depends(get_db)]
Gate = Annotated[RequestGate, Depends(get_request_gate)]
Usage = Annotated[InMemoryUsageRecorder | PostgresUsageRecorder, Depends(get_usage_recorder)]
