"""
Health check API schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class DatabaseHealth(BaseModel):
    """Database connection pool health."""

    configured: bool = Field(..., description="A database URL is configured")
    healthy: bool = Field(default=True, description="Database is accessible")
    pool_size: int = Field(default=0, ge=0, description="Total pool size")
    free_connections: int = Field(default=0, ge=0, description="Available connections")


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"] = Field(..., description="Overall health")
    version: str = Field(..., description="Application version")
    uptime_seconds: float = Field(..., description="Seconds since startup")
    database: DatabaseHealth
