"""
Provider usage ledger and monthly budget.

Every provider call appends one record with its token counts and cost.
The monthly budget check sums the current calendar month (UTC). The
ledger is shared by every concurrent request, so writes are serialized
(asyncio.Lock in memory, single-statement inserts in PostgreSQL).
"""

from __future__ import annotations

import asyncio
import json

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import asyncpg

from agent_engine.core.constants import DEFAULT_CAPABLE_MODEL, MODEL_PRICES, ModelPricing
from agent_engine.core.errors import UsageLedgerError
from agent_engine.models.session_models import MonthlyUsage
from agent_engine.utils.db_utils import ConnectionPoolExhausted

_LEDGER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, ConnectionPoolExhausted, OSError)


def price_for(model: str) -> ModelPricing:
    """Price entry for ``model``.

    Dated snapshots ("gpt-4.1-mini-2025-04-14") resolve to their base
    model by longest prefix; unknown models bill at the capable tier.
    """
    if model in MODEL_PRICES:
        return MODEL_PRICES[model]
    matches = [m for m in MODEL_PRICES if model.startswith(f"{m}-")]
    if matches:
        return MODEL_PRICES[max(matches, key=len)]
    return MODEL_PRICES[DEFAULT_CAPABLE_MODEL]


def calculate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Cost in USD for one call."""
    pricing = price_for(model)
    return (tokens_in * pricing.input_per_million + tokens_out * pricing.output_per_million) / 1_000_000


def month_start(now: datetime) -> datetime:
    return now.astimezone(UTC).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True, slots=True)
class UsageRecord:
    category: str
    model: str
    tokens_in: int
    tokens_out: int
    cost: float
    session_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class InMemoryUsageRecorder:
    """Process-local ledger, used when no database is configured and in tests."""

    def __init__(self, monthly_limit: float, clock: Callable[[], datetime] | None = None):
        self._limit = monthly_limit
        self._clock = clock or (lambda: datetime.now(UTC))
        self._records: list[UsageRecord] = []
        self._lock = asyncio.Lock()

    @property
    def records(self) -> list[UsageRecord]:
        return list(self._records)

    async def record(
        self,
        category: str,
        model: str,
        tokens_in: int,
        tokens_out: int,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = UsageRecord(
            category=category,
            model=model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=calculate_cost(model, tokens_in, tokens_out),
            session_id=session_id,
            metadata=dict(metadata or {}),
            created_at=self._clock(),
        )
        async with self._lock:
            self._records.append(entry)

    async def current_monthly_usage(self) -> MonthlyUsage:
        start = month_start(self._clock())
        async with self._lock:
            cost = sum(r.cost for r in self._records if r.created_at >= start)
            return MonthlyUsage(cost=cost, limit=self._limit)

    async def set_limit(self, limit: float) -> MonthlyUsage:
        if limit <= 0:
            raise ValueError("Monthly limit must be greater than zero")
        async with self._lock:
            self._limit = limit
        return await self.current_monthly_usage()


class PostgresUsageRecorder:
    """Ledger backed by the ``ai_usage`` and ``ai_usage_limits`` tables."""

    def __init__(self, pool: asyncpg.Pool, default_limit: float):
        self.pool = pool
        self.default_limit = default_limit

    async def record(
        self,
        category: str,
        model: str,
        tokens_in: int,
        tokens_out: int,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO ai_usage (
                        category, model, tokens_in, tokens_out, cost_usd, session_id, metadata
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
                    """,
                    category,
                    model,
                    tokens_in,
                    tokens_out,
                    calculate_cost(model, tokens_in, tokens_out),
                    session_id,
                    json.dumps(metadata or {}, default=str),
                )
        except _LEDGER_ERRORS as e:
            raise UsageLedgerError(f"Failed to record usage: {e}") from e

    async def current_monthly_usage(self) -> MonthlyUsage:
        try:
            async with self.pool.acquire() as conn:
                cost = await conn.fetchval(
                    """
                    SELECT COALESCE(SUM(cost_usd), 0)
                    FROM ai_usage
                    WHERE created_at >= date_trunc('month', now() AT TIME ZONE 'utc') AT TIME ZONE 'utc'
                    """
                )
                limit = await conn.fetchval("SELECT monthly_limit_usd FROM ai_usage_limits WHERE id = 1")
        except _LEDGER_ERRORS as e:
            raise UsageLedgerError(f"Failed to read monthly usage: {e}") from e
        return MonthlyUsage(cost=float(cost or 0), limit=float(limit) if limit is not None else self.default_limit)

    async def set_limit(self, limit: float) -> MonthlyUsage:
        if limit <= 0:
            raise ValueError("Monthly limit must be greater than zero")
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO ai_usage_limits (id, monthly_limit_usd, updated_at)
                    VALUES (1, $1, now())
                    ON CONFLICT (id) DO UPDATE
                    SET monthly_limit_usd = EXCLUDED.monthly_limit_usd, updated_at = now()
                    """,
                    limit,
                )
        except _LEDGER_ERRORS as e:
            raise UsageLedgerError(f"Failed to update monthly limit: {e}") from e
        return await self.current_monthly_usage()


__all__ = [
    "InMemoryUsageRecorder",
    "PostgresUsageRecorder",
    "UsageRecord",
    "calculate_cost",
    "month_start",
    "price_for",
]
