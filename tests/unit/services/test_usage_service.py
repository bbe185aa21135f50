from __future__ import annotations

import json

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from agent_engine.core.constants import DEFAULT_CAPABLE_MODEL, MODEL_PRICES
from agent_engine.core.errors import UsageLedgerError
from agent_engine.services.usage_service import (
    InMemoryUsageRecorder,
    PostgresUsageRecorder,
    calculate_cost,
    month_start,
    price_for,
)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _mock_pool(conn: MagicMock) -> MagicMock:
    pool = MagicMock()
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=None)
    pool.acquire.return_value = cm
    return pool


class TestPricing:
    def test_exact_model(self) -> None:
        assert price_for("gpt-4.1-mini") is MODEL_PRICES["gpt-4.1-mini"]

    def test_dated_snapshot_uses_longest_prefix(self) -> None:
        assert price_for("gpt-4.1-mini-2025-04-14") is MODEL_PRICES["gpt-4.1-mini"]
        assert price_for("gpt-4.1-2025-04-14") is MODEL_PRICES["gpt-4.1"]

    def test_unknown_model_bills_capable_tier(self) -> None:
        assert price_for("some-new-model") is MODEL_PRICES[DEFAULT_CAPABLE_MODEL]

    def test_calculate_cost(self) -> None:
        # gpt-4.1: $2 in / $8 out per million
        assert calculate_cost("gpt-4.1", 1_000_000, 500_000) == pytest.approx(6.0)

    def test_month_start(self) -> None:
        now = datetime(2025, 3, 17, 15, 30, tzinfo=UTC)
        assert month_start(now) == datetime(2025, 3, 1, tzinfo=UTC)


class TestInMemoryUsageRecorder:
    @pytest.mark.asyncio
    async def test_record_and_monthly_total(self) -> None:
        recorder = InMemoryUsageRecorder(monthly_limit=10.0)

        await recorder.record("chat", "gpt-4.1", 1_000_000, 0, session_id="conv_1", metadata={"round": 1})
        await recorder.record("document_extraction", "gpt-4.1-mini", 1_000_000, 0)

        usage = await recorder.current_monthly_usage()
        assert usage.cost == pytest.approx(2.4)
        assert usage.limit == 10.0
        assert usage.percent_used == pytest.approx(24.0)
        assert usage.exhausted is False
        assert recorder.records[0].metadata == {"round": 1}

    @pytest.mark.asyncio
    async def test_previous_month_is_excluded(self) -> None:
        clock = _Clock(datetime(2025, 1, 31, 23, 0, tzinfo=UTC))
        recorder = InMemoryUsageRecorder(monthly_limit=5.0, clock=clock)
        await recorder.record("chat", "gpt-4.1", 1_000_000, 0)

        clock.now = datetime(2025, 2, 1, 0, 30, tzinfo=UTC)
        await recorder.record("chat", "gpt-4.1", 500_000, 0)

        usage = await recorder.current_monthly_usage()
        assert usage.cost == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_exhausted_at_ceiling(self) -> None:
        recorder = InMemoryUsageRecorder(monthly_limit=2.0)
        await recorder.record("chat", "gpt-4.1", 1_000_000, 0)
        assert (await recorder.current_monthly_usage()).exhausted is True

    @pytest.mark.asyncio
    async def test_set_limit(self) -> None:
        recorder = InMemoryUsageRecorder(monthly_limit=2.0)
        usage = await recorder.set_limit(50.0)
        assert usage.limit == 50.0

        with pytest.raises(ValueError):
            await recorder.set_limit(0)


class TestPostgresUsageRecorder:
    @pytest.mark.asyncio
    async def test_record_inserts_cost_and_metadata(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock()
        recorder = PostgresUsageRecorder(_mock_pool(conn), default_limit=25.0)

        await recorder.record("chat", "gpt-4.1", 1_000_000, 0, session_id="conv_1", metadata={"round": 2})

        args = conn.execute.await_args.args
        assert "INSERT INTO ai_usage" in args[0]
        assert args[1:7] == ("chat", "gpt-4.1", 1_000_000, 0, pytest.approx(2.0), "conv_1")
        assert json.loads(args[7]) == {"round": 2}

    @pytest.mark.asyncio
    async def test_monthly_usage_falls_back_to_default_limit(self) -> None:
        conn = MagicMock()
        conn.fetchval = AsyncMock(side_effect=[3.5, None])
        recorder = PostgresUsageRecorder(_mock_pool(conn), default_limit=25.0)

        usage = await recorder.current_monthly_usage()

        assert usage.cost == 3.5
        assert usage.limit == 25.0

    @pytest.mark.asyncio
    async def test_monthly_usage_uses_stored_limit(self) -> None:
        conn = MagicMock()
        conn.fetchval = AsyncMock(side_effect=[0, 40])
        recorder = PostgresUsageRecorder(_mock_pool(conn), default_limit=25.0)

        assert (await recorder.current_monthly_usage()).limit == 40.0

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=asyncpg.PostgresError("relation does not exist"))
        recorder = PostgresUsageRecorder(_mock_pool(conn), default_limit=25.0)

        with pytest.raises(UsageLedgerError):
            await recorder.record("chat", "gpt-4.1", 1, 1)

    @pytest.mark.asyncio
    async def test_set_limit_upserts(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock()
        conn.fetchval = AsyncMock(side_effect=[1.0, 30.0])
        recorder = PostgresUsageRecorder(_mock_pool(conn), default_limit=25.0)

        usage = await recorder.set_limit(30.0)

        assert "ON CONFLICT (id)" in conn.execute.await_args.args[0]
        assert usage.limit == 30.0
