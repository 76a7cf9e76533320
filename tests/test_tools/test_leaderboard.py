"""Tests for the leaderboard tool."""

from datetime import date

import pandas as pd
import pytest
from conftest import ANCHOR, FakeClock, FakeProvider, provider_error, rate_limit_error

from stock_leaderboard.context import LeaderboardContext
from stock_leaderboard.data.baselines import baseline_key
from stock_leaderboard.data.cache import TieredCache, TTLClass
from stock_leaderboard.data.managers import Manager
from stock_leaderboard.data.yfinance_client import QuoteSnapshot
from stock_leaderboard.tools.leaderboard import (
    CURRENT_KEY,
    build_row,
    has_ytd_values,
    leaderboard,
    unique_symbols,
)


class TestBuildRow:
    """Tests for single-row arithmetic."""

    def test_full_row(self) -> None:
        closes = pd.Series(
            [75.0, 100.0],
            index=pd.DatetimeIndex(["2025-10-03", "2025-12-05"]),
        )
        row = build_row(
            Manager(name="Sam", stock_symbol="NVDA", analysis="GPUs"),
            QuoteSnapshot(symbol="NVDA", price=150.0, previous_close=125.0),
            baseline=120.0,
            dividend_yield=0.5,
            closes=closes,
            today=date(2026, 1, 5),
        )

        assert row["price_change_percent"] == 25.0
        assert row["dividend_yield_ytd"] == 0.5
        assert row["change_percent"] == 25.5
        assert row["change_1d"] == 20.0
        assert row["change_1m"] == 50.0
        assert row["change_3m"] == 100.0
        assert row["analysis"] == "GPUs"

    def test_missing_quote_is_null(self) -> None:
        """Test a failed quote leaves every price-derived field None, not 0."""
        row = build_row(Manager(name="Grant", stock_symbol="WM"), None, 250.0, 0.0, None, date(2026, 1, 5))
        for field in ("current_price", "change_percent", "change_1d", "change_1m", "change_3m"):
            assert row[field] is None

    def test_missing_baseline_is_null(self) -> None:
        row = build_row(
            Manager(name="Grant", stock_symbol="WM"),
            QuoteSnapshot(symbol="WM", price=200.0, previous_close=202.0),
            None,
            None,
            None,
            date(2026, 1, 5),
        )
        assert row["change_percent"] is None
        assert row["change_1d"] == pytest.approx(-0.9901, abs=1e-4)

    def test_one_day_falls_back_to_baseline(self) -> None:
        """Test the first session of the year measures 1d against the baseline."""
        row = build_row(
            Manager(name="Sam", stock_symbol="NVDA"),
            QuoteSnapshot(symbol="NVDA", price=132.0, previous_close=None),
            120.0,
            None,
            None,
            date(2026, 1, 2),
        )
        assert row["change_1d"] == 10.0

    def test_unknown_dividends_use_price_change(self) -> None:
        row = build_row(
            Manager(name="Sam", stock_symbol="NVDA"),
            QuoteSnapshot(symbol="NVDA", price=150.0),
            120.0,
            None,
            None,
            date(2026, 1, 5),
        )
        assert row["change_percent"] == 25.0
        assert row["dividend_yield_ytd"] is None


class TestHelpers:
    """Tests for roster helpers."""

    def test_unique_symbols_keeps_order(self) -> None:
        managers = [
            Manager(name="A", stock_symbol="NVDA"),
            Manager(name="B", stock_symbol="JPM"),
            Manager(name="C", stock_symbol="nvda"),
        ]
        assert unique_symbols(managers) == ["NVDA", "JPM"]

    def test_has_ytd_values(self) -> None:
        assert has_ytd_values([{"change_percent": None}, {"change_percent": 1.0}])
        assert not has_ytd_values([{"change_percent": None}])
        assert not has_ytd_values([])
        assert not has_ytd_values(None)


class TestLeaderboardTool:
    """Tests for the leaderboard tool end to end."""

    @pytest.mark.asyncio
    async def test_ranked_rows(self, ctx: LeaderboardContext, provider: FakeProvider) -> None:
        provider.dividends["JPM"] = 3.0

        result = await leaderboard(ctx)

        assert [r["symbol"] for r in result["rows"]] == ["NVDA", "NBIS", "JPM", "WM"]
        jpm = result["rows"][2]
        assert jpm["price_change_percent"] == 0.0
        assert jpm["change_percent"] == 1.0
        assert result["rows"][1]["change_1d"] == 10.0
        assert result["baseline_date"] == "2025-12-31"
        assert result["meta"]["tool"] == "leaderboard"

    @pytest.mark.asyncio
    async def test_provenance(self, ctx: LeaderboardContext) -> None:
        result = await leaderboard(ctx)
        prov = result["data_provenance"]["quotes"]
        assert prov["served_from"] == "live"
        assert prov["cache_key"] == CURRENT_KEY
        assert prov["market_state"] == "regular"
        assert prov["warnings"] == []

    @pytest.mark.asyncio
    async def test_second_call_cached(self, ctx: LeaderboardContext, provider: FakeProvider) -> None:
        await leaderboard(ctx)
        quote_calls = len(provider.calls_to("quote"))

        result = await leaderboard(ctx)

        assert result["data_provenance"]["quotes"]["served_from"] == "cache"
        assert len(provider.calls_to("quote")) == quote_calls

    @pytest.mark.asyncio
    async def test_baselines_fetched_once(
        self, ctx: LeaderboardContext, provider: FakeProvider, clock: FakeClock
    ) -> None:
        await leaderboard(ctx)
        close_calls = len(provider.calls_to("historical_close"))
        clock.advance(minutes=20)

        result = await leaderboard(ctx)

        assert result["data_provenance"]["quotes"]["served_from"] == "live"
        assert len(provider.calls_to("historical_close")) == close_calls

    @pytest.mark.asyncio
    async def test_missing_quote_ranked_last(self, ctx: LeaderboardContext, provider: FakeProvider) -> None:
        provider.prices["NVDA"] = None

        result = await leaderboard(ctx)

        last = result["rows"][-1]
        assert last["symbol"] == "NVDA"
        assert last["current_price"] is None
        assert last["change_percent"] is None

    @pytest.mark.asyncio
    async def test_stale_served_when_rate_limited(
        self, ctx: LeaderboardContext, provider: FakeProvider, clock: FakeClock
    ) -> None:
        first = await leaderboard(ctx)
        clock.advance(minutes=20)
        provider.batch_error = rate_limit_error()
        provider.calls.clear()

        result = await leaderboard(ctx)

        prov = result["data_provenance"]["quotes"]
        assert prov["served_from"] == "stale"
        assert prov["warnings"]
        assert result["rows"] == first["rows"]
        assert provider.calls_to("quote") == [("quote", ("NBIS", "NVDA", "JPM", "WM"))]

    @pytest.mark.asyncio
    async def test_stale_served_when_every_quote_fails(
        self, ctx: LeaderboardContext, provider: FakeProvider, clock: FakeClock
    ) -> None:
        await leaderboard(ctx)
        clock.advance(minutes=20)
        provider.batch_error = provider_error()
        for s in ("NBIS", "NVDA", "JPM", "WM"):
            provider.symbol_errors[s] = provider_error(s)

        result = await leaderboard(ctx)

        assert result["data_provenance"]["quotes"]["served_from"] == "stale"

    @pytest.mark.asyncio
    async def test_rate_limited_baseline_stops_later_calls(
        self, ctx: LeaderboardContext, provider: FakeProvider, memory_cache: TieredCache
    ) -> None:
        """Test a throttled baseline lookup skips dividends and reference closes and publishes nothing."""
        memory_cache.set(
            baseline_key(ANCHOR), {"NBIS": 100.0, "NVDA": 120.0, "JPM": 300.0}, TTLClass.PERMANENT
        )
        provider.close_errors["WM"] = rate_limit_error("WM")

        result = await leaderboard(ctx)

        assert result["error_type"] == "data_unavailable"
        assert provider.calls_to("daily_closes") == []
        assert provider.calls_to("dividends_since") == []
        assert ctx.cache.last_known(CURRENT_KEY) is None

    @pytest.mark.asyncio
    async def test_rate_limited_baseline_serves_stale(
        self,
        ctx: LeaderboardContext,
        provider: FakeProvider,
        clock: FakeClock,
        managers: list[Manager],
    ) -> None:
        """Test a new roster symbol hitting a rate limit keeps the last published rows."""
        first = await leaderboard(ctx)
        ctx.load_managers = lambda: [*managers, Manager(name="Nick", stock_symbol="PM")]
        provider.prices["PM"] = 160.0
        provider.close_errors["PM"] = rate_limit_error("PM")
        clock.advance(minutes=20)
        provider.calls.clear()

        result = await leaderboard(ctx)

        assert result["data_provenance"]["quotes"]["served_from"] == "stale"
        assert result["rows"] == first["rows"]
        assert provider.calls_to("daily_closes") == []
        assert provider.calls_to("dividends_since") == []

    @pytest.mark.asyncio
    async def test_rate_limited_dividends_serve_stale(
        self, ctx: LeaderboardContext, provider: FakeProvider, clock: FakeClock
    ) -> None:
        first = await leaderboard(ctx)
        clock.advance(minutes=20)
        provider.dividend_errors["NBIS"] = rate_limit_error("NBIS")
        provider.calls.clear()

        result = await leaderboard(ctx)

        assert result["data_provenance"]["quotes"]["served_from"] == "stale"
        assert result["rows"] == first["rows"]
        assert provider.calls_to("dividends_since") == [("dividends_since", "NBIS", ANCHOR)]

    @pytest.mark.asyncio
    async def test_nothing_cached_returns_error(self, ctx: LeaderboardContext, provider: FakeProvider) -> None:
        provider.batch_error = rate_limit_error()

        result = await leaderboard(ctx)

        assert result["error"] is True
        assert result["error_type"] == "data_unavailable"
        assert result["retry_after_seconds"] == 60

    @pytest.mark.asyncio
    async def test_no_managers(self, ctx: LeaderboardContext) -> None:
        ctx.load_managers = lambda: []
        result = await leaderboard(ctx)
        assert result["error_type"] == "invalid_parameters"

    @pytest.mark.asyncio
    async def test_force_refreshes(self, ctx: LeaderboardContext, provider: FakeProvider) -> None:
        await leaderboard(ctx)
        result = await leaderboard(ctx, force=True)
        assert result["data_provenance"]["quotes"]["served_from"] == "live"
        assert len(provider.calls_to("quote")) == 2
