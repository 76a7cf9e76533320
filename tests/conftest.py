"""Pytest configuration and fixtures."""

from datetime import date, datetime, timedelta
from typing import Any

import diskcache
import pandas as pd
import pytest
import pytz

from stock_leaderboard.context import LeaderboardContext, build_context
from stock_leaderboard.data.cache import TieredCache
from stock_leaderboard.data.errors import ProviderUnavailableError, RateLimitedError
from stock_leaderboard.data.freshness import FreshnessPolicy
from stock_leaderboard.data.managers import Manager
from stock_leaderboard.data.market_calendar import MarketCalendar
from stock_leaderboard.data.yfinance_client import QuoteSnapshot

EASTERN = pytz.timezone("America/New_York")

# Monday 2026-01-05 11:00 ET: regular session
OPEN_INSTANT = EASTERN.localize(datetime(2026, 1, 5, 11, 0))
# Saturday 2026-01-03 11:00 ET
CLOSED_INSTANT = EASTERN.localize(datetime(2026, 1, 3, 11, 0))

ANCHOR = date(2025, 12, 31)


class FakeClock:
    """Settable clock for the cache."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeProvider:
    """
    In-memory stand-in for YFinanceProvider.

    Records every call in `calls` so tests can assert on upstream traffic.
    """

    def __init__(
        self,
        prices: dict[str, float | None] | None = None,
        previous: dict[str, float] | None = None,
        closes: dict[tuple[str, date], float] | None = None,
        dividends: dict[str, float] | None = None,
        daily: dict[str, pd.Series] | None = None,
        bars: dict[str, pd.DataFrame] | None = None,
    ):
        self.prices = prices or {}
        self.previous = previous or {}
        self.closes = closes or {}
        self.dividends = dividends or {}
        self.daily = daily or {}
        self.bars = bars or {}
        self.batch_error: Exception | None = None
        self.symbol_errors: dict[str, Exception] = {}
        self.close_errors: dict[str, Exception] = {}
        self.dividend_errors: dict[str, Exception] = {}
        self.calls: list[tuple[Any, ...]] = []

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    async def quote(self, symbols: list[str]) -> list[QuoteSnapshot]:
        self.calls.append(("quote", tuple(symbols)))
        if len(symbols) > 1 and self.batch_error is not None:
            raise self.batch_error
        if len(symbols) == 1 and symbols[0] in self.symbol_errors:
            raise self.symbol_errors[symbols[0]]
        return [
            QuoteSnapshot(symbol=s, price=self.prices[s], previous_close=self.previous.get(s))
            for s in symbols
            if self.prices.get(s) is not None
        ]

    async def historical_close(self, symbol: str, day: date) -> float | None:
        self.calls.append(("historical_close", symbol, day))
        if symbol in self.close_errors:
            raise self.close_errors[symbol]
        return self.closes.get((symbol, day))

    async def dividends_since(self, symbol: str, since: date) -> float:
        self.calls.append(("dividends_since", symbol, since))
        if symbol in self.dividend_errors:
            raise self.dividend_errors[symbol]
        return self.dividends.get(symbol, 0.0)

    async def daily_closes(self, symbols: list[str], period: str = "6mo") -> dict[str, pd.Series]:
        self.calls.append(("daily_closes", tuple(symbols), period))
        return {s: self.daily[s] for s in symbols if s in self.daily}

    async def intraday_history(
        self, symbol: str, start: datetime, end: datetime, interval: str = "1h"
    ) -> pd.DataFrame:
        self.calls.append(("intraday_history", symbol, interval))
        if symbol in self.symbol_errors:
            raise self.symbol_errors[symbol]
        return self.bars.get(symbol, pd.DataFrame(columns=["date", "open", "high", "low", "close", "volume"]))

    def shutdown(self) -> None:
        pass


def rate_limit_error(symbol: str | None = None) -> RateLimitedError:
    return RateLimitedError("Too Many Requests", symbol=symbol)


def provider_error(symbol: str | None = None) -> ProviderUnavailableError:
    return ProviderUnavailableError("connection reset", symbol=symbol)


@pytest.fixture
def clock() -> FakeClock:
    """Clock set inside regular trading hours."""
    return FakeClock(OPEN_INSTANT.astimezone(pytz.utc))


@pytest.fixture
def calendar() -> MarketCalendar:
    return MarketCalendar()


@pytest.fixture
def memory_cache(clock: FakeClock, calendar: MarketCalendar) -> TieredCache:
    """Cache with only the in-process tier."""
    return TieredCache(policy=FreshnessPolicy(), calendar=calendar, clock=clock)


@pytest.fixture
def disk_cache(tmp_path: Any, clock: FakeClock, calendar: MarketCalendar) -> TieredCache:
    """Cache with all three tiers on tmp_path."""
    shared = diskcache.Cache(str(tmp_path / "shared"))
    permanent = diskcache.Cache(str(tmp_path / "permanent"))
    cache = TieredCache(
        shared=shared,
        permanent=permanent,
        policy=FreshnessPolicy(),
        calendar=calendar,
        shared_writes=True,
        clock=clock,
    )
    yield cache
    shared.close()
    permanent.close()


@pytest.fixture
def managers() -> list[Manager]:
    return [
        Manager(name="Daniel", stock_symbol="NBIS", analysis="AI infra"),
        Manager(name="Sam", stock_symbol="NVDA"),
        Manager(name="Adam", stock_symbol="JPM"),
        Manager(name="Grant", stock_symbol="WM"),
    ]


@pytest.fixture
def provider() -> FakeProvider:
    """Provider with quotes and anchor-date closes for the default roster."""
    return FakeProvider(
        prices={"NBIS": 110.0, "NVDA": 150.0, "JPM": 300.0, "WM": 200.0},
        previous={"NBIS": 100.0, "NVDA": 150.0, "JPM": 297.0, "WM": 202.0},
        closes={
            ("NBIS", ANCHOR): 100.0,
            ("NVDA", ANCHOR): 120.0,
            ("JPM", ANCHOR): 300.0,
            ("WM", ANCHOR): 250.0,
        },
    )


@pytest.fixture
def ctx(memory_cache: TieredCache, provider: FakeProvider, managers: list[Manager]) -> LeaderboardContext:
    return build_context(
        cache=memory_cache,
        provider=provider,
        anchor=ANCHOR,
        managers=lambda: list(managers),
    )
