"""Process-wide service objects, built once and passed to every tool."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

from stock_leaderboard.data.baselines import BaselineResolver
from stock_leaderboard.data.cache import TieredCache
from stock_leaderboard.data.freshness import FreshnessPolicy
from stock_leaderboard.data.managers import Manager, load_managers
from stock_leaderboard.data.market_calendar import MarketCalendar
from stock_leaderboard.data.refresh import QuoteRefreshOrchestrator
from stock_leaderboard.data.yfinance_client import YFinanceProvider


@dataclass
class LeaderboardContext:
    """Everything a tool needs: the cache, its collaborators, the roster source."""

    cache: TieredCache
    provider: Any
    orchestrator: QuoteRefreshOrchestrator
    baselines: BaselineResolver
    load_managers: Callable[[], list[Manager]]

    @property
    def calendar(self) -> MarketCalendar:
        return self.cache.calendar

    def is_market_open(self) -> bool:
        return self.cache.market_open()


def build_context(
    cache: TieredCache | None = None,
    provider: Any = None,
    calendar: MarketCalendar | None = None,
    anchor: date | None = None,
    managers: Callable[[], list[Manager]] | None = None,
) -> LeaderboardContext:
    """
    Wire the cache layer together.

    Called once at server start; tests pass in-memory caches and fake providers.
    """
    calendar = calendar or MarketCalendar()
    if cache is None:
        cache = TieredCache.from_env(policy=FreshnessPolicy(), calendar=calendar)
    provider = provider if provider is not None else YFinanceProvider()
    return LeaderboardContext(
        cache=cache,
        provider=provider,
        orchestrator=QuoteRefreshOrchestrator(cache, provider),
        baselines=BaselineResolver(cache, provider, calendar=cache.calendar, anchor=anchor),
        load_managers=managers or load_managers,
    )
