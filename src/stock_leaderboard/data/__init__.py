"""Data layer: calendar, freshness policy, tiered cache, baselines, quote refresh."""

from stock_leaderboard.data.baselines import BaselineResolver, baseline_key, default_anchor_date
from stock_leaderboard.data.cache import CacheEntry, TieredCache, TTLClass
from stock_leaderboard.data.errors import (
    NoCacheAvailableError,
    ProviderUnavailableError,
    RateLimitedError,
)
from stock_leaderboard.data.freshness import DataKind, FreshnessPolicy
from stock_leaderboard.data.managers import Manager, load_managers
from stock_leaderboard.data.market_calendar import (
    HolidayCalendar,
    MarketCalendar,
    is_market_open,
    is_trading_day,
)
from stock_leaderboard.data.refresh import (
    QuoteRefreshOrchestrator,
    RefreshResult,
    RefreshState,
)
from stock_leaderboard.data.yfinance_client import QuoteSnapshot, YFinanceProvider

__all__ = [
    # Calendar / freshness
    "HolidayCalendar",
    "MarketCalendar",
    "is_market_open",
    "is_trading_day",
    "DataKind",
    "FreshnessPolicy",
    # Cache
    "CacheEntry",
    "TieredCache",
    "TTLClass",
    # Baselines / refresh
    "BaselineResolver",
    "baseline_key",
    "default_anchor_date",
    "QuoteRefreshOrchestrator",
    "RefreshResult",
    "RefreshState",
    # Provider
    "QuoteSnapshot",
    "YFinanceProvider",
    # Errors
    "NoCacheAvailableError",
    "ProviderUnavailableError",
    "RateLimitedError",
    # Roster
    "Manager",
    "load_managers",
]
