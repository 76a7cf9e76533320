"""Baseline (year-start anchor) price resolution with a permanent cache."""

import asyncio
import logging
import os
from datetime import date
from typing import Any, Protocol

from stock_leaderboard.data.cache import TieredCache, TTLClass
from stock_leaderboard.data.errors import ProviderUnavailableError
from stock_leaderboard.data.market_calendar import MarketCalendar

logger = logging.getLogger(__name__)

BASELINE_KEY_PREFIX = "stock:baselinePrices"


class HistoricalCloseProvider(Protocol):
    async def historical_close(self, symbol: str, day: date) -> float | None: ...


def default_anchor_date(today: date | None = None) -> date:
    """Dec 31 of the prior year, unless BASELINE_ANCHOR_DATE overrides it."""
    if override := os.environ.get("BASELINE_ANCHOR_DATE"):
        return date.fromisoformat(override)
    if today is None:
        today = MarketCalendar().to_local().date()
    return date(today.year - 1, 12, 31)


def baseline_key(anchor: date) -> str:
    """Permanent cache key for the baseline map of an anchor date."""
    return f"{BASELINE_KEY_PREFIX}:{anchor.isoformat()}"


class BaselineResolver:
    """
    Resolve the anchor-date closing price per symbol, once.

    Prices live in one permanent entry per anchor date. A cache hit needs a
    price for every requested symbol; anything less (a new manager, a symbol
    that failed last time) re-resolves the full requested set. Resolved
    prices are merged into the entry and never replaced by a missing value.

    Without an explicit anchor the anchor follows the cache clock in exchange
    time, so a long-running process moves to the new year's baseline on the
    first request after New Year.
    """

    def __init__(
        self,
        cache: TieredCache,
        provider: HistoricalCloseProvider,
        calendar: MarketCalendar | None = None,
        anchor: date | None = None,
    ):
        self.cache = cache
        self.provider = provider
        self.calendar = calendar or cache.calendar
        self._anchor = anchor

    @property
    def anchor(self) -> date:
        if self._anchor is not None:
            return self._anchor
        return default_anchor_date(self.calendar.to_local(self.cache.now()).date())

    @property
    def key(self) -> str:
        return baseline_key(self.anchor)

    def cached(self, symbols: list[str], anchor: date | None = None) -> dict[str, float] | None:
        """Cached baselines if they cover every symbol, else None."""
        stored = self.cache.get(baseline_key(anchor or self.anchor))
        if not isinstance(stored, dict):
            return None
        missing = [s for s in symbols if stored.get(s) is None]
        if missing:
            logger.info(
                f"baseline cache does not cover roster (missing {', '.join(missing)}); re-resolving"
            )
            return None
        return {s: stored[s] for s in symbols}

    async def _resolve_symbol(self, symbol: str, anchor: date, throttled: asyncio.Event) -> float | None:
        """
        Close on the anchor date, walking back through earlier trading days
        of the same month when the provider has no bar.

        Raises:
            RateLimitedError: so the caller can stop calling upstream
        """
        candidates = self.calendar.previous_trading_days(anchor)
        if not candidates:
            logger.warning(f"{symbol}: no trading day in {anchor:%Y-%m} up to {anchor}")
            return None

        for day in candidates:
            if throttled.is_set():
                return None
            try:
                price = await self.provider.historical_close(symbol, day)
            except ProviderUnavailableError as e:
                if e.rate_limited:
                    raise
                logger.warning(f"{symbol}: baseline lookup failed for {day}: {e}")
                return None
            if price is not None:
                if day != anchor:
                    logger.info(f"{symbol}: baseline taken from {day} (anchor {anchor} has no close)")
                return price
        return None

    async def resolve(
        self,
        symbols: list[str],
        throttled: asyncio.Event | None = None,
    ) -> dict[str, float | None]:
        """
        Baseline price per symbol.

        Args:
            symbols: Symbols to resolve (normalized to upper case)
            throttled: Request-wide rate-limit flag. Lookups are skipped once
                it is set, and it is set here when upstream throttles.

        Returns:
            Map of symbol to price; None where no price could be found
        """
        symbols = [s.upper().strip() for s in symbols]
        anchor = self.anchor
        key = baseline_key(anchor)
        cached = self.cached(symbols, anchor)
        if cached is not None:
            return dict(cached)

        if throttled is None:
            throttled = asyncio.Event()

        async def _one(symbol: str) -> float | None:
            if throttled.is_set():
                return None
            try:
                return await self._resolve_symbol(symbol, anchor, throttled)
            except ProviderUnavailableError:
                logger.warning("rate limited while resolving baselines; skipping remaining lookups")
                throttled.set()
                return None

        prices = await asyncio.gather(*(_one(s) for s in symbols))
        resolved: dict[str, float | None] = dict(zip(symbols, prices))

        found: dict[str, Any] = {s: p for s, p in resolved.items() if p is not None}
        if found:
            self.cache.set(key, found, TTLClass.PERMANENT)

        # Prefer previously stored prices over fresh misses
        stored = self.cache.get(key)
        if isinstance(stored, dict):
            for s in symbols:
                if resolved.get(s) is None and stored.get(s) is not None:
                    resolved[s] = stored[s]
        return resolved
