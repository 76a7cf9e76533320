"""Leaderboard tool: YTD, 1d, 1m and 3m performance per manager."""

import asyncio
import logging
from datetime import date
from time import perf_counter
from typing import Any

import pandas as pd

from stock_leaderboard.context import LeaderboardContext
from stock_leaderboard.data.errors import (
    NoCacheAvailableError,
    ProviderUnavailableError,
    RateLimitedError,
)
from stock_leaderboard.data.freshness import DataKind
from stock_leaderboard.data.managers import Manager
from stock_leaderboard.data.yfinance_client import QuoteSnapshot
from stock_leaderboard.utils.performance import (
    add_optional,
    close_on_or_before,
    percent_change,
    rank_by_change,
    round_optional,
)
from stock_leaderboard.utils.provenance import (
    build_cache_provenance,
    build_error_response,
    build_meta,
)

logger = logging.getLogger(__name__)

CURRENT_KEY = "stock:current"


def has_ytd_values(rows: Any) -> bool:
    """A leaderboard is worth caching only if some row has a YTD figure."""
    return isinstance(rows, list) and any(r.get("change_percent") is not None for r in rows)


def unique_symbols(managers: list[Manager]) -> list[str]:
    return list(dict.fromkeys(m.stock_symbol for m in managers))


async def _dividend_yields(
    ctx: LeaderboardContext,
    baselines: dict[str, float | None],
    since: date,
    throttled: asyncio.Event,
) -> dict[str, float | None]:
    """YTD dividends as a percent of the baseline price; None where unknown."""

    async def _one(symbol: str, baseline: float | None) -> float | None:
        if baseline is None or throttled.is_set():
            return None
        try:
            paid = await ctx.provider.dividends_since(symbol, since)
        except ProviderUnavailableError as e:
            if e.rate_limited:
                throttled.set()
            logger.info(f"{symbol}: dividends unavailable ({e})")
            return None
        return percent_change(baseline + paid, baseline)

    symbols = list(baselines)
    values = await asyncio.gather(*(_one(s, baselines[s]) for s in symbols))
    return dict(zip(symbols, values))


async def _reference_closes(
    ctx: LeaderboardContext,
    symbols: list[str],
    throttled: asyncio.Event,
) -> dict[str, pd.Series]:
    if throttled.is_set():
        return {}
    try:
        return await ctx.provider.daily_closes(symbols, period="6mo")
    except ProviderUnavailableError as e:
        if e.rate_limited:
            throttled.set()
        logger.info(f"reference closes unavailable ({e}); 1m/3m changes omitted")
        return {}


def build_row(
    manager: Manager,
    quote: QuoteSnapshot | None,
    baseline: float | None,
    dividend_yield: float | None,
    closes: pd.Series | None,
    today: date,
) -> dict[str, Any]:
    """One leaderboard row. Every numeric field is None when its inputs are missing."""
    price = quote.price if quote is not None else None
    previous_close = quote.previous_close if quote is not None else None

    price_change = percent_change(price, baseline)
    change_1d = percent_change(price, previous_close)
    if change_1d is None:
        # First session of the year has no usable previous close
        change_1d = percent_change(price, baseline)

    month_ago = (pd.Timestamp(today) - pd.DateOffset(months=1)).date()
    quarter_ago = (pd.Timestamp(today) - pd.DateOffset(months=3)).date()

    return {
        "name": manager.name,
        "symbol": manager.stock_symbol,
        "current_price": price,
        "baseline_price": baseline,
        "change_percent": round_optional(add_optional(price_change, dividend_yield)),
        "price_change_percent": round_optional(price_change),
        "dividend_yield_ytd": round_optional(dividend_yield),
        "change_1d": round_optional(change_1d),
        "change_1m": round_optional(percent_change(price, close_on_or_before(closes, month_ago))),
        "change_3m": round_optional(percent_change(price, close_on_or_before(closes, quarter_ago))),
        "analysis": manager.analysis,
    }


async def build_leaderboard_rows(
    ctx: LeaderboardContext,
    managers: list[Manager],
) -> list[dict[str, Any]]:
    """
    Fetch upstream data and compute ranked rows.

    One rate-limit flag spans the whole build: once any stage is throttled,
    later stages make no upstream call and the build fails so the caller
    keeps serving the last known leaderboard.

    Raises:
        RateLimitedError: any upstream call was throttled
        ProviderUnavailableError: no quote came back at all
    """
    symbols = unique_symbols(managers)
    result = await ctx.orchestrator.refresh(symbols)
    if result.rate_limited:
        raise RateLimitedError("quote refresh rate limited")
    if result.failed:
        raise ProviderUnavailableError("no quotes returned for any symbol")

    quotes = result.by_symbol()
    throttled = asyncio.Event()
    baselines = await ctx.baselines.resolve(symbols, throttled)
    if throttled.is_set():
        raise RateLimitedError("rate limited while resolving baselines")

    dividends, closes = await asyncio.gather(
        _dividend_yields(ctx, baselines, ctx.baselines.anchor, throttled),
        _reference_closes(ctx, symbols, throttled),
    )
    if throttled.is_set():
        raise RateLimitedError("rate limited while fetching dividends or reference closes")

    today = ctx.calendar.to_local(ctx.cache.now()).date()
    rows = [
        build_row(
            m,
            quotes.get(m.stock_symbol),
            baselines.get(m.stock_symbol),
            dividends.get(m.stock_symbol),
            closes.get(m.stock_symbol),
            today,
        )
        for m in managers
    ]
    return rank_by_change(rows)


async def leaderboard(ctx: LeaderboardContext, force: bool = False) -> dict[str, Any]:
    """
    Current performance for every manager.

    Args:
        ctx: Service context
        force: Skip the fresh-cache read (background refresh)

    Returns:
        Dict with meta, provenance and ranked rows, or an error response when
        no data has ever been available
    """
    start_time = perf_counter()

    managers = ctx.load_managers()
    if not managers:
        return build_error_response(
            error_type="invalid_parameters",
            message="No managers configured",
        )

    try:
        rows, source = await ctx.orchestrator.serve(
            CURRENT_KEY,
            lambda: build_leaderboard_rows(ctx, managers),
            kind=DataKind.QUOTES,
            force=force,
            is_usable=has_ytd_values,
        )
    except NoCacheAvailableError:
        return build_error_response(
            error_type="data_unavailable",
            message="Stock data temporarily unavailable. Please try again later.",
            retry_after_seconds=60,
        )

    entry = ctx.cache.entry(CURRENT_KEY)
    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("leaderboard", duration_ms),
        "data_provenance": {
            "quotes": build_cache_provenance(
                key=CURRENT_KEY,
                source=source,
                written_at=entry.written_at if entry else None,
                market_state=ctx.calendar.get_market_state(ctx.cache.now()),
            ),
        },
        "baseline_date": ctx.baselines.anchor.isoformat(),
        "rows": rows,
    }
