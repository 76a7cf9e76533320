"""Benchmark index tool: YTD and 1d change for broad market proxies."""

import asyncio
from time import perf_counter
from typing import Any

from stock_leaderboard.context import LeaderboardContext
from stock_leaderboard.data.errors import (
    NoCacheAvailableError,
    ProviderUnavailableError,
    RateLimitedError,
)
from stock_leaderboard.data.freshness import DataKind
from stock_leaderboard.utils.performance import percent_change, round_optional
from stock_leaderboard.utils.provenance import (
    build_cache_provenance,
    build_error_response,
    build_meta,
)

INDEXES_KEY = "stock:current:indexes"
INDEXES: list[tuple[str, str]] = [
    ("SPY", "S&P 500"),
    ("QQQ", "Nasdaq 100"),
    ("DIA", "Dow Jones"),
    ("DX-Y.NYB", "US Dollar"),
]


def has_index_values(rows: Any) -> bool:
    return isinstance(rows, list) and any(r.get("change_percent") is not None for r in rows)


async def build_index_rows(ctx: LeaderboardContext) -> list[dict[str, Any]]:
    """
    Price-only YTD change per index (no dividends).

    Raises:
        RateLimitedError: any upstream call was throttled
        ProviderUnavailableError: no quote came back at all
    """
    symbols = [symbol for symbol, _ in INDEXES]
    result = await ctx.orchestrator.refresh(symbols)
    if result.rate_limited:
        raise RateLimitedError("index quote refresh rate limited")
    if result.failed:
        raise ProviderUnavailableError("no index quotes returned")

    quotes = result.by_symbol()
    throttled = asyncio.Event()
    baselines = await ctx.baselines.resolve(symbols, throttled)
    if throttled.is_set():
        raise RateLimitedError("rate limited while resolving index baselines")

    rows = []
    for symbol, name in INDEXES:
        quote = quotes.get(symbol)
        price = quote.price if quote else None
        baseline = baselines.get(symbol)
        change_1d = percent_change(price, quote.previous_close if quote else None)
        if change_1d is None:
            change_1d = percent_change(price, baseline)
        rows.append(
            {
                "symbol": symbol,
                "name": name,
                "current_price": price,
                "change_percent": round_optional(percent_change(price, baseline)),
                "change_1d": round_optional(change_1d),
            }
        )
    return rows


async def index_performance(ctx: LeaderboardContext) -> dict[str, Any]:
    """
    YTD performance of benchmark indexes.

    Returns:
        Dict with meta, provenance and one row per index
    """
    start_time = perf_counter()

    try:
        rows, source = await ctx.orchestrator.serve(
            INDEXES_KEY,
            lambda: build_index_rows(ctx),
            kind=DataKind.QUOTES,
            is_usable=has_index_values,
        )
    except NoCacheAvailableError:
        return build_error_response(
            error_type="data_unavailable",
            message="Index data temporarily unavailable. Please try again later.",
            retry_after_seconds=60,
        )

    entry = ctx.cache.entry(INDEXES_KEY)
    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("index_performance", duration_ms),
        "data_provenance": {
            "quotes": build_cache_provenance(
                key=INDEXES_KEY,
                source=source,
                written_at=entry.written_at if entry else None,
                market_state=ctx.calendar.get_market_state(ctx.cache.now()),
            ),
        },
        "baseline_date": ctx.baselines.anchor.isoformat(),
        "indexes": rows,
    }
