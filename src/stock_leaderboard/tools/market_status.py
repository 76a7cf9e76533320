"""Market status tool: session state and cache freshness per key."""

from typing import Any

from stock_leaderboard.context import LeaderboardContext
from stock_leaderboard.tools.indexes import INDEXES_KEY
from stock_leaderboard.tools.leaderboard import CURRENT_KEY
from stock_leaderboard.tools.performance_chart import MONTHLY_KEY
from stock_leaderboard.utils.provenance import build_meta

CACHE_KEYS = (CURRENT_KEY, MONTHLY_KEY, INDEXES_KEY)


async def market_status(ctx: LeaderboardContext) -> dict[str, Any]:
    """
    Current exchange session and whether each cached payload is still fresh.

    Returns:
        Dict with market state, holiday-table coverage and per-key freshness
    """
    now = ctx.cache.now()
    state = ctx.calendar.get_market_state(now)
    local = ctx.calendar.to_local(now)

    cache: dict[str, Any] = {}
    for key in (*CACHE_KEYS, ctx.baselines.key):
        last_update = ctx.cache.last_update(key)
        cache[key] = {
            "fresh": ctx.cache.should_use_cache(key),
            "last_update": last_update.isoformat() if last_update else None,
        }

    return {
        "meta": build_meta("market_status"),
        "is_open": ctx.is_market_open(),
        "is_trading_day": ctx.calendar.is_trading_day(local.date()),
        "holiday_table_covers_year": ctx.calendar.holidays.covers(local.year),
        **state,
        "cache": cache,
    }
