"""Performance chart tool: hourly percent-vs-baseline series for the year."""

import asyncio
import logging
from datetime import date, datetime, timedelta
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
from stock_leaderboard.tools.leaderboard import unique_symbols
from stock_leaderboard.utils.performance import percent_change
from stock_leaderboard.utils.provenance import (
    build_cache_provenance,
    build_error_response,
    build_meta,
)

logger = logging.getLogger(__name__)

MONTHLY_KEY = "stock:monthly"
MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
BAR_INTERVAL = "1h"


def month_labels(today: date) -> list[str]:
    """Past months by name, current month with the day (e.g. "Mar 14")."""
    labels = MONTHS[: today.month - 1]
    labels.append(f"{MONTHS[today.month - 1]} {today.day}")
    return labels


def series_points(
    bars: pd.DataFrame,
    baseline: float,
    ctx: LeaderboardContext,
    bar_length: timedelta = timedelta(hours=1),
) -> tuple[list[float], list[int]]:
    """
    Percent-vs-baseline points for each bar: the open at bar start and the
    close at bar end. Bars on non-trading days are dropped.

    Returns:
        (values, epoch-millisecond timestamps), chronological
    """
    points: list[tuple[int, float]] = []
    for bar in bars.itertuples(index=False):
        start = pd.Timestamp(bar.date)
        if start.tzinfo is None:
            start = start.tz_localize("UTC")
        if not ctx.calendar.is_trading_day(start.to_pydatetime()):
            continue
        if not pd.isna(bar.open):
            value = percent_change(float(bar.open), baseline)
            if value is not None:
                points.append((int(start.timestamp() * 1000), round(value, 4)))
        value = percent_change(float(bar.close), baseline)
        if value is not None:
            end = start + bar_length
            points.append((int(end.timestamp() * 1000), round(value, 4)))

    points.sort(key=lambda p: p[0])
    return [v for _, v in points], [t for t, _ in points]


async def _manager_series(
    ctx: LeaderboardContext,
    manager: Manager,
    baseline: float | None,
    start: datetime,
    end: datetime,
    throttled: asyncio.Event,
) -> dict[str, Any]:
    series: dict[str, Any] = {
        "name": manager.name,
        "symbol": manager.stock_symbol,
        "data": [],
        "timestamps": [],
    }
    if baseline is None or throttled.is_set():
        return series
    try:
        bars = await ctx.provider.intraday_history(manager.stock_symbol, start, end, BAR_INTERVAL)
    except ProviderUnavailableError as e:
        if e.rate_limited:
            throttled.set()
        logger.info(f"{manager.stock_symbol}: intraday history unavailable ({e})")
        return series
    series["data"], series["timestamps"] = series_points(bars, baseline, ctx)
    return series


def has_series_data(payload: Any) -> bool:
    return isinstance(payload, dict) and any(s.get("data") for s in payload.get("data", []))


async def build_chart(ctx: LeaderboardContext, managers: list[Manager]) -> dict[str, Any]:
    """
    Fetch bars for every manager and compute the chart payload.

    Raises:
        RateLimitedError: any upstream call was throttled; remaining
            symbols are not fetched
        ProviderUnavailableError: no baseline price could be resolved
    """
    symbols = unique_symbols(managers)
    throttled = asyncio.Event()
    baselines = await ctx.baselines.resolve(symbols, throttled)
    if throttled.is_set():
        raise RateLimitedError("rate limited while resolving baselines")
    if all(v is None for v in baselines.values()):
        raise ProviderUnavailableError("no baseline prices available")

    now = ctx.calendar.to_local(ctx.cache.now())
    first_day = ctx.calendar.first_trading_day(now.year)
    start = ctx.calendar.tz.localize(datetime(first_day.year, first_day.month, first_day.day))

    series = await asyncio.gather(
        *(_manager_series(ctx, m, baselines.get(m.stock_symbol), start, now, throttled) for m in managers)
    )
    if throttled.is_set():
        raise RateLimitedError("rate limited while fetching intraday history")
    return {"months": month_labels(now.date()), "data": list(series)}


async def performance_chart(ctx: LeaderboardContext) -> dict[str, Any]:
    """
    Year-to-date performance series for the chart.

    Returns:
        Dict with meta, provenance, month labels and one series per manager
    """
    start_time = perf_counter()

    managers = ctx.load_managers()
    if not managers:
        return build_error_response(
            error_type="invalid_parameters",
            message="No managers configured",
        )

    try:
        payload, source = await ctx.orchestrator.serve(
            MONTHLY_KEY,
            lambda: build_chart(ctx, managers),
            kind=DataKind.SERIES,
            is_usable=has_series_data,
        )
    except NoCacheAvailableError:
        return build_error_response(
            error_type="data_unavailable",
            message="Chart data temporarily unavailable. Please try again later.",
            retry_after_seconds=60,
        )

    entry = ctx.cache.entry(MONTHLY_KEY)
    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("performance_chart", duration_ms),
        "data_provenance": {
            "series": build_cache_provenance(
                key=MONTHLY_KEY,
                source=source,
                written_at=entry.written_at if entry else None,
                market_state=ctx.calendar.get_market_state(ctx.cache.now()),
            ),
        },
        "baseline_date": ctx.baselines.anchor.isoformat(),
        "interval": BAR_INTERVAL,
        **payload,
    }
