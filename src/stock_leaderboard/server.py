"""Stock Leaderboard MCP Server using FastMCP."""

import json
import logging
import os

from fastmcp import FastMCP

from stock_leaderboard import SCHEMA_VERSION, SERVER_VERSION
from stock_leaderboard.context import build_context
from stock_leaderboard.tools import (
    index_performance,
    leaderboard,
    manager_analyses,
    market_status,
    performance_chart,
    refresh_cache,
)
from stock_leaderboard.tools.leaderboard import CURRENT_KEY

# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)

# Built once per process and shared by every tool call
ctx = build_context()

# Create FastMCP server instance
mcp = FastMCP(
    name="stock-leaderboard",
)


# ============================================================================
# TOOLS
# ============================================================================


@mcp.tool
async def get_leaderboard() -> str:
    """
    Get the manager leaderboard ranked by year-to-date total return.

    Each row has current price, YTD change (price + dividends), 1-day,
    1-month and 3-month change. Missing data is null, never 0.
    Served from cache while fresh (15 min during market hours, 24 h otherwise);
    falls back to the last known data when the quote provider fails.

    Returns:
        JSON with ranked rows and data provenance
    """
    result = await leaderboard(ctx)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_performance_chart() -> str:
    """
    Get hourly YTD performance series for every manager.

    Values are percent change versus the baseline (prior year-end close),
    with epoch-millisecond timestamps and month labels for the x-axis.

    Returns:
        JSON with month labels and one series per manager
    """
    result = await performance_chart(ctx)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_index_performance() -> str:
    """
    Get YTD and 1-day change for benchmark indexes (S&P 500, Nasdaq 100, Dow, US Dollar).

    Returns:
        JSON with one row per index
    """
    result = await index_performance(ctx)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_manager_analyses() -> str:
    """
    Get each manager's written analysis of their pick.

    Returns:
        JSON mapping manager name to symbol and analysis text
    """
    result = await manager_analyses(ctx)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_market_status() -> str:
    """
    Get the exchange session state and cache freshness.

    Returns:
        JSON with open/closed state, holiday-table coverage and per-key freshness
    """
    result = await market_status(ctx)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def refresh_leaderboard_cache(secret: str = "") -> str:
    """
    Refresh the leaderboard cache ahead of readers (schedule every 15 minutes).

    Skipped while the market is closed.

    Args:
        secret: Must match CRON_SECRET when that variable is set

    Returns:
        JSON with refresh outcome
    """
    result = await refresh_cache(ctx, secret=secret or None)
    return json.dumps(result, indent=2, default=str)


# ============================================================================
# RESOURCES
# ============================================================================


@mcp.resource("leaderboard://current")
def get_cached_leaderboard() -> str:
    """
    Get the last computed leaderboard as JSON.

    Serves cached data only. Call get_leaderboard first to populate it.
    """
    rows = ctx.cache.last_known(CURRENT_KEY)
    if rows is None:
        return "Resource not cached. Call get_leaderboard() first."
    return json.dumps(rows, indent=2, default=str)


# ============================================================================
# ENTRY POINT
# ============================================================================


def main() -> None:
    """Run the MCP server."""
    logger.info(f"Starting Stock Leaderboard MCP Server v{SERVER_VERSION} (schema v{SCHEMA_VERSION})")
    try:
        mcp.run()
    finally:
        ctx.provider.shutdown()


if __name__ == "__main__":
    main()
