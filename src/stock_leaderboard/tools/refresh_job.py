"""Background cache refresh, meant to be triggered every 15 minutes."""

import hmac
import logging
import os
from datetime import datetime, timezone
from typing import Any

from stock_leaderboard.context import LeaderboardContext
from stock_leaderboard.tools.leaderboard import leaderboard
from stock_leaderboard.utils.provenance import build_error_response, build_meta

logger = logging.getLogger(__name__)


async def refresh_cache(ctx: LeaderboardContext, secret: str | None = None) -> dict[str, Any]:
    """
    Force a leaderboard refresh while the market is open.

    When CRON_SECRET is set the caller must pass the same secret. Outside
    market hours nothing is fetched: the last close is already cached.

    Returns:
        Dict with message, timestamp and (on refresh) where the data came from
    """
    expected = os.environ.get("CRON_SECRET")
    if expected and not hmac.compare_digest(expected, secret or ""):
        return build_error_response(error_type="unauthorized", message="Unauthorized")

    timestamp = datetime.now(timezone.utc).isoformat()

    if not ctx.is_market_open():
        logger.info("Market is closed, skipping cache refresh")
        return {
            "meta": build_meta("refresh_cache"),
            "message": "Market closed, cache refresh skipped",
            "refreshed": False,
            "timestamp": timestamp,
        }

    logger.info("Starting background cache refresh...")
    result = await leaderboard(ctx, force=True)
    if result.get("error"):
        return result

    source = result["data_provenance"]["quotes"]["served_from"]
    return {
        "meta": build_meta("refresh_cache"),
        "message": "Cache refresh completed" if source == "live" else "Refresh failed, cache kept",
        "refreshed": source == "live",
        "served_from": source,
        "timestamp": timestamp,
    }
