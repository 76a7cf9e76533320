"""Manager analyses tool."""

from typing import Any

from stock_leaderboard.context import LeaderboardContext
from stock_leaderboard.utils.provenance import build_meta


async def manager_analyses(ctx: LeaderboardContext) -> dict[str, Any]:
    """Analysis text per manager, straight from the roster file. No upstream calls."""
    analyses = {
        m.name: {"stock_symbol": m.stock_symbol, "analysis": m.analysis}
        for m in ctx.load_managers()
        if m.analysis
    }
    return {
        "meta": build_meta("manager_analyses"),
        "analyses": analyses,
    }
