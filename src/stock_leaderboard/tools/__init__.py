"""Leaderboard tools."""

from stock_leaderboard.tools.analyses import manager_analyses
from stock_leaderboard.tools.indexes import index_performance
from stock_leaderboard.tools.leaderboard import leaderboard
from stock_leaderboard.tools.market_status import market_status
from stock_leaderboard.tools.performance_chart import performance_chart
from stock_leaderboard.tools.refresh_job import refresh_cache

__all__ = [
    "index_performance",
    "leaderboard",
    "manager_analyses",
    "market_status",
    "performance_chart",
    "refresh_cache",
]
