"""Utility modules."""

from stock_leaderboard.utils.ohlcv import close_series, standardize_ohlcv, ticker_frame
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

__all__ = [
    "close_series",
    "standardize_ohlcv",
    "ticker_frame",
    "add_optional",
    "close_on_or_before",
    "percent_change",
    "rank_by_change",
    "round_optional",
    "build_cache_provenance",
    "build_error_response",
    "build_meta",
]
