"""Stock leaderboard server with a market-aware tiered cache."""

import os


def get_server_version() -> str:
    """Get version with fallback for dev mode."""
    if version := os.environ.get("SERVER_VERSION"):
        return version
    try:
        from importlib.metadata import version as pkg_version

        return pkg_version("stock-leaderboard")
    except Exception:
        return "dev"


SERVER_VERSION = get_server_version()
# Bump when output schema changes materially (new fields, renamed fields, structure changes)
# v1: Leaderboard rows, chart series, index benchmarks
# v2: Nullable numerics everywhere, dividend_yield_ytd and price_change_percent split out
SCHEMA_VERSION = "2"
