"""Response metadata and provenance utilities."""

from datetime import datetime
from typing import Any

from stock_leaderboard import SCHEMA_VERSION, SERVER_VERSION


def build_meta(tool: str, duration_ms: float | None = None) -> dict[str, Any]:
    """
    Build standard metadata block for responses.

    Args:
        tool: Name of the tool producing this response
        duration_ms: Execution time in milliseconds (optional)

    Returns:
        Metadata dict with version info
    """
    meta: dict[str, Any] = {
        "server_version": SERVER_VERSION,
        "schema_version": SCHEMA_VERSION,
        "tool": tool,
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    return meta


def build_cache_provenance(
    key: str,
    source: str,
    written_at: datetime | None,
    market_state: dict[str, str],
) -> dict[str, Any]:
    """
    Describe where a cached payload came from.

    Args:
        key: Logical cache key
        source: "cache", "live" or "stale"
        written_at: When the served value was written (None if unknown)
        market_state: Output of MarketCalendar.get_market_state()
    """
    prov: dict[str, Any] = {
        "source": "yfinance",
        "cache_key": key,
        "served_from": source,
        "as_of": written_at.isoformat() if written_at else None,
        "market_state": market_state["state"],
        "market_state_method": market_state["method"],
        "warnings": [],
    }
    if source == "stale":
        prov["warnings"].append("upstream refresh failed; serving last known data")
    return prov


def build_error_response(
    error_type: str,
    message: str,
    symbol: str | None = None,
    retry_after_seconds: int | None = None,
) -> dict[str, Any]:
    """
    Build standardized error response.

    Args:
        error_type: Type of error (data_unavailable, invalid_parameters, unauthorized)
        message: Human-readable error message
        symbol: Symbol that caused the error (if applicable)
        retry_after_seconds: Seconds to wait before retry

    Returns:
        Error response dict
    """
    response: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": message,
        "meta": build_meta("error"),
    }

    if symbol is not None:
        response["symbol"] = symbol

    if retry_after_seconds is not None:
        response["retry_after_seconds"] = retry_after_seconds

    return response
