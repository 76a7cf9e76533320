"""Market-aware freshness rules for cached data."""

import os
from datetime import datetime, timedelta, timezone
from enum import Enum


class DataKind(str, Enum):
    """Selects the open-market freshness window."""

    QUOTES = "quotes"
    SERIES = "series"


def _env_seconds(name: str, default: int) -> timedelta:
    return timedelta(seconds=int(os.environ.get(name, str(default))))


class FreshnessPolicy:
    """
    Decide whether cached data is still usable and what TTL new data gets.

    While the market is open, live quotes are refreshed every 15 minutes and
    the derived chart series every 30. Once the market is closed prices do not
    move, so anything written in the last 24 hours is good enough.

    Pure: callers supply the last-update timestamp from whichever tier they read.
    """

    def __init__(
        self,
        open_quotes: timedelta | None = None,
        open_series: timedelta | None = None,
        closed: timedelta | None = None,
    ):
        self._open = {
            DataKind.QUOTES: open_quotes or _env_seconds("CACHE_TTL_OPEN_QUOTES", 15 * 60),
            DataKind.SERIES: open_series or _env_seconds("CACHE_TTL_OPEN_SERIES", 30 * 60),
        }
        self._closed = closed or _env_seconds("CACHE_TTL_CLOSED", 24 * 60 * 60)

    def ttl_for(self, now_is_open: bool, kind: DataKind = DataKind.QUOTES) -> timedelta:
        """TTL for freshly fetched data."""
        if now_is_open:
            return self._open[DataKind(kind)]
        return self._closed

    def should_use_cache(
        self,
        last_update: datetime | None,
        now_is_open: bool,
        now: datetime | None = None,
        kind: DataKind = DataKind.QUOTES,
    ) -> bool:
        """
        True if data written at last_update may still be served.

        Args:
            last_update: Write timestamp of the cached value (None if never written)
            now_is_open: Current market status
            now: Evaluation time (default: current UTC time)
            kind: Data kind, picks the open-market window

        Returns:
            False when there is nothing cached or it is older than the window
        """
        if last_update is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        age = now - last_update
        return age < self.ttl_for(now_is_open, kind)
