"""Quote refresh orchestration: batch first, per-symbol fallback, serve-stale."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from stock_leaderboard.data.cache import TieredCache, TTLClass, is_empty
from stock_leaderboard.data.errors import NoCacheAvailableError, ProviderUnavailableError
from stock_leaderboard.data.freshness import DataKind
from stock_leaderboard.data.yfinance_client import QuoteSnapshot

logger = logging.getLogger(__name__)

QUOTE_KEY_PREFIX = "stock:quote"


class QuoteProvider(Protocol):
    async def quote(self, symbols: list[str]) -> list[QuoteSnapshot]: ...


class RefreshState(str, Enum):
    """Progress of one refresh call."""

    NOT_STARTED = "not_started"
    BATCH_ATTEMPTED = "batch_attempted"
    SUCCESS = "success"
    BATCH_FAILED = "batch_failed"
    PER_SYMBOL_ATTEMPTED = "per_symbol_attempted"
    PARTIAL_SUCCESS = "partial_success"
    TOTAL_FAILURE = "total_failure"


@dataclass
class RefreshResult:
    """Outcome of a refresh. `snapshots` is aligned with `symbols`."""

    symbols: list[str]
    snapshots: list[QuoteSnapshot | None] = field(default_factory=list)
    state: RefreshState = RefreshState.NOT_STARTED
    rate_limited: bool = False
    transitions: list[RefreshState] = field(default_factory=list)

    def advance(self, state: RefreshState) -> None:
        self.state = state
        self.transitions.append(state)

    @property
    def failed(self) -> bool:
        return self.state is RefreshState.TOTAL_FAILURE

    @property
    def prefer_cache(self) -> bool:
        """Caller should serve cached data instead of building new results."""
        return self.rate_limited or self.failed

    def by_symbol(self) -> dict[str, QuoteSnapshot]:
        return {s.symbol: s for s in self.snapshots if s is not None}


def quote_key(symbol: str) -> str:
    return f"{QUOTE_KEY_PREFIX}:{symbol}"


class QuoteRefreshOrchestrator:
    """
    Fetch live quotes and feed results into the tiered cache.

    Invoked only after the freshness check decided a refresh is needed. One
    batched upstream call is tried first; if it fails (other than by rate
    limiting) each symbol is fetched concurrently and in isolation. A rate
    limit stops all further upstream calls for the refresh and tells the
    caller to prefer cache.

    This is the only writer of ephemeral entries (per-symbol quotes and
    computed results via `publish`).
    """

    def __init__(self, cache: TieredCache, provider: QuoteProvider):
        self.cache = cache
        self.provider = provider

    async def _fetch_one(self, symbol: str) -> QuoteSnapshot | None:
        try:
            quotes = await self.provider.quote([symbol])
        except ProviderUnavailableError as e:
            if e.rate_limited:
                raise
            logger.info(f"quote({symbol}) failed: {e}")
            return None
        for q in quotes:
            if q is not None and q.symbol == symbol and q.is_usable:
                return q
        return None

    async def refresh(self, symbols: list[str]) -> RefreshResult:
        """
        Fetch quotes for symbols.

        Returns:
            RefreshResult with one snapshot (or None) per requested symbol.
            Never raises for upstream failures.
        """
        symbols = [s.upper().strip() for s in symbols]
        result = RefreshResult(symbols=symbols, snapshots=[None] * len(symbols))
        if not symbols:
            result.advance(RefreshState.TOTAL_FAILURE)
            return result

        result.advance(RefreshState.BATCH_ATTEMPTED)
        try:
            quotes = await self.provider.quote(symbols)
        except ProviderUnavailableError as e:
            result.advance(RefreshState.BATCH_FAILED)
            if e.rate_limited:
                logger.warning("batched quote call rate limited; skipping per-symbol fallback")
                result.rate_limited = True
                result.advance(RefreshState.TOTAL_FAILURE)
                return result
            logger.info(f"batched quote call failed ({e}); fetching symbols individually")
            await self._fan_out(result)
        else:
            found = {q.symbol: q for q in quotes if q is not None and q.is_usable}
            result.snapshots = [found.get(s) for s in symbols]
            self._finish(result, RefreshState.SUCCESS)

        self._store_snapshots(result)
        return result

    async def _fan_out(self, result: RefreshResult) -> None:
        result.advance(RefreshState.PER_SYMBOL_ATTEMPTED)
        outcomes = await asyncio.gather(
            *(self._fetch_one(s) for s in result.symbols),
            return_exceptions=True,
        )
        snapshots: list[QuoteSnapshot | None] = []
        for symbol, outcome in zip(result.symbols, outcomes):
            if isinstance(outcome, ProviderUnavailableError):
                result.rate_limited = result.rate_limited or outcome.rate_limited
                snapshots.append(None)
            elif isinstance(outcome, BaseException):
                logger.warning(f"quote({symbol}) raised unexpectedly: {outcome!r}")
                snapshots.append(None)
            else:
                snapshots.append(outcome)
        result.snapshots = snapshots
        self._finish(result, RefreshState.PARTIAL_SUCCESS)

    def _finish(self, result: RefreshResult, ok_state: RefreshState) -> None:
        valid = sum(1 for s in result.snapshots if s is not None)
        if valid == 0:
            result.advance(RefreshState.TOTAL_FAILURE)
        elif valid < len(result.symbols):
            result.advance(RefreshState.PARTIAL_SUCCESS)
        else:
            result.advance(ok_state)
        if valid < len(result.symbols):
            missing = [s for s, q in zip(result.symbols, result.snapshots) if q is None]
            logger.info(f"no quote for {', '.join(missing)}")

    def _store_snapshots(self, result: RefreshResult) -> None:
        for snapshot in result.snapshots:
            if snapshot is not None:
                self.cache.set(quote_key(snapshot.symbol), snapshot.to_dict(), TTLClass.EPHEMERAL, DataKind.QUOTES)

    def cached_quotes(self, symbols: list[str]) -> list[QuoteSnapshot | None]:
        """Last known per-symbol snapshots, regardless of staleness."""
        snapshots: list[QuoteSnapshot | None] = []
        for symbol in symbols:
            record = self.cache.last_known(quote_key(symbol.upper().strip()))
            snapshots.append(QuoteSnapshot(**record) if isinstance(record, dict) else None)
        return snapshots

    def publish(self, key: str, value: Any, kind: DataKind = DataKind.QUOTES) -> None:
        """Write computed results with the TTL the freshness policy picks."""
        self.cache.set(key, value, TTLClass.EPHEMERAL, kind)

    async def serve(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        kind: DataKind = DataKind.QUOTES,
        force: bool = False,
        is_usable: Callable[[Any], bool] | None = None,
    ) -> tuple[Any, str]:
        """
        Fresh cache, else refresh, else last known value.

        The loader builds a new value from upstream data. It returns None (or
        an unusable value) when upstream gave nothing worth caching, and may
        raise ProviderUnavailableError. Either way the newest cached value is
        served, however stale.

        Returns:
            Tuple of (value, source) where source is "cache", "live" or "stale"

        Raises:
            NoCacheAvailableError: Refresh failed and nothing was ever cached
        """
        if not force:
            cached = self.cache.get(key)
            if cached is not None:
                return cached, "cache"

        usable = is_usable or (lambda v: not is_empty(v))
        try:
            value = await loader()
        except ProviderUnavailableError as e:
            logger.warning(f"refresh of {key} failed: {e}")
            value = None

        if value is not None and usable(value):
            self.publish(key, value, kind)
            return value, "live"

        stale = self.cache.last_known(key)
        if stale is not None:
            logger.warning(f"serving stale data for {key}")
            return stale, "stale"
        raise NoCacheAvailableError(key)
