"""Async yfinance quote provider with bounded concurrency, timeouts and retry logic."""

import asyncio
import logging
import os
import random
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, TypeVar

import pandas as pd
import yfinance as yf
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import HTTPError, Timeout
from yfinance.exceptions import YFRateLimitError

from stock_leaderboard.data.errors import ProviderUnavailableError, RateLimitedError
from stock_leaderboard.utils.ohlcv import close_series, standardize_ohlcv

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_PATTERNS = ("too many requests", "rate limit", "rate-limit", "429")
_TRANSIENT_PATTERNS = ("connection", "timeout", "timed out", "temporary", "502", "503", "504")


@dataclass(frozen=True)
class QuoteSnapshot:
    """Live price fields for one symbol. Transient, never cached verbatim by the leaderboard."""

    symbol: str
    price: float | None
    previous_close: float | None = None
    as_of: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_usable(self) -> bool:
        return self.price is not None and self.price > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_rate_limit_error(error: BaseException) -> bool:
    """Classify throttling from the exception type, HTTP status, or message."""
    if isinstance(error, YFRateLimitError):
        return True
    if (
        isinstance(error, HTTPError)
        and getattr(error, "response", None) is not None
        and error.response.status_code == 429
    ):
        return True
    error_str = str(error).lower()
    return any(pattern in error_str for pattern in _RATE_LIMIT_PATTERNS)


def _is_retryable_error(error: BaseException) -> bool:
    """Transient failures worth another attempt. Rate limits never are."""
    if is_rate_limit_error(error):
        return False
    if isinstance(error, (asyncio.TimeoutError, Timeout, RequestsConnectionError)):
        return True
    if (
        isinstance(error, HTTPError)
        and getattr(error, "response", None) is not None
        and 500 <= error.response.status_code < 600
    ):
        return True
    error_str = str(error).lower()
    return any(pattern in error_str for pattern in _TRANSIENT_PATTERNS)


def _safe_price(value: Any) -> float | None:
    """Positive finite float or None."""
    if value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if price != price or price <= 0:  # NaN or non-positive
        return None
    return price


class YFinanceProvider:
    """
    Quote provider backed by yfinance.

    Every blocking yfinance call runs on a bounded thread pool, is limited by
    a semaphore, and is cut off after `timeout` seconds. Transient failures
    are retried with exponential backoff; rate limits are raised immediately
    as RateLimitedError so callers can stop calling upstream.
    """

    def __init__(
        self,
        max_workers: int | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
    ):
        self.max_workers = max_workers or int(os.environ.get("YF_MAX_WORKERS", "4"))
        self.timeout = timeout or float(os.environ.get("QUOTE_TIMEOUT", "10"))
        self.max_retries = (
            max_retries if max_retries is not None else int(os.environ.get("QUOTE_MAX_RETRIES", "1"))
        )
        self.base_delay = base_delay or float(os.environ.get("QUOTE_BASE_DELAY", "0.5"))
        self.max_delay = max_delay or float(os.environ.get("QUOTE_MAX_DELAY", "5.0"))
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers)
        self._semaphore = asyncio.Semaphore(self.max_workers)

    def _backoff(self, attempt: int) -> float:
        """Exponential backoff with +/-25% jitter, capped."""
        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return min(delay + jitter, self.max_delay)

    async def _call(
        self,
        operation_name: str,
        sync_func: Callable[[], T],
        symbol: str | None = None,
    ) -> T:
        """
        Run a blocking yfinance call with timeout and retry.

        Raises:
            RateLimitedError: Upstream throttled the call
            ProviderUnavailableError: Call failed after all retries
        """
        last_error: BaseException | None = None

        for attempt in range(self.max_retries + 1):
            try:
                async with self._semaphore:
                    loop = asyncio.get_running_loop()
                    return await asyncio.wait_for(
                        loop.run_in_executor(self._executor, sync_func),
                        timeout=self.timeout,
                    )
            except Exception as e:
                last_error = e

                if is_rate_limit_error(e):
                    logger.warning(f"{operation_name}: rate limited ({e})")
                    raise RateLimitedError(
                        f"{operation_name}: rate limited", symbol=symbol, last_error=e
                    ) from e

                if not _is_retryable_error(e) or attempt >= self.max_retries:
                    logger.info(f"{operation_name}: failed after {attempt + 1} attempts: {e!r}")
                    raise ProviderUnavailableError(
                        f"{operation_name}: {e!r}", symbol=symbol, last_error=e
                    ) from e

                delay = self._backoff(attempt)
                logger.info(
                    f"{operation_name}: Attempt {attempt + 1} failed ({e!r}). "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        raise ProviderUnavailableError(
            f"{operation_name}: failed after {self.max_retries + 1} attempts",
            symbol=symbol,
            last_error=last_error,
        )

    async def quote(self, symbols: list[str]) -> list[QuoteSnapshot]:
        """
        Live quotes for one or more symbols.

        A single symbol uses Ticker.fast_info; several symbols go through one
        batched yf.download. Symbols yfinance has no data for are simply
        absent from the result.
        """
        normalized = [s.upper().strip() for s in symbols]
        if not normalized:
            return []

        if len(normalized) == 1:
            symbol = normalized[0]

            def _fetch_one() -> list[QuoteSnapshot]:
                info = yf.Ticker(symbol).fast_info
                price = _safe_price(info.last_price)
                if price is None:
                    raise ValueError(f"No quote returned for {symbol}")
                return [
                    QuoteSnapshot(
                        symbol=symbol,
                        price=price,
                        previous_close=_safe_price(info.previous_close),
                    )
                ]

            return await self._call(f"quote({symbol})", _fetch_one, symbol=symbol)

        def _fetch_batch() -> list[QuoteSnapshot]:
            df = yf.download(
                tickers=normalized,
                period="5d",
                interval="1d",
                group_by="ticker",
                auto_adjust=False,
                progress=False,
                threads=False,
            )
            # yf.download records per-ticker failures instead of raising
            errors = getattr(getattr(yf, "shared", None), "_ERRORS", {}) or {}
            if any(is_rate_limit_error(Exception(str(msg))) for msg in errors.values()):
                raise YFRateLimitError()
            if df is None or df.empty:
                raise ValueError(f"No quotes returned for {','.join(normalized)}")

            snapshots = []
            for symbol in normalized:
                closes = close_series(df, symbol)
                if closes.empty:
                    continue
                price = _safe_price(closes.iloc[-1])
                if price is None:
                    continue
                previous = _safe_price(closes.iloc[-2]) if len(closes) > 1 else None
                snapshots.append(QuoteSnapshot(symbol=symbol, price=price, previous_close=previous))
            return snapshots

        return await self._call(f"quote({','.join(normalized)})", _fetch_batch)

    async def historical_close(self, symbol: str, day: date) -> float | None:
        """
        Closing price on a given date, or None if the provider has no bar for it.

        Raises:
            RateLimitedError / ProviderUnavailableError on upstream failure
        """
        symbol = symbol.upper().strip()

        def _fetch() -> float | None:
            df = yf.Ticker(symbol).history(
                start=day.isoformat(),
                end=(day + timedelta(days=1)).isoformat(),
                interval="1d",
                auto_adjust=False,
            )
            bars = standardize_ohlcv(df)
            if bars.empty:
                return None
            return _safe_price(bars["close"].iloc[-1])

        return await self._call(f"historical_close({symbol}, {day})", _fetch, symbol=symbol)

    async def dividends_since(self, symbol: str, since: date) -> float:
        """Sum of cash dividends per share with ex-date after `since`."""
        symbol = symbol.upper().strip()

        def _fetch() -> float:
            dividends = yf.Ticker(symbol).dividends
            if dividends is None or dividends.empty:
                return 0.0
            index_dates = pd.to_datetime(dividends.index).date
            return float(dividends[index_dates > since].sum())

        return await self._call(f"dividends_since({symbol}, {since})", _fetch, symbol=symbol)

    async def daily_closes(self, symbols: list[str], period: str = "6mo") -> dict[str, pd.Series]:
        """Daily close series per symbol from one batched download."""
        normalized = [s.upper().strip() for s in symbols]

        def _fetch() -> dict[str, pd.Series]:
            df = yf.download(
                tickers=normalized,
                period=period,
                interval="1d",
                group_by="ticker",
                auto_adjust=False,
                progress=False,
                threads=False,
            )
            if df is None or df.empty:
                return {}
            return {s: close_series(df, s) for s in normalized}

        return await self._call(f"daily_closes({','.join(normalized)}, {period})", _fetch)

    async def intraday_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "1h",
    ) -> pd.DataFrame:
        """Standardized OHLCV bars between start and end."""
        symbol = symbol.upper().strip()

        def _fetch() -> pd.DataFrame:
            df = yf.Ticker(symbol).history(
                start=start,
                end=end,
                interval=interval,
                auto_adjust=False,
            )
            return standardize_ohlcv(df)

        return await self._call(f"intraday_history({symbol}, {interval})", _fetch, symbol=symbol)

    def shutdown(self) -> None:
        """Cleanup on server shutdown."""
        self._executor.shutdown(wait=False, cancel_futures=True)
