"""Error taxonomy for the quote/cache layer."""


class ProviderUnavailableError(Exception):
    """Upstream quote provider failed, timed out, or returned nothing usable."""

    def __init__(
        self,
        message: str,
        symbol: str | None = None,
        rate_limited: bool = False,
        last_error: Exception | None = None,
    ):
        super().__init__(message)
        self.symbol = symbol
        self.rate_limited = rate_limited
        self.last_error = last_error


class RateLimitedError(ProviderUnavailableError):
    """Upstream signalled throttling. Further calls in this request are skipped."""

    def __init__(
        self,
        message: str,
        symbol: str | None = None,
        last_error: Exception | None = None,
    ):
        super().__init__(message, symbol=symbol, rate_limited=True, last_error=last_error)


class NoCacheAvailableError(RuntimeError):
    """Refresh failed and nothing was ever cached for the key."""

    def __init__(self, key: str):
        super().__init__(f"No data available for {key}; upstream refresh failed and cache is empty")
        self.key = key
