"""OHLCV frame standardization utilities."""

import pandas as pd

CANONICAL_COLUMNS = ["date", "open", "high", "low", "close", "volume"]


def ticker_frame(df: pd.DataFrame, symbol: str) -> pd.DataFrame:
    """
    Select one ticker's columns from a yf.download frame.

    Handles both layouts: (Ticker, Price) multi-index from group_by="ticker",
    (Price, Ticker) from the default grouping, and flat single-ticker frames.
    """
    if not isinstance(df.columns, pd.MultiIndex):
        return df
    if symbol in df.columns.get_level_values(0):
        return df[symbol]
    if df.columns.nlevels > 1 and symbol in df.columns.get_level_values(1):
        return df.xs(symbol, axis=1, level=1)
    return pd.DataFrame()


def standardize_ohlcv(df: pd.DataFrame) -> pd.DataFrame:
    """
    Standardize OHLCV to consistent schema.

    Output columns (always, in this order): date, open, high, low, close, volume
    All lowercase. 'date' stays a (tz-aware when available) datetime so callers
    can compute epoch timestamps. Rows without a close are dropped.

    Args:
        df: Raw single-ticker DataFrame from yfinance

    Returns:
        Standardized DataFrame sorted by date
    """
    if df is None or df.empty:
        return pd.DataFrame(columns=CANONICAL_COLUMNS)

    df = df.copy()

    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)

    if "Adj Close" in df.columns:
        df = df.drop(columns=["Adj Close"])

    df.columns = [str(c).lower() for c in df.columns]
    df = df.reset_index()

    date_cols = [c for c in df.columns if str(c).lower() in ("date", "datetime", "index")]
    if date_cols:
        df = df.rename(columns={date_cols[0]: "date"})
    if "date" in df.columns:
        df["date"] = pd.to_datetime(df["date"])

    for col in CANONICAL_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA

    df = df[CANONICAL_COLUMNS]
    df = df.dropna(subset=["close"])
    return df.sort_values("date").reset_index(drop=True)


def close_series(df: pd.DataFrame, symbol: str) -> pd.Series:
    """Close prices for one ticker from a yf.download frame, NaNs dropped."""
    frame = ticker_frame(df, symbol)
    if frame.empty or "Close" not in frame.columns:
        return pd.Series(dtype=float)
    return frame["Close"].dropna()
