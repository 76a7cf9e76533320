"""Percent-change arithmetic with nullable semantics."""

from datetime import date
from typing import Any

import pandas as pd


def percent_change(current: float | None, reference: float | None) -> float | None:
    """
    Percent change from reference to current.

    If either value is missing, or the reference is not positive, returns
    None (not 0.0): "no data" must never read as "no change".
    """
    if current is None or reference is None or reference <= 0:
        return None
    return (current - reference) / reference * 100


def add_optional(a: float | None, b: float | None) -> float | None:
    """a + b, treating a missing b as 0 but a missing a as missing."""
    if a is None:
        return None
    return a + (b or 0.0)


def close_on_or_before(closes: pd.Series | None, day: date) -> float | None:
    """Last close with an index date on or before day."""
    if closes is None or closes.empty:
        return None
    index_dates = pd.to_datetime(closes.index).date
    eligible = closes[index_dates <= day]
    if eligible.empty:
        return None
    value = eligible.iloc[-1]
    return None if pd.isna(value) else float(value)


def round_optional(value: float | None, decimals: int = 4) -> float | None:
    return None if value is None else round(value, decimals)


def rank_by_change(rows: list[dict[str, Any]], field: str = "change_percent") -> list[dict[str, Any]]:
    """Sort descending by field; rows without a value go last, in input order."""
    with_value = [r for r in rows if r.get(field) is not None]
    without = [r for r in rows if r.get(field) is None]
    return sorted(with_value, key=lambda r: r[field], reverse=True) + without
