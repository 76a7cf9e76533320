"""Exchange session calendar (clock + fixed per-year holiday table)."""

import logging
import os
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

import pytz

logger = logging.getLogger(__name__)

EXCHANGE_TZ = "America/New_York"

MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)
PRE_MARKET_OPEN = time(4, 0)
AFTER_HOURS_CLOSE = time(20, 0)

# Full-day NYSE closures. One table per calendar year; there is no recurrence
# rule, so a year missing here has every weekday treated as a trading day.
NYSE_HOLIDAYS: dict[int, tuple[date, ...]] = {
    2025: (
        date(2025, 1, 1),
        date(2025, 1, 9),
        date(2025, 1, 20),
        date(2025, 2, 17),
        date(2025, 4, 18),
        date(2025, 5, 26),
        date(2025, 6, 19),
        date(2025, 7, 4),
        date(2025, 9, 1),
        date(2025, 11, 27),
        date(2025, 12, 25),
    ),
    2026: (
        date(2026, 1, 1),
        date(2026, 1, 19),
        date(2026, 2, 16),
        date(2026, 4, 3),
        date(2026, 5, 25),
        date(2026, 6, 19),
        date(2026, 7, 3),
        date(2026, 9, 7),
        date(2026, 11, 26),
        date(2026, 12, 25),
    ),
}


def _parse_holiday_env(raw: str) -> list[date]:
    """Parse a comma separated list of ISO dates (MARKET_HOLIDAYS)."""
    days: list[date] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            days.append(date.fromisoformat(part))
        except ValueError:
            logger.warning(f"Ignoring invalid MARKET_HOLIDAYS entry: {part!r}")
    return days


def _parse_year_env(raw: str) -> list[int]:
    """Parse a comma separated list of years (MARKET_HOLIDAY_YEARS)."""
    years: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            years.append(int(part))
        except ValueError:
            logger.warning(f"Ignoring invalid MARKET_HOLIDAY_YEARS entry: {part!r}")
    return years


class HolidayCalendar:
    """
    Fixed holiday table keyed by year.

    Dates are matched exactly (no time component). Coverage is tracked apart
    from the dates: a year is "covered" only when its full table is known,
    not when some date in it happens to be listed. By default that is every
    year in NYSE_HOLIDAYS plus the years named in MARKET_HOLIDAY_YEARS; extra
    MARKET_HOLIDAYS dates close the market without claiming coverage.
    """

    def __init__(
        self,
        holidays: Iterable[date] | None = None,
        years: Iterable[int] | None = None,
    ):
        if holidays is None:
            holidays = [d for year in NYSE_HOLIDAYS.values() for d in year]
            holidays += _parse_holiday_env(os.environ.get("MARKET_HOLIDAYS", ""))
            if years is None:
                years = list(NYSE_HOLIDAYS)
                years += _parse_year_env(os.environ.get("MARKET_HOLIDAY_YEARS", ""))
        self._days: frozenset[date] = frozenset(holidays)
        self._years: frozenset[int] = frozenset(years or ())

    @property
    def years(self) -> frozenset[int]:
        return self._years

    def covers(self, year: int) -> bool:
        """True if the full holiday table for this year is known."""
        return year in self._years

    def is_holiday(self, day: date) -> bool:
        return day in self._days


class MarketCalendar:
    """Pure session arithmetic for a single exchange timezone."""

    def __init__(self, holidays: HolidayCalendar | None = None, tz: str = EXCHANGE_TZ):
        self.holidays = holidays if holidays is not None else HolidayCalendar()
        self.tz = pytz.timezone(tz)

    def to_local(self, instant: datetime | None = None) -> datetime:
        """Convert an instant to exchange civil time (naive input is taken as UTC)."""
        if instant is None:
            return datetime.now(self.tz)
        if instant.tzinfo is None:
            instant = pytz.utc.localize(instant)
        return instant.astimezone(self.tz)

    def is_trading_day(self, day: date) -> bool:
        """Weekday that is not a listed holiday."""
        if isinstance(day, datetime):
            day = self.to_local(day).date()
        if day.weekday() >= 5:
            return False
        return not self.holidays.is_holiday(day)

    def is_market_open(self, instant: datetime | None = None) -> bool:
        """Regular session check: trading day and 09:30 <= local time < 16:00."""
        local = self.to_local(instant)
        if not self.is_trading_day(local.date()):
            return False
        return MARKET_OPEN <= local.time() < MARKET_CLOSE

    def previous_trading_days(self, anchor: date) -> list[date]:
        """
        Trading days from anchor back to the first of anchor's month.

        Newest first. Empty if the whole stretch is closed.
        """
        days: list[date] = []
        day = anchor
        while day.month == anchor.month:
            if self.is_trading_day(day):
                days.append(day)
            day -= timedelta(days=1)
        return days

    def first_trading_day(self, year: int) -> date:
        """First trading day of a calendar year."""
        day = date(year, 1, 1)
        while not self.is_trading_day(day):
            day += timedelta(days=1)
        return day

    def get_market_state(self, instant: datetime | None = None) -> dict[str, str]:
        """
        Determine market state.

        Args:
            instant: Point in time to evaluate (default: now)

        Returns:
            Dict with state, method, and checked_at timestamp
        """
        now = self.to_local(instant)
        method = (
            "clock_with_holiday_table"
            if self.holidays.covers(now.year)
            else "clock_only_no_holidays"
        )

        if not self.is_trading_day(now.date()):
            state = "closed"
        else:
            current = now.time()
            if current < PRE_MARKET_OPEN:
                state = "closed"
            elif current < MARKET_OPEN:
                state = "pre_market"
            elif current < MARKET_CLOSE:
                state = "regular"
            elif current < AFTER_HOURS_CLOSE:
                state = "after_hours"
            else:
                state = "closed"

        return {
            "state": state,
            "method": method,
            "checked_at": now.isoformat(),
        }


def is_market_open(instant: datetime | None = None) -> bool:
    """Convenience wrapper using the default NYSE calendar."""
    return MarketCalendar().is_market_open(instant)


def is_trading_day(day: date) -> bool:
    """Convenience wrapper using the default NYSE calendar."""
    return MarketCalendar().is_trading_day(day)
