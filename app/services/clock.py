"""
Clock and day-boundary helpers for the order lifecycle engine

All day arithmetic happens in the configured display timezone, never in the
process-local zone. Naive datetimes coming back from the database are UTC.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")


def resolve_timezone(timezone_str: str) -> ZoneInfo:
    """Resolve an IANA name, falling back to UTC when it is unknown"""
    try:
        return ZoneInfo(timezone_str)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"⚠️ Unknown timezone '{timezone_str}', falling back to UTC")
        return UTC


class Clock:
    """Supplies "now" and calendar-day calculations in one timezone"""

    def __init__(self, timezone: str = "UTC"):
        self.timezone_name = timezone
        self.tz = resolve_timezone(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def localize(self, dt: datetime) -> datetime:
        """Convert to the clock's zone; naive values are treated as UTC"""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(self.tz)

    def local_date(self, dt: datetime) -> date:
        return self.localize(dt).date()

    def start_of_day(self, dt: Optional[datetime] = None) -> datetime:
        local = self.localize(dt) if dt is not None else self.now()
        return datetime.combine(local.date(), time.min, tzinfo=self.tz)

    def end_of_day(self, dt: Optional[datetime] = None) -> datetime:
        local = self.localize(dt) if dt is not None else self.now()
        return datetime.combine(local.date(), time.max, tzinfo=self.tz)

    def days_between(self, earlier: datetime, later: datetime) -> int:
        """Whole calendar days from `earlier` to `later` (negative if reversed)"""
        return (self.local_date(later) - self.local_date(earlier)).days

    def days_until(self, target: datetime, now: Optional[datetime] = None) -> int:
        return self.days_between(now if now is not None else self.now(), target)

    def is_today(self, dt: datetime, now: Optional[datetime] = None) -> bool:
        now = now if now is not None else self.now()
        return self.start_of_day(now) <= self.localize(dt) <= self.end_of_day(now)

    def at_local_time(self, day: datetime, hour: int, minute: int = 0) -> datetime:
        """The given hour:minute on `day`'s local calendar date"""
        return datetime.combine(self.local_date(day), time(hour, minute), tzinfo=self.tz)


class FixedClock(Clock):
    """Clock frozen at a given instant, used for tests and "as of" runs"""

    def __init__(self, fixed_now: datetime, timezone: str = "UTC"):
        super().__init__(timezone)
        self._now = self.localize(fixed_now)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> None:
        self._now = self._now + timedelta(**delta)
