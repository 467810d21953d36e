"""
Clock tests: day boundaries are computed in the configured timezone.
"""

from datetime import datetime

import pytest

from app.services.clock import UTC, Clock, FixedClock, resolve_timezone
from support import utc


@pytest.mark.unit
class TestClock:
    def test_unknown_timezone_falls_back_to_utc(self):
        assert resolve_timezone("Mars/Olympus_Mons") is UTC

    def test_naive_datetimes_are_treated_as_utc(self):
        clock = Clock("Asia/Kolkata")
        local = clock.localize(datetime(2026, 3, 14, 20, 0))
        assert (local.year, local.month, local.day, local.hour, local.minute) == (2026, 3, 15, 1, 30)

    def test_start_and_end_of_day_follow_display_timezone(self, kolkata_clock):
        start = kolkata_clock.start_of_day()
        end = kolkata_clock.end_of_day()
        assert start == utc(2026, 3, 14, 18, 30)
        assert start.hour == 0 and end.hour == 23
        assert start.date() == end.date()

    def test_days_between_uses_calendar_dates(self, kolkata_clock):
        # 18:30 UTC is midnight in Kolkata
        now = kolkata_clock.now()
        assert kolkata_clock.days_between(now, utc(2026, 3, 15, 18, 29)) == 0
        assert kolkata_clock.days_between(now, utc(2026, 3, 15, 18, 30)) == 1
        assert kolkata_clock.days_until(utc(2026, 3, 13, 12, 0)) == -2

    def test_is_today_in_display_timezone(self, kolkata_clock):
        assert kolkata_clock.is_today(utc(2026, 3, 14, 19, 0))
        assert not kolkata_clock.is_today(utc(2026, 3, 14, 18, 0))
        assert not kolkata_clock.is_today(utc(2026, 3, 15, 18, 30))

    def test_at_local_time(self, kolkata_clock):
        start = kolkata_clock.at_local_time(utc(2026, 3, 20, 0, 0), 10)
        assert start == utc(2026, 3, 20, 4, 30)

    def test_fixed_clock_advance(self):
        clock = FixedClock(utc(2026, 3, 15, 12, 0))
        clock.advance(days=1, hours=2)
        assert clock.now() == utc(2026, 3, 16, 14, 0)
