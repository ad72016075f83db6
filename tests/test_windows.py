"""Time window resolution and calendar bucketing."""

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from pendium_backend.kpi.errors import KpiInputError
from pendium_backend.kpi.windows import EPOCH, TimeWindowResolver

from factories import NOW, utc


class TestExplicitRange:
    """Inclusive calendar dates become a half-open window."""

    def test_end_date_is_inclusive(self, resolver):
        window = resolver.resolve("2024-03-01", "2024-03-03")
        assert window.start == utc(2024, 3, 1)
        assert window.end == utc(2024, 3, 4)

    def test_boundaries(self, resolver):
        window = resolver.resolve("2024-03-01", "2024-03-03")
        assert window.contains(utc(2024, 3, 1))
        assert window.contains(utc(2024, 3, 3, 23, 59, 59))
        assert not window.contains(utc(2024, 3, 4))
        assert not window.contains(utc(2024, 2, 29, 23, 59, 59))
        assert not window.contains(None)

    def test_naive_timestamps_are_utc(self):
        resolver = TimeWindowResolver("America/New_York")
        window = resolver.resolve("2024-03-01", "2024-03-01")
        # 04:30 UTC is still Feb 29 in New York.
        assert not window.contains(datetime(2024, 3, 1, 4, 30))
        assert window.contains(datetime(2024, 3, 1, 5, 30))

    def test_datetime_strings_are_accepted(self, resolver):
        window = resolver.resolve("2024-03-01T10:00:00Z", "2024-03-02")
        assert window.start == utc(2024, 3, 1)

    @pytest.mark.parametrize(
        "start, end",
        [
            ("2024-03-05", "2024-03-01"),
            ("2024-03-01", None),
            (None, "2024-03-01"),
            ("yesterday", "2024-03-01"),
            (None, None),
        ],
    )
    def test_invalid_ranges(self, resolver, start, end):
        with pytest.raises(KpiInputError):
            resolver.resolve(start, end)


class TestPresets:
    """Presets are measured back from the injected clock."""

    def test_last_week(self, resolver):
        window = resolver.resolve(preset="last-week")
        assert window.end == NOW
        assert window.start == NOW - timedelta(days=7)

    def test_underscore_spelling(self, resolver):
        assert resolver.resolve(preset="last_month").start == utc(2024, 2, 15, 12)

    def test_month_arithmetic_clamps_day(self):
        resolver = TimeWindowResolver("UTC", clock=lambda: utc(2024, 3, 31, 8))
        assert resolver.from_preset("last-month").start == utc(2024, 2, 29, 8)

    def test_last_year(self, resolver):
        assert resolver.from_preset("last-year").start == utc(2023, 3, 15, 12)

    def test_all_time_starts_at_epoch(self, resolver):
        assert resolver.from_preset("all-time").start == EPOCH

    def test_unknown_preset_falls_back_to_last_week(self, resolver, caplog):
        with caplog.at_level(logging.WARNING):
            window = resolver.from_preset("last-decade")
        assert window.start == NOW - timedelta(days=7)
        assert "last-decade" in caplog.text

    def test_explicit_dates_win_over_preset(self, resolver):
        window = resolver.resolve("2024-01-01", "2024-01-01", preset="all-time")
        assert window.start == utc(2024, 1, 1)


class TestBucketing:
    """Day, week and month keys in the canonical timezone."""

    def test_day_key_uses_canonical_zone(self):
        resolver = TimeWindowResolver("America/New_York")
        window = resolver.from_dates(date(2024, 3, 1), date(2024, 3, 2))
        assert window.day_key(utc(2024, 3, 2, 3)) == "2024-03-01"

    def test_week_index_anchored_to_window_start(self, resolver):
        window = resolver.resolve("2024-03-01", "2024-03-31")
        assert window.week_index(utc(2024, 3, 7, 23)) == 0
        assert window.week_index(utc(2024, 3, 8)) == 1
        assert window.week_start(1) == "2024-03-08"

    def test_month_key(self, resolver):
        window = resolver.resolve("2024-01-01", "2024-03-31")
        assert window.month_key(utc(2024, 2, 29, 23)) == (2024, 2)

    def test_length_days(self, resolver):
        assert resolver.resolve("2024-03-01", "2024-03-07").length_days == 7

    def test_unknown_timezone_falls_back_to_utc(self, caplog):
        with caplog.at_level(logging.WARNING):
            resolver = TimeWindowResolver("Mars/Olympus_Mons")
        assert resolver.tz.key == "UTC"
        assert resolver.now().tzinfo is not None
        assert resolver.now().utcoffset() == timezone.utc.utcoffset(None)


class TestDaylightSavingChange:
    """New York springs forward at 2024-03-10 02:00 local time."""

    @pytest.fixture
    def new_york(self):
        return TimeWindowResolver("America/New_York")

    def test_days_between_is_an_instant_difference(self, new_york):
        window = new_york.from_dates(date(2024, 3, 9), date(2024, 3, 10))
        # 2024-03-09 17:00Z to 2024-03-11 04:00Z is 35 hours.
        assert window.days_between(utc(2024, 3, 9, 17), window.end) == pytest.approx(35 / 24)

    def test_week_index_counts_elapsed_weeks(self, new_york):
        window = new_york.from_dates(date(2024, 3, 9), date(2024, 3, 20))
        # Local 00:30 on Mar 16 is only 6 days 23.5 hours after the start.
        assert window.week_index(utc(2024, 3, 16, 4, 30)) == 0
        assert window.week_index(utc(2024, 3, 16, 5)) == 1

    def test_length_days_counts_calendar_days(self, new_york):
        window = new_york.from_dates(date(2024, 3, 9), date(2024, 3, 10))
        assert window.length_days == 2
        assert window.contains(utc(2024, 3, 11, 3, 59))
        assert not window.contains(utc(2024, 3, 11, 4))
