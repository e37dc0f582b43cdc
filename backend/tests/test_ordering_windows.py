"""Tests for ordering-window evaluation."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from rivercafe.services.ordering_window_service import (
    first_open_window,
    is_ordering_open,
    local_time_parts,
    normalize_days,
    parse_hhmm,
    time_in_range,
    window_includes,
    windows_for,
)

# 2026-10-18 is a Sunday
SUNDAY_2130_UTC = datetime(2026, 10, 18, 21, 30, tzinfo=timezone.utc)
SUNDAY_NOON_UTC = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
MONDAY_0130_UTC = datetime(2026, 10, 19, 1, 30, tzinfo=timezone.utc)


def _window(days=(), start=None, end=None, tz="UTC", active=True):
    return SimpleNamespace(days_of_week=list(days), start_time=start, end_time=end,
                           timezone=tz, active=active)


class TestHelpers:

    def test_normalize_days_maps_seven_to_sunday(self):
        assert normalize_days([7, 1, "3", "x", 9, None]) == {0, 1, 3}

    def test_parse_hhmm(self):
        assert parse_hhmm("07:30") == 450
        assert parse_hhmm("") is None
        assert parse_hhmm("25:00") is None
        assert parse_hhmm("noon") is None

    def test_local_time_parts_uses_sunday_zero(self):
        assert local_time_parts("UTC", SUNDAY_2130_UTC) == (21 * 60 + 30, 0)

    def test_local_time_parts_shifts_day_with_zone(self):
        # 22:30 UTC Sunday is 00:30 Monday in Harare (UTC+2)
        minute, day = local_time_parts("Africa/Harare", datetime(2026, 10, 18, 22, 30, tzinfo=timezone.utc))
        assert (minute, day) == (30, 1)

    def test_unknown_zone_falls_back_to_utc(self):
        assert local_time_parts("Mars/Olympus", SUNDAY_2130_UTC) == (21 * 60 + 30, 0)

    @pytest.mark.parametrize("minute,expected", [
        (22 * 60, True),
        (23 * 60, True),
        (90, True),
        (120, True),
        (121, False),
        (12 * 60, False),
    ])
    def test_wrapping_range_is_inclusive(self, minute, expected):
        assert time_in_range(minute, 22 * 60, 2 * 60) is expected

    def test_open_ended_ranges(self):
        assert time_in_range(600, 540, None) is True
        assert time_in_range(500, 540, None) is False
        assert time_in_range(500, None, 540) is True
        assert time_in_range(0, None, None) is True


class TestWindowIncludes:

    def test_empty_days_means_every_day(self):
        assert window_includes(_window(start="20:00", end="22:00"), SUNDAY_2130_UTC)

    def test_day_seven_matches_sunday(self):
        assert window_includes(_window(days=[7], start="20:00", end="22:00"), SUNDAY_2130_UTC)

    def test_other_day_does_not_match(self):
        assert not window_includes(_window(days=[1, 2, 3, 4, 5], start="20:00", end="22:00"), SUNDAY_2130_UTC)

    def test_wrapping_window_after_midnight(self):
        assert window_includes(_window(start="22:00", end="02:00"), MONDAY_0130_UTC)
        assert not window_includes(_window(start="22:00", end="02:00"), SUNDAY_NOON_UTC)

    def test_inactive_windows_are_ignored(self):
        windows = [_window(active=False), _window(start="00:00", end="01:00")]
        assert not is_ordering_open(windows, SUNDAY_NOON_UTC)

    def test_first_open_window(self):
        closed = _window(start="06:00", end="08:00")
        open_ = _window(start="11:00", end="13:00")
        assert first_open_window([closed, open_], SUNDAY_NOON_UTC) is open_


class TestWindowsFor:

    def test_category_filter(self, db_session, make_window):
        general = make_window(name="General")
        drinks = make_window(name="Drinks", category="Drinks")
        make_window(name="Meals", category="meals")
        special = make_window(name="Friday specials", is_special=True)

        found = windows_for(db_session, special=False, categories=["drinks"])
        assert {w.id for w in found} == {general.id, drinks.id}

        assert [w.id for w in windows_for(db_session, special=True)] == [special.id]
