from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from kintai.errors import ValidationError
from kintai.time_utils import (
    break_minutes,
    format_local,
    format_minutes,
    month_bounds,
    parse_instant,
    parse_year_month,
    today_local,
    trailing_window,
    worked_minutes,
)


def _utc(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2024, 5, 1, hour, minute, second, tzinfo=timezone.utc)


def test_worked_minutes_subtracts_closed_break():
    assert worked_minutes(_utc(0), _utc(9), _utc(3), _utc(4)) == 480
    assert break_minutes(_utc(3), _utc(4)) == 60


def test_worked_minutes_ignores_unclosed_break():
    assert worked_minutes(_utc(0), _utc(9), _utc(3), None) == 540


def test_worked_minutes_floors_partial_minutes():
    assert worked_minutes(_utc(0), _utc(0, 1, 59)) == 1
    assert break_minutes(_utc(3), _utc(3, 0, 59)) == 0


def test_worked_minutes_needs_both_clock_instants():
    assert worked_minutes(_utc(0), None) is None
    assert worked_minutes(None, _utc(9)) is None


def test_worked_minutes_never_negative():
    assert worked_minutes(_utc(9), _utc(8)) == 0


def test_format_minutes():
    assert format_minutes(510) == "8:30"
    assert format_minutes(0) == "0:00"
    assert format_minutes(605) == "10:05"
    assert format_minutes(None) == ""


@pytest.mark.parametrize("value", ["2024-1", "2024-13", "24-01", "abcd-ef", "", None, "2024-00"])
def test_parse_year_month_rejects_malformed(value):
    with pytest.raises(ValidationError):
        parse_year_month(value)


def test_month_bounds_handles_leap_february():
    assert parse_year_month("2024-02") == (2024, 2)
    assert month_bounds("2024-02") == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds("2023-12") == (date(2023, 12, 1), date(2023, 12, 31))


def test_trailing_window_covers_requested_days():
    start, end = trailing_window(30, date(2024, 5, 30))
    assert end == date(2024, 5, 30)
    assert start == date(2024, 5, 1)
    assert (end - start) + timedelta(days=1) == timedelta(days=30)


def test_parse_instant_reads_naive_values_in_company_timezone(app):
    assert parse_instant("2024-05-01T09:00:00") == _utc(0)
    assert parse_instant("2024-05-01T00:00:00Z") == _utc(0)
    assert parse_instant("2024-05-01T09:00:00+09:00") == _utc(0)
    assert parse_instant("") is None
    assert parse_instant(None) is None


def test_parse_instant_rejects_garbage(app):
    with pytest.raises(ValidationError):
        parse_instant("yesterday at nine")


def test_today_uses_company_timezone(app):
    # 16:00 UTC is already the next day in Tokyo.
    assert today_local(datetime(2024, 5, 1, 16, 0, tzinfo=timezone.utc)) == date(2024, 5, 2)
    assert today_local(datetime(2024, 5, 1, 14, 59, tzinfo=timezone.utc)) == date(2024, 5, 1)


def test_format_local_renders_company_time(app):
    assert format_local(_utc(0)) == "2024/05/01 09:00"
    assert format_local(None) == ""
    # Values read back from SQLite are naive UTC.
    assert format_local(datetime(2024, 5, 1, 0, 0)) == "2024/05/01 09:00"
