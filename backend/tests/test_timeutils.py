import datetime as dt

from worktracker.timeutils import (
    HOUR_MS,
    MINUTE_MS,
    format_duration,
    format_elapsed,
    format_system_date,
    format_system_time,
    parse_duration,
    parse_system_date,
    parse_system_time,
)


def test_dates_use_iso_format() -> None:
    assert parse_system_date("2024-03-01") == dt.date(2024, 3, 1)
    assert format_system_date(dt.date(2024, 3, 1)) == "2024-03-01"
    assert parse_system_date("01/03/2024") is None
    assert parse_system_date("") is None
    assert format_system_date(None) == ""


def test_time_of_day_is_combined_with_date() -> None:
    day = dt.date(2024, 3, 1)

    assert parse_system_time(day, "9:05") == dt.datetime(2024, 3, 1, 9, 5)
    assert parse_system_time(day, "24:00") is None
    assert parse_system_time(day, "12:75") is None
    assert parse_system_time(day, "noon") is None
    assert format_system_time(dt.datetime(2024, 3, 1, 17, 0)) == "17:00"


def test_duration_is_elapsed_time() -> None:
    assert parse_duration("02:30") == 2 * HOUR_MS + 30 * MINUTE_MS
    assert format_duration(parse_duration("02:30")) == "02:30"
    assert parse_duration("-01:15") == -(HOUR_MS + 15 * MINUTE_MS)
    assert parse_duration("60:30") == 60 * HOUR_MS + 30 * MINUTE_MS
    assert parse_duration("n/a") is None
    assert parse_duration("") is None


def test_duration_format_wraps_like_a_clock() -> None:
    assert format_duration(0) == "00:00"
    assert format_duration(25 * HOUR_MS) == "01:00"
    assert format_duration(-HOUR_MS) == "23:00"


def test_elapsed_totals_do_not_wrap() -> None:
    assert format_elapsed(40 * HOUR_MS) == "40:00"
    assert format_elapsed(163 * HOUR_MS + 15 * MINUTE_MS) == "163:15"
    assert format_elapsed(0) == "00:00"
    assert format_elapsed(-(HOUR_MS + 30 * MINUTE_MS)) == "-01:30"
