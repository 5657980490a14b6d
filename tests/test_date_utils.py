from datetime import date, datetime

from app.utils.date_utils import day_window, format_booking_datetime, is_valid_clock_time, to_day


def test_day_window_is_closed_open():
    start, end = day_window(date(2026, 11, 2))
    assert start == datetime(2026, 11, 2)
    assert end == datetime(2026, 11, 3)


def test_day_window_accepts_datetimes_and_strings():
    assert day_window(datetime(2026, 11, 2, 15, 30)) == day_window("2026-11-02")
    assert to_day("2026-11-02") == date(2026, 11, 2)


def test_format_booking_datetime():
    assert format_booking_datetime(datetime(2026, 10, 19), "15:30") == ("October 19, 2026", "3:30 pm")
    assert format_booking_datetime(date(2026, 1, 5), "00:05") == ("January 5, 2026", "12:05 am")
    assert format_booking_datetime(date(2026, 1, 5), "12:00") == ("January 5, 2026", "12:00 pm")


def test_clock_time_validation():
    assert is_valid_clock_time("09:45")
    assert not is_valid_clock_time("9:45 AM")
    assert not is_valid_clock_time("25:00")
