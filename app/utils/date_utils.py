# app/utils/date_utils.py

from datetime import datetime, date, time, timedelta, timezone
from typing import Union, Tuple
from zoneinfo import ZoneInfo

from app.core import config


def to_day(value: Union[str, date, datetime]) -> date:
    """Reduce a stored booking date (or YYYY-MM-DD string) to its calendar day"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, '%Y-%m-%d').date()


def day_window(day: Union[str, date, datetime]) -> Tuple[datetime, datetime]:
    """
    Closed-open window [midnight, next midnight) for a calendar day.

    Booking dates are stored as naive midnight datetimes in the provider's
    local calendar, so the window is naive as well.
    """
    start = datetime.combine(to_day(day), time())
    return start, start + timedelta(days=1)


def day_start(day: Union[str, date, datetime]) -> datetime:
    return day_window(day)[0]


def parse_clock_time(value: str) -> time:
    """Parse an HH:MM (24h) booking time"""
    return datetime.strptime(value.strip(), '%H:%M').time()


def is_valid_clock_time(value: str) -> bool:
    try:
        parse_clock_time(value)
        return True
    except (ValueError, AttributeError):
        return False


def local_now() -> datetime:
    return datetime.now(ZoneInfo(config.BOOKING_TIMEZONE))


def local_today() -> date:
    return local_now().date()


def format_booking_datetime(booking_date: Union[date, datetime], booking_time: str) -> Tuple[str, str]:
    """Render a booking's day and clock time for notification text, e.g. ('October 19, 2026', '3:30 pm')"""
    day = to_day(booking_date)
    try:
        clock = parse_clock_time(booking_time)
    except (ValueError, AttributeError):
        clock = time()
    moment = datetime.combine(day, clock, tzinfo=ZoneInfo(config.BOOKING_TIMEZONE))

    formatted_date = f"{moment.strftime('%B')} {moment.day}, {moment.year}"
    hour = moment.hour % 12 or 12
    formatted_time = f"{hour}:{moment.minute:02d} {'am' if moment.hour < 12 else 'pm'}"
    return formatted_date, formatted_time


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what MongoDB hands back on reads"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
