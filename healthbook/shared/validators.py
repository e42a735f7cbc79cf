"""Shared validation utilities"""

import re
from datetime import date, datetime
from typing import Union

_TIME_PATTERN = re.compile(
    r"^\s*(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?(?::\d{2})?\s*(?P<meridiem>[AaPp]\.?[Mm]\.?)?\s*$"
)


def parse_time_of_day(value: Union[str, int]) -> int:
    """
    Normalize a clinic time string to minutes since midnight.

    Accepts 24-hour ("09:00", "17:30", "9:05:00") and 12-hour ("9:00 AM",
    "5:30pm", "12 PM") forms; both resolve to the same integer so slot math
    never depends on how the schedule was typed in.

    Raises:
        ValueError: If the value is not a recognisable time of day
    """
    if isinstance(value, int):
        if not 0 <= value < 24 * 60:
            raise ValueError(f"Minute of day out of range: {value}")
        return value

    if not isinstance(value, str) or not value.strip():
        raise ValueError("Time of day is required")

    match = _TIME_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid time format: {value!r}")

    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    meridiem = match.group("meridiem")

    if minute > 59:
        raise ValueError(f"Invalid minutes in time: {value!r}")

    if meridiem:
        if not 1 <= hour <= 12:
            raise ValueError(f"Invalid 12-hour time: {value!r}")
        is_pm = meridiem[0].lower() == "p"
        hour = hour % 12 + (12 if is_pm else 0)
    elif hour > 23:
        raise ValueError(f"Invalid 24-hour time: {value!r}")

    return hour * 60 + minute


def format_minute_of_day(minutes: int) -> str:
    """Render minutes since midnight as HH:MM"""
    if minutes is None:
        return None
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_calendar_date(value: Union[str, date, datetime]) -> date:
    """
    Reduce a date-ish input to a timezone-naive calendar day.

    Timestamps are truncated to their date part, so "2024-06-10T18:30:00Z"
    and "2024-06-10" compare equal.
    """
    if value is None or value == "":
        raise ValueError("Date is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid date: {value!r}")

    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as e:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD): {value!r}") from e


def require_calendar_date(value: Union[str, date, datetime], field: str = "date") -> date:
    """parse_calendar_date for request input; malformed dates become a 400"""
    from ..errors import ValidationError

    try:
        return parse_calendar_date(value)
    except ValueError as e:
        raise ValidationError(str(e), field=field) from e
