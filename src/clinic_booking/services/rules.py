"""
Calendar rules that decide whether a date is categorically bookable.

Pure functions, no I/O. "Today" is always taken in the practice's
time zone so a client's local zone cannot move a date across midnight.
"""

import datetime as dt
from typing import NamedTuple, Optional, Union
from zoneinfo import ZoneInfo

from clinic_booking.clock import Clock
from clinic_booking.config import WEEKDAY_NAMES
from clinic_booking.models import VerdictCode
from clinic_booking.models.fields import parse_calendar_date

PAST_DATE_REASON = "Past date"


class DateCheck(NamedTuple):
    available: bool
    reason: Optional[str] = None
    code: Optional[VerdictCode] = None


def js_weekday(day: dt.date) -> int:
    """Weekday number with Sunday = 0 ... Saturday = 6."""
    return (day.weekday() + 1) % 7


def closed_weekday_reason(closed_weekday: int) -> str:
    return f"Hospital closed on {WEEKDAY_NAMES[closed_weekday]}s"


def practice_today(clock: Clock, timezone: str) -> dt.date:
    """Current calendar date in the practice's time zone."""
    return clock().astimezone(ZoneInfo(timezone)).date()


def evaluate_date(
    day: Union[str, dt.date], today: dt.date, closed_weekday: int = 0
) -> DateCheck:
    """
    Decide whether a date is categorically bookable.

    Args:
        day: The date to check (date or YYYY-MM-DD string)
        today: Today's date in the practice time zone
        closed_weekday: Weekday the practice is closed (Sunday = 0)

    Returns:
        DateCheck with the reason and code when unavailable

    Raises:
        InvalidInput: if the date is malformed
    """
    day = parse_calendar_date(day)

    if day < today:
        return DateCheck(False, PAST_DATE_REASON, VerdictCode.PAST_DATE)

    if js_weekday(day) == closed_weekday:
        return DateCheck(False, closed_weekday_reason(closed_weekday), VerdictCode.CLOSED_WEEKDAY)

    return DateCheck(True)
