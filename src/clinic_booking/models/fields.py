"""
Shared parsing helpers for calendar dates and time slot labels.
"""

import datetime as dt
import re
from typing import Annotated, Union

from pydantic import BeforeValidator

from clinic_booking.config import TIME_SLOTS, is_time_slot
from clinic_booking.errors import InvalidInput

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DATE_FORMAT_MESSAGE = "Invalid date format. Use YYYY-MM-DD"


def coerce_iso_date(value: Union[str, dt.date]) -> dt.date:
    """
    Parse a calendar date without any time component.

    Datetimes are rejected rather than truncated so that a client-side
    time zone can never shift the date across a day boundary.

    Raises:
        ValueError: if the value is not a YYYY-MM-DD string or a date
    """
    if isinstance(value, dt.datetime):
        raise ValueError(DATE_FORMAT_MESSAGE)
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str) or not ISO_DATE_PATTERN.match(value.strip()):
        raise ValueError(DATE_FORMAT_MESSAGE)
    try:
        return dt.date.fromisoformat(value.strip())
    except ValueError:
        raise ValueError(f"Invalid calendar date: {value}") from None


def coerce_time_slot(value: str) -> str:
    """
    Validate a time slot label against the enumerated set.

    Raises:
        ValueError: if the label is not one of TIME_SLOTS
    """
    label = value.strip() if isinstance(value, str) else value
    if not isinstance(label, str) or not is_time_slot(label):
        raise ValueError(f"Invalid time slot. Use one of: {', '.join(TIME_SLOTS)}")
    return label


CalendarDate = Annotated[dt.date, BeforeValidator(coerce_iso_date)]
TimeSlotLabel = Annotated[str, BeforeValidator(coerce_time_slot)]


def parse_calendar_date(value: Union[str, dt.date], field: str = "date") -> dt.date:
    """Parse a date, raising InvalidInput with field-level detail."""
    try:
        return coerce_iso_date(value)
    except ValueError as e:
        raise InvalidInput.for_field(field, str(e)) from None


def validate_time_slot(value: str, field: str = "time") -> str:
    """Validate a time slot label, raising InvalidInput with field-level detail."""
    try:
        return coerce_time_slot(value)
    except ValueError as e:
        raise InvalidInput.for_field(field, str(e)) from None
