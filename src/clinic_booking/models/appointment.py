"""
Appointment data models.
"""

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from clinic_booking.models.fields import EMAIL_PATTERN, CalendarDate, TimeSlotLabel


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    VISITED = "visited"


class AppointmentRequest(BaseModel):
    """
    Patient-submitted booking form.

    This model holds the appointment payload with validation
    to ensure data quality before any store access.
    """

    name: str = Field(min_length=2, max_length=100, description="Patient's full name")
    email: str = Field(max_length=254, description="Patient's email address")
    phone: str = Field(min_length=10, max_length=20, description="Patient's phone number")
    service: str = Field(min_length=1, max_length=100, description="Requested service")
    date: CalendarDate = Field(description="Requested calendar date")
    time: TimeSlotLabel = Field(description="Requested time slot")
    message: Optional[str] = Field(default=None, max_length=2000)
    hold_id: Optional[str] = Field(default=None, description="Hold placed earlier in this booking flow")
    captcha_token: Optional[str] = Field(default=None, description="Bot-check token")

    @field_validator("name", "phone", "service", mode="before")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        """Strip surrounding whitespace but preserve internal formatting."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address.")
        return v


class Appointment(BaseModel):
    """Stored appointment record."""

    id: str = Field(description="Appointment identifier")
    name: str
    email: str
    phone: str
    service: str
    date: dt.date
    time: str
    message: Optional[str] = None
    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING)
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_request(
        cls, request: AppointmentRequest, appointment_id: str, now: dt.datetime
    ) -> "Appointment":
        return cls(
            id=appointment_id,
            name=request.name,
            email=request.email,
            phone=request.phone,
            service=request.service,
            date=request.date,
            time=request.time,
            message=request.message,
            created_at=now,
            updated_at=now,
        )


class StatusUpdate(BaseModel):
    status: AppointmentStatus
