"""
Slot occupancy and availability models.
"""

import datetime as dt
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field, field_validator

from clinic_booking.models.fields import EMAIL_PATTERN, CalendarDate, TimeSlotLabel


class SlotKind(str, Enum):
    HOLD = "hold"
    BOOKING = "booking"


class SlotStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"


class VerdictCode(str, Enum):
    PAST_DATE = "PAST_DATE"
    CLOSED_WEEKDAY = "CLOSED_WEEKDAY"
    ADMIN_BLOCKED = "ADMIN_BLOCKED"
    SLOT_TAKEN = "SLOT_TAKEN"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class SlotBooking(BaseModel):
    """
    An occupied (date, time) pair.

    Holds carry an expiry and no appointment; permanent bookings carry
    an appointment reference and never an expiry.
    """

    id: str = Field(default_factory=lambda: uuid4().hex, description="Record identifier")
    date: dt.date = Field(description="Booked calendar date")
    time: str = Field(description="Booked time slot label")
    kind: SlotKind = Field(description="Temporary hold or permanent booking")
    appointment_id: Optional[str] = Field(default=None, description="Owning appointment")
    patient_name: str = Field(description="Holder name, for display")
    patient_email: str = Field(description="Holder email")
    status: SlotStatus = Field(default=SlotStatus.ACTIVE)
    expires_at: Optional[dt.datetime] = Field(default=None, description="Hold expiry (UTC)")
    claimed_at: Optional[dt.datetime] = Field(default=None, description="When a permanent claim was made (UTC)")
    created_at: dt.datetime = Field(description="Creation timestamp (UTC)")
    updated_at: Optional[dt.datetime] = None

    @property
    def is_hold(self) -> bool:
        return self.kind == SlotKind.HOLD

    def is_expired(self, now: dt.datetime) -> bool:
        """Whether this is a hold whose expiry has passed."""
        return self.is_hold and self.expires_at is not None and self.expires_at <= now

    def is_occupying(self, now: dt.datetime) -> bool:
        return self.status == SlotStatus.ACTIVE and not self.is_expired(now)

    def is_hold_of(self, hold_id: Optional[str], patient_email: Optional[str]) -> bool:
        """
        Whether this is a hold placed by the given booking flow.

        The hold id identifies the flow when known; otherwise the
        holder email does.
        """
        if not self.is_hold:
            return False
        if hold_id is not None:
            return self.id == hold_id
        return patient_email is not None and self.patient_email == patient_email


class HoldHandle(BaseModel):
    """Handle returned to the client after a successful hold."""

    hold_id: str
    date: dt.date
    time: str
    expires_at: dt.datetime


class HoldRequest(BaseModel):
    """Request to temporarily hold a slot."""

    date: CalendarDate
    time: TimeSlotLabel
    patient_name: str = Field(min_length=2, max_length=100)
    patient_email: str = Field(max_length=254)
    appointment_id: Optional[str] = None

    @field_validator("patient_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("patient_email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address.")
        return v


class SlotVerdict(BaseModel):
    """Availability verdict for a single slot."""

    date: dt.date
    time: str
    available: bool
    reason: Optional[str] = None
    code: Optional[VerdictCode] = None
    held_by: Optional[str] = Field(default=None, description="Display only, never for access control")

    @classmethod
    def open(cls, date: dt.date, time: str) -> "SlotVerdict":
        return cls(date=date, time=time, available=True)

    @classmethod
    def closed(
        cls,
        date: dt.date,
        time: str,
        code: VerdictCode,
        reason: Optional[str],
        held_by: Optional[str] = None,
    ) -> "SlotVerdict":
        return cls(date=date, time=time, available=False, code=code, reason=reason, held_by=held_by)


class DateAvailability(BaseModel):
    """Per-slot verdicts for one date."""

    date: dt.date
    slots: List[SlotVerdict]

    @computed_field
    @property
    def total_slots(self) -> int:
        return len(self.slots)

    @computed_field
    @property
    def available_count(self) -> int:
        return sum(1 for slot in self.slots if slot.available)

    @computed_field
    @property
    def unavailable_count(self) -> int:
        return self.total_slots - self.available_count

    @property
    def available_times(self) -> List[str]:
        return [slot.time for slot in self.slots if slot.available]
