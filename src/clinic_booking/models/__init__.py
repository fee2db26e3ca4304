"""
Data models for the clinic booking service.
"""

from .appointment import Appointment, AppointmentRequest, AppointmentStatus, StatusUpdate
from .blockage import Blockage, BlockageKind, BlockedDateEntry
from .booking import (
    DateAvailability,
    HoldHandle,
    HoldRequest,
    SlotBooking,
    SlotKind,
    SlotStatus,
    SlotVerdict,
    VerdictCode,
)

__all__ = [
    "Appointment",
    "AppointmentRequest",
    "AppointmentStatus",
    "StatusUpdate",
    "Blockage",
    "BlockageKind",
    "BlockedDateEntry",
    "DateAvailability",
    "HoldHandle",
    "HoldRequest",
    "SlotBooking",
    "SlotKind",
    "SlotStatus",
    "SlotVerdict",
    "VerdictCode",
]
