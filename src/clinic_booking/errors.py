"""
Booking error taxonomy.

Every failure that crosses the service boundary is one of these kinds.
The API layer renders them using ``code`` and ``status_code``.
"""

from typing import Dict, List, Optional

from fastapi import status


class BookingError(Exception):
    """Base class for all booking-domain errors."""

    code = "BOOKING_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Booking request could not be completed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "code": self.code, "message": self.message}


class InvalidInput(BookingError):
    """Malformed date, time or required field."""

    code = "INVALID_INPUT"
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "InvalidInput":
        return cls(message, errors=[{"field": field, "message": message}])

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class DateUnavailable(BookingError):
    """Categorical rule (past date, closed weekday) rejects the date."""

    code = "DATE_UNAVAILABLE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Date unavailable"


class AdminBlocked(BookingError):
    """An admin exclusion covers the date or slot."""

    code = "ADMIN_BLOCKED"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Date blocked by admin"


class SlotTaken(BookingError):
    """Another active booking or hold occupies the slot."""

    code = "SLOT_TAKEN"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This time slot is already taken. Please choose another time."


class RaceLost(SlotTaken):
    """A concurrent request won the conditional write for the slot."""


class StoreUnavailable(BookingError):
    """The backing store could not be reached. Safe to retry."""

    code = "STORE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Booking storage is temporarily unavailable. Please try again."


class VerificationFailed(BookingError):
    """The bot-check gate rejected the request."""

    code = "VERIFICATION_FAILED"
    default_message = "Invalid CAPTCHA verification. Please try again."


class AppointmentNotFound(BookingError):
    code = "APPOINTMENT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Appointment not found"
