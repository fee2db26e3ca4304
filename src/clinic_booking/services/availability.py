"""
Availability Resolver - decides whether dates and slots can be booked.

Evaluation order per request:
    1. calendar rules (no I/O; a rejection short-circuits every slot)
    2. admin blockage
    3. existing active holds and bookings

Any failure reading the stores makes the affected slots unavailable.
"""

import datetime as dt
from typing import Dict, Optional, Union

from loguru import logger

from clinic_booking.clock import Clock, utc_now
from clinic_booking.config import TIME_SLOTS
from clinic_booking.errors import (
    AdminBlocked,
    BookingError,
    DateUnavailable,
    SlotTaken,
    StoreUnavailable,
)
from clinic_booking.models import (
    Blockage,
    DateAvailability,
    SlotBooking,
    SlotVerdict,
    VerdictCode,
)
from clinic_booking.models.fields import parse_calendar_date, validate_time_slot
from clinic_booking.services.blocked_dates import BlockedDateService
from clinic_booking.services.rules import DateCheck, evaluate_date, practice_today
from clinic_booking.storage.base import SlotStore

ADMIN_BLOCKED_REASON = "Date blocked by admin"
SLOT_TAKEN_REASON = "Already booked"
STORE_ERROR_REASON = "Error checking availability"


class AvailabilityResolver:
    """
    Composes calendar rules, admin blockages and slot occupancy
    into per-slot verdicts.
    """

    def __init__(
        self,
        blocked_dates: BlockedDateService,
        slots: SlotStore,
        clock: Clock = utc_now,
        timezone: str = "Asia/Kolkata",
        closed_weekday: int = 0,
    ):
        self._blocked_dates = blocked_dates
        self._slots = slots
        self._clock = clock
        self._timezone = timezone
        self._closed_weekday = closed_weekday

    def today(self) -> dt.date:
        return practice_today(self._clock, self._timezone)

    def check_date(self, date: Union[str, dt.date]) -> DateCheck:
        """Run the calendar rules only."""
        return evaluate_date(date, self.today(), self._closed_weekday)

    async def resolve(
        self, date: Union[str, dt.date], time: Optional[str] = None
    ) -> Union[SlotVerdict, DateAvailability]:
        """Resolve one slot when a time is given, otherwise every slot of the date."""
        if time is None:
            return await self.resolve_date(date)
        return await self.resolve_slot(date, time)

    async def resolve_slot(
        self,
        date: Union[str, dt.date],
        time: str,
        hold_id: Optional[str] = None,
        holder_email: Optional[str] = None,
    ) -> SlotVerdict:
        """
        Resolve availability for a single slot.

        A hold belonging to the given booking flow (hold id, or holder
        email when no id is known) does not count as occupying the slot.

        Raises:
            InvalidInput: if the date or time is malformed
        """
        date = parse_calendar_date(date)
        time = validate_time_slot(time)

        check = self.check_date(date)
        if not check.available:
            return SlotVerdict.closed(date, time, check.code, check.reason)

        try:
            blockage = await self._blocked_dates.get_blockage(date)
            if blockage is not None and blockage.covers(time):
                return _verdict(date, time, blockage, None)
            occupants = [
                o
                for o in await self._slots.find_active(date, time)
                if not o.is_hold_of(hold_id, holder_email)
            ]
        except Exception as e:
            _log_store_failure(date, e)
            return _store_failure(date, time)

        return _verdict(date, time, blockage, occupants[0] if occupants else None)

    async def resolve_date(self, date: Union[str, dt.date]) -> DateAvailability:
        """
        Resolve availability for every enumerated slot of a date.

        Raises:
            InvalidInput: if the date is malformed
        """
        date = parse_calendar_date(date)

        check = self.check_date(date)
        if not check.available:
            return DateAvailability(
                date=date,
                slots=[SlotVerdict.closed(date, t, check.code, check.reason) for t in TIME_SLOTS],
            )

        occupants: Dict[str, SlotBooking] = {}
        try:
            blockage = await self._blocked_dates.get_blockage(date)
            if blockage is None or not blockage.is_full_day:
                for booking in await self._slots.find_active(date):
                    occupants.setdefault(booking.time, booking)
        except Exception as e:
            _log_store_failure(date, e)
            return DateAvailability(date=date, slots=[_store_failure(date, t) for t in TIME_SLOTS])

        return DateAvailability(
            date=date,
            slots=[_verdict(date, t, blockage, occupants.get(t)) for t in TIME_SLOTS],
        )

    async def ensure_bookable(
        self,
        date: dt.date,
        time: str,
        hold_id: Optional[str] = None,
        holder_email: Optional[str] = None,
    ) -> None:
        """
        Raising form of resolve_slot, used on the write path.

        Raises:
            DateUnavailable, AdminBlocked, SlotTaken, StoreUnavailable
        """
        verdict = await self.resolve_slot(date, time, hold_id, holder_email)
        if verdict.available:
            return

        if verdict.code in (VerdictCode.PAST_DATE, VerdictCode.CLOSED_WEEKDAY):
            raise DateUnavailable(verdict.reason)
        if verdict.code == VerdictCode.ADMIN_BLOCKED:
            raise AdminBlocked(verdict.reason)
        if verdict.code == VerdictCode.SLOT_TAKEN:
            raise SlotTaken()
        raise StoreUnavailable()


def _verdict(
    date: dt.date,
    time: str,
    blockage: Optional[Blockage],
    occupant: Optional[SlotBooking],
) -> SlotVerdict:
    if blockage is not None and blockage.covers(time):
        return SlotVerdict.closed(
            date, time, VerdictCode.ADMIN_BLOCKED, blockage.reason or ADMIN_BLOCKED_REASON
        )
    if occupant is not None:
        return SlotVerdict.closed(
            date, time, VerdictCode.SLOT_TAKEN, SLOT_TAKEN_REASON, held_by=occupant.patient_name
        )
    return SlotVerdict.open(date, time)


def _store_failure(date: dt.date, time: str) -> SlotVerdict:
    return SlotVerdict.closed(date, time, VerdictCode.STORE_UNAVAILABLE, STORE_ERROR_REASON)


def _log_store_failure(date: dt.date, error: Exception) -> None:
    if isinstance(error, BookingError):
        logger.error(f"Store unavailable while resolving {date}: {error.message}")
    else:
        logger.exception(f"Unexpected error resolving availability for {date}: {error}")
