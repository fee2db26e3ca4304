"""
Storage contracts for blocked dates, slot bookings and appointments.

Implementations raise only booking-domain errors: ``RaceLost`` when a
conditional write loses to a concurrent writer and ``StoreUnavailable``
for any other data-access failure.
"""

import datetime as dt
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from clinic_booking.models import (
    Appointment,
    AppointmentStatus,
    BlockedDateEntry,
    SlotBooking,
)


class BlockedDateStore(ABC):
    """Admin exclusions. Read-only from the booking flow."""

    @abstractmethod
    async def find_active(self, date: dt.date) -> List[BlockedDateEntry]:
        """Return every active entry for the date."""

    @abstractmethod
    async def find_active_range(self, start: dt.date, end: dt.date) -> List[BlockedDateEntry]:
        """Active entries dated between start and end inclusive, ordered by date."""

    @abstractmethod
    async def add(self, entry: BlockedDateEntry) -> BlockedDateEntry:
        """Persist a new entry."""

    @abstractmethod
    async def set_active(self, entry_id: str, active: bool) -> Optional[BlockedDateEntry]:
        """Flip an entry's active flag. Returns None if the entry does not exist."""


class SlotStore(ABC):
    """
    Occupancy records for (date, time) pairs.

    At most one active record may exist per pair. Holds whose expiry has
    passed no longer occupy their slot even before they are swept.
    """

    @abstractmethod
    async def find_active(self, date: dt.date, time: Optional[str] = None) -> List[SlotBooking]:
        """Active, non-expired records for the date (and time, if given)."""

    async def is_slot_taken(self, date: dt.date, time: str) -> bool:
        return bool(await self.find_active(date, time))

    @abstractmethod
    async def create_hold(
        self,
        date: dt.date,
        time: str,
        patient_name: str,
        patient_email: str,
        ttl: dt.timedelta,
        appointment_id: Optional[str] = None,
    ) -> SlotBooking:
        """
        Insert a hold if the slot is free.

        Raises:
            RaceLost: if another active record occupies the slot
        """

    @abstractmethod
    async def promote_to_appointment(
        self,
        date: dt.date,
        time: str,
        appointment_id: str,
        patient_name: str,
        patient_email: str,
        hold_id: Optional[str] = None,
    ) -> SlotBooking:
        """
        Claim the slot permanently for an appointment.

        A live hold for the same slot owned by the same booking flow
        (matched by ``hold_id`` or, failing that, by holder email) is
        converted in place; otherwise a new permanent record is inserted.

        Raises:
            RaceLost: if the slot is occupied by someone else
        """

    @abstractmethod
    async def release_claim(self, appointment_id: str) -> int:
        """Delete the permanent record owned by an appointment."""

    @abstractmethod
    async def release_hold(self, hold_id: str, patient_email: str) -> int:
        """Delete a hold owned by the given holder. No-op if absent."""

    @abstractmethod
    async def release_expired(self) -> int:
        """Delete holds whose expiry has passed. Returns the count removed."""

    @abstractmethod
    async def find_claims(self, claimed_before: dt.datetime) -> List[SlotBooking]:
        """Permanent records claimed before the given instant."""

    @abstractmethod
    async def delete(self, booking_ids: Iterable[str]) -> int:
        """Delete records by id."""


class AppointmentStore(ABC):

    @abstractmethod
    async def insert(self, appointment: Appointment) -> Appointment:
        pass

    @abstractmethod
    async def get(self, appointment_id: str) -> Optional[Appointment]:
        pass

    @abstractmethod
    async def update_status(
        self, appointment_id: str, status: AppointmentStatus, now: dt.datetime
    ) -> Optional[Appointment]:
        """Set the status. Returns None if the appointment does not exist."""

    @abstractmethod
    async def existing_ids(self, appointment_ids: Iterable[str]) -> Set[str]:
        """Subset of the given ids that have an appointment record."""


@dataclass
class StorageBackend:
    """Bundle of the three stores plus lifecycle hooks."""

    blocked_dates: BlockedDateStore
    slots: SlotStore
    appointments: AppointmentStore

    async def initialize(self) -> None:
        """Prepare the backend (indexes, connections)."""

    async def close(self) -> None:
        """Release backend resources."""
