"""
In-memory storage backend.

Used for tests and local development when no MongoDB URI is configured.
Each store serializes its writes with an asyncio lock so that the
occupancy check and the write happen in one critical section, which
gives the same guarantee as the unique index used by the MongoDB backend.
"""

import asyncio
import datetime as dt
from typing import Dict, Iterable, List, Optional, Set

from loguru import logger

from clinic_booking.clock import Clock, utc_now
from clinic_booking.errors import RaceLost
from clinic_booking.models import (
    Appointment,
    AppointmentStatus,
    BlockedDateEntry,
    SlotBooking,
    SlotKind,
    SlotStatus,
)
from clinic_booking.storage.base import (
    AppointmentStore,
    BlockedDateStore,
    SlotStore,
    StorageBackend,
)


class InMemoryBlockedDateStore(BlockedDateStore):

    def __init__(self, clock: Clock = utc_now):
        self._entries: Dict[str, BlockedDateEntry] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def entries(self) -> Dict[str, BlockedDateEntry]:
        """Access to entries dictionary."""
        return self._entries

    async def find_active(self, date: dt.date) -> List[BlockedDateEntry]:
        return [e for e in self._entries.values() if e.date == date and e.is_active]

    async def find_active_range(self, start: dt.date, end: dt.date) -> List[BlockedDateEntry]:
        entries = [e for e in self._entries.values() if start <= e.date <= end and e.is_active]
        return sorted(entries, key=lambda e: e.date)

    async def add(self, entry: BlockedDateEntry) -> BlockedDateEntry:
        now = self._clock()
        stored = entry.model_copy(update={"created_at": now, "updated_at": now})
        async with self._lock:
            self._entries[stored.id] = stored
        return stored

    async def set_active(self, entry_id: str, active: bool) -> Optional[BlockedDateEntry]:
        async with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                return None
            updated = entry.model_copy(update={"is_active": active, "updated_at": self._clock()})
            self._entries[entry_id] = updated
            return updated


class InMemorySlotStore(SlotStore):

    def __init__(self, clock: Clock = utc_now):
        self._records: Dict[str, SlotBooking] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def records(self) -> Dict[str, SlotBooking]:
        """Access to records dictionary."""
        return self._records

    def _occupant(self, date: dt.date, time: str, now: dt.datetime) -> Optional[SlotBooking]:
        for record in self._records.values():
            if record.date == date and record.time == time and record.is_occupying(now):
                return record
        return None

    async def find_active(self, date: dt.date, time: Optional[str] = None) -> List[SlotBooking]:
        now = self._clock()
        return [
            r
            for r in self._records.values()
            if r.date == date and (time is None or r.time == time) and r.is_occupying(now)
        ]

    async def create_hold(
        self,
        date: dt.date,
        time: str,
        patient_name: str,
        patient_email: str,
        ttl: dt.timedelta,
        appointment_id: Optional[str] = None,
    ) -> SlotBooking:
        async with self._lock:
            now = self._clock()
            if self._occupant(date, time, now) is not None:
                raise RaceLost()

            hold = SlotBooking(
                date=date,
                time=time,
                kind=SlotKind.HOLD,
                appointment_id=appointment_id,
                patient_name=patient_name,
                patient_email=patient_email,
                expires_at=now + ttl,
                created_at=now,
                updated_at=now,
            )
            self._records[hold.id] = hold
            return hold

    async def promote_to_appointment(
        self,
        date: dt.date,
        time: str,
        appointment_id: str,
        patient_name: str,
        patient_email: str,
        hold_id: Optional[str] = None,
    ) -> SlotBooking:
        async with self._lock:
            now = self._clock()
            occupant = self._occupant(date, time, now)

            if occupant is not None:
                if not occupant.is_hold_of(hold_id, patient_email):
                    raise RaceLost()
                promoted = occupant.model_copy(
                    update={
                        "kind": SlotKind.BOOKING,
                        "appointment_id": appointment_id,
                        "patient_name": patient_name,
                        "expires_at": None,
                        "claimed_at": now,
                        "updated_at": now,
                    }
                )
                self._records[promoted.id] = promoted
                logger.debug(f"Promoted hold {promoted.id} to appointment {appointment_id}")
                return promoted

            booking = SlotBooking(
                date=date,
                time=time,
                kind=SlotKind.BOOKING,
                appointment_id=appointment_id,
                patient_name=patient_name,
                patient_email=patient_email,
                claimed_at=now,
                created_at=now,
                updated_at=now,
            )
            self._records[booking.id] = booking
            return booking

    async def release_claim(self, appointment_id: str) -> int:
        async with self._lock:
            ids = [
                r.id
                for r in self._records.values()
                if r.kind == SlotKind.BOOKING and r.appointment_id == appointment_id
            ]
            for record_id in ids:
                del self._records[record_id]
            return len(ids)

    async def release_hold(self, hold_id: str, patient_email: str) -> int:
        async with self._lock:
            record = self._records.get(hold_id)
            if record is None or not record.is_hold or record.patient_email != patient_email:
                return 0
            del self._records[hold_id]
            return 1

    async def release_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [
                r.id
                for r in self._records.values()
                if r.status == SlotStatus.ACTIVE and r.is_expired(now)
            ]
            for record_id in expired:
                del self._records[record_id]
            return len(expired)

    async def find_claims(self, claimed_before: dt.datetime) -> List[SlotBooking]:
        return [
            r
            for r in self._records.values()
            if r.kind == SlotKind.BOOKING
            and r.claimed_at is not None
            and r.claimed_at < claimed_before
        ]

    async def delete(self, booking_ids: Iterable[str]) -> int:
        async with self._lock:
            removed = 0
            for record_id in booking_ids:
                if self._records.pop(record_id, None) is not None:
                    removed += 1
            return removed


class InMemoryAppointmentStore(AppointmentStore):

    def __init__(self):
        self._appointments: Dict[str, Appointment] = {}
        self._lock = asyncio.Lock()

    @property
    def appointments(self) -> Dict[str, Appointment]:
        """Access to appointments dictionary."""
        return self._appointments

    async def insert(self, appointment: Appointment) -> Appointment:
        async with self._lock:
            self._appointments[appointment.id] = appointment
        return appointment

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        return self._appointments.get(appointment_id)

    async def update_status(
        self, appointment_id: str, status: AppointmentStatus, now: dt.datetime
    ) -> Optional[Appointment]:
        async with self._lock:
            appointment = self._appointments.get(appointment_id)
            if appointment is None:
                return None
            updated = appointment.model_copy(update={"status": status, "updated_at": now})
            self._appointments[appointment_id] = updated
            return updated

    async def existing_ids(self, appointment_ids: Iterable[str]) -> Set[str]:
        return {a for a in appointment_ids if a in self._appointments}


def create_memory_backend(clock: Clock = utc_now) -> StorageBackend:
    """Build a backend whose stores share the given clock."""
    return StorageBackend(
        blocked_dates=InMemoryBlockedDateStore(clock),
        slots=InMemorySlotStore(clock),
        appointments=InMemoryAppointmentStore(),
    )
