"""
MongoDB storage backend.

Collections:
    blockedDates  - admin exclusions
    bookedSlots   - holds and permanent slot claims
    appointments  - patient appointment records

The single-slot invariant is enforced by a unique partial index on
(date, time) restricted to active records. Every claim is an insert or
a filtered single-document update, so the index, not a prior read,
decides which of several racing writers wins.
"""

import datetime as dt
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from loguru import logger
from pymongo import ASCENDING, AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from clinic_booking.clock import Clock, utc_now
from clinic_booking.config import Settings
from clinic_booking.errors import RaceLost, StoreUnavailable
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

BLOCKED_DATES = "blockedDates"
BOOKED_SLOTS = "bookedSlots"
APPOINTMENTS = "appointments"


@contextmanager
def translate_errors(operation: str):
    """Convert driver exceptions into booking-domain errors."""
    try:
        yield
    except DuplicateKeyError:
        logger.warning(f"Conditional write lost during {operation}")
        raise RaceLost() from None
    except PyMongoError as e:
        logger.error(f"MongoDB error during {operation}: {e}")
        raise StoreUnavailable() from e


def _day(value: dt.date) -> str:
    return value.isoformat()


# ============================================================================
# Document mapping
# ============================================================================


def _blocked_from_doc(doc: Dict[str, Any]) -> BlockedDateEntry:
    return BlockedDateEntry(
        id=str(doc["_id"]),
        date=dt.date.fromisoformat(doc["date"]),
        is_active=doc.get("isActive", True),
        reason=doc.get("reason"),
        time_slots=doc.get("timeSlots"),
        created_at=doc.get("createdAt"),
        updated_at=doc.get("updatedAt"),
    )


def _booking_from_doc(doc: Dict[str, Any]) -> SlotBooking:
    return SlotBooking(
        id=str(doc["_id"]),
        date=dt.date.fromisoformat(doc["date"]),
        time=doc["time"],
        kind=SlotKind(doc.get("kind", SlotKind.BOOKING.value)),
        appointment_id=doc.get("appointmentId"),
        patient_name=doc.get("patientName", ""),
        patient_email=doc.get("patientEmail", ""),
        status=SlotStatus(doc.get("status", SlotStatus.ACTIVE.value)),
        expires_at=doc.get("expiresAt"),
        claimed_at=doc.get("claimedAt"),
        created_at=doc["createdAt"],
        updated_at=doc.get("updatedAt"),
    )


def _appointment_to_doc(appointment: Appointment) -> Dict[str, Any]:
    return {
        "_id": appointment.id,
        "name": appointment.name,
        "email": appointment.email,
        "phone": appointment.phone,
        "service": appointment.service,
        "date": _day(appointment.date),
        "time": appointment.time,
        "message": appointment.message,
        "status": appointment.status.value,
        "createdAt": appointment.created_at,
        "updatedAt": appointment.updated_at,
    }


def _appointment_from_doc(doc: Dict[str, Any]) -> Appointment:
    return Appointment(
        id=str(doc["_id"]),
        name=doc["name"],
        email=doc["email"],
        phone=doc["phone"],
        service=doc["service"],
        date=dt.date.fromisoformat(doc["date"]),
        time=doc["time"],
        message=doc.get("message"),
        status=AppointmentStatus(doc.get("status", AppointmentStatus.PENDING.value)),
        created_at=doc["createdAt"],
        updated_at=doc["updatedAt"],
    )


# ============================================================================
# Stores
# ============================================================================


class MongoBlockedDateStore(BlockedDateStore):

    def __init__(self, collection, clock: Clock = utc_now):
        self._collection = collection
        self._clock = clock

    async def find_active(self, date: dt.date) -> List[BlockedDateEntry]:
        with translate_errors("blocked date lookup"):
            cursor = self._collection.find({"date": _day(date), "isActive": True})
            docs = await cursor.to_list(length=None)
        return [_blocked_from_doc(doc) for doc in docs]

    async def find_active_range(self, start: dt.date, end: dt.date) -> List[BlockedDateEntry]:
        with translate_errors("blocked date range lookup"):
            cursor = self._collection.find(
                {"date": {"$gte": _day(start), "$lte": _day(end)}, "isActive": True}
            ).sort("date", 1)
            docs = await cursor.to_list(length=None)
        return [_blocked_from_doc(doc) for doc in docs]

    async def add(self, entry: BlockedDateEntry) -> BlockedDateEntry:
        now = self._clock()
        doc = {
            "_id": entry.id,
            "date": _day(entry.date),
            "isActive": entry.is_active,
            "reason": entry.reason,
            "createdAt": now,
            "updatedAt": now,
        }
        if entry.time_slots is not None:
            doc["timeSlots"] = list(entry.time_slots)
        with translate_errors("blocked date insert"):
            await self._collection.insert_one(doc)
        return _blocked_from_doc(doc)

    async def set_active(self, entry_id: str, active: bool) -> Optional[BlockedDateEntry]:
        with translate_errors("blocked date update"):
            doc = await self._collection.find_one_and_update(
                {"_id": entry_id},
                {"$set": {"isActive": active, "updatedAt": self._clock()}},
                return_document=ReturnDocument.AFTER,
            )
        return _blocked_from_doc(doc) if doc else None


class MongoSlotStore(SlotStore):

    def __init__(self, collection, clock: Clock = utc_now):
        self._collection = collection
        self._clock = clock

    def _occupying_filter(self, date: dt.date, now: dt.datetime) -> Dict[str, Any]:
        return {
            "date": _day(date),
            "status": SlotStatus.ACTIVE.value,
            "$or": [
                {"expiresAt": {"$exists": False}},
                {"expiresAt": None},
                {"expiresAt": {"$gt": now}},
            ],
        }

    async def _clear_expired_hold(self, date: dt.date, time: str, now: dt.datetime) -> None:
        # An unswept expired hold still holds the unique index entry
        await self._collection.delete_one(
            {
                "date": _day(date),
                "time": time,
                "kind": SlotKind.HOLD.value,
                "status": SlotStatus.ACTIVE.value,
                "expiresAt": {"$lte": now},
            }
        )

    async def find_active(self, date: dt.date, time: Optional[str] = None) -> List[SlotBooking]:
        query = self._occupying_filter(date, self._clock())
        if time is not None:
            query["time"] = time
        with translate_errors("booked slot lookup"):
            docs = await self._collection.find(query).to_list(length=None)
        return [_booking_from_doc(doc) for doc in docs]

    async def create_hold(
        self,
        date: dt.date,
        time: str,
        patient_name: str,
        patient_email: str,
        ttl: dt.timedelta,
        appointment_id: Optional[str] = None,
    ) -> SlotBooking:
        now = self._clock()
        doc = {
            "_id": uuid4().hex,
            "date": _day(date),
            "time": time,
            "kind": SlotKind.HOLD.value,
            "appointmentId": appointment_id,
            "patientName": patient_name,
            "patientEmail": patient_email,
            "status": SlotStatus.ACTIVE.value,
            "expiresAt": now + ttl,
            "createdAt": now,
            "updatedAt": now,
        }
        with translate_errors("hold insert"):
            await self._clear_expired_hold(date, time, now)
            await self._collection.insert_one(doc)
        return _booking_from_doc(doc)

    async def promote_to_appointment(
        self,
        date: dt.date,
        time: str,
        appointment_id: str,
        patient_name: str,
        patient_email: str,
        hold_id: Optional[str] = None,
    ) -> SlotBooking:
        now = self._clock()
        own_hold = {
            "date": _day(date),
            "time": time,
            "kind": SlotKind.HOLD.value,
            "status": SlotStatus.ACTIVE.value,
            "expiresAt": {"$gt": now},
        }
        if hold_id is not None:
            own_hold["_id"] = hold_id
        else:
            own_hold["patientEmail"] = patient_email

        with translate_errors("slot claim"):
            await self._clear_expired_hold(date, time, now)

            promoted = await self._collection.find_one_and_update(
                own_hold,
                {
                    "$set": {
                        "kind": SlotKind.BOOKING.value,
                        "appointmentId": appointment_id,
                        "patientName": patient_name,
                        "claimedAt": now,
                        "updatedAt": now,
                    },
                    "$unset": {"expiresAt": ""},
                },
                return_document=ReturnDocument.AFTER,
            )
            if promoted is not None:
                logger.debug(f"Promoted hold {promoted['_id']} to appointment {appointment_id}")
                return _booking_from_doc(promoted)

            doc = {
                "_id": uuid4().hex,
                "date": _day(date),
                "time": time,
                "kind": SlotKind.BOOKING.value,
                "appointmentId": appointment_id,
                "patientName": patient_name,
                "patientEmail": patient_email,
                "status": SlotStatus.ACTIVE.value,
                "claimedAt": now,
                "createdAt": now,
                "updatedAt": now,
            }
            await self._collection.insert_one(doc)
        return _booking_from_doc(doc)

    async def release_claim(self, appointment_id: str) -> int:
        with translate_errors("claim release"):
            result = await self._collection.delete_many(
                {"kind": SlotKind.BOOKING.value, "appointmentId": appointment_id}
            )
        return result.deleted_count

    async def release_hold(self, hold_id: str, patient_email: str) -> int:
        with translate_errors("hold release"):
            result = await self._collection.delete_one(
                {"_id": hold_id, "kind": SlotKind.HOLD.value, "patientEmail": patient_email}
            )
        return result.deleted_count

    async def release_expired(self) -> int:
        with translate_errors("expired hold sweep"):
            result = await self._collection.delete_many(
                {
                    "kind": SlotKind.HOLD.value,
                    "status": SlotStatus.ACTIVE.value,
                    "expiresAt": {"$lte": self._clock()},
                }
            )
        return result.deleted_count

    async def find_claims(self, claimed_before: dt.datetime) -> List[SlotBooking]:
        with translate_errors("claim lookup"):
            docs = await self._collection.find(
                {
                    "kind": SlotKind.BOOKING.value,
                    "claimedAt": {"$lt": claimed_before},
                }
            ).to_list(length=None)
        return [_booking_from_doc(doc) for doc in docs]

    async def delete(self, booking_ids: Iterable[str]) -> int:
        ids = list(booking_ids)
        if not ids:
            return 0
        with translate_errors("booked slot delete"):
            result = await self._collection.delete_many({"_id": {"$in": ids}})
        return result.deleted_count


class MongoAppointmentStore(AppointmentStore):

    def __init__(self, collection):
        self._collection = collection

    async def insert(self, appointment: Appointment) -> Appointment:
        with translate_errors("appointment insert"):
            await self._collection.insert_one(_appointment_to_doc(appointment))
        return appointment

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        with translate_errors("appointment lookup"):
            doc = await self._collection.find_one({"_id": appointment_id})
        return _appointment_from_doc(doc) if doc else None

    async def update_status(
        self, appointment_id: str, status: AppointmentStatus, now: dt.datetime
    ) -> Optional[Appointment]:
        with translate_errors("appointment status update"):
            doc = await self._collection.find_one_and_update(
                {"_id": appointment_id},
                {"$set": {"status": status.value, "updatedAt": now}},
                return_document=ReturnDocument.AFTER,
            )
        return _appointment_from_doc(doc) if doc else None

    async def existing_ids(self, appointment_ids: Iterable[str]) -> Set[str]:
        ids = list(appointment_ids)
        if not ids:
            return set()
        with translate_errors("appointment existence check"):
            docs = await self._collection.find({"_id": {"$in": ids}}, {"_id": 1}).to_list(length=None)
        return {str(doc["_id"]) for doc in docs}


# ============================================================================
# Backend
# ============================================================================


@dataclass
class MongoBackend(StorageBackend):
    """Storage backend over a single MongoDB database."""

    client: Optional[AsyncMongoClient] = field(default=None)
    database: Any = field(default=None)

    async def initialize(self) -> None:
        with translate_errors("index creation"):
            await self.database[BOOKED_SLOTS].create_index(
                [("date", ASCENDING), ("time", ASCENDING)],
                name="active_slot_unique",
                unique=True,
                partialFilterExpression={"status": SlotStatus.ACTIVE.value},
            )
            await self.database[BOOKED_SLOTS].create_index(
                [("kind", ASCENDING), ("expiresAt", ASCENDING)], name="hold_expiry"
            )
            await self.database[BOOKED_SLOTS].create_index(
                [("appointmentId", ASCENDING)], name="appointment_ref"
            )
            await self.database[BOOKED_SLOTS].create_index(
                [("kind", ASCENDING), ("claimedAt", ASCENDING)], name="claims_by_time"
            )
            await self.database[BLOCKED_DATES].create_index(
                [("date", ASCENDING), ("isActive", ASCENDING)], name="active_by_date"
            )
        logger.info("MongoDB indexes ensured")

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            logger.info("MongoDB client closed")


def create_mongo_backend(settings: Settings, clock: Clock = utc_now) -> MongoBackend:
    """Build a MongoDB backend from settings. The client connects lazily."""
    client = AsyncMongoClient(
        settings.mongodb_uri,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        maxPoolSize=settings.mongodb_max_pool_size,
    )
    database = client[settings.mongodb_db]
    return MongoBackend(
        blocked_dates=MongoBlockedDateStore(database[BLOCKED_DATES], clock),
        slots=MongoSlotStore(database[BOOKED_SLOTS], clock),
        appointments=MongoAppointmentStore(database[APPOINTMENTS]),
        client=client,
        database=database,
    )
