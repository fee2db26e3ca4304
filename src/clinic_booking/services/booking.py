"""
Booking Service - places holds and confirms appointments.

The availability check is repeated at write time, but the conditional
write in the slot store is what actually decides who gets a slot.
The slot is claimed before the appointment record is written; if the
appointment write fails the claim is released again.
"""

import datetime as dt
from typing import Optional
from uuid import uuid4

from loguru import logger

from clinic_booking.clock import Clock, utc_now
from clinic_booking.errors import (
    AppointmentNotFound,
    BookingError,
    RaceLost,
    StoreUnavailable,
)
from clinic_booking.models import (
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    HoldHandle,
    HoldRequest,
)
from clinic_booking.services.availability import AvailabilityResolver
from clinic_booking.services.verification import AllowAllGate, BookingGate
from clinic_booking.storage.base import AppointmentStore, SlotStore


class BookingService:
    """
    Service for placing holds and confirming appointments.

    Owns every write to the slot and appointment stores apart from
    expiry sweeping.
    """

    def __init__(
        self,
        resolver: AvailabilityResolver,
        slots: SlotStore,
        appointments: AppointmentStore,
        gate: Optional[BookingGate] = None,
        hold_ttl: dt.timedelta = dt.timedelta(minutes=5),
        clock: Clock = utc_now,
    ):
        self._resolver = resolver
        self._slots = slots
        self._appointments = appointments
        self._gate = gate or AllowAllGate()
        self._hold_ttl = hold_ttl
        self._clock = clock

    async def place_hold(self, request: HoldRequest) -> HoldHandle:
        """
        Temporarily reserve a slot.

        Args:
            request: Slot and holder details

        Returns:
            HoldHandle with the hold id and expiry

        Raises:
            DateUnavailable, AdminBlocked, SlotTaken, StoreUnavailable
        """
        await self._resolver.ensure_bookable(request.date, request.time)

        try:
            hold = await self._slots.create_hold(
                date=request.date,
                time=request.time,
                patient_name=request.patient_name,
                patient_email=request.patient_email,
                ttl=self._hold_ttl,
                appointment_id=request.appointment_id,
            )
        except RaceLost:
            logger.warning(f"Hold race lost for {request.date} {request.time}")
            raise

        logger.info(f"Hold {hold.id} placed on {hold.date} {hold.time} until {hold.expires_at}")
        return HoldHandle(
            hold_id=hold.id,
            date=hold.date,
            time=hold.time,
            expires_at=hold.expires_at,
        )

    async def release_hold(self, hold_id: str, patient_email: str) -> bool:
        """Cancel a hold on behalf of its holder. Releasing twice is a no-op."""
        released = await self._slots.release_hold(hold_id, patient_email.strip().lower())
        if released:
            logger.info(f"Hold {hold_id} released by holder")
        return bool(released)

    async def confirm_appointment(self, request: AppointmentRequest) -> Appointment:
        """
        Book an appointment - verifies the slot and claims it permanently.

        Args:
            request: Validated appointment payload

        Returns:
            The stored appointment

        Raises:
            VerificationFailed, DateUnavailable, AdminBlocked, SlotTaken,
            StoreUnavailable
        """
        await self._gate.verify(request.captcha_token)

        # Fail fast; the claim below is the authoritative check
        await self._resolver.ensure_bookable(
            request.date, request.time, hold_id=request.hold_id, holder_email=request.email
        )

        appointment_id = uuid4().hex
        try:
            claim = await self._slots.promote_to_appointment(
                date=request.date,
                time=request.time,
                appointment_id=appointment_id,
                patient_name=request.name,
                patient_email=request.email,
                hold_id=request.hold_id,
            )
        except RaceLost:
            logger.warning(f"Slot claim race lost for {request.date} {request.time}")
            raise

        appointment = Appointment.from_request(request, appointment_id, self._clock())
        try:
            await self._appointments.insert(appointment)
        except Exception as e:
            logger.error(f"Appointment insert failed for claim {claim.id}: {e}")
            await self._release_claim(appointment_id)
            if isinstance(e, BookingError):
                raise
            raise StoreUnavailable() from e

        logger.info("=" * 60)
        logger.info("📅 APPOINTMENT CONFIRMED")
        logger.info(f"Appointment ID: {appointment.id}")
        logger.info(f"Date/Time: {appointment.date} {appointment.time}")
        logger.info(f"Service: {appointment.service}")
        logger.info(f"Slot record: {claim.id}")
        logger.info("=" * 60)
        return appointment

    async def _release_claim(self, appointment_id: str) -> None:
        try:
            await self._slots.release_claim(appointment_id)
        except Exception as e:
            # Left for the orphan sweep
            logger.error(f"Could not release claim for appointment {appointment_id}: {e}")

    async def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = await self._appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFound()
        return appointment

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        """Mark an appointment as pending or visited."""
        appointment = await self._appointments.update_status(appointment_id, status, self._clock())
        if appointment is None:
            raise AppointmentNotFound()
        logger.info(f"Appointment {appointment_id} marked {status.value}")
        return appointment
