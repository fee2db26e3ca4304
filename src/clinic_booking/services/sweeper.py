"""
Expiry Sweeper - frees slots held by expired holds and abandoned claims.
"""

import asyncio
import datetime as dt

from loguru import logger

from clinic_booking.clock import Clock, utc_now
from clinic_booking.storage.base import AppointmentStore, SlotStore


class ExpirySweeper:
    """
    Stateless sweeper; safe to run concurrently with itself and with
    the booking writer.

    Permanent bookings carry no expiry, so the expiry filter can never
    match a hold that was promoted while the sweep ran.
    """

    def __init__(
        self,
        slots: SlotStore,
        appointments: AppointmentStore,
        orphan_grace: dt.timedelta = dt.timedelta(minutes=2),
        clock: Clock = utc_now,
    ):
        self._slots = slots
        self._appointments = appointments
        self._orphan_grace = orphan_grace
        self._clock = clock

    async def sweep(self) -> int:
        """Delete expired holds. Returns the number removed."""
        count = await self._slots.release_expired()
        if count:
            logger.info(f"Cleaned up {count} expired temporary holds")
        return count

    async def sweep_orphans(self) -> int:
        """
        Delete permanent claims that never got an appointment record.

        Every claim older than the grace window is checked, however old,
        so a missed sweep never strands a slot. Younger claims are left
        alone while their confirmation may still be writing.
        """
        cutoff = self._clock() - self._orphan_grace
        claims = await self._slots.find_claims(cutoff)
        if not claims:
            return 0

        existing = await self._appointments.existing_ids(
            c.appointment_id for c in claims if c.appointment_id
        )
        orphans = [c.id for c in claims if c.appointment_id not in existing]
        if not orphans:
            return 0

        count = await self._slots.delete(orphans)
        logger.warning(f"Released {count} slot claims with no appointment record")
        return count

    async def run_forever(self, interval_seconds: float) -> None:
        """Sweep on a fixed interval until cancelled."""
        logger.info(f"Expiry sweeper started (every {interval_seconds}s)")
        try:
            while True:
                try:
                    await self.sweep()
                    await self.sweep_orphans()
                except Exception as e:
                    logger.error(f"Sweep failed: {e}")
                await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            logger.info("Expiry sweeper stopped")
            raise
