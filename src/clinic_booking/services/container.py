"""
Wiring of stores and services.
"""

import datetime as dt
from dataclasses import dataclass
from typing import Optional

from clinic_booking.clock import Clock, utc_now
from clinic_booking.config import Settings, get_settings
from clinic_booking.services.availability import AvailabilityResolver
from clinic_booking.services.blocked_dates import BlockageCache, BlockedDateService
from clinic_booking.services.booking import BookingService
from clinic_booking.services.sweeper import ExpirySweeper
from clinic_booking.services.verification import BookingGate, create_gate
from clinic_booking.storage import StorageBackend, create_backend


@dataclass
class ServiceContainer:
    settings: Settings
    backend: StorageBackend
    gate: BookingGate
    blocked_dates: BlockedDateService
    resolver: AvailabilityResolver
    booking: BookingService
    sweeper: ExpirySweeper

    async def close(self) -> None:
        await self.gate.close()
        await self.backend.close()


def build_services(
    settings: Optional[Settings] = None,
    backend: Optional[StorageBackend] = None,
    gate: Optional[BookingGate] = None,
    clock: Clock = utc_now,
) -> ServiceContainer:
    """Build every service from settings, with optional overrides for tests."""
    settings = settings or get_settings()
    backend = backend or create_backend(settings, clock)
    gate = gate or create_gate(settings)

    blocked_dates = BlockedDateService(
        backend.blocked_dates,
        BlockageCache(settings.blocked_date_cache_ttl_seconds, clock),
    )
    resolver = AvailabilityResolver(
        blocked_dates,
        backend.slots,
        clock=clock,
        timezone=settings.practice_timezone,
        closed_weekday=settings.closed_weekday,
    )
    booking = BookingService(
        resolver,
        backend.slots,
        backend.appointments,
        gate=gate,
        hold_ttl=dt.timedelta(seconds=settings.hold_ttl_seconds),
        clock=clock,
    )
    sweeper = ExpirySweeper(
        backend.slots,
        backend.appointments,
        orphan_grace=dt.timedelta(seconds=settings.orphan_claim_grace_seconds),
        clock=clock,
    )
    return ServiceContainer(
        settings=settings,
        backend=backend,
        gate=gate,
        blocked_dates=blocked_dates,
        resolver=resolver,
        booking=booking,
        sweeper=sweeper,
    )
