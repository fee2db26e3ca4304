"""
Clinic Booking API Server.

A FastAPI service exposing slot availability, temporary holds,
appointment confirmation and hold expiry sweeping.
"""

import asyncio
import secrets
from contextlib import asynccontextmanager, suppress
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from clinic_booking import __version__
from clinic_booking.config import APPOINTMENT_SERVICES, TIME_SLOTS
from clinic_booking.errors import BookingError, InvalidInput
from clinic_booking.models import (
    Appointment,
    AppointmentRequest,
    Blockage,
    DateAvailability,
    HoldHandle,
    HoldRequest,
    SlotVerdict,
    StatusUpdate,
)
from clinic_booking.services import ServiceContainer, build_services

# ============================================================================
# Response Models
# ============================================================================


class SweepResponse(BaseModel):
    """Result of a sweep run."""

    success: bool = True
    deleted_count: int
    orphaned_count: int


class ReleaseResponse(BaseModel):
    success: bool
    hold_id: str


class TimeSlotsResponse(BaseModel):
    time_slots: List[str]


class BlockedDateInfo(BaseModel):
    reason: Optional[str] = None
    time_slots: List[str]
    is_full_day_blocked: bool

    @classmethod
    def from_blockage(cls, blockage: Blockage) -> "BlockedDateInfo":
        return cls(
            reason=blockage.reason,
            time_slots=[t for t in TIME_SLOTS if t in blockage.times],
            is_full_day_blocked=blockage.is_full_day,
        )


class BlockedRangeResponse(BaseModel):
    """Blocked dates in a range, keyed by YYYY-MM-DD."""

    start_date: date
    end_date: date
    count: int
    blocked_dates: Dict[str, BlockedDateInfo]


# ============================================================================
# Dependencies
# ============================================================================


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def require_admin(
    x_admin_token: Optional[str] = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> None:
    """Static token check for the admin endpoints."""
    expected = services.settings.admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API is disabled",
        )
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized. Admin access required.",
        )


def _redact(verdict: SlotVerdict, expose_holder: bool) -> SlotVerdict:
    if expose_holder or verdict.held_by is None:
        return verdict
    return verdict.model_copy(update={"held_by": None})


# ============================================================================
# API Endpoints
# ============================================================================

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/api/v1/time-slots", response_model=TimeSlotsResponse)
async def list_time_slots():
    """List the bookable time slots."""
    return TimeSlotsResponse(time_slots=list(TIME_SLOTS))


@router.get("/api/v1/services")
async def list_services():
    """List the services offered on the booking form."""
    return {"services": APPOINTMENT_SERVICES}


@router.get("/api/v1/availability", response_model=DateAvailability)
async def get_date_availability(
    date: str = Query(..., description="Calendar date (YYYY-MM-DD)"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Get availability for every time slot of a date.

    Slots are reported unavailable whenever availability cannot be
    determined.
    """
    availability = await services.resolver.resolve_date(date)
    expose = services.settings.expose_holder_names
    return availability.model_copy(
        update={"slots": [_redact(v, expose) for v in availability.slots]}
    )


@router.get("/api/v1/availability/slot", response_model=SlotVerdict)
async def get_slot_availability(
    date: str = Query(..., description="Calendar date (YYYY-MM-DD)"),
    time: str = Query(..., description="Time slot label, e.g. '10:30 AM'"),
    services: ServiceContainer = Depends(get_services),
):
    """Get availability for a single slot."""
    verdict = await services.resolver.resolve_slot(date, time)
    return _redact(verdict, services.settings.expose_holder_names)


@router.get("/api/v1/availability/blocked-dates", response_model=BlockedRangeResponse)
async def get_blocked_dates(
    start_date: str = Query(..., description="First date of the range (YYYY-MM-DD)"),
    end_date: str = Query(..., description="Last date of the range (YYYY-MM-DD)"),
    services: ServiceContainer = Depends(get_services),
):
    """
    Get admin-blocked dates in a range so a calendar can grey them out.

    Only admin exclusions are reported; slot occupancy still needs the
    per-date availability endpoint.
    """
    blocked = await services.blocked_dates.get_blocked_range(start_date, end_date)
    return BlockedRangeResponse(
        start_date=start_date,
        end_date=end_date,
        count=len(blocked),
        blocked_dates={
            day.isoformat(): BlockedDateInfo.from_blockage(b) for day, b in blocked.items()
        },
    )


@router.post("/api/v1/holds", response_model=HoldHandle, status_code=status.HTTP_201_CREATED)
async def place_hold(request: HoldRequest, services: ServiceContainer = Depends(get_services)):
    """
    Temporarily reserve a slot.

    The hold expires on its own; confirming an appointment with the
    returned hold id converts it into a permanent booking.
    """
    return await services.booking.place_hold(request)


@router.delete("/api/v1/holds/expired", response_model=SweepResponse)
async def sweep_expired_holds(services: ServiceContainer = Depends(get_services)):
    """Remove expired holds and abandoned slot claims."""
    deleted = await services.sweeper.sweep()
    orphaned = await services.sweeper.sweep_orphans()
    return SweepResponse(deleted_count=deleted, orphaned_count=orphaned)


@router.delete("/api/v1/holds/{hold_id}", response_model=ReleaseResponse)
async def release_hold(
    hold_id: str,
    email: str = Query(..., description="Email the hold was placed with"),
    services: ServiceContainer = Depends(get_services),
):
    """Release a hold before it expires."""
    released = await services.booking.release_hold(hold_id, email)
    return ReleaseResponse(success=released, hold_id=hold_id)


@router.post("/api/v1/appointments", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    request: AppointmentRequest, services: ServiceContainer = Depends(get_services)
):
    """Confirm an appointment for a slot."""
    return await services.booking.confirm_appointment(request)


@router.get(
    "/api/v1/appointments/{appointment_id}",
    response_model=Appointment,
    dependencies=[Depends(require_admin)],
)
async def get_appointment(appointment_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.booking.get_appointment(appointment_id)


@router.patch(
    "/api/v1/appointments/{appointment_id}",
    response_model=Appointment,
    dependencies=[Depends(require_admin)],
)
async def update_appointment_status(
    appointment_id: str,
    update: StatusUpdate,
    services: ServiceContainer = Depends(get_services),
):
    """Mark an appointment as pending or visited."""
    return await services.booking.update_status(appointment_id, update.status)


# ============================================================================
# FastAPI Application
# ============================================================================


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(p) for p in err["loc"] if p not in ("body", "query")),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    error = InvalidInput(errors=errors)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built services (tests inject an in-memory backend);
            built from settings when omitted
    """
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info("Starting Clinic Booking API Server")
        await services.backend.initialize()
        sweeper_task = None
        interval = services.settings.sweep_interval_seconds
        if interval > 0:
            sweeper_task = asyncio.create_task(services.sweeper.run_forever(interval))
        yield
        # Shutdown
        logger.info("Shutting down Clinic Booking API Server")
        if sweeper_task is not None:
            sweeper_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper_task
        await services.close()

    app = FastAPI(
        title="Clinic Booking API",
        description="API for appointment slot availability and booking",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS middleware for cross-origin requests
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    return app


app = create_app()


# ============================================================================
# Run Server
# ============================================================================


def run_server(host: str = "0.0.0.0", port: int = 8080):
    """Run the booking API server."""
    import uvicorn

    uvicorn.run(
        "clinic_booking.api.server:app",
        host=host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
