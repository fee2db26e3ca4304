"""
Unit tests for the Booking Service.
"""

import asyncio

import pytest

from clinic_booking.errors import (
    AdminBlocked,
    AppointmentNotFound,
    DateUnavailable,
    RaceLost,
    SlotTaken,
    StoreUnavailable,
    VerificationFailed,
)
from clinic_booking.models import (
    AppointmentRequest,
    AppointmentStatus,
    HoldRequest,
    SlotKind,
    VerdictCode,
)
from clinic_booking.services import AllowAllGate, BookingGate, build_services
from clinic_booking.storage import StorageBackend
from clinic_booking.storage.memory import (
    InMemoryAppointmentStore,
    InMemoryBlockedDateStore,
    InMemorySlotStore,
)
from conftest import NEXT_WEDNESDAY, SUNDAY, CallCounter


class YieldingSlotStore(InMemorySlotStore):
    """Slot store that yields after every read, letting concurrent checks interleave."""

    async def find_active(self, date, time=None):
        records = await super().find_active(date, time)
        await asyncio.sleep(0)
        return records


class UnreleasableSlotStore(InMemorySlotStore):
    """Slot store whose claims cannot be released."""

    async def release_claim(self, appointment_id):
        raise RuntimeError("connection reset")


class RejectingGate(BookingGate):

    def __init__(self):
        self.tokens = []

    async def verify(self, token):
        self.tokens.append(token)
        raise VerificationFailed()


def hold_request(name="Asha Rao", email="asha@example.com", time="10:30 AM", date=NEXT_WEDNESDAY):
    return HoldRequest(
        date=date.isoformat(), time=time, patient_name=name, patient_email=email
    )


def appointment_request(
    name="Asha Rao", email="asha@example.com", time="10:30 AM", date=NEXT_WEDNESDAY, **extra
):
    return AppointmentRequest(
        name=name,
        email=email,
        phone="9876543210",
        service="General Consultation",
        date=date.isoformat(),
        time=time,
        **extra,
    )


@pytest.fixture
def booking(services):
    return services.booking


@pytest.fixture
def slots(backend):
    return backend.slots


class TestPlaceHold:
    """Temporary holds."""

    @pytest.mark.asyncio
    async def test_hold_placed(self, booking, slots, clock):
        """Test a hold occupies only its own slot for the hold TTL."""
        handle = await booking.place_hold(hold_request())

        assert handle.date == NEXT_WEDNESDAY
        assert handle.time == "10:30 AM"
        assert (handle.expires_at - clock()).total_seconds() == 300
        assert slots.records[handle.hold_id].kind == SlotKind.HOLD
        assert await slots.is_slot_taken(NEXT_WEDNESDAY, "10:30 AM")
        assert not await slots.is_slot_taken(NEXT_WEDNESDAY, "11:00 AM")

    @pytest.mark.asyncio
    async def test_second_hold_rejected(self, booking):
        """Test a held slot cannot be held again."""
        await booking.place_hold(hold_request())
        with pytest.raises(SlotTaken):
            await booking.place_hold(hold_request(name="Ravi Kumar", email="ravi@example.com"))

    @pytest.mark.asyncio
    async def test_hold_on_closed_day(self, booking):
        """Test holds on the closed weekday are rejected."""
        with pytest.raises(DateUnavailable):
            await booking.place_hold(hold_request(date=SUNDAY))

    @pytest.mark.asyncio
    async def test_hold_on_blocked_slot(self, booking, services):
        """Test an admin-blocked slot rejects holds while its neighbours do not."""
        await services.blocked_dates.block_date(NEXT_WEDNESDAY, "Surgery", ["10:30 AM"])
        with pytest.raises(AdminBlocked):
            await booking.place_hold(hold_request())
        await booking.place_hold(hold_request(time="11:00 AM"))

    @pytest.mark.asyncio
    async def test_hold_available_again_after_expiry(self, booking, clock):
        """Test an expired hold frees the slot for the next patient."""
        await booking.place_hold(hold_request())
        clock.advance(minutes=5)
        handle = await booking.place_hold(hold_request(name="Ravi Kumar", email="ravi@example.com"))
        assert handle.time == "10:30 AM"

    @pytest.mark.asyncio
    async def test_release_hold(self, booking, services):
        """Test only the holder can release a hold, once."""
        handle = await booking.place_hold(hold_request())

        assert await booking.release_hold(handle.hold_id, "someone@example.com") is False
        assert await booking.release_hold(handle.hold_id, " ASHA@example.com ") is True
        assert await booking.release_hold(handle.hold_id, "asha@example.com") is False

        verdict = await services.resolver.resolve_slot(NEXT_WEDNESDAY, "10:30 AM")
        assert verdict.available is True


class TestConcurrentClaims:
    """At most one request wins a slot."""

    @pytest.mark.asyncio
    async def test_twenty_concurrent_holds(self, settings, clock):
        """Test twenty simultaneous holds yield one winner and nineteen race losses."""
        slots = YieldingSlotStore(clock)
        backend = StorageBackend(
            blocked_dates=InMemoryBlockedDateStore(clock),
            slots=slots,
            appointments=InMemoryAppointmentStore(),
        )
        booking = build_services(settings, backend=backend, gate=AllowAllGate(), clock=clock).booking

        results = await asyncio.gather(
            *(
                booking.place_hold(hold_request(name=f"Patient {i}", email=f"p{i}@example.com"))
                for i in range(20)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 19
        assert all(isinstance(e, RaceLost) for e in losers)
        assert len(await slots.find_active(NEXT_WEDNESDAY, "10:30 AM")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_confirmations(self, settings, clock):
        """Test twenty simultaneous confirmations store one appointment."""
        slots = YieldingSlotStore(clock)
        appointments = InMemoryAppointmentStore()
        backend = StorageBackend(
            blocked_dates=InMemoryBlockedDateStore(clock),
            slots=slots,
            appointments=appointments,
        )
        booking = build_services(settings, backend=backend, gate=AllowAllGate(), clock=clock).booking

        results = await asyncio.gather(
            *(
                booking.confirm_appointment(
                    appointment_request(name=f"Patient {i}", email=f"p{i}@example.com")
                )
                for i in range(20)
            ),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert all(isinstance(r, SlotTaken) for r in results if isinstance(r, Exception))
        assert len(appointments.appointments) == 1

    @pytest.mark.asyncio
    async def test_sequential_requests_see_slot_taken(self, booking):
        """Test requests that do not interleave see the slot taken."""
        results = await asyncio.gather(
            *(
                booking.place_hold(hold_request(name=f"Patient {i}", email=f"p{i}@example.com"))
                for i in range(5)
            ),
            return_exceptions=True,
        )
        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert all(isinstance(r, SlotTaken) for r in results if isinstance(r, Exception))


class TestConfirmAppointment:
    """Permanent bookings."""

    @pytest.mark.asyncio
    async def test_confirm_open_slot(self, booking, backend):
        """Test confirming a free slot stores the appointment and a permanent claim."""
        appointment = await booking.confirm_appointment(appointment_request())

        assert appointment.status == AppointmentStatus.PENDING
        assert backend.appointments.appointments[appointment.id] == appointment
        claims = await backend.slots.find_active(NEXT_WEDNESDAY, "10:30 AM")
        assert len(claims) == 1
        assert claims[0].kind == SlotKind.BOOKING
        assert claims[0].appointment_id == appointment.id
        assert claims[0].expires_at is None

    @pytest.mark.asyncio
    async def test_happy_path_then_taken(self, booking, services):
        """Test a confirmed slot is reported taken afterwards."""
        resolver = services.resolver
        assert (await resolver.resolve_slot(NEXT_WEDNESDAY, "11:00 AM")).available is True

        await booking.confirm_appointment(appointment_request(time="11:00 AM"))

        verdict = await resolver.resolve_slot(NEXT_WEDNESDAY, "11:00 AM")
        assert verdict.available is False
        assert verdict.code == VerdictCode.SLOT_TAKEN

    @pytest.mark.asyncio
    async def test_confirm_promotes_own_hold_by_id(self, booking, backend, clock):
        """Test the caller's hold is converted in place and stops expiring."""
        handle = await booking.place_hold(hold_request())

        appointment = await booking.confirm_appointment(
            appointment_request(hold_id=handle.hold_id)
        )

        record = backend.slots.records[handle.hold_id]
        assert record.kind == SlotKind.BOOKING
        assert record.appointment_id == appointment.id
        assert record.expires_at is None
        assert len(backend.slots.records) == 1

        # A promoted hold no longer expires
        clock.advance(hours=1)
        assert await backend.slots.release_expired() == 0
        assert len(await backend.slots.find_active(NEXT_WEDNESDAY, "10:30 AM")) == 1

    @pytest.mark.asyncio
    async def test_confirm_promotes_own_hold_by_email(self, booking, backend):
        """Test a hold is matched by holder email when no id is sent."""
        handle = await booking.place_hold(hold_request())

        await booking.confirm_appointment(appointment_request(email="ASHA@example.com"))

        assert backend.slots.records[handle.hold_id].kind == SlotKind.BOOKING

    @pytest.mark.asyncio
    async def test_someone_elses_hold_blocks(self, booking):
        """Test another patient's hold blocks confirmation."""
        await booking.place_hold(hold_request())
        with pytest.raises(SlotTaken):
            await booking.confirm_appointment(
                appointment_request(name="Ravi Kumar", email="ravi@example.com")
            )

    @pytest.mark.asyncio
    async def test_wrong_hold_id_blocks(self, booking):
        """Test an unknown hold id does not unlock a held slot."""
        await booking.place_hold(hold_request())
        with pytest.raises(SlotTaken):
            await booking.confirm_appointment(appointment_request(hold_id="not-my-hold"))

    @pytest.mark.asyncio
    async def test_confirm_after_hold_expired(self, booking, backend, clock):
        """Expired hold is gone; the slot is claimed afresh."""
        await booking.place_hold(hold_request())
        clock.advance(minutes=6)

        appointment = await booking.confirm_appointment(appointment_request())

        claims = await backend.slots.find_active(NEXT_WEDNESDAY, "10:30 AM")
        assert [c.appointment_id for c in claims] == [appointment.id]

    @pytest.mark.asyncio
    async def test_double_booking_rejected(self, booking):
        """Test a booked slot cannot be confirmed twice."""
        await booking.confirm_appointment(appointment_request())
        with pytest.raises(SlotTaken):
            await booking.confirm_appointment(appointment_request())

    @pytest.mark.asyncio
    async def test_closed_day_rejected(self, booking, backend):
        """Test closed-day confirmations write nothing."""
        with pytest.raises(DateUnavailable):
            await booking.confirm_appointment(appointment_request(date=SUNDAY))
        assert backend.appointments.appointments == {}


class TestCompensation:
    """A failed appointment write releases the slot claim."""

    @pytest.fixture
    def failing_appointments(self, backend, store_error):
        return CallCounter(backend.appointments, fail_with=store_error)

    @pytest.fixture
    def fragile_booking(self, settings, backend, failing_appointments, clock):
        backend.appointments = failing_appointments
        return build_services(settings, backend=backend, gate=AllowAllGate(), clock=clock).booking

    @pytest.mark.asyncio
    async def test_claim_released_on_insert_failure(self, fragile_booking, backend):
        """Test the claim is released when the appointment write fails."""
        with pytest.raises(StoreUnavailable):
            await fragile_booking.confirm_appointment(appointment_request())

        assert await backend.slots.find_active(NEXT_WEDNESDAY, "10:30 AM") == []

    @pytest.mark.asyncio
    async def test_unexpected_error_reported_as_store_unavailable(
        self, fragile_booking, backend, failing_appointments
    ):
        """Test unknown write errors surface as StoreUnavailable."""
        failing_appointments.fail_with = RuntimeError("write concern timeout")

        with pytest.raises(StoreUnavailable):
            await fragile_booking.confirm_appointment(appointment_request())

        assert await backend.slots.find_active(NEXT_WEDNESDAY, "10:30 AM") == []

    @pytest.mark.asyncio
    async def test_release_failure_keeps_original_error(
        self, settings, backend, failing_appointments, clock
    ):
        """Test a failing release is logged and the insert error still surfaces."""
        slots = UnreleasableSlotStore(clock)
        broken = StorageBackend(
            blocked_dates=backend.blocked_dates,
            slots=slots,
            appointments=failing_appointments,
        )
        booking = build_services(settings, backend=broken, gate=AllowAllGate(), clock=clock).booking

        with pytest.raises(StoreUnavailable):
            await booking.confirm_appointment(appointment_request())

        # Left for the orphan sweep
        assert await slots.is_slot_taken(NEXT_WEDNESDAY, "10:30 AM")


class TestGate:
    """Bot verification runs before any slot is touched."""

    @pytest.mark.asyncio
    async def test_rejected_request_claims_nothing(self, settings, backend, clock):
        """Test a failed verification touches no store."""
        gate = RejectingGate()
        booking = build_services(settings, backend=backend, gate=gate, clock=clock).booking

        with pytest.raises(VerificationFailed):
            await booking.confirm_appointment(appointment_request(captcha_token="bad"))

        assert gate.tokens == ["bad"]
        assert backend.slots.records == {}
        assert backend.appointments.appointments == {}


class TestAppointmentStatus:
    """Admin status changes."""

    @pytest.mark.asyncio
    async def test_mark_visited(self, booking, clock):
        """Test marking an appointment visited updates status and timestamp."""
        appointment = await booking.confirm_appointment(appointment_request())
        clock.advance(days=7)

        updated = await booking.update_status(appointment.id, AppointmentStatus.VISITED)

        assert updated.status == AppointmentStatus.VISITED
        assert updated.updated_at == clock()
        assert (await booking.get_appointment(appointment.id)).status == AppointmentStatus.VISITED

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, booking):
        """Test reads and updates of a missing appointment raise."""
        with pytest.raises(AppointmentNotFound):
            await booking.get_appointment("missing")
        with pytest.raises(AppointmentNotFound):
            await booking.update_status("missing", AppointmentStatus.VISITED)
