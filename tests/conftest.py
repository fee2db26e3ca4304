"""
Shared fixtures: a controllable clock, in-memory storage and wired services.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from clinic_booking.config import Settings
from clinic_booking.errors import StoreUnavailable
from clinic_booking.services import AllowAllGate, build_services
from clinic_booking.storage import create_memory_backend

# Wednesday 14 October 2026, 10:00 in Asia/Kolkata
NOW = datetime(2026, 10, 14, 4, 30, tzinfo=timezone.utc)
TODAY = date(2026, 10, 14)
YESTERDAY = date(2026, 10, 13)
SUNDAY = date(2026, 10, 18)
NEXT_WEDNESDAY = date(2026, 10, 21)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class CallCounter:
    """
    Wraps a store, recording every method call.

    When ``fail_with`` is set, every call raises it instead of reaching
    the wrapped store.
    """

    def __init__(self, target, fail_with=None):
        self._target = target
        self.fail_with = fail_with
        self.calls = []

    def __getattr__(self, name):
        attr = getattr(self._target, name)
        if not callable(attr):
            return attr

        async def wrapper(*args, **kwargs):
            self.calls.append(name)
            if self.fail_with is not None:
                raise self.fail_with
            return await attr(*args, **kwargs)

        return wrapper


def make_settings(**overrides) -> Settings:
    values = dict(
        mongodb_uri=None,
        practice_timezone="Asia/Kolkata",
        closed_weekday=0,
        hold_ttl_seconds=300,
        blocked_date_cache_ttl_seconds=300,
        orphan_claim_grace_seconds=120,
        sweep_interval_seconds=0,
        recaptcha_enabled=False,
        expose_holder_names=False,
        admin_api_token=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def backend(clock):
    return create_memory_backend(clock)


@pytest.fixture
def services(settings, backend, clock):
    return build_services(settings, backend=backend, gate=AllowAllGate(), clock=clock)


@pytest.fixture
def store_error():
    return StoreUnavailable()
