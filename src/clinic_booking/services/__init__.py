"""
Services layer for the clinic booking service.
"""

from .availability import AvailabilityResolver
from .blocked_dates import BlockageCache, BlockedDateService
from .booking import BookingService
from .container import ServiceContainer, build_services
from .sweeper import ExpirySweeper
from .verification import AllowAllGate, BookingGate, RecaptchaGate

__all__ = [
    "AvailabilityResolver",
    "BlockageCache",
    "BlockedDateService",
    "BookingService",
    "ServiceContainer",
    "build_services",
    "ExpirySweeper",
    "AllowAllGate",
    "BookingGate",
    "RecaptchaGate",
]
