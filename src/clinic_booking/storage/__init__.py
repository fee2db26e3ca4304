"""
Storage layer for the clinic booking service.
"""

from loguru import logger

from clinic_booking.clock import Clock, utc_now
from clinic_booking.config import Settings

from .base import AppointmentStore, BlockedDateStore, SlotStore, StorageBackend
from .memory import create_memory_backend
from .mongo import create_mongo_backend


def create_backend(settings: Settings, clock: Clock = utc_now) -> StorageBackend:
    """Build the MongoDB backend when a URI is configured, else the in-memory one."""
    if settings.mongodb_uri:
        logger.info(f"Using MongoDB storage (database '{settings.mongodb_db}')")
        return create_mongo_backend(settings, clock)
    logger.warning("MONGODB_URI not set, using in-memory storage")
    return create_memory_backend(clock)


__all__ = [
    "AppointmentStore",
    "BlockedDateStore",
    "SlotStore",
    "StorageBackend",
    "create_backend",
    "create_memory_backend",
    "create_mongo_backend",
]
