"""
Blocked-date lookups with a short-lived cache.

Admin exclusions change rarely, so their resolved form is cached for a
bounded time and dropped whenever an admin mutation goes through this
service. Slot occupancy is never cached.
"""

import datetime as dt
from functools import reduce
from typing import Dict, List, Optional, Tuple, Union

from loguru import logger

from clinic_booking.clock import Clock, utc_now
from clinic_booking.errors import InvalidInput
from clinic_booking.models import Blockage, BlockedDateEntry
from clinic_booking.models.fields import parse_calendar_date, validate_time_slot
from clinic_booking.storage.base import BlockedDateStore

_MISSING = object()

REASON_MAX_LENGTH = 50


class BlockageCache:
    """TTL cache of resolved blockages keyed by date."""

    def __init__(self, ttl_seconds: int, clock: Clock = utc_now):
        self._ttl = dt.timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: Dict[dt.date, Tuple[Optional[Blockage], dt.datetime]] = {}

    @property
    def enabled(self) -> bool:
        return self._ttl.total_seconds() > 0

    def get(self, date: dt.date):
        """Return the cached blockage (possibly None) or the _MISSING sentinel."""
        cached = self._entries.get(date)
        if cached is None:
            return _MISSING
        value, stored_at = cached
        if self._clock() - stored_at >= self._ttl:
            del self._entries[date]
            return _MISSING
        return value

    def put(self, date: dt.date, blockage: Optional[Blockage]) -> None:
        if not self.enabled:
            return
        now = self._clock()
        self._purge_expired(now)
        self._entries[date] = (blockage, now)

    def _purge_expired(self, now: dt.datetime) -> None:
        expired = [d for d, (_, stored_at) in self._entries.items() if now - stored_at >= self._ttl]
        for date in expired:
            del self._entries[date]

    def invalidate(self, date: Optional[dt.date] = None) -> None:
        """Drop one date, or everything when no date is given."""
        if date is None:
            self._entries.clear()
        else:
            self._entries.pop(date, None)

    def __len__(self) -> int:
        return len(self._entries)


def merge_entries(entries: List[BlockedDateEntry]) -> Optional[Blockage]:
    """Resolve the active entries for one date into a single blockage."""
    if not entries:
        return None
    return reduce(lambda acc, b: acc.merge(b), (e.to_blockage() for e in entries))


class BlockedDateService:
    """Reads admin exclusions for the resolver and applies admin changes."""

    def __init__(self, store: BlockedDateStore, cache: BlockageCache):
        self._store = store
        self._cache = cache

    @property
    def cache(self) -> BlockageCache:
        return self._cache

    async def get_blockage(self, date: dt.date) -> Optional[Blockage]:
        """
        Get the admin blockage for a date.

        Returns:
            Blockage (full day or partial) or None when nothing is blocked

        Raises:
            StoreUnavailable: if the store cannot be read
        """
        cached = self._cache.get(date)
        if cached is not _MISSING:
            return cached

        blockage = merge_entries(await self._store.find_active(date))
        self._cache.put(date, blockage)
        return blockage

    async def get_blocked_range(
        self, start_date: Union[str, dt.date], end_date: Union[str, dt.date]
    ) -> Dict[dt.date, Blockage]:
        """
        Get every blocked date between two dates, inclusive.

        Used by booking calendars to grey out days with one request.
        Reads the store directly; the per-date cache is not consulted.

        Raises:
            InvalidInput: if either date is malformed or start is after end
            StoreUnavailable: if the store cannot be read
        """
        start = parse_calendar_date(start_date, field="start_date")
        end = parse_calendar_date(end_date, field="end_date")
        if start > end:
            raise InvalidInput.for_field(
                "start_date", "Start date must be before or equal to end date"
            )

        by_date: Dict[dt.date, List[BlockedDateEntry]] = {}
        for entry in await self._store.find_active_range(start, end):
            by_date.setdefault(entry.date, []).append(entry)
        return {day: merge_entries(entries) for day, entries in sorted(by_date.items())}

    async def block_date(
        self,
        date: Union[str, dt.date],
        reason: str,
        time_slots: Optional[List[str]] = None,
    ) -> BlockedDateEntry:
        """Create an exclusion. An empty or absent slot list blocks the whole day."""
        date = parse_calendar_date(date)
        if not reason or not reason.strip():
            raise InvalidInput.for_field("reason", "Reason is required")
        if len(reason.strip()) > REASON_MAX_LENGTH:
            raise InvalidInput.for_field(
                "reason", f"Reason must be {REASON_MAX_LENGTH} characters or less"
            )
        slots = [validate_time_slot(t, field="timeSlots") for t in time_slots or []]

        entry = await self._store.add(
            BlockedDateEntry(date=date, reason=reason.strip(), time_slots=slots or None)
        )
        self.invalidate(date)
        logger.info(
            f"Blocked {date} ({'whole day' if not slots else ', '.join(slots)}): {entry.reason}"
        )
        return entry

    async def set_active(self, entry_id: str, active: bool) -> Optional[BlockedDateEntry]:
        entry = await self._store.set_active(entry_id, active)
        if entry is not None:
            self.invalidate(entry.date)
            logger.info(f"Blocked date {entry.date} {'activated' if active else 'deactivated'}")
        return entry

    def invalidate(self, date: Optional[dt.date] = None) -> None:
        """Invalidation hook fired on every admin mutation."""
        self._cache.invalidate(date)
