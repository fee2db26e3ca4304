"""
Admin blocked-date models.
"""

import datetime as dt
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class BlockageKind(str, Enum):
    FULL_DAY = "full_day"
    PARTIAL = "partial"


class Blockage(BaseModel):
    """
    Resolved admin exclusion for one date.

    Either the whole day is blocked or an explicit set of slots is.
    The absence of any exclusion is represented by ``None``, never by
    a partial blockage with no slots.
    """

    kind: BlockageKind
    reason: Optional[str] = None
    times: FrozenSet[str] = Field(default_factory=frozenset)

    model_config = {"frozen": True}

    @classmethod
    def full_day(cls, reason: Optional[str] = None) -> "Blockage":
        return cls(kind=BlockageKind.FULL_DAY, reason=reason)

    @classmethod
    def partial(cls, reason: Optional[str], times: Iterable[str]) -> "Blockage":
        times = frozenset(times)
        if not times:
            raise ValueError("A partial blockage needs at least one time slot")
        return cls(kind=BlockageKind.PARTIAL, reason=reason, times=times)

    @property
    def is_full_day(self) -> bool:
        return self.kind == BlockageKind.FULL_DAY

    def covers(self, time: str) -> bool:
        """Whether this blockage makes the given slot unavailable."""
        return self.is_full_day or time in self.times

    def merge(self, other: "Blockage") -> "Blockage":
        """Combine two exclusions for the same date; a full day wins."""
        if self.is_full_day:
            return self
        if other.is_full_day:
            return other
        return Blockage.partial(self.reason or other.reason, self.times | other.times)


class BlockedDateEntry(BaseModel):
    """
    Stored admin exclusion record.

    ``time_slots`` keeps the storage encoding: absent or empty means the
    entire day is blocked. Use ``to_blockage`` instead of reading it.
    """

    id: str = Field(default_factory=lambda: uuid4().hex, description="Entry identifier")
    date: dt.date = Field(description="Blocked calendar date")
    is_active: bool = Field(default=True, description="Whether the block is in effect")
    reason: Optional[str] = Field(default=None, max_length=50, description="Admin reason")
    time_slots: Optional[List[str]] = Field(default=None, description="Blocked slots; empty = whole day")
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    def to_blockage(self) -> Blockage:
        if not self.time_slots:
            return Blockage.full_day(self.reason)
        return Blockage.partial(self.reason, self.time_slots)
