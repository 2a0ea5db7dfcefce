from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class TokenSource(str, Enum):
    EMERGENCY = "emergency"
    PAID_PRIORITY = "paid_priority"
    ONLINE_BOOKING = "online_booking"
    FOLLOW_UP = "follow_up"
    WALK_IN = "walk_in"


class TokenStatus(str, Enum):
    ALLOCATED = "allocated"
    CHECKED_IN = "checked_in"
    IN_CONSULTATION = "in_consultation"
    REALLOCATED = "reallocated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_active(self) -> bool:
        """Counts toward live queues."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset(
    {TokenStatus.ALLOCATED, TokenStatus.CHECKED_IN, TokenStatus.REALLOCATED}
)
TERMINAL_STATUSES = frozenset(
    {TokenStatus.COMPLETED, TokenStatus.CANCELLED, TokenStatus.NO_SHOW}
)

BASE_PRIORITY = {
    TokenSource.EMERGENCY: 1000,
    TokenSource.PAID_PRIORITY: 500,
    TokenSource.ONLINE_BOOKING: 300,
    TokenSource.FOLLOW_UP: 200,
    TokenSource.WALK_IN: 100,
}

# Priority points gained per whole minute waited after check-in.
WAIT_BONUS_PER_MINUTE = 0.5


def base_priority(source: TokenSource) -> int:
    return BASE_PRIORITY[TokenSource(source)]


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``, truncated and floored at zero."""
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)


def dynamic_priority(token: "Token", now: datetime) -> float:
    """
    Live ranking score of a token.

    A token that has not checked in ranks at its base priority. Once checked
    in it gains ``WAIT_BONUS_PER_MINUTE`` for every whole minute between the
    check-in and ``now``, so long-waiting patients overtake fresher patients
    from cheaper sources.
    """
    base = base_priority(token.source)
    if token.checked_in_at is None:
        return float(base)
    return base + WAIT_BONUS_PER_MINUTE * minutes_between(token.checked_in_at, now)


def wait_minutes(token: "Token", now: datetime) -> int:
    """Elapsed wait for reporting; stops counting once consultation starts."""
    if token.checked_in_at is None:
        return 0
    end = token.consultation_started_at or now
    return minutes_between(token.checked_in_at, end)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Slot:
    doctor_id: str
    doctor_name: str
    department: Optional[str]
    start_time: datetime
    end_time: datetime
    max_capacity: int
    current_occupancy: int = 0
    is_active: bool = True
    notes: Optional[str] = None
    slot_id: str = field(default_factory=_new_id)

    def has_capacity(self) -> bool:
        return self.current_occupancy < self.max_capacity

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.max_capacity - self.current_occupancy)

    @property
    def overflow(self) -> int:
        return self.current_occupancy - self.max_capacity

    def is_ongoing(self, now: datetime) -> bool:
        return self.start_time <= now < self.end_time

    def is_future(self, now: datetime) -> bool:
        return now < self.start_time

    def is_open(self, now: datetime) -> bool:
        """Not yet over: either ongoing or still to come."""
        return self.is_ongoing(now) or self.is_future(now)

    def utilization_percentage(self) -> float:
        if self.max_capacity == 0:
            return 0.0
        return self.current_occupancy * 100.0 / self.max_capacity

    def increment_occupancy(self) -> None:
        self.current_occupancy += 1

    def decrement_occupancy(self) -> None:
        if self.current_occupancy > 0:
            self.current_occupancy -= 1


@dataclass
class Token:
    patient_id: str
    patient_name: str
    slot_id: str
    doctor_id: str
    source: TokenSource
    token_number: int
    created_at: datetime
    status: TokenStatus = TokenStatus.ALLOCATED
    checked_in_at: Optional[datetime] = None
    consultation_started_at: Optional[datetime] = None
    consultation_completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    reallocated_count: int = 0
    token_id: str = field(default_factory=_new_id)

    @property
    def holds_capacity(self) -> bool:
        """Non-terminal tokens occupy a place in their slot."""
        return not self.status.is_terminal

    def can_be_reallocated(self) -> bool:
        return self.status.is_active and self.source != TokenSource.EMERGENCY


@dataclass
class TokenMove:
    token_id: str
    token_number: int
    from_slot_id: str
    to_slot_id: str


@dataclass
class ReallocationFailed:
    """A token that had to stay in an overflowing slot."""

    token_id: str
    token_number: int
    slot_id: str
    reason: str


@dataclass
class ReallocationReport:
    slot_id: str
    overflow: int = 0
    moved: List[TokenMove] = field(default_factory=list)
    failed: List[ReallocationFailed] = field(default_factory=list)
    remaining_overflow: int = 0

    @property
    def resolved(self) -> bool:
        return self.remaining_overflow <= 0


@dataclass
class AllocationResult:
    token: Token
    slot_id: str
    reallocation: Optional[ReallocationReport] = None


@dataclass
class CapacityAdjustment:
    slot: Slot
    previous_capacity: int
    reallocation: Optional[ReallocationReport] = None


@dataclass
class DoctorSummary:
    doctor_id: str
    doctor_name: str
    department: Optional[str]


@dataclass
class Statistics:
    total_tokens: int
    active_tokens: int
    completed_tokens: int
    cancelled_tokens: int
    no_show_tokens: int
    emergency_tokens: int
    total_slots: Optional[int] = None
    average_utilization: Optional[float] = None

    def as_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "total_tokens": self.total_tokens,
            "active_tokens": self.active_tokens,
            "completed_tokens": self.completed_tokens,
            "cancelled_tokens": self.cancelled_tokens,
            "no_show_tokens": self.no_show_tokens,
            "emergency_tokens": self.emergency_tokens,
        }
        if self.total_slots is not None:
            data["total_slots"] = self.total_slots
            data["average_utilization"] = self.average_utilization
        return data
