"""Domain models for bookings, recurring rules and the audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        """Active bookings hold their interval in the conflict index."""
        return self in (BookingStatus.PENDING, BookingStatus.APPROVED)

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.REJECTED, BookingStatus.CANCELLED)


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class EntityType(str, Enum):
    BOOKING = "BOOKING"
    RECURRING_RULE = "RECURRING_RULE"


@dataclass(frozen=True)
class TimeInterval:
    """Half-open ``[start, end)`` window within a single day."""

    start: time
    end: time

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and other.start < self.end

    def __str__(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


@dataclass(frozen=True)
class Room:
    room_id: int
    name: str
    capacity: int
    floor: Optional[int] = None
    amenities: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Booking:
    booking_id: int
    user_id: int
    room_id: int
    title: str
    booking_date: date
    interval: TimeInterval
    status: BookingStatus
    created_at: datetime
    description: Optional[str] = None
    attendee_count: Optional[int] = None
    approver_id: Optional[int] = None
    decided_at: Optional[datetime] = None
    recurring_rule_id: Optional[int] = None


@dataclass(frozen=True)
class NewBooking:
    """Validated booking request not yet assigned an id."""

    user_id: int
    room_id: int
    title: str
    booking_date: date
    interval: TimeInterval
    created_at: datetime
    description: Optional[str] = None
    attendee_count: Optional[int] = None
    recurring_rule_id: Optional[int] = None


@dataclass(frozen=True)
class RecurringRule:
    rule_id: int
    user_id: int
    room_id: int
    title: str
    start_date: date
    end_date: date
    interval: TimeInterval
    frequency: Frequency
    created_at: datetime
    days_of_week: frozenset[int] = field(default_factory=frozenset)
    description: Optional[str] = None
    attendee_count: Optional[int] = None
    bookings_created: int = 0


@dataclass(frozen=True)
class AuditLogEntry:
    timestamp: datetime
    sequence: int
    actor_id: Optional[int]
    action: AuditAction
    entity_type: EntityType
    entity_id: int
    details: dict[str, Any] = field(default_factory=dict)
    entry_id: Optional[int] = None


@dataclass(frozen=True)
class OccurrenceError:
    occurrence_date: date
    reason: str


@dataclass(frozen=True)
class MaterializationResult:
    rule_id: int
    created: int
    skipped: int
    errors: list[OccurrenceError]
    aborted: bool = False


@dataclass(frozen=True)
class NewRecurringRule:
    """Validated recurring rule request not yet assigned an id."""

    user_id: int
    room_id: int
    title: str
    start_date: date
    end_date: date
    interval: TimeInterval
    frequency: Frequency
    created_at: datetime
    days_of_week: frozenset[int] = field(default_factory=frozenset)
    description: Optional[str] = None
    attendee_count: Optional[int] = None
