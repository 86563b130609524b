"""Domain-level validation rules for bookings and recurring rules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from backend.domain.errors import ValidationError
from backend.domain.models import Frequency, Room, TimeInterval


@dataclass(frozen=True)
class EngineConfig:
    recurring_horizon_days: int
    recurring_max_consecutive_errors: int
    scheduler_interval_seconds: float
    sqlite_timeout_seconds: float


def validate_engine_config(config: EngineConfig) -> None:
    if config.recurring_horizon_days < 0:
        raise ValueError("recurring_horizon_days must be >= 0")
    if config.recurring_max_consecutive_errors <= 0:
        raise ValueError("recurring_max_consecutive_errors must be > 0")
    if config.scheduler_interval_seconds <= 0:
        raise ValueError("scheduler_interval_seconds must be > 0")
    if config.sqlite_timeout_seconds <= 0:
        raise ValueError("sqlite_timeout_seconds must be > 0")


def validate_interval(interval: TimeInterval) -> None:
    if interval.start.tzinfo is not None or interval.end.tzinfo is not None:
        raise ValidationError("Start and end times must not carry a UTC offset")
    if not interval.start < interval.end:
        raise ValidationError("End time must be after start time")


def validate_title(title: str) -> None:
    if not title or not title.strip():
        raise ValidationError("Meeting title is required")


def validate_booking_date(booking_date: date, today: date) -> None:
    if booking_date < today:
        raise ValidationError(
            f"Booking date {booking_date.isoformat()} is in the past"
        )


def validate_attendee_count(
    attendee_count: Optional[int],
    room: Room,
    enforce_capacity: bool,
) -> None:
    if attendee_count is None:
        return
    if attendee_count <= 0:
        raise ValidationError("Attendee count must be a positive integer")
    if enforce_capacity and attendee_count > room.capacity:
        raise ValidationError(
            f"Attendee count {attendee_count} exceeds capacity {room.capacity} "
            f"of room {room.room_id}"
        )


def validate_rule_dates(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationError("End date must not be before start date")


def normalize_weekdays(frequency: Frequency, days_of_week: Optional[Iterable[int]]) -> frozenset[int]:
    """Return the weekday set a rule should store (1=Monday .. 7=Sunday)."""
    days = frozenset(int(day) for day in days_of_week or ())
    if frequency is not Frequency.WEEKLY:
        return frozenset()
    if not days:
        raise ValidationError("Days of week are required for WEEKLY frequency")
    invalid = sorted(day for day in days if not 1 <= day <= 7)
    if invalid:
        raise ValidationError(f"Days of week must be between 1 and 7, got {invalid}")
    return days
