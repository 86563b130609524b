"""Error taxonomy shared by the booking engine services."""

from __future__ import annotations

from datetime import date, time
from typing import Optional


class BookingEngineError(Exception):
    """Base exception for booking engine failures."""


class ValidationError(BookingEngineError):
    """Raised for malformed input; never retried."""


class NotFoundError(BookingEngineError):
    """Raised when a room, booking or rule id does not exist."""


class ForbiddenError(BookingEngineError):
    """Raised when the caller does not own the target entity."""


class InvalidStateError(BookingEngineError):
    """Raised when a transition is not legal from the observed status."""


class ConflictError(BookingEngineError):
    """Raised when a requested window overlaps an active booking."""

    def __init__(
        self,
        room_id: int,
        booking_date: date,
        start_time: time,
        end_time: time,
        conflicting_booking_id: Optional[int] = None,
    ) -> None:
        self.room_id = room_id
        self.booking_date = booking_date
        self.start_time = start_time
        self.end_time = end_time
        self.conflicting_booking_id = conflicting_booking_id
        super().__init__(
            f"Room {room_id} is already booked on {booking_date.isoformat()} "
            f"from {start_time.strftime('%H:%M')} to {end_time.strftime('%H:%M')}"
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "roomId": self.room_id,
            "bookingDate": self.booking_date.isoformat(),
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "conflictingBookingId": self.conflicting_booking_id,
        }
