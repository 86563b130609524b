"""Booking state machine.

PENDING -> APPROVED | REJECTED (admin decision)
PENDING | APPROVED -> CANCELLED (owner)

REJECTED and CANCELLED are terminal. Each transition function returns the new
booking together with the audit action it must be recorded under; persisting
both is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from backend.domain.errors import ForbiddenError, InvalidStateError
from backend.domain.models import AuditAction, Booking, BookingStatus


_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.APPROVED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.APPROVED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Transition:
    previous_status: BookingStatus
    booking: Booking
    audit_action: AuditAction

    @property
    def releases_interval(self) -> bool:
        return self.previous_status.is_active and not self.booking.status.is_active

    def audit_details(self) -> dict[str, Any]:
        return {
            "from_status": self.previous_status.value,
            "to_status": self.booking.status.value,
        }


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


def _require(booking: Booking, target: BookingStatus) -> None:
    if not can_transition(booking.status, target):
        raise InvalidStateError(
            f"Booking {booking.booking_id} is {booking.status.value}; "
            f"cannot move to {target.value}"
        )


def decide(booking: Booking, approver_id: int, approve: bool, at: datetime) -> Transition:
    target = BookingStatus.APPROVED if approve else BookingStatus.REJECTED
    if booking.status is not BookingStatus.PENDING:
        raise InvalidStateError(
            f"Only PENDING bookings can be approved or rejected; "
            f"booking {booking.booking_id} is {booking.status.value}"
        )
    return Transition(
        previous_status=booking.status,
        booking=replace(booking, status=target, approver_id=approver_id, decided_at=at),
        audit_action=AuditAction.APPROVE if approve else AuditAction.REJECT,
    )


def cancel(booking: Booking, requester_id: int) -> Transition:
    if booking.user_id != requester_id:
        raise ForbiddenError("You can only cancel your own bookings")
    _require(booking, BookingStatus.CANCELLED)
    return Transition(
        previous_status=booking.status,
        booking=replace(booking, status=BookingStatus.CANCELLED),
        audit_action=AuditAction.DELETE,
    )
