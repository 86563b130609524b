"""Booking lifecycle: admission, approval decisions and cancellation."""

from __future__ import annotations

from datetime import date
from typing import Optional

from backend.domain import lifecycle
from backend.domain.constraints import (
    validate_attendee_count,
    validate_booking_date,
    validate_interval,
    validate_title,
)
from backend.domain.errors import ConflictError, InvalidStateError, NotFoundError
from backend.domain.models import (
    AuditAction,
    Booking,
    BookingStatus,
    EntityType,
    NewBooking,
    TimeInterval,
)
from backend.repository.data_repository import DataRepository
from backend.services.audit_service import AuditTrail
from backend.services.conflict_index import ConflictIndex
from backend.utils.clock import Clock, system_clock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, kv


logger = get_logger(__name__)


class BookingLifecycleService:
    """Owns the booking state machine.

    ``create`` is serialized per (room, date) through the conflict index so
    that check-then-insert is atomic; ``decide`` and ``cancel`` rely on a
    compare-and-set of the booking status instead of any lock.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        conflict_index: Optional[ConflictIndex] = None,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or system_clock(self._settings)
        self._conflict_index = conflict_index or ConflictIndex(self._repository)
        self._audit = audit_trail or AuditTrail(
            repository=self._repository,
            clock=self._clock,
            settings=self._settings,
        )

    @property
    def today(self) -> date:
        return self._clock().date()

    def create(
        self,
        *,
        room_id: int,
        user_id: int,
        booking_date: date,
        interval: TimeInterval,
        title: str,
        description: Optional[str] = None,
        attendee_count: Optional[int] = None,
        recurring_rule_id: Optional[int] = None,
    ) -> Booking:
        validate_interval(interval)
        validate_title(title)
        today = self.today
        validate_booking_date(booking_date, today)
        self._conflict_index.evict_before(today)
        room =self._repository.get_room(room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        validate_attendee_count(attendee_count, room, self._settings.enforce_room_capacity)

        with self._conflict_index.exclusive(room_id, booking_date):
            conflict = self._conflict_index.find_conflict(room_id, booking_date, interval)
            if conflict is not None:
                conflicting_id, window = conflict
                logger.info(
                    "Booking rejected on conflict | %s",
                    kv(
                        room_id=room_id,
                        date=booking_date.isoformat(),
                        requested=interval,
                        conflicting_booking_id=conflicting_id,
                        conflicting=window,
                    ),
                )
                raise ConflictError(
                    room_id=room_id,
                    booking_date=booking_date,
                    start_time=window.start,
                    end_time=window.end,
                    conflicting_booking_id=conflicting_id,
                )

            now = self._clock()
            audit = self._audit.stamp(
                AuditAction.CREATE,
                EntityType.BOOKING,
                actor_id=user_id,
                details={
                    "status": BookingStatus.PENDING.value,
                    "room_id": room_id,
                    "booking_date": booking_date.isoformat(),
                    "interval": str(interval),
                    "recurring_rule_id": recurring_rule_id,
                },
            )
            booking = self._repository.insert_booking(
                NewBooking(
                    user_id=user_id,
                    room_id=room_id,
                    title=title.strip(),
                    description=description,
                    booking_date=booking_date,
                    interval=interval,
                    attendee_count=attendee_count,
                    created_at=now,
                    recurring_rule_id=recurring_rule_id,
                ),
                audit,
            )
            self._conflict_index.add(room_id, booking_date, booking.booking_id, interval)

        logger.info(
            "Booking created | %s",
            kv(
                booking_id=booking.booking_id,
                room_id=room_id,
                user_id=user_id,
                date=booking_date.isoformat(),
                interval=interval,
                status=booking.status.value,
            ),
        )
        return booking

    def decide(self, booking_id: int, approver_id: int, approve: bool) -> Booking:
        """Approve or reject a PENDING booking.

        Overlapping PENDING requests are refused at admission, so approval
        does not need to re-check the conflict index.
        """
        booking = self.get(booking_id)
        transition = lifecycle.decide(booking, approver_id, approve, self._clock())
        self._commit(transition, actor_id=approver_id)
        logger.info(
            "Booking decided | %s",
            kv(
                booking_id=booking_id,
                approver_id=approver_id,
                status=transition.booking.status.value,
            ),
        )
        return transition.booking

    def cancel(self, booking_id: int, requester_id: int) -> Booking:
        booking = self.get(booking_id)
        transition = lifecycle.cancel(booking, requester_id)
        self._commit(transition, actor_id=requester_id)
        logger.info(
            "Booking cancelled | %s",
            kv(
                booking_id=booking_id,
                requester_id=requester_id,
                previous_status=transition.previous_status.value,
            ),
        )
        return transition.booking

    def _commit(self, transition: lifecycle.Transition, actor_id: int) -> None:
        booking = transition.booking
        audit = self._audit.stamp(
            transition.audit_action,
            EntityType.BOOKING,
            actor_id=actor_id,
            entity_id=booking.booking_id,
            details=transition.audit_details(),
        )
        if not self._repository.apply_transition(transition, audit):
            current = self._repository.get_booking(booking.booking_id)
            observed = current.status.value if current is not None else "MISSING"
            raise InvalidStateError(
                f"Booking {booking.booking_id} changed concurrently; "
                f"expected {transition.previous_status.value}, found {observed}"
            )
        if transition.releases_interval:
            with self._conflict_index.exclusive(booking.room_id, booking.booking_date):
                self._conflict_index.discard(
                    booking.room_id,
                    booking.booking_date,
                    booking.booking_id,
                )

    def get(self, booking_id: int) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def list_for_user(self, user_id: int) -> list[Booking]:
        return self._repository.list_bookings(user_id=user_id)

    def list_pending(self) -> list[Booking]:
        return self._repository.list_bookings(status=BookingStatus.PENDING)

    def list_all(self) -> list[Booking]:
        return self._repository.list_bookings()

    def list_for_rule(self, rule_id: int) -> list[Booking]:
        return self._repository.list_bookings(recurring_rule_id=rule_id)
