"""HTTP controller layer for single bookings and approval decisions."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field, field_validator

from backend.controllers.dependencies import get_booking_service
from backend.controllers.responses import (
    ApiResponse,
    CamelModel,
    internal_error,
    ok,
    to_http_exception,
)
from backend.domain.errors import BookingEngineError
from backend.domain.models import Booking, BookingStatus, TimeInterval
from backend.repository.data_repository import RepositoryError
from backend.services.booking_service import BookingLifecycleService


router = APIRouter(prefix="/bookings", tags=["bookings"])


class BookingRequest(CamelModel):
    """Input DTO; interval and date rules are enforced by the service."""

    room_id: int = Field(gt=0)
    user_id: int = Field(gt=0)
    meeting_title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    booking_date: date
    start_time: time
    end_time: time
    attendees_count: Optional[int] = Field(default=None, gt=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def reject_offset_times(cls, value: time) -> time:
        if value.tzinfo is not None:
            raise ValueError("times are local to the engine timezone and must not carry a UTC offset")
        return value


class ApprovalRequest(CamelModel):
    booking_id: int = Field(gt=0)
    admin_id: int = Field(gt=0)
    approve: bool


class BookingResponse(CamelModel):
    id: int
    room_id: int
    user_id: int
    meeting_title: str
    description: Optional[str] = None
    booking_date: date
    start_time: time
    end_time: time
    attendees_count: Optional[int] = None
    status: BookingStatus
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    created_at: datetime
    recurring_rule_id: Optional[int] = None

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.booking_id,
            room_id=booking.room_id,
            user_id=booking.user_id,
            meeting_title=booking.title,
            description=booking.description,
            booking_date=booking.booking_date,
            start_time=booking.interval.start,
            end_time=booking.interval.end,
            attendees_count=booking.attendee_count,
            status=booking.status,
            approved_by=booking.approver_id,
            approved_at=booking.decided_at,
            created_at=booking.created_at,
            recurring_rule_id=booking.recurring_rule_id,
        )


@router.post(
    "",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    payload: BookingRequest,
    service: BookingLifecycleService = Depends(get_booking_service),
) -> dict:
    try:
        booking = service.create(
            room_id=payload.room_id,
            user_id=payload.user_id,
            booking_date=payload.booking_date,
            interval=TimeInterval(start=payload.start_time, end=payload.end_time),
            title=payload.meeting_title,
            description=payload.description,
            attendee_count=payload.attendees_count,
        )
        return ok(BookingResponse.from_domain(booking), "Booking request submitted")
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to create booking") from exc


@router.get("/my-bookings", response_model=ApiResponse[list[BookingResponse]])
def my_bookings(
    user_id: int = Query(alias="userId", gt=0),
    service: BookingLifecycleService = Depends(get_booking_service),
) -> dict:
    try:
        bookings = service.list_for_user(user_id)
    except RepositoryError as exc:
        raise internal_error("Failed to load bookings") from exc
    return ok([BookingResponse.from_domain(item) for item in bookings], "Bookings retrieved")


@router.get("/pending", response_model=ApiResponse[list[BookingResponse]])
def pending_bookings(
    service: BookingLifecycleService = Depends(get_booking_service),
) -> dict:
    try:
        bookings = service.list_pending()
    except RepositoryError as exc:
        raise internal_error("Failed to load pending bookings") from exc
    return ok(
        [BookingResponse.from_domain(item) for item in bookings],
        "Pending bookings retrieved",
    )


@router.get("/all", response_model=ApiResponse[list[BookingResponse]])
def all_bookings(
    service: BookingLifecycleService = Depends(get_booking_service),
) -> dict:
    try:
        bookings = service.list_all()
    except RepositoryError as exc:
        raise internal_error("Failed to load bookings") from exc
    return ok([BookingResponse.from_domain(item) for item in bookings], "All bookings retrieved")


@router.post("/approve", response_model=ApiResponse[BookingResponse])
def decide_booking(
    payload: ApprovalRequest,
    service: BookingLifecycleService = Depends(get_booking_service),
) -> dict:
    try:
        booking = service.decide(payload.booking_id, payload.admin_id, payload.approve)
        message = "Booking approved" if payload.approve else "Booking rejected"
        return ok(BookingResponse.from_domain(booking), message)
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to process approval") from exc


@router.get("/{booking_id}", response_model=ApiResponse[BookingResponse])
def get_booking(
    booking_id: int,
    service: BookingLifecycleService = Depends(get_booking_service),
) -> dict:
    try:
        return ok(BookingResponse.from_domain(service.get(booking_id)), "Booking retrieved")
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to load booking") from exc


@router.delete("/{booking_id}", response_model=ApiResponse[BookingResponse])
def cancel_booking(
    booking_id: int,
    user_id: int = Query(alias="userId", gt=0),
    service: BookingLifecycleService = Depends(get_booking_service),
) -> dict:
    try:
        booking = service.cancel(booking_id, user_id)
        return ok(BookingResponse.from_domain(booking), "Booking cancelled")
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to cancel booking") from exc
