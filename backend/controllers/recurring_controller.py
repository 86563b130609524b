"""HTTP controller layer for recurring booking rules."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field, field_validator

from backend.controllers.booking_controller import BookingResponse
from backend.controllers.dependencies import get_recurring_engine
from backend.controllers.responses import (
    ApiResponse,
    CamelModel,
    internal_error,
    ok,
    to_http_exception,
)
from backend.domain.errors import BookingEngineError
from backend.domain.models import Frequency, MaterializationResult, RecurringRule, TimeInterval
from backend.repository.data_repository import RepositoryError
from backend.services.recurring_service import ProcessingSummary, RecurringRuleEngine


router = APIRouter(prefix="/recurring-bookings", tags=["recurring-bookings"])


class RecurringBookingRequest(CamelModel):
    room_id: int = Field(gt=0)
    user_id: int = Field(gt=0)
    meeting_title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    frequency: Frequency
    # 1=Monday .. 7=Sunday; required for WEEKLY
    days_of_week: Optional[list[int]] = None
    attendees_count: Optional[int] = Field(default=None, gt=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def reject_offset_times(cls, value: time) -> time:
        if value.tzinfo is not None:
            raise ValueError("times are local to the engine timezone and must not carry a UTC offset")
        return value


class RecurringBookingResponse(CamelModel):
    id: int
    room_id: int
    user_id: int
    meeting_title: str
    description: Optional[str] = None
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    frequency: Frequency
    days_of_week: list[int]
    attendees_count: Optional[int] = None
    bookings_created: int
    created_at: datetime

    @classmethod
    def from_domain(cls, rule: RecurringRule) -> "RecurringBookingResponse":
        return cls(
            id=rule.rule_id,
            room_id=rule.room_id,
            user_id=rule.user_id,
            meeting_title=rule.title,
            description=rule.description,
            start_date=rule.start_date,
            end_date=rule.end_date,
            start_time=rule.interval.start,
            end_time=rule.interval.end,
            frequency=rule.frequency,
            days_of_week=sorted(rule.days_of_week),
            attendees_count=rule.attendee_count,
            bookings_created=rule.bookings_created,
            created_at=rule.created_at,
        )


class OccurrenceErrorResponse(CamelModel):
    occurrence_date: date = Field(alias="date")
    reason: str


class MaterializationResponse(CamelModel):
    rule_id: int
    created: int = Field(ge=0)
    skipped: int = Field(ge=0)
    errors: list[OccurrenceErrorResponse]
    aborted: bool

    @classmethod
    def from_domain(cls, result: MaterializationResult) -> "MaterializationResponse":
        return cls(
            rule_id=result.rule_id,
            created=result.created,
            skipped=result.skipped,
            errors=[
                OccurrenceErrorResponse(occurrence_date=item.occurrence_date, reason=item.reason)
                for item in result.errors
            ],
            aborted=result.aborted,
        )


class ProcessNowResponse(CamelModel):
    processed_on: date
    created: int = Field(ge=0)
    skipped: int = Field(ge=0)
    results: list[MaterializationResponse]
    failed_rule_ids: list[int]

    @classmethod
    def from_domain(cls, summary: ProcessingSummary) -> "ProcessNowResponse":
        return cls(
            processed_on=summary.processed_on,
            created=summary.created,
            skipped=summary.skipped,
            results=[MaterializationResponse.from_domain(item) for item in summary.results],
            failed_rule_ids=list(summary.failed_rule_ids),
        )


@router.post(
    "",
    response_model=ApiResponse[RecurringBookingResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_rule(
    payload: RecurringBookingRequest,
    engine: RecurringRuleEngine = Depends(get_recurring_engine),
) -> dict:
    try:
        rule = engine.create_rule(
            user_id=payload.user_id,
            room_id=payload.room_id,
            title=payload.meeting_title,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            interval=TimeInterval(start=payload.start_time, end=payload.end_time),
            frequency=payload.frequency,
            days_of_week=payload.days_of_week,
            attendee_count=payload.attendees_count,
        )
        return ok(RecurringBookingResponse.from_domain(rule), "Recurring booking created")
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to create recurring booking") from exc


@router.get("/my-rules", response_model=ApiResponse[list[RecurringBookingResponse]])
def my_rules(
    user_id: int = Query(alias="userId", gt=0),
    engine: RecurringRuleEngine = Depends(get_recurring_engine),
) -> dict:
    try:
        rules = engine.list_rules_for_user(user_id)
    except RepositoryError as exc:
        raise internal_error("Failed to load recurring bookings") from exc
    return ok(
        [RecurringBookingResponse.from_domain(rule) for rule in rules],
        "Recurring bookings retrieved",
    )


@router.post("/process-now", response_model=ApiResponse[ProcessNowResponse])
def process_now(
    engine: RecurringRuleEngine = Depends(get_recurring_engine),
) -> dict:
    """Materialize every due rule immediately; safe to repeat."""
    try:
        summary = engine.process_due_rules()
    except RepositoryError as exc:
        raise internal_error("Failed to process recurring bookings") from exc
    return ok(
        ProcessNowResponse.from_domain(summary),
        f"Created {summary.created} booking(s) from recurring rules",
    )


@router.get("/{rule_id}", response_model=ApiResponse[RecurringBookingResponse])
def get_rule(
    rule_id: int,
    engine: RecurringRuleEngine = Depends(get_recurring_engine),
) -> dict:
    try:
        return ok(
            RecurringBookingResponse.from_domain(engine.get_rule(rule_id)),
            "Recurring booking retrieved",
        )
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to load recurring booking") from exc


@router.delete("/{rule_id}", response_model=ApiResponse[None])
def delete_rule(
    rule_id: int,
    user_id: int = Query(alias="userId", gt=0),
    engine: RecurringRuleEngine = Depends(get_recurring_engine),
) -> dict:
    try:
        engine.delete(rule_id, user_id)
        return ok(None, "Recurring booking deleted")
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to delete recurring booking") from exc


@router.get("/{rule_id}/bookings", response_model=ApiResponse[list[BookingResponse]])
def rule_bookings(
    rule_id: int,
    engine: RecurringRuleEngine = Depends(get_recurring_engine),
) -> dict:
    try:
        bookings = engine.list_bookings_for_rule(rule_id)
        return ok(
            [BookingResponse.from_domain(item) for item in bookings],
            "Occurrence bookings retrieved",
        )
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to load occurrence bookings") from exc
