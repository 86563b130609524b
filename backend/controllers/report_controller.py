"""Read-only HTTP endpoints: analytics, booking reports and the audit trail."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from backend.controllers.booking_controller import BookingResponse
from backend.controllers.dependencies import get_analytics, get_audit_trail
from backend.controllers.responses import (
    ApiResponse,
    CamelModel,
    internal_error,
    ok,
    to_http_exception,
)
from backend.domain.errors import BookingEngineError
from backend.domain.models import AuditAction, AuditLogEntry, BookingStatus, EntityType
from backend.repository.data_repository import RepositoryError
from backend.services.analytics_service import AnalyticsAggregator, AnalyticsSummary, RoomUtilization
from backend.services.audit_service import AuditTrail


router = APIRouter(prefix="/reports", tags=["reports"])
audit_router = APIRouter(prefix="/audit", tags=["audit"])


class AnalyticsSummaryResponse(CamelModel):
    total_bookings: int
    pending_bookings: int
    approved_bookings: int
    rejected_bookings: int
    cancelled_bookings: int
    total_rooms: int
    active_users: int
    most_booked_room: str
    peak_booking_time: str

    @classmethod
    def from_domain(cls, summary: AnalyticsSummary) -> "AnalyticsSummaryResponse":
        return cls(**asdict(summary))


class RoomUtilizationResponse(CamelModel):
    room_id: int
    room_name: str
    total_bookings: int
    approved_bookings: int
    utilization_percentage: float = Field(ge=0.0, le=100.0)

    @classmethod
    def from_domain(cls, item: RoomUtilization) -> "RoomUtilizationResponse":
        return cls(**asdict(item))


class AuditLogResponse(CamelModel):
    id: Optional[int] = None
    timestamp: datetime
    sequence: int
    user_id: Optional[int] = None
    action: AuditAction
    entity_type: EntityType
    entity_id: int
    details: dict[str, Any]

    @classmethod
    def from_domain(cls, entry: AuditLogEntry) -> "AuditLogResponse":
        return cls(
            id=entry.entry_id,
            timestamp=entry.timestamp,
            sequence=entry.sequence,
            user_id=entry.actor_id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            details=entry.details,
        )


def _audit_payload(entries: list[AuditLogEntry]) -> list[AuditLogResponse]:
    return [AuditLogResponse.from_domain(entry) for entry in entries]


@router.get("/analytics/summary", response_model=ApiResponse[AnalyticsSummaryResponse])
def analytics_summary(
    analytics: AnalyticsAggregator = Depends(get_analytics),
) -> dict:
    try:
        summary = analytics.summary()
    except RepositoryError as exc:
        raise internal_error("Failed to compute analytics summary") from exc
    return ok(AnalyticsSummaryResponse.from_domain(summary), "Analytics summary retrieved")


@router.get(
    "/analytics/room-utilization",
    response_model=ApiResponse[list[RoomUtilizationResponse]],
)
def room_utilization(
    analytics: AnalyticsAggregator = Depends(get_analytics),
) -> dict:
    try:
        rows = analytics.room_utilization()
    except RepositoryError as exc:
        raise internal_error("Failed to compute room utilization") from exc
    return ok(
        [RoomUtilizationResponse.from_domain(row) for row in rows],
        "Room utilization retrieved",
    )


@router.get("/bookings", response_model=ApiResponse[list[BookingResponse]])
def bookings_report(
    start_date: date = Query(alias="startDate"),
    end_date: date = Query(alias="endDate"),
    user_id: Optional[int] = Query(default=None, alias="userId", gt=0),
    room_id: Optional[int] = Query(default=None, alias="roomId", gt=0),
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    analytics: AnalyticsAggregator = Depends(get_analytics),
) -> dict:
    try:
        bookings = analytics.bookings_report(
            start_date=start_date,
            end_date=end_date,
            user_id=user_id,
            room_id=room_id,
            status=status_filter,
        )
        return ok(
            [BookingResponse.from_domain(item) for item in bookings],
            f"{len(bookings)} booking(s) in report",
        )
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to build booking report") from exc


@audit_router.get("/recent", response_model=ApiResponse[list[AuditLogResponse]])
def recent_audit(
    limit: Optional[int] = Query(default=None),
    audit: AuditTrail = Depends(get_audit_trail),
) -> dict:
    try:
        return ok(_audit_payload(audit.recent(limit)), "Recent audit entries retrieved")
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to load audit entries") from exc


@audit_router.get("/entity/{entity_type}", response_model=ApiResponse[list[AuditLogResponse]])
def audit_by_entity_type(
    entity_type: EntityType,
    audit: AuditTrail = Depends(get_audit_trail),
) -> dict:
    try:
        entries = audit.for_entity_type(entity_type)
    except RepositoryError as exc:
        raise internal_error("Failed to load audit entries") from exc
    return ok(_audit_payload(entries), "Audit entries retrieved")


@audit_router.get(
    "/entity/{entity_type}/{entity_id}",
    response_model=ApiResponse[list[AuditLogResponse]],
)
def audit_by_entity(
    entity_type: EntityType,
    entity_id: int,
    audit: AuditTrail = Depends(get_audit_trail),
) -> dict:
    try:
        entries = audit.for_entity(entity_type, entity_id)
    except RepositoryError as exc:
        raise internal_error("Failed to load audit entries") from exc
    return ok(_audit_payload(entries), "Audit entries retrieved")


@audit_router.get("/date-range", response_model=ApiResponse[list[AuditLogResponse]])
def audit_by_date_range(
    start: datetime = Query(),
    end: datetime = Query(),
    audit: AuditTrail = Depends(get_audit_trail),
) -> dict:
    try:
        return ok(_audit_payload(audit.between(start, end)), "Audit entries retrieved")
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc
    except RepositoryError as exc:
        raise internal_error("Failed to load audit entries") from exc
