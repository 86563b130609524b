"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from backend.services.analytics_service import AnalyticsAggregator
from backend.services.audit_service import AuditTrail
from backend.services.booking_service import BookingLifecycleService
from backend.services.recurring_service import RecurringRuleEngine


def _require_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_booking_service(request: Request) -> BookingLifecycleService:
    return _require_state(request, "booking_service", "Booking service")


def get_recurring_engine(request: Request) -> RecurringRuleEngine:
    return _require_state(request, "recurring_engine", "Recurring rule engine")


def get_analytics(request: Request) -> AnalyticsAggregator:
    return _require_state(request, "analytics", "Analytics aggregator")


def get_audit_trail(request: Request) -> AuditTrail:
    return _require_state(request, "audit_trail", "Audit trail")
