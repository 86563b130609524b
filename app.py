"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.booking_controller import router as booking_router
from backend.controllers.recurring_controller import router as recurring_router
from backend.controllers.report_controller import audit_router
from backend.controllers.report_controller import router as report_router
from backend.controllers.responses import install_exception_handlers
from backend.domain.constraints import EngineConfig, validate_engine_config
from backend.repository.data_repository import DataRepository
from backend.services.analytics_service import AnalyticsAggregator
from backend.services.audit_service import AuditTrail
from backend.services.booking_service import BookingLifecycleService
from backend.services.conflict_index import ConflictIndex
from backend.services.recurring_service import RecurringRuleEngine
from backend.services.scheduler import RecurringScheduler
from backend.utils.clock import Clock, system_clock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service shares one repository, one clock, one audit trail and one
    conflict index, so booking admission is serialized across the REST layer
    and the recurring engine alike.
    """
    settings = settings or get_settings()
    validate_engine_config(
        EngineConfig(
            recurring_horizon_days=settings.recurring_horizon_days,
            recurring_max_consecutive_errors=settings.recurring_max_consecutive_errors,
            scheduler_interval_seconds=settings.scheduler_interval_seconds,
            sqlite_timeout_seconds=settings.sqlite_timeout_seconds,
        )
    )
    clock = clock or system_clock(settings)

    # --- Repository (connection-per-call SQLite access) ---
    repository = DataRepository(settings)

    # --- Services ---
    audit_trail = AuditTrail(repository=repository, clock=clock, settings=settings)
    conflict_index = ConflictIndex(repository)
    booking_service = BookingLifecycleService(
        repository=repository,
        conflict_index=conflict_index,
        audit_trail=audit_trail,
        clock=clock,
        settings=settings,
    )
    recurring_engine = RecurringRuleEngine(
        repository=repository,
        booking_service=booking_service,
        audit_trail=audit_trail,
        clock=clock,
        settings=settings,
    )
    analytics = AnalyticsAggregator(repository=repository, settings=settings)
    scheduler = RecurringScheduler(
        engine=recurring_engine,
        interval_seconds=settings.scheduler_interval_seconds,
        run_on_start=settings.scheduler_run_on_start,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        try:
            yield
        finally:
            _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    install_exception_handlers(app)

    # --- Routers ---
    app.include_router(booking_router)
    app.include_router(recurring_router)
    app.include_router(report_router)
    app.include_router(audit_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.audit_trail = audit_trail
    app.state.conflict_index = conflict_index
    app.state.booking_service = booking_service
    app.state.recurring_engine = recurring_engine
    app.state.analytics = analytics
    app.state.scheduler = scheduler

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding or any audit sequence lookup.
      2. Rooms are seeded before the scheduler starts; its first tick may
         materialize rules against them.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository
    scheduler: RecurringScheduler = app.state.scheduler

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_rooms:
        seeded = repository.seed_demo_rooms_if_empty()
        logger.info("Startup: seeded %s demo room(s)", seeded)

    if settings.scheduler_enabled:
        logger.info("Startup: starting recurring scheduler")
        scheduler.start()
    else:
        logger.info("Startup: recurring scheduler disabled")

    logger.info("Startup complete, engine ready")


def _shutdown(app: FastAPI) -> None:
    scheduler: RecurringScheduler = app.state.scheduler
    if scheduler.running:
        scheduler.stop()
        logger.info("Shutdown: recurring scheduler stopped")


# Module-level app object for uvicorn
app = create_app()
