"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    sqlite_timeout_seconds: float
    utc_offset_minutes: int
    enforce_room_capacity: bool
    recurring_horizon_days: int
    recurring_max_consecutive_errors: int
    scheduler_enabled: bool
    scheduler_interval_seconds: float
    scheduler_run_on_start: bool
    seed_demo_rooms: bool
    audit_recent_limit: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; call ``cache_clear`` to reload."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Room Booking Engine"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/room_booking.db")),
        sqlite_timeout_seconds=_env_float("SQLITE_TIMEOUT_SECONDS", 10.0),
        utc_offset_minutes=_env_int("UTC_OFFSET_MINUTES", 0),
        enforce_room_capacity=_env_bool("ENFORCE_ROOM_CAPACITY", True),
        recurring_horizon_days=_env_int("RECURRING_HORIZON_DAYS", 7),
        recurring_max_consecutive_errors=_env_int("RECURRING_MAX_CONSECUTIVE_ERRORS", 5),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
        scheduler_interval_seconds=_env_float("SCHEDULER_INTERVAL_SECONDS", 86400.0),
        scheduler_run_on_start=_env_bool("SCHEDULER_RUN_ON_START", True),
        seed_demo_rooms=_env_bool("SEED_DEMO_ROOMS", True),
        audit_recent_limit=_env_int("AUDIT_RECENT_LIMIT", 50),
    )
