"""The engine's single canonical clock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from backend.utils.config import Settings


Clock = Callable[[], datetime]


def engine_timezone(settings: Settings) -> timezone:
    return timezone(timedelta(minutes=settings.utc_offset_minutes))


def system_clock(settings: Settings) -> Clock:
    """Return a clock reading wall time in the configured fixed offset."""
    zone = engine_timezone(settings)

    def now() -> datetime:
        return datetime.now(zone)

    return now


def fixed_clock(moment: datetime) -> Clock:
    """Clock frozen at ``moment``; used by tests and replays."""

    def now() -> datetime:
        return moment

    return now
