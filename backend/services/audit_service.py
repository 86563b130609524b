"""Append-only audit trail for booking and recurring-rule mutations."""

from __future__ import annotations

import itertools
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Iterator, Optional

from backend.domain.errors import ValidationError
from backend.domain.models import AuditAction, AuditLogEntry, EntityType
from backend.repository.data_repository import DataRepository
from backend.utils.clock import engine_timezone
from backend.utils.config import Settings, get_settings


class AuditTrail:
    """Stamps audit entries and serves read-only audit queries.

    Entries are ordered by ``(timestamp, sequence)``. The sequence counter is
    seeded from the highest persisted value on first use, so ordering
    survives restarts. After seeding, ``next()`` on the shared counter is
    atomic and writers take no lock.
    Entries are persisted by the repository in the same transaction as the
    mutation they describe, never on their own.
    """

    def __init__(
        self,
        repository: DataRepository,
        clock: Callable[[], datetime],
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._clock = clock
        self._sequence: Optional[Iterator[int]] = None
        self._sequence_guard = Lock()

    def _next_sequence(self) -> int:
        if self._sequence is None:
            with self._sequence_guard:
                if self._sequence is None:
                    self._sequence = itertools.count(self._repository.max_audit_sequence() + 1)
        return next(self._sequence)

    def stamp(
        self,
        action: AuditAction,
        entity_type: EntityType,
        actor_id: Optional[int],
        entity_id: int = 0,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLogEntry:
        return AuditLogEntry(
            timestamp=self._clock(),
            sequence=self._next_sequence(),
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=dict(details or {}),
        )

    def recent(self, limit: Optional[int] = None) -> list[AuditLogEntry]:
        resolved = limit if limit is not None else self._settings.audit_recent_limit
        if resolved <= 0:
            raise ValidationError("limit must be a positive integer")
        return self._repository.list_audit_entries(limit=resolved, newest_first=True)

    def for_entity_type(self, entity_type: EntityType) -> list[AuditLogEntry]:
        return self._repository.list_audit_entries(entity_type=entity_type)

    def for_entity(self, entity_type: EntityType, entity_id: int) -> list[AuditLogEntry]:
        return self._repository.list_audit_entries(
            entity_type=entity_type,
            entity_id=entity_id,
        )

    def between(self, start: datetime, end: datetime) -> list[AuditLogEntry]:
        """Entries stamped within ``[start, end]``; naive bounds are read as engine time."""
        start, end = self._in_engine_zone(start), self._in_engine_zone(end)
        if end < start:
            raise ValidationError("End must not be before start")
        return self._repository.list_audit_entries(start=start, end=end)

    def _in_engine_zone(self, moment: datetime) -> datetime:
        # Stored timestamps share one fixed offset and compare as text.
        zone = engine_timezone(self._settings)
        if moment.tzinfo is None:
            return moment.replace(tzinfo=zone)
        return moment.astimezone(zone)
