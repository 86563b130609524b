"""Per-(room, date) index of active booking intervals."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from threading import Lock
from typing import Iterator, Optional

from backend.domain.models import TimeInterval
from backend.repository.data_repository import DataRepository
from backend.utils.keyed_lock import KeyedLock
from backend.utils.logger import get_logger, kv


logger = get_logger(__name__)

SlotKey = tuple[int, date]


class ConflictIndex:
    """Answers "does this window overlap an active booking?" per room and date.

    A key's intervals are loaded from the repository on first use and kept in
    step with booking state by ``add``/``discard``. Callers must hold
    ``exclusive(room_id, booking_date)`` around check-then-insert and around
    every mutation of that key; keys on different rooms or dates never
    contend. A key whose interval set empties is dropped and reloaded on the
    next touch; keys for dates before today are dropped by ``evict_before``.
    """

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository
        self._locks = KeyedLock()
        self._guard = Lock()
        self._intervals: dict[SlotKey, dict[int, TimeInterval]] = {}
        self._evicted_before: Optional[date] = None

    @contextmanager
    def exclusive(self, room_id: int, booking_date: date) -> Iterator[None]:
        with self._locks.hold((room_id, booking_date)):
            yield

    def _load(self, key: SlotKey) -> dict[int, TimeInterval]:
        with self._guard:
            cached = self._intervals.get(key)
        if cached is not None:
            return cached
        room_id, booking_date = key
        loaded = dict(self._repository.list_active_intervals(room_id, booking_date))
        with self._guard:
            self._intervals[key] = loaded
        return loaded

    def find_conflict(
        self,
        room_id: int,
        booking_date: date,
        interval: TimeInterval,
    ) -> Optional[tuple[int, TimeInterval]]:
        """Return the first overlapping (booking_id, interval), if any."""
        intervals = self._load((room_id, booking_date))
        with self._guard:
            candidates = sorted(intervals.items(), key=lambda item: item[1].start)
        for booking_id, existing in candidates:
            if existing.overlaps(interval):
                return booking_id, existing
        return None

    def would_conflict(self, room_id: int, booking_date: date, interval: TimeInterval) -> bool:
        return self.find_conflict(room_id, booking_date, interval) is not None

    def add(self, room_id: int, booking_date: date, booking_id: int, interval: TimeInterval) -> None:
        intervals = self._load((room_id, booking_date))
        with self._guard:
            intervals[booking_id] = interval

    def discard(self, room_id: int, booking_date: date, booking_id: int) -> None:
        key = (room_id, booking_date)
        with self._guard:
            intervals = self._intervals.get(key)
            if intervals is None:
                return
            intervals.pop(booking_id, None)
            if not intervals:
                del self._intervals[key]
        logger.debug(
            "Interval released | %s",
            kv(room_id=room_id, date=booking_date.isoformat(), booking_id=booking_id),
        )

    def evict_before(self, today: date) -> int:
        """Drop cached keys dated before ``today``; sweeps at most once per day."""
        with self._guard:
            if self._evicted_before is not None and today <= self._evicted_before:
                return 0
            stale = [key for key in self._intervals if key[1] < today]
            for key in stale:
                del self._intervals[key]
            self._evicted_before = today
        if stale:
            logger.debug("Past dates evicted | %s", kv(before=today.isoformat(), keys=len(stale)))
        return len(stale)

    def cached_keys(self) -> int:
        with self._guard:
            return len(self._intervals)
