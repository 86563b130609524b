"""Background trigger for periodic recurring-rule materialization."""

from __future__ import annotations

import threading
from typing import Optional

from backend.services.recurring_service import ProcessingSummary, RecurringRuleEngine
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class RecurringScheduler:
    """Runs ``process_due_rules`` on a daemon thread every ``interval_seconds``.

    Overlap with an on-demand run is safe: the engine serializes work per
    rule and skips occurrences that already have a booking.
    """

    def __init__(
        self,
        engine: RecurringRuleEngine,
        interval_seconds: float,
        run_on_start: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._engine = engine
        self._interval_seconds = interval_seconds
        self._run_on_start = run_on_start
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_summary: Optional[ProcessingSummary] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_summary(self) -> Optional[ProcessingSummary]:
        return self._last_summary

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="recurring-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Recurring scheduler started (interval=%ss)", self._interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Recurring scheduler stopped")

    def run_once(self) -> ProcessingSummary:
        summary = self._engine.process_due_rules()
        self._last_summary = summary
        return summary

    def _loop(self) -> None:
        if self._run_on_start:
            self._tick()
        while not self._stop_event.wait(self._interval_seconds):
            self._tick()

    def _tick(self) -> None:
        try:
            self.run_once()
        except Exception:  # pragma: no cover - keeps the thread alive
            logger.exception("Scheduled recurring processing failed; retrying next tick")
