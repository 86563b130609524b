"""Expansion of recurring rules into concrete occurrence dates.

Everything here is pure: the same rule and window always yield the same
ordered, duplicate-free dates, and nothing is stored.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Iterator, Optional

from backend.domain.models import Frequency, RecurringRule


class OccurrenceSequence:
    """Lazy, finite and restartable view over a rule's occurrences.

    Iterating twice recomputes the dates from the rule; nothing is cached.
    """

    def __init__(
        self,
        rule: RecurringRule,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> None:
        self._rule = rule
        self._start = max(rule.start_date, window_start) if window_start else rule.start_date
        self._end = min(rule.end_date, window_end) if window_end else rule.end_date

    @property
    def start(self) -> date:
        return self._start

    @property
    def end(self) -> date:
        return self._end

    def __iter__(self) -> Iterator[date]:
        if self._start > self._end:
            return iter(())
        if self._rule.frequency is Frequency.DAILY:
            return _daily(self._start, self._end)
        if self._rule.frequency is Frequency.WEEKLY:
            return _weekly(self._start, self._end, self._rule.days_of_week)
        return _monthly(self._start, self._end, self._rule.start_date.day)

    def __repr__(self) -> str:
        return (
            f"OccurrenceSequence(rule_id={self._rule.rule_id}, "
            f"frequency={self._rule.frequency.value}, "
            f"start={self._start.isoformat()}, end={self._end.isoformat()})"
        )


def _daily(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _weekly(start: date, end: date, days_of_week: frozenset[int]) -> Iterator[date]:
    for current in _daily(start, end):
        if current.isoweekday() in days_of_week:
            yield current


def _monthly(start: date, end: date, anchor_day: int) -> Iterator[date]:
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        last_day = calendar.monthrange(year, month)[1]
        candidate = date(year, month, min(anchor_day, last_day))
        if start <= candidate <= end:
            yield candidate
        month += 1
        if month > 12:
            year, month = year + 1, 1


def expand(
    rule: RecurringRule,
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
) -> OccurrenceSequence:
    """Return the occurrences of ``rule`` clipped to the optional window.

    MONTHLY rules anchor on the start date's day of month and clamp to the
    last day of shorter months (31st -> 30th, 29th/28th in February).
    """
    return OccurrenceSequence(rule, window_start=window_start, window_end=window_end)
