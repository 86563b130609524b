from __future__ import annotations

import threading
import time as time_module
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone

import pytest

from backend.domain.errors import ForbiddenError, NotFoundError, ValidationError
from backend.domain.models import AuditAction, BookingStatus, EntityType, Frequency, TimeInterval
from backend.repository.data_repository import DataRepository
from backend.services.audit_service import AuditTrail
from backend.services.booking_service import BookingLifecycleService
from backend.services.conflict_index import ConflictIndex
from backend.services.recurring_service import RecurringRuleEngine
from backend.services.scheduler import RecurringScheduler
from backend.utils.clock import fixed_clock
from backend.utils.config import get_settings


# 2030-01-07 is a Monday.
NOW = datetime(2030, 1, 7, 6, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
SLOT = TimeInterval(time(9, 0), time(10, 0))


def _build_engine(tmp_path, **overrides):
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "recurring.db",
        utc_offset_minutes=0,
        recurring_horizon_days=7,
        recurring_max_consecutive_errors=5,
        enforce_room_capacity=True,
        scheduler_enabled=False,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_rooms_if_empty()
    clock = fixed_clock(NOW)
    audit = AuditTrail(repository=repository, clock=clock, settings=settings)
    bookings = BookingLifecycleService(
        repository=repository,
        conflict_index=ConflictIndex(repository),
        audit_trail=audit,
        clock=clock,
        settings=settings,
    )
    engine = RecurringRuleEngine(
        repository=repository,
        booking_service=bookings,
        audit_trail=audit,
        clock=clock,
        settings=replace(settings, **overrides),
    )
    return engine, bookings, repository


def _daily_rule(engine, start=TODAY, end=date(2030, 1, 31), **fields):
    values = {
        "user_id": 7,
        "room_id": 1,
        "title": "Daily stand-up",
        "start_date": start,
        "end_date": end,
        "interval": SLOT,
        "frequency": Frequency.DAILY,
    }
    values.update(fields)
    return engine.create_rule(**values)


def test_create_rule_is_audited(tmp_path):
    engine, _, repository = _build_engine(tmp_path)

    rule = _daily_rule(engine)

    assert rule.bookings_created == 0
    assert engine.get_rule(rule.rule_id) == rule
    assert [item.rule_id for item in engine.list_rules_for_user(7)] == [rule.rule_id]
    entries = repository.list_audit_entries(entity_type=EntityType.RECURRING_RULE)
    assert [(entry.action, entry.entity_id) for entry in entries] == [
        (AuditAction.CREATE, rule.rule_id)
    ]


def test_create_rule_validation(tmp_path):
    engine, _, repository = _build_engine(tmp_path)

    with pytest.raises(ValidationError):
        _daily_rule(engine, frequency=Frequency.WEEKLY)
    with pytest.raises(ValidationError):
        _daily_rule(engine, frequency=Frequency.WEEKLY, days_of_week=[8])
    with pytest.raises(ValidationError):
        _daily_rule(engine, start=date(2030, 1, 10), end=date(2030, 1, 9))
    with pytest.raises(ValidationError):
        _daily_rule(engine, start=date(2029, 12, 1), end=date(2029, 12, 31))
    with pytest.raises(ValidationError):
        _daily_rule(engine, interval=TimeInterval(time(10, 0), time(9, 0)))
    with pytest.raises(NotFoundError):
        _daily_rule(engine, room_id=99)

    assert repository.count_audit_entries() == 0


def test_rule_that_started_in_the_past_is_accepted(tmp_path):
    engine, _, _ = _build_engine(tmp_path)

    rule = _daily_rule(engine, start=date(2029, 12, 1), end=date(2030, 1, 9))
    result = engine.materialize(rule)

    assert result.created == 3


def test_materialize_fills_window_and_is_idempotent(tmp_path):
    engine, _, repository = _build_engine(tmp_path)
    rule = _daily_rule(engine)

    first = engine.materialize(rule)
    second = engine.materialize(rule)

    assert (first.created, first.skipped, first.errors, first.aborted) == (8, 0, [], False)
    assert (second.created, second.skipped, second.errors) == (0, 0, [])
    occurrences = engine.list_bookings_for_rule(rule.rule_id)
    assert [item.booking_date for item in occurrences] == [
        TODAY + timedelta(days=offset) for offset in range(8)
    ]
    assert all(item.status is BookingStatus.PENDING for item in occurrences)
    assert all(item.recurring_rule_id == rule.rule_id for item in occurrences)
    assert engine.get_rule(rule.rule_id).bookings_created == 8
    assert repository.count_bookings() == 8


def test_materialize_advances_with_the_window(tmp_path):
    engine, _, _ = _build_engine(tmp_path)
    rule = _daily_rule(engine)
    engine.materialize(rule)

    later = engine.materialize(rule, today=date(2030, 1, 10))

    assert later.created == 3
    assert engine.get_rule(rule.rule_id).bookings_created == 11


def test_weekly_and_monthly_rules_materialize_matching_days(tmp_path):
    engine, _, _ = _build_engine(tmp_path)
    weekly = _daily_rule(engine, frequency=Frequency.WEEKLY, days_of_week=[1, 3])
    monthly = _daily_rule(
        engine,
        room_id=2,
        frequency=Frequency.MONTHLY,
        start=date(2030, 1, 10),
        end=date(2030, 6, 30),
    )

    engine.materialize(weekly)
    engine.materialize(monthly)

    assert [item.booking_date for item in engine.list_bookings_for_rule(weekly.rule_id)] == [
        date(2030, 1, 7),
        date(2030, 1, 9),
        date(2030, 1, 14),
    ]
    assert [item.booking_date for item in engine.list_bookings_for_rule(monthly.rule_id)] == [
        date(2030, 1, 10)
    ]


def test_conflicting_occurrences_are_skipped(tmp_path):
    engine, bookings, _ = _build_engine(tmp_path)
    blocker = bookings.create(
        room_id=1,
        user_id=99,
        booking_date=date(2030, 1, 9),
        interval=TimeInterval(time(9, 30), time(11, 0)),
        title="Offsite prep",
    )
    rule = _daily_rule(engine, start=date(2030, 1, 8), end=date(2030, 1, 10))

    result = engine.materialize(rule)

    assert (result.created, result.skipped, result.errors) == (2, 1, [])
    assert engine.get_rule(rule.rule_id).bookings_created == 2

    # The freed date is picked up by the next run.
    bookings.cancel(blocker.booking_id, requester_id=99)
    retry = engine.materialize(rule)
    assert (retry.created, retry.skipped) == (1, 0)


def test_cancelled_occurrence_is_not_recreated(tmp_path):
    engine, bookings, _ = _build_engine(tmp_path)
    rule = _daily_rule(engine, end=date(2030, 1, 9))
    engine.materialize(rule)
    occurrence = engine.list_bookings_for_rule(rule.rule_id)[0]

    bookings.cancel(occurrence.booking_id, requester_id=7)
    result = engine.materialize(rule)

    assert result.created == 0
    assert engine.get_rule(rule.rule_id).bookings_created == 3


def test_consecutive_errors_abort_the_run(tmp_path):
    # The engine admits a rule that the booking service then refuses per date.
    engine, _, repository = _build_engine(
        tmp_path,
        enforce_room_capacity=False,
        recurring_max_consecutive_errors=3,
    )
    rule = _daily_rule(engine, room_id=2, attendee_count=10)

    result = engine.materialize(rule)

    assert result.aborted is True
    assert result.created == 0
    assert [error.occurrence_date for error in result.errors] == [
        date(2030, 1, 7),
        date(2030, 1, 8),
        date(2030, 1, 9),
    ]
    assert "capacity" in result.errors[0].reason
    assert repository.count_bookings() == 0


def test_delete_rule_keeps_materialized_bookings(tmp_path):
    engine, _, repository = _build_engine(tmp_path)
    rule = _daily_rule(engine, end=date(2030, 1, 9))
    engine.materialize(rule)

    with pytest.raises(ForbiddenError):
        engine.delete(rule.rule_id, owner_id=8)
    engine.delete(rule.rule_id, owner_id=7)

    with pytest.raises(NotFoundError):
        engine.get_rule(rule.rule_id)
    with pytest.raises(NotFoundError):
        engine.delete(rule.rule_id, owner_id=7)
    remaining = engine.list_bookings_for_rule(rule.rule_id)
    assert len(remaining) == 3
    assert all(item.status is BookingStatus.PENDING for item in remaining)
    actions = [
        entry.action
        for entry in repository.list_audit_entries(
            entity_type=EntityType.RECURRING_RULE,
            entity_id=rule.rule_id,
        )
    ]
    assert actions == [AuditAction.CREATE, AuditAction.DELETE]


def test_materialize_deleted_rule_raises_not_found(tmp_path):
    engine, _, _ = _build_engine(tmp_path)
    rule = _daily_rule(engine)
    engine.delete(rule.rule_id, owner_id=7)

    with pytest.raises(NotFoundError):
        engine.materialize(rule)


def test_process_due_rules_only_touches_rules_in_window(tmp_path):
    engine, _, _ = _build_engine(tmp_path)
    due = _daily_rule(engine, end=date(2030, 1, 8))
    _daily_rule(engine, room_id=2, start=date(2030, 3, 1), end=date(2030, 3, 31))

    summary = engine.process_due_rules()
    again = engine.process_due_rules()

    assert summary.processed_on == TODAY
    assert [result.rule_id for result in summary.results] == [due.rule_id]
    assert (summary.created, summary.skipped, summary.failed_rule_ids) == (2, 0, [])
    assert again.created == 0


def test_concurrent_materialization_of_one_rule_creates_each_date_once(tmp_path):
    engine, _, repository = _build_engine(tmp_path)
    rule = _daily_rule(engine)
    barrier = threading.Barrier(3)
    results = []

    def run() -> None:
        barrier.wait()
        results.append(engine.materialize(rule))

    threads = [threading.Thread(target=run) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sum(result.created for result in results) == 8
    assert repository.count_bookings() == 8
    assert engine.get_rule(rule.rule_id).bookings_created == 8


def test_scheduler_runs_on_start_and_stops(tmp_path):
    engine, _, _ = _build_engine(tmp_path)
    _daily_rule(engine, end=date(2030, 1, 8))
    scheduler = RecurringScheduler(engine, interval_seconds=3600, run_on_start=True)

    scheduler.start()
    deadline = time_module.monotonic() + 10
    while scheduler.last_summary is None and time_module.monotonic() < deadline:
        time_module.sleep(0.05)
    scheduler.stop()

    assert not scheduler.running
    assert scheduler.last_summary is not None
    assert scheduler.last_summary.created == 2


def test_scheduler_run_once_shares_idempotency(tmp_path):
    engine, _, _ = _build_engine(tmp_path)
    _daily_rule(engine, end=date(2030, 1, 8))
    scheduler = RecurringScheduler(engine, interval_seconds=3600)

    assert scheduler.run_once().created == 2
    assert engine.process_due_rules().created == 0
    assert scheduler.run_once().created == 0


def test_scheduler_rejects_non_positive_interval(tmp_path):
    engine, _, _ = _build_engine(tmp_path)

    with pytest.raises(ValueError):
        RecurringScheduler(engine, interval_seconds=0)
