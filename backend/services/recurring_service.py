"""Recurring rules and their materialization into concrete bookings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional

from backend.domain.constraints import (
    normalize_weekdays,
    validate_attendee_count,
    validate_interval,
    validate_rule_dates,
    validate_title,
)
from backend.domain.errors import (
    BookingEngineError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from backend.domain.models import (
    AuditAction,
    Booking,
    EntityType,
    Frequency,
    MaterializationResult,
    NewRecurringRule,
    OccurrenceError,
    RecurringRule,
    TimeInterval,
)
from backend.domain.recurrence import expand
from backend.repository.data_repository import (
    DataRepository,
    DuplicateOccurrenceError,
    RepositoryError,
)
from backend.services.audit_service import AuditTrail
from backend.services.booking_service import BookingLifecycleService
from backend.utils.clock import Clock, system_clock
from backend.utils.config import Settings, get_settings
from backend.utils.keyed_lock import KeyedLock
from backend.utils.logger import get_logger, kv


logger = get_logger(__name__)


@dataclass(frozen=True)
class ProcessingSummary:
    processed_on: date
    results: list[MaterializationResult] = field(default_factory=list)
    failed_rule_ids: list[int] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(result.created for result in self.results)

    @property
    def skipped(self) -> int:
        return sum(result.skipped for result in self.results)


class RecurringRuleEngine:
    """Creates, deletes and materializes recurring rules.

    Materialization is idempotent: an occurrence is keyed by (rule id, date)
    and a date that already has a booking from the rule is never attempted
    again, whatever that booking's status. Runs for the same rule are
    serialized; runs for different rules are independent.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        booking_service: Optional[BookingLifecycleService] = None,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or system_clock(self._settings)
        self._audit = audit_trail or AuditTrail(
            repository=self._repository,
            clock=self._clock,
            settings=self._settings,
        )
        self._booking_service = booking_service or BookingLifecycleService(
            repository=self._repository,
            audit_trail=self._audit,
            clock=self._clock,
            settings=self._settings,
        )
        self._rule_locks = KeyedLock()

    def create_rule(
        self,
        *,
        user_id: int,
        room_id: int,
        title: str,
        start_date: date,
        end_date: date,
        interval: TimeInterval,
        frequency: Frequency,
        days_of_week: Optional[Iterable[int]] = None,
        description: Optional[str] = None,
        attendee_count: Optional[int] = None,
    ) -> RecurringRule:
        validate_interval(interval)
        validate_title(title)
        validate_rule_dates(start_date, end_date)
        today = self._clock().date()
        if end_date < today:
            raise ValidationError(f"Rule ends on {end_date.isoformat()}, which is in the past")
        weekdays = normalize_weekdays(frequency, days_of_week)
        room = self._repository.get_room(room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        validate_attendee_count(attendee_count, room, self._settings.enforce_room_capacity)

        audit = self._audit.stamp(
            AuditAction.CREATE,
            EntityType.RECURRING_RULE,
            actor_id=user_id,
            details={
                "room_id": room_id,
                "frequency": frequency.value,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "interval": str(interval),
                "days_of_week": sorted(weekdays),
            },
        )
        rule = self._repository.insert_rule(
            NewRecurringRule(
                user_id=user_id,
                room_id=room_id,
                title=title.strip(),
                description=description,
                start_date=start_date,
                end_date=end_date,
                interval=interval,
                frequency=frequency,
                days_of_week=weekdays,
                attendee_count=attendee_count,
                created_at=self._clock(),
            ),
            audit,
        )
        logger.info(
            "Recurring rule created | %s",
            kv(
                rule_id=rule.rule_id,
                user_id=user_id,
                room_id=room_id,
                frequency=frequency.value,
                start=start_date.isoformat(),
                end=end_date.isoformat(),
            ),
        )
        return rule

    def get_rule(self, rule_id: int) -> RecurringRule:
        rule = self._repository.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Recurring rule {rule_id} not found")
        return rule

    def list_rules_for_user(self, user_id: int) -> list[RecurringRule]:
        return self._repository.list_rules_for_user(user_id)

    def list_bookings_for_rule(self, rule_id: int) -> list[Booking]:
        return self._booking_service.list_for_rule(rule_id)

    def delete(self, rule_id: int, owner_id: int) -> None:
        """Remove the rule; bookings it already produced stay as they are."""
        with self._rule_locks.hold(rule_id):
            rule = self.get_rule(rule_id)
            if rule.user_id != owner_id:
                raise ForbiddenError("You can only delete your own recurring bookings")
            audit = self._audit.stamp(
                AuditAction.DELETE,
                EntityType.RECURRING_RULE,
                actor_id=owner_id,
                entity_id=rule_id,
                details={"bookings_created": rule.bookings_created},
            )
            if not self._repository.delete_rule(rule_id, audit):
                raise NotFoundError(f"Recurring rule {rule_id} not found")
        logger.info("Recurring rule deleted | %s", kv(rule_id=rule_id, owner_id=owner_id))

    def materialize(
        self,
        rule: RecurringRule,
        *,
        today: Optional[date] = None,
        through: Optional[date] = None,
    ) -> MaterializationResult:
        """Turn the rule's occurrences in the look-ahead window into bookings.

        The window is ``[today, through]`` clipped to the rule's own range;
        ``through`` defaults to ``today + recurring_horizon_days``. Conflicts
        are counted as skipped; other per-date failures are reported in
        ``errors`` and the run stops early after
        ``recurring_max_consecutive_errors`` of them in a row.
        """
        window_start = today or self._clock().date()
        window_end = through or window_start + timedelta(
            days=self._settings.recurring_horizon_days
        )
        error_cap = self._settings.recurring_max_consecutive_errors

        with self._rule_locks.hold(rule.rule_id):
            current = self.get_rule(rule.rule_id)
            already_materialized = self._repository.list_materialized_dates(current.rule_id)
            created = 0
            skipped = 0
            errors: list[OccurrenceError] = []
            consecutive_errors = 0
            aborted = False

            for occurrence in expand(current, window_start, window_end):
                if occurrence in already_materialized:
                    continue
                try:
                    self._booking_service.create(
                        room_id=current.room_id,
                        user_id=current.user_id,
                        booking_date=occurrence,
                        interval=current.interval,
                        title=current.title,
                        description=current.description,
                        attendee_count=current.attendee_count,
                        recurring_rule_id=current.rule_id,
                    )
                except ConflictError as exc:
                    skipped += 1
                    consecutive_errors = 0
                    logger.info(
                        "Occurrence skipped on conflict | %s",
                        kv(rule_id=current.rule_id, date=occurrence.isoformat(), reason=exc),
                    )
                except DuplicateOccurrenceError:
                    continue
                except (BookingEngineError, RepositoryError) as exc:
                    errors.append(OccurrenceError(occurrence_date=occurrence, reason=str(exc)))
                    consecutive_errors += 1
                    logger.warning(
                        "Occurrence failed | %s",
                        kv(rule_id=current.rule_id, date=occurrence.isoformat(), reason=exc),
                    )
                    if consecutive_errors >= error_cap:
                        aborted = True
                        logger.warning(
                            "Materialization aborted after consecutive errors | %s",
                            kv(rule_id=current.rule_id, consecutive_errors=consecutive_errors),
                        )
                        break
                else:
                    created += 1
                    consecutive_errors = 0

        result = MaterializationResult(
            rule_id=current.rule_id,
            created=created,
            skipped=skipped,
            errors=errors,
            aborted=aborted,
        )
        logger.info(
            "Materialization completed | %s",
            kv(
                rule_id=result.rule_id,
                window=f"{window_start.isoformat()}..{window_end.isoformat()}",
                created=result.created,
                skipped=result.skipped,
                errors=len(result.errors),
                aborted=result.aborted,
            ),
        )
        return result

    def process_due_rules(self, today: Optional[date] = None) -> ProcessingSummary:
        """Materialize every rule that has occurrences inside the look-ahead window.

        Shared by the daily scheduler and the on-demand trigger. A rule that
        fails outright is logged and left for the next run.
        """
        run_date = today or self._clock().date()
        window_end = run_date + timedelta(days=self._settings.recurring_horizon_days)
        rules = self._repository.list_rules_overlapping(run_date, window_end)
        logger.info(
            "Processing recurring rules | %s",
            kv(date=run_date.isoformat(), due_rules=len(rules)),
        )

        summary = ProcessingSummary(processed_on=run_date)
        for rule in rules:
            try:
                summary.results.append(
                    self.materialize(rule, today=run_date, through=window_end)
                )
            except NotFoundError:
                logger.info("Rule deleted before processing | %s", kv(rule_id=rule.rule_id))
            except RepositoryError:
                logger.exception("Failed to process recurring rule | %s", kv(rule_id=rule.rule_id))
                summary.failed_rule_ids.append(rule.rule_id)

        logger.info(
            "Recurring processing completed | %s",
            kv(
                date=run_date.isoformat(),
                created=summary.created,
                skipped=summary.skipped,
                failed_rules=len(summary.failed_rule_ids),
            ),
        )
        return summary
