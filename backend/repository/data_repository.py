"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Iterator, Optional

from backend.domain.lifecycle import Transition
from backend.domain.models import (
    AuditLogEntry,
    AuditAction,
    Booking,
    BookingStatus,
    EntityType,
    Frequency,
    NewBooking,
    NewRecurringRule,
    RecurringRule,
    Room,
    TimeInterval,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, kv


logger = get_logger(__name__)


class RepositoryError(Exception):
    """Raised when the underlying SQLite store fails."""


class DuplicateOccurrenceError(RepositoryError):
    """Raised when a rule already has a booking for the occurrence date."""


_BOOKING_COLUMNS = """
    id, user_id, room_id, title, description, booking_date, start_time,
    end_time, attendee_count, status, approver_id, decided_at, created_at,
    recurring_rule_id
"""

_RULE_COLUMNS = """
    id, user_id, room_id, title, description, start_date, end_date,
    start_time, end_time, frequency, days_of_week, attendee_count,
    bookings_created, created_at
"""

_DEMO_ROOMS = (
    ("Board Room", 12, 5, ("projector", "video_conference")),
    ("Huddle A", 4, 2, ("whiteboard",)),
    ("Huddle B", 4, 2, ("whiteboard",)),
    ("Training Room", 30, 1, ("projector", "microphone")),
    ("Focus Pod", 2, 3, ()),
)


def _parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=int(row["id"]),
        name=str(row["name"]),
        capacity=int(row["capacity"]),
        floor=row["floor"],
        amenities=frozenset(json.loads(row["amenities"] or "[]")),
    )


def _row_to_booking(row: sqlite3.Row) -> Booking:
    return Booking(
        booking_id=int(row["id"]),
        user_id=int(row["user_id"]),
        room_id=int(row["room_id"]),
        title=str(row["title"]),
        description=row["description"],
        booking_date=date.fromisoformat(row["booking_date"]),
        interval=TimeInterval(
            start=time.fromisoformat(row["start_time"]),
            end=time.fromisoformat(row["end_time"]),
        ),
        attendee_count=row["attendee_count"],
        status=BookingStatus(row["status"]),
        approver_id=row["approver_id"],
        decided_at=_parse_optional_datetime(row["decided_at"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        recurring_rule_id=row["recurring_rule_id"],
    )


def _row_to_rule(row: sqlite3.Row) -> RecurringRule:
    return RecurringRule(
        rule_id=int(row["id"]),
        user_id=int(row["user_id"]),
        room_id=int(row["room_id"]),
        title=str(row["title"]),
        description=row["description"],
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        interval=TimeInterval(
            start=time.fromisoformat(row["start_time"]),
            end=time.fromisoformat(row["end_time"]),
        ),
        frequency=Frequency(row["frequency"]),
        days_of_week=frozenset(json.loads(row["days_of_week"] or "[]")),
        attendee_count=row["attendee_count"],
        bookings_created=int(row["bookings_created"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_audit(row: sqlite3.Row) -> AuditLogEntry:
    return AuditLogEntry(
        entry_id=int(row["id"]),
        timestamp=datetime.fromisoformat(row["timestamp"]),
        sequence=int(row["sequence"]),
        actor_id=row["actor_id"],
        action=AuditAction(row["action"]),
        entity_type=EntityType(row["entity_type"]),
        entity_id=int(row["entity_id"]),
        details=json.loads(row["details"] or "{}"),
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Every write runs inside ``BEGIN IMMEDIATE`` so that a mutation and the
    audit entry describing it are committed together or not at all.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.sqlite_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _read(self, operation: str) -> Iterator[sqlite3.Cursor]:
        connection = self._connect()
        try:
            yield connection.cursor()
        except sqlite3.Error as exc:
            raise RepositoryError(f"{operation} failed: {exc}") from exc
        finally:
            connection.close()

    @contextmanager
    def _write(self, operation: str) -> Iterator[sqlite3.Cursor]:
        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection.cursor()
            except BaseException:
                connection.rollback()
                raise
            connection.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"{operation} failed: {exc}") from exc
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self._write("Database initialization") as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Rooms (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    capacity INTEGER NOT NULL CHECK (capacity > 0),
                    floor INTEGER,
                    amenities TEXT NOT NULL DEFAULT '[]'
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS RecurringRules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    room_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    frequency TEXT NOT NULL
                        CHECK (frequency IN ('DAILY','WEEKLY','MONTHLY')),
                    days_of_week TEXT NOT NULL DEFAULT '[]',
                    attendee_count INTEGER,
                    bookings_created INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (room_id) REFERENCES Rooms(id)
                );
                """
            )
            # recurring_rule_id is a weak back-reference: deleting a rule
            # leaves its bookings untouched, so no foreign key here.
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Bookings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    room_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    booking_date TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    attendee_count INTEGER,
                    status TEXT NOT NULL DEFAULT 'PENDING'
                        CHECK (status IN ('PENDING','APPROVED','REJECTED','CANCELLED')),
                    approver_id INTEGER,
                    decided_at TEXT,
                    created_at TEXT NOT NULL,
                    recurring_rule_id INTEGER,
                    CHECK (start_time < end_time),
                    FOREIGN KEY (room_id) REFERENCES Rooms(id)
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS AuditLog (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    sequence INTEGER NOT NULL UNIQUE,
                    actor_id INTEGER,
                    action TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id INTEGER NOT NULL,
                    details TEXT NOT NULL DEFAULT '{}'
                );
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_bookings_room_date
                ON Bookings(room_id, booking_date, status);
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_bookings_user ON Bookings(user_id);"
            )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_bookings_rule_occurrence
                ON Bookings(recurring_rule_id, booking_date)
                WHERE recurring_rule_id IS NOT NULL;
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_rules_user ON RecurringRules(user_id);"
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_audit_order
                ON AuditLog(timestamp, sequence);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_audit_entity
                ON AuditLog(entity_type, entity_id);
                """
            )
        with self._read("Journal mode setup") as cursor:
            cursor.execute("PRAGMA journal_mode = WAL;")
        logger.info("Database initialized at %s", self._db_path)

    def seed_demo_rooms_if_empty(self) -> int:
        """Insert the demo room set only when no rooms exist yet."""
        with self._write("Demo room seeding") as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Rooms already present; skipping demo seed")
                return 0
            cursor.executemany(
                """
                INSERT INTO Rooms (name, capacity, floor, amenities)
                VALUES (?, ?, ?, ?);
                """,
                [
                    (name, capacity, floor, json.dumps(sorted(amenities)))
                    for name, capacity, floor, amenities in _DEMO_ROOMS
                ],
            )
        logger.info("Seeded %s demo rooms", len(_DEMO_ROOMS))
        return len(_DEMO_ROOMS)

    # --- Rooms ---

    def create_room(
        self,
        name: str,
        capacity: int,
        floor: Optional[int] = None,
        amenities: frozenset[str] = frozenset(),
    ) -> Room:
        with self._write("Room insert") as cursor:
            cursor.execute(
                """
                INSERT INTO Rooms (name, capacity, floor, amenities)
                VALUES (?, ?, ?, ?);
                """,
                (name, capacity, floor, json.dumps(sorted(amenities))),
            )
            room_id = int(cursor.lastrowid)
        return Room(
            room_id=room_id,
            name=name,
            capacity=capacity,
            floor=floor,
            amenities=frozenset(amenities),
        )

    def get_room(self, room_id: int) -> Optional[Room]:
        with self._read("Room lookup") as cursor:
            cursor.execute(
                "SELECT id, name, capacity, floor, amenities FROM Rooms WHERE id = ?;",
                (room_id,),
            )
            row = cursor.fetchone()
            return _row_to_room(row) if row is not None else None

    def list_rooms(self) -> list[Room]:
        with self._read("Room listing") as cursor:
            cursor.execute(
                "SELECT id, name, capacity, floor, amenities FROM Rooms ORDER BY id ASC;"
            )
            return [_row_to_room(row) for row in cursor.fetchall()]

    # --- Audit log ---

    @staticmethod
    def _insert_audit(cursor: sqlite3.Cursor, entry: AuditLogEntry) -> None:
        cursor.execute(
            """
            INSERT INTO AuditLog (
                timestamp, sequence, actor_id, action, entity_type, entity_id, details
            )
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                entry.timestamp.isoformat(),
                entry.sequence,
                entry.actor_id,
                entry.action.value,
                entry.entity_type.value,
                entry.entity_id,
                json.dumps(entry.details, sort_keys=True, default=str),
            ),
        )

    def max_audit_sequence(self) -> int:
        with self._read("Audit sequence lookup") as cursor:
            cursor.execute("SELECT MAX(sequence) AS max_sequence FROM AuditLog;")
            row = cursor.fetchone()
            if row is None or row["max_sequence"] is None:
                return 0
            return int(row["max_sequence"])

    def list_audit_entries(
        self,
        *,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> list[AuditLogEntry]:
        clauses: list[str] = []
        params: list[Any] = []
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(entity_type.value)
        if entity_id is not None:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        if start is not None:
            clauses.append("timestamp >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("timestamp <= ?")
            params.append(end.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = "DESC" if newest_first else "ASC"
        limit_clause = ""
        if limit is not None:
            limit_clause = "LIMIT ?"
            params.append(limit)
        with self._read("Audit listing") as cursor:
            cursor.execute(
                f"""
                SELECT id, timestamp, sequence, actor_id, action, entity_type,
                       entity_id, details
                FROM AuditLog
                {where}
                ORDER BY timestamp {direction}, sequence {direction}
                {limit_clause};
                """,
                tuple(params),
            )
            return [_row_to_audit(row) for row in cursor.fetchall()]

    def count_audit_entries(self) -> int:
        with self._read("Audit count") as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM AuditLog;")
            return int(cursor.fetchone()["count"])

    # --- Bookings ---

    def insert_booking(self, booking: NewBooking, audit: AuditLogEntry) -> Booking:
        """Insert a PENDING booking and its CREATE audit entry atomically.

        ``audit.entity_id`` is replaced with the id of the inserted row. When
        the booking comes from a recurring rule, the rule's counter is bumped
        in the same transaction.
        """
        with self._write("Booking insert") as cursor:
            try:
                cursor.execute(
                    """
                    INSERT INTO Bookings (
                        user_id, room_id, title, description, booking_date,
                        start_time, end_time, attendee_count, status, created_at,
                        recurring_rule_id
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        booking.user_id,
                        booking.room_id,
                        booking.title,
                        booking.description,
                        booking.booking_date.isoformat(),
                        booking.interval.start.isoformat(),
                        booking.interval.end.isoformat(),
                        booking.attendee_count,
                        BookingStatus.PENDING.value,
                        booking.created_at.isoformat(),
                        booking.recurring_rule_id,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if booking.recurring_rule_id is not None and "booking_date" in str(exc):
                    raise DuplicateOccurrenceError(
                        f"Rule {booking.recurring_rule_id} already has a booking on "
                        f"{booking.booking_date.isoformat()}"
                    ) from exc
                raise
            booking_id = int(cursor.lastrowid)
            self._insert_audit(cursor, replace(audit, entity_id=booking_id))
            if booking.recurring_rule_id is not None:
                cursor.execute(
                    """
                    UPDATE RecurringRules
                    SET bookings_created = bookings_created + 1
                    WHERE id = ?;
                    """,
                    (booking.recurring_rule_id,),
                )
        logger.debug("Booking row inserted | %s", kv(booking_id=booking_id))
        return Booking(
            booking_id=booking_id,
            user_id=booking.user_id,
            room_id=booking.room_id,
            title=booking.title,
            description=booking.description,
            booking_date=booking.booking_date,
            interval=booking.interval,
            attendee_count=booking.attendee_count,
            status=BookingStatus.PENDING,
            created_at=booking.created_at,
            recurring_rule_id=booking.recurring_rule_id,
        )

    def apply_transition(self, transition: Transition, audit: AuditLogEntry) -> bool:
        """Compare-and-set the booking status; False if it changed underneath."""
        booking = transition.booking
        with self._write("Booking transition") as cursor:
            cursor.execute(
                """
                UPDATE Bookings
                SET status = ?, approver_id = ?, decided_at = ?
                WHERE id = ? AND status = ?;
                """,
                (
                    booking.status.value,
                    booking.approver_id,
                    booking.decided_at.isoformat() if booking.decided_at else None,
                    booking.booking_id,
                    transition.previous_status.value,
                ),
            )
            if cursor.rowcount != 1:
                return False
            self._insert_audit(cursor, audit)
        return True

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        with self._read("Booking lookup") as cursor:
            cursor.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM Bookings WHERE id = ?;",
                (booking_id,),
            )
            row = cursor.fetchone()
            return _row_to_booking(row) if row is not None else None

    def list_bookings(
        self,
        *,
        user_id: Optional[int] = None,
        room_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        recurring_rule_id: Optional[int] = None,
    ) -> list[Booking]:
        """Return bookings matching every given filter, by date then start time."""
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if room_id is not None:
            clauses.append("room_id = ?")
            params.append(room_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if start_date is not None:
            clauses.append("booking_date >= ?")
            params.append(start_date.isoformat())
        if end_date is not None:
            clauses.append("booking_date <= ?")
            params.append(end_date.isoformat())
        if recurring_rule_id is not None:
            clauses.append("recurring_rule_id = ?")
            params.append(recurring_rule_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._read("Booking listing") as cursor:
            cursor.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM Bookings
                {where}
                ORDER BY booking_date ASC, start_time ASC, id ASC;
                """,
                tuple(params),
            )
            return [_row_to_booking(row) for row in cursor.fetchall()]

    def list_active_intervals(
        self,
        room_id: int,
        booking_date: date,
    ) -> list[tuple[int, TimeInterval]]:
        """Return (booking_id, interval) for PENDING/APPROVED bookings on a room/date."""
        with self._read("Active interval lookup") as cursor:
            cursor.execute(
                """
                SELECT id, start_time, end_time
                FROM Bookings
                WHERE room_id = ?
                  AND booking_date = ?
                  AND status IN ('PENDING', 'APPROVED')
                ORDER BY start_time ASC;
                """,
                (room_id, booking_date.isoformat()),
            )
            return [
                (
                    int(row["id"]),
                    TimeInterval(
                        start=time.fromisoformat(row["start_time"]),
                        end=time.fromisoformat(row["end_time"]),
                    ),
                )
                for row in cursor.fetchall()
            ]

    def list_materialized_dates(self, rule_id: int) -> set[date]:
        """Return occurrence dates already represented by a booking of the rule."""
        with self._read("Materialized date lookup") as cursor:
            cursor.execute(
                "SELECT booking_date FROM Bookings WHERE recurring_rule_id = ?;",
                (rule_id,),
            )
            return {date.fromisoformat(row["booking_date"]) for row in cursor.fetchall()}

    def count_bookings(self) -> int:
        with self._read("Booking count") as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM Bookings;")
            return int(cursor.fetchone()["count"])

    # --- Recurring rules ---

    def insert_rule(self, rule: NewRecurringRule, audit: AuditLogEntry) -> RecurringRule:
        with self._write("Recurring rule insert") as cursor:
            cursor.execute(
                """
                INSERT INTO RecurringRules (
                    user_id, room_id, title, description, start_date, end_date,
                    start_time, end_time, frequency, days_of_week, attendee_count,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    rule.user_id,
                    rule.room_id,
                    rule.title,
                    rule.description,
                    rule.start_date.isoformat(),
                    rule.end_date.isoformat(),
                    rule.interval.start.isoformat(),
                    rule.interval.end.isoformat(),
                    rule.frequency.value,
                    json.dumps(sorted(rule.days_of_week)),
                    rule.attendee_count,
                    rule.created_at.isoformat(),
                ),
            )
            rule_id = int(cursor.lastrowid)
            self._insert_audit(cursor, replace(audit, entity_id=rule_id))
        return RecurringRule(
            rule_id=rule_id,
            user_id=rule.user_id,
            room_id=rule.room_id,
            title=rule.title,
            description=rule.description,
            start_date=rule.start_date,
            end_date=rule.end_date,
            interval=rule.interval,
            frequency=rule.frequency,
            days_of_week=rule.days_of_week,
            attendee_count=rule.attendee_count,
            created_at=rule.created_at,
        )

    def get_rule(self, rule_id: int) -> Optional[RecurringRule]:
        with self._read("Recurring rule lookup") as cursor:
            cursor.execute(
                f"SELECT {_RULE_COLUMNS} FROM RecurringRules WHERE id = ?;",
                (rule_id,),
            )
            row = cursor.fetchone()
            return _row_to_rule(row) if row is not None else None

    def list_rules_for_user(self, user_id: int) -> list[RecurringRule]:
        with self._read("Recurring rule listing") as cursor:
            cursor.execute(
                f"""
                SELECT {_RULE_COLUMNS}
                FROM RecurringRules
                WHERE user_id = ?
                ORDER BY id ASC;
                """,
                (user_id,),
            )
            return [_row_to_rule(row) for row in cursor.fetchall()]

    def list_rules_overlapping(self, window_start: date, window_end: date) -> list[RecurringRule]:
        """Return rules whose date range meets ``[window_start, window_end]``."""
        with self._read("Due rule listing") as cursor:
            cursor.execute(
                f"""
                SELECT {_RULE_COLUMNS}
                FROM RecurringRules
                WHERE start_date <= ? AND end_date >= ?
                ORDER BY id ASC;
                """,
                (window_end.isoformat(), window_start.isoformat()),
            )
            return [_row_to_rule(row) for row in cursor.fetchall()]

    def delete_rule(self, rule_id: int, audit: AuditLogEntry) -> bool:
        with self._write("Recurring rule delete") as cursor:
            cursor.execute("DELETE FROM RecurringRules WHERE id = ?;", (rule_id,))
            if cursor.rowcount != 1:
                return False
            self._insert_audit(cursor, audit)
        return True
