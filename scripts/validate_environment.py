#!/usr/bin/env python3
"""Validate local booking engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import time, timedelta
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.errors import ConflictError
from backend.domain.models import Frequency, TimeInterval
from backend.repository.data_repository import DataRepository
from backend.services.audit_service import AuditTrail
from backend.services.booking_service import BookingLifecycleService
from backend.services.recurring_service import RecurringRuleEngine
from backend.utils.clock import system_clock
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    from importlib.metadata import version

    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            _ = version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "booking_validation.db",
        )
        repository = DataRepository(validation_settings)
        clock = system_clock(validation_settings)
        audit = AuditTrail(repository=repository, clock=clock, settings=validation_settings)
        bookings = BookingLifecycleService(
            repository=repository,
            audit_trail=audit,
            clock=clock,
            settings=validation_settings,
        )
        engine = RecurringRuleEngine(
            repository=repository,
            booking_service=bookings,
            audit_trail=audit,
            clock=clock,
            settings=validation_settings,
        )
        tomorrow = clock().date() + timedelta(days=1)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo room seeding
        try:
            seeded = repository.seed_demo_rooms_if_empty()
            if seeded != 5:
                raise RuntimeError(f"expected 5 rooms, got {seeded}")
            ok, line = _print_result("Demo rooms: 5 rows", True)
        except Exception as exc:
            ok, line = _print_result("Demo room seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Booking admission rejects an overlapping request
        try:
            bookings.create(
                room_id=1,
                user_id=1,
                booking_date=tomorrow,
                interval=TimeInterval(time(9, 0), time(10, 0)),
                title="Validation booking",
            )
            try:
                bookings.create(
                    room_id=1,
                    user_id=2,
                    booking_date=tomorrow,
                    interval=TimeInterval(time(9, 30), time(10, 30)),
                    title="Overlapping booking",
                )
            except ConflictError:
                ok, line = _print_result("Conflict detection", True)
            else:
                raise RuntimeError("overlapping booking was admitted")
        except Exception as exc:
            ok, line = _print_result("Conflict detection", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Recurring materialization is idempotent
        try:
            rule = engine.create_rule(
                user_id=3,
                room_id=2,
                title="Validation stand-up",
                start_date=tomorrow,
                end_date=tomorrow + timedelta(days=2),
                interval=TimeInterval(time(8, 0), time(8, 30)),
                frequency=Frequency.DAILY,
            )
            first = engine.materialize(rule)
            second = engine.materialize(rule)
            if first.created != 3 or second.created != 0:
                raise RuntimeError(
                    f"expected 3 then 0 created, got {first.created} then {second.created}"
                )
            ok, line = _print_result("Recurring materialization", True, ": 3 occurrences")
        except Exception as exc:
            ok, line = _print_result("Recurring materialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 7: Audit trail recorded every mutation
        try:
            entries = repository.count_audit_entries()
            if entries != 5:
                raise RuntimeError(f"expected 5 audit entries, got {entries}")
            ok, line = _print_result("Audit trail", True, f": {entries} entries")
        except Exception as exc:
            ok, line = _print_result("Audit trail", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
