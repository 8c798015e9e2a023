#!/usr/bin/env python3
"""Validate local logistics backend environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from logistics_backend.domain.models import Allocation, BookingDetails, Role
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.auth_service import AuthService
from logistics_backend.services.form_service import TransportFormService
from logistics_backend.services.user_service import DEFAULT_USERS, UserService
from logistics_backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="logistics-env-")

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
        ("requests", "requests"),
        ("streamlit", "streamlit"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
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
        temp_db_path = Path(temp_dir) / "logistics_validation.db"
        validation_settings = replace(get_settings(), database_path=temp_db_path)
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Default user seeding
        user_service = UserService(repository=repository, settings=validation_settings)
        try:
            user_service.initialize_default_users()
            with sqlite3.connect(temp_db_path) as conn:
                seeded = int(conn.execute("SELECT COUNT(*) FROM Users;").fetchone()[0])
            if seeded != len(DEFAULT_USERS):
                raise RuntimeError(f"expected {len(DEFAULT_USERS)} users, got {seeded}")
            ok, line = _print_result("Default users", True, f": {seeded} accounts")
        except Exception as exc:
            ok, line = _print_result("Default users", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Booking creation with reconciliation
        try:
            auth_service = AuthService(repository=repository, settings=validation_settings)
            employee = auth_service.resolve_actor(
                repository.get_user_by_email("employee@logistics.local").user_id
            )
            vendor = repository.list_active_users_by_role(Role.VENDOR)[0]
            form_service = TransportFormService(repository=repository, settings=validation_settings)
            form = form_service.create_form(
                employee,
                BookingDetails(booking_no="VALIDATE-1", vehicle_quantity=2),
                [Allocation(vendor_id=vendor.user_id, requested_count=2)],
            )
            if len(form["assignments"]) != 2:
                raise RuntimeError(f"expected 2 draft vehicles, got {len(form['assignments'])}")
            audited = repository.count_audit_logs()
            if audited < 2:
                raise RuntimeError(f"expected creation and reconcile audit entries, got {audited}")
            ok, line = _print_result(
                "Booking reconciliation",
                True,
                f": {form['ref_id']} ({audited} audit entries)",
            )
        except Exception as exc:
            ok, line = _print_result("Booking reconciliation", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Logistics Environment Validation")
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
