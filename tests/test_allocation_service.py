from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import replace

import pytest

from logistics_backend.domain.constraints import default_permissions
from logistics_backend.domain.models import (
    Actor,
    Allocation,
    BookingDetails,
    DraftAssignment,
    NotificationEvent,
    Role,
    SubmittedAssignment,
    TransportDetails,
)
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.allocation_service import (
    AllocationReconciliationService,
    InvalidAllocationError,
    reconcile,
)
from logistics_backend.services.assignment_service import VehicleAssignmentService
from logistics_backend.services.form_service import FormNotFoundError, TransportFormService
from logistics_backend.services.notification_service import (
    InboxNotifier,
    NotificationDeliveryError,
)
from logistics_backend.utils.config import get_settings


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[int, NotificationEvent]] = []

    def notify(self, user_id: int, event: NotificationEvent) -> None:
        self.calls.append((user_id, event))


class FailingNotifier:
    def __init__(self) -> None:
        self.attempts = 0

    def notify(self, user_id: int, event: NotificationEvent) -> None:
        self.attempts += 1
        raise NotificationDeliveryError("inbox unavailable")


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename, service_token=None)


def _actor(repository: DataRepository, name: str, role: Role) -> Actor:
    user_id = repository.create_user(name, f"{name.lower()}@example.com")
    repository.replace_role(user_id, role, default_permissions(role), assigned_by=None)
    return Actor(user_id=user_id, role=role, permissions=frozenset(default_permissions(role)))


def _build(tmp_path, filename: str, notifier=None):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    notifier = notifier or RecordingNotifier()
    reconciliation = AllocationReconciliationService(
        repository=repository,
        settings=settings,
        notifier=notifier,
    )
    forms = TransportFormService(
        repository=repository,
        settings=settings,
        reconciliation_service=reconciliation,
    )
    assignments = VehicleAssignmentService(repository=repository, settings=settings)
    employee = _actor(repository, "Employee", Role.EMPLOYEE)
    vendor_a = _actor(repository, "VendorA", Role.VENDOR)
    vendor_b = _actor(repository, "VendorB", Role.VENDOR)
    return repository, reconciliation, forms, assignments, notifier, employee, vendor_a, vendor_b


def _details(vehicle_quantity: int = 10) -> BookingDetails:
    return BookingDetails(booking_no="BK-1", vehicle_quantity=vehicle_quantity, shipper_name="Acme")


def _vendor_records(repository: DataRepository, form_id: int, vendor_id: int):
    return [
        item
        for item in repository.list_assignments_for_form(form_id)
        if item.vendor_id == vendor_id
    ]


def _transport(vehicle_number: str) -> TransportDetails:
    return TransportDetails(
        vehicle_number=vehicle_number,
        driver_name="Ravi",
        driver_mobile="9876543210",
    )


def test_create_form_persists_drafts_and_notifies_each_vendor(tmp_path):
    repository, _, forms, _, notifier, employee, vendor_a, vendor_b = _build(tmp_path, "create.db")

    form = forms.create_form(
        employee,
        _details(),
        [Allocation(vendor_a.user_id, 2), Allocation(vendor_b.user_id, 1)],
    )

    assert form["ref_id"].startswith("IFL")
    assert len(form["assignments"]) == 3
    assert all(item["status"] == "draft" for item in form["assignments"])
    assert sorted(user_id for user_id, _ in notifier.calls) == sorted(
        [vendor_a.user_id, vendor_a.user_id, vendor_b.user_id]
    )
    assert all(event.type == "vehicle_assigned" for _, event in notifier.calls)
    notified_ids = {event.data["assignment_id"] for _, event in notifier.calls}
    assert notified_ids == {item["assignment_id"] for item in form["assignments"]}


def test_increase_allocation_creates_three_and_notifies_three(tmp_path):
    repository, _, forms, _, notifier, employee, vendor_a, _ = _build(tmp_path, "increase.db")
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 2)])
    notifier.calls.clear()

    result = forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 5)])

    assert len(result.created) == 3
    assert result.deleted == []
    assert len(_vendor_records(repository, form["form_id"], vendor_a.user_id)) == 5
    assert [user_id for user_id, _ in notifier.calls] == [vendor_a.user_id] * 3


def test_decrease_allocation_removes_oldest_drafts(tmp_path):
    repository, _, forms, _, notifier, employee, vendor_a, _ = _build(tmp_path, "decrease.db")
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 3)])
    forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 5)])
    before = sorted(
        _vendor_records(repository, form["form_id"], vendor_a.user_id),
        key=lambda item: (item.created_at, item.assignment_id),
    )
    notifier.calls.clear()

    result = forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 2)])

    assert result.created == []
    assert result.deleted == [item.assignment_id for item in before[:3]]
    remaining = _vendor_records(repository, form["form_id"], vendor_a.user_id)
    assert {item.assignment_id for item in remaining} == {item.assignment_id for item in before[3:]}
    assert notifier.calls == []


def test_decrease_below_submitted_count_is_over_provisioned(tmp_path):
    repository, _, forms, assignments, _, employee, vendor_a, _ = _build(tmp_path, "oversubmitted.db")
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 5)])
    drafts = _vendor_records(repository, form["form_id"], vendor_a.user_id)
    assignments.submit(vendor_a, drafts[0].assignment_id, _transport("MH01AA0001"))
    assignments.submit(vendor_a, drafts[1].assignment_id, _transport("MH01AA0002"))

    result = forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 1)])

    assert len(result.deleted) == 3
    remaining = _vendor_records(repository, form["form_id"], vendor_a.user_id)
    assert len(remaining) == 2
    assert all(isinstance(item, SubmittedAssignment) for item in remaining)


def test_dropped_vendor_is_deallocated(tmp_path):
    repository, _, forms, _, _, employee, vendor_a, vendor_b = _build(tmp_path, "dropped.db")
    form = forms.create_form(
        employee,
        _details(),
        [Allocation(vendor_a.user_id, 1), Allocation(vendor_b.user_id, 2)],
    )

    result = forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 1)])

    assert len(result.deleted) == 2
    assert _vendor_records(repository, form["form_id"], vendor_b.user_id) == []
    assert [item.vendor_id for item in repository.list_allocations(form["form_id"])] == [
        vendor_a.user_id
    ]


def test_repeated_update_is_idempotent(tmp_path):
    repository, _, forms, _, notifier, employee, vendor_a, _ = _build(tmp_path, "idempotent.db")
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 3)])
    notifier.calls.clear()

    result = forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 3)])

    assert result.created == [] and result.deleted == [] and result.skipped == []
    assert notifier.calls == []
    assert repository.count_assignments(form["form_id"]) == 3


def test_notifier_failure_does_not_roll_back_drafts(tmp_path):
    notifier = FailingNotifier()
    repository, _, forms, _, _, employee, vendor_a, _ = _build(tmp_path, "notify_fail.db", notifier)

    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 2)])

    assert notifier.attempts == 2
    assert repository.count_assignments(form["form_id"]) == 2


def test_allocations_over_vehicle_quantity_abort_without_writes(tmp_path):
    repository, _, forms, _, notifier, employee, vendor_a, vendor_b = _build(tmp_path, "too_many.db")
    form = forms.create_form(employee, _details(vehicle_quantity=3), [Allocation(vendor_a.user_id, 1)])
    notifier.calls.clear()

    with pytest.raises(InvalidAllocationError):
        forms.update_allocations(
            employee,
            form["form_id"],
            [Allocation(vendor_a.user_id, 2), Allocation(vendor_b.user_id, 2)],
        )

    assert repository.count_assignments(form["form_id"]) == 1
    assert [item.requested_count for item in repository.list_allocations(form["form_id"])] == [1]
    assert notifier.calls == []


def test_concurrent_submit_wins_and_stale_delete_is_skipped(tmp_path):
    repository, reconciliation, forms, assignments, _, employee, vendor_a, _ = _build(
        tmp_path,
        "submit_vs_delete.db",
    )
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 2)])
    existing = repository.list_assignments_for_form(form["form_id"])
    stale_plan = reconcile(form["form_id"], [Allocation(vendor_a.user_id, 0)], existing)
    assert len(stale_plan.deleted) == 2

    raced_id = stale_plan.deleted[0]
    assignments.submit(vendor_a, raced_id, _transport("KA01BB1234"))

    with repository.transaction() as conn:
        result = reconciliation.apply_plan(form["form_id"], stale_plan, employee, conn)

    assert result.skipped == [raced_id]
    assert result.deleted == [stale_plan.deleted[1]]
    survivor = repository.get_assignment(raced_id)
    assert isinstance(survivor, SubmittedAssignment)
    assert survivor.details.vehicle_number == "KA01BB1234"


def test_failed_transaction_rolls_back_partial_reconcile(tmp_path):
    repository, reconciliation, forms, _, _, employee, vendor_a, _ = _build(tmp_path, "rollback.db")
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 1)])

    with pytest.raises(RuntimeError):
        with repository.transaction() as conn:
            reconciliation.reconcile_form(
                form["form_id"],
                [Allocation(vendor_a.user_id, 4)],
                employee,
                conn,
            )
            raise RuntimeError("abort after reconcile")

    assert repository.count_assignments(form["form_id"]) == 1


def test_inbox_notifier_retries_then_delivers(tmp_path, monkeypatch):
    settings = replace(_build_test_settings(tmp_path, "retry.db"), notification_max_attempts=3)
    repository = DataRepository(settings)
    repository.initialize_database()
    original = repository.insert_notification
    failures = {"remaining": 2}

    def flaky_insert(*args, **kwargs):
        if failures["remaining"]:
            failures["remaining"] -= 1
            raise sqlite3.OperationalError("database is locked")
        return original(*args, **kwargs)

    monkeypatch.setattr(repository, "insert_notification", flaky_insert)
    notifier = InboxNotifier(repository=repository, settings=settings, retry_delay_seconds=0)

    notifier.notify(5, NotificationEvent(type="vehicle_assigned", title="t", message="m"))

    assert repository.count_unread_notifications(5) == 1


def test_inbox_notifier_raises_after_exhausting_attempts(tmp_path, monkeypatch):
    settings = replace(_build_test_settings(tmp_path, "exhaust.db"), notification_max_attempts=2)
    repository = DataRepository(settings)
    repository.initialize_database()
    calls = {"count": 0}

    def broken_insert(*args, **kwargs):
        calls["count"] += 1
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repository, "insert_notification", broken_insert)
    notifier = InboxNotifier(repository=repository, settings=settings, retry_delay_seconds=0)

    with pytest.raises(NotificationDeliveryError):
        notifier.notify(5, NotificationEvent(type="vehicle_assigned", title="t", message="m"))
    assert calls["count"] == 2


def test_draft_ids_returned_by_apply_plan_are_persisted(tmp_path):
    repository, reconciliation, forms, _, _, employee, vendor_a, _ = _build(tmp_path, "ids.db")
    form = forms.create_form(employee, _details(), [])

    with repository.transaction() as conn:
        result = reconciliation.reconcile_form(
            form["form_id"],
            [Allocation(vendor_a.user_id, 2, transporter_name="Alpha")],
            employee,
            conn,
        )

    for draft in result.created:
        stored = repository.get_assignment(draft.assignment_id)
        assert isinstance(stored, DraftAssignment)
        assert stored.vendor_id == vendor_a.user_id


class ExplodingNotifier:
    def __init__(self) -> None:
        self.attempts = 0

    def notify(self, user_id: int, event: NotificationEvent) -> None:
        self.attempts += 1
        raise ConnectionError("push gateway unreachable")


def test_allocations_to_unknown_or_non_vendor_users_are_rejected(tmp_path):
    repository, _, forms, _, notifier, employee, vendor_a, _ = _build(tmp_path, "non_vendor.db")

    with pytest.raises(InvalidAllocationError, match="not an active vendor"):
        forms.create_form(employee, _details(), [Allocation(99999, 2)])
    assert repository.list_forms() == []

    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 1)])
    with pytest.raises(InvalidAllocationError, match="not an active vendor"):
        forms.update_allocations(
            employee,
            form["form_id"],
            [Allocation(vendor_a.user_id, 1), Allocation(employee.user_id, 1)],
        )

    assert repository.count_assignments(form["form_id"]) == 1
    assert [user_id for user_id, _ in notifier.calls] == [vendor_a.user_id]


def test_demoted_vendor_can_still_be_deallocated(tmp_path):
    repository, _, forms, _, _, employee, vendor_a, _ = _build(tmp_path, "demoted.db")
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 2)])
    repository.replace_role(
        vendor_a.user_id,
        Role.EMPLOYEE,
        default_permissions(Role.EMPLOYEE),
        assigned_by=None,
    )

    result = forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 0)])

    assert len(result.deleted) == 2
    assert repository.count_assignments(form["form_id"]) == 0


def test_unexpected_notifier_error_is_logged_not_raised(tmp_path, caplog):
    notifier = ExplodingNotifier()
    repository, reconciliation, forms, _, _, employee, vendor_a, _ = _build(
        tmp_path,
        "notify_crash.db",
        notifier,
    )

    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 2)])

    assert notifier.attempts == 2
    assert repository.count_assignments(form["form_id"]) == 2
    assert "Notifier raised unexpectedly" in caplog.text


def _race_before_transaction(monkeypatch, repository: DataRepository, competing_edit) -> None:
    """Run `competing_edit` once, just before the next write transaction takes the lock."""
    original = repository.transaction
    state = {"raced": False}

    @contextmanager
    def racing_transaction():
        if not state["raced"]:
            state["raced"] = True
            competing_edit()
        with original() as conn:
            yield conn

    monkeypatch.setattr(repository, "transaction", racing_transaction)


def test_allocation_update_uses_quantity_read_under_the_lock(tmp_path, monkeypatch):
    repository, _, forms, _, _, employee, vendor_a, _ = _build(tmp_path, "stale_quantity.db")
    form = forms.create_form(employee, _details(vehicle_quantity=5), [Allocation(vendor_a.user_id, 1)])
    _race_before_transaction(
        monkeypatch,
        repository,
        lambda: forms.update_form(employee, form["form_id"], _details(vehicle_quantity=2)),
    )

    with pytest.raises(InvalidAllocationError, match="exceeds total vehicles"):
        forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 5)])

    stored = repository.get_form(form["form_id"])
    assert stored.booking_details.vehicle_quantity == 2
    assert [item.requested_count for item in repository.list_allocations(form["form_id"])] == [1]
    assert repository.count_assignments(form["form_id"]) == 1


def test_allocation_update_sees_a_concurrent_soft_delete(tmp_path, monkeypatch):
    repository, _, forms, _, _, employee, vendor_a, _ = _build(tmp_path, "stale_deleted.db")
    admin = _actor(repository, "Admin", Role.ADMIN)
    form = forms.create_form(employee, _details(), [Allocation(vendor_a.user_id, 1)])
    _race_before_transaction(
        monkeypatch,
        repository,
        lambda: forms.delete_form(admin, form["form_id"], reason="cancelled"),
    )

    with pytest.raises(FormNotFoundError):
        forms.update_allocations(employee, form["form_id"], [Allocation(vendor_a.user_id, 3)])

    assert repository.count_assignments(form["form_id"]) == 1
