from __future__ import annotations

from dataclasses import replace

import pytest

from logistics_backend.domain.constraints import default_permissions
from logistics_backend.domain.models import (
    Actor,
    Allocation,
    AssignmentStatus,
    BookingDetails,
    Dimensions,
    DraftDetails,
    FormStatus,
    Role,
    SubmittedAssignment,
    TransportDetails,
)
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.assignment_service import (
    AlreadySubmittedError,
    AssignmentValidationError,
    VehicleAssignmentService,
)
from logistics_backend.services.auth_service import PermissionDeniedError
from logistics_backend.services.container_service import ContainerService
from logistics_backend.services.form_service import (
    FormStateError,
    FormValidationError,
    TransportFormService,
)
from logistics_backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename, service_token=None)


def _actor(repository: DataRepository, name: str, role: Role) -> Actor:
    user_id = repository.create_user(name, f"{name.lower()}@example.com")
    repository.replace_role(user_id, role, default_permissions(role), assigned_by=None)
    return Actor(user_id=user_id, role=role, permissions=frozenset(default_permissions(role)))


@pytest.fixture()
def workspace(tmp_path):
    settings = _build_test_settings(tmp_path, "vehicles.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    forms = TransportFormService(repository=repository, settings=settings)
    assignments = VehicleAssignmentService(repository=repository, settings=settings)
    containers = ContainerService(repository=repository, settings=settings, form_service=forms)
    employee = _actor(repository, "Employee", Role.EMPLOYEE)
    vendor = _actor(repository, "Vendor", Role.VENDOR)
    other_vendor = _actor(repository, "Rival", Role.VENDOR)
    form = forms.create_form(
        employee,
        BookingDetails(booking_no="BK-77", vehicle_quantity=2, shipper_name="Globex"),
        [Allocation(vendor.user_id, 2)],
    )
    return {
        "repository": repository,
        "forms": forms,
        "assignments": assignments,
        "containers": containers,
        "employee": employee,
        "vendor": vendor,
        "other_vendor": other_vendor,
        "form": form,
    }


def _details(vehicle_number: str = "MH12CD3456") -> TransportDetails:
    return TransportDetails(
        vehicle_number=vehicle_number,
        driver_name="Suresh",
        driver_mobile="9123456780",
        container_number="CSQU3054383",
    )


def _assignment_ids(workspace) -> list[int]:
    return [item["assignment_id"] for item in workspace["form"]["assignments"]]


def test_submit_transitions_draft_to_submitted(workspace):
    assignment_id = _assignment_ids(workspace)[0]

    submitted = workspace["assignments"].submit(workspace["vendor"], assignment_id, _details())

    assert isinstance(submitted, SubmittedAssignment)
    assert submitted.submitted_by == workspace["vendor"].user_id
    assert submitted.details.vehicle_number == "MH12CD3456"


def test_second_submit_raises_already_submitted(workspace):
    assignment_id = _assignment_ids(workspace)[0]
    workspace["assignments"].submit(workspace["vendor"], assignment_id, _details())

    with pytest.raises(AlreadySubmittedError):
        workspace["assignments"].submit(workspace["vendor"], assignment_id, _details("MH12ZZ0000"))

    stored = workspace["repository"].get_assignment(assignment_id)
    assert stored.details.vehicle_number == "MH12CD3456"


def test_draft_save_is_rejected_after_submission(workspace):
    assignment_id = _assignment_ids(workspace)[0]
    workspace["assignments"].save_draft(
        workspace["vendor"],
        assignment_id,
        DraftDetails(vehicle_number="MH12"),
    )
    workspace["assignments"].submit(workspace["vendor"], assignment_id, _details())

    with pytest.raises(AlreadySubmittedError):
        workspace["assignments"].save_draft(
            workspace["vendor"],
            assignment_id,
            DraftDetails(driver_name="Someone else"),
        )


def test_partial_draft_is_saved(workspace):
    assignment_id = _assignment_ids(workspace)[1]

    saved = workspace["assignments"].save_draft(
        workspace["vendor"],
        assignment_id,
        DraftDetails(vehicle_number="GJ01XY9999"),
    )

    assert saved.status is AssignmentStatus.DRAFT
    assert saved.details.vehicle_number == "GJ01XY9999"
    assert saved.details.driver_name is None


def test_missing_driver_details_are_rejected(workspace):
    assignment_id = _assignment_ids(workspace)[0]

    with pytest.raises(AssignmentValidationError, match="driver_mobile"):
        workspace["assignments"].submit(
            workspace["vendor"],
            assignment_id,
            TransportDetails(vehicle_number="MH12", driver_name="X", driver_mobile=" "),
        )


def test_vendor_cannot_touch_another_vendors_assignment(workspace):
    assignment_id = _assignment_ids(workspace)[0]

    with pytest.raises(PermissionDeniedError):
        workspace["assignments"].submit(workspace["other_vendor"], assignment_id, _details())
    with pytest.raises(PermissionDeniedError):
        workspace["assignments"].get_assignment(workspace["other_vendor"], assignment_id)


def test_vendor_lists_assignments_and_assigned_forms(workspace):
    workspace["assignments"].submit(workspace["vendor"], _assignment_ids(workspace)[0], _details())

    drafts = workspace["assignments"].list_for_vendor(workspace["vendor"], status=AssignmentStatus.DRAFT)
    summaries = workspace["assignments"].list_assigned_forms(workspace["vendor"])

    assert len(drafts) == 1
    assert drafts[0]["ref_id"] == workspace["form"]["ref_id"]
    assert summaries == [
        {
            "form_id": workspace["form"]["form_id"],
            "ref_id": workspace["form"]["ref_id"],
            "booking_no": "BK-77",
            "shipper_name": "Globex",
            "status": "pending",
            "created_at": workspace["form"]["created_at"],
            "total_vehicles": 2,
            "submitted_vehicles": 1,
        }
    ]
    assert workspace["assignments"].list_assigned_forms(workspace["other_vendor"]) == []


def test_employee_cannot_submit_vehicle_details(workspace):
    with pytest.raises(PermissionDeniedError):
        workspace["assignments"].submit(
            workspace["employee"],
            _assignment_ids(workspace)[0],
            _details(),
        )


def test_form_submission_requires_containers_and_all_vehicles(workspace):
    form_id = workspace["form"]["form_id"]
    employee = workspace["employee"]

    with pytest.raises(FormValidationError, match="container"):
        workspace["forms"].submit_form(employee, form_id)

    workspace["containers"].add_container(
        employee,
        form_id,
        container_number="CSQU3054383",
        seal_number="SEAL-1",
        do_number="DO-1",
        iso_code="22G1",
        dimensions=Dimensions(length=6.06, width=2.44, height=2.59),
    )
    with pytest.raises(FormValidationError, match="vehicle"):
        workspace["forms"].submit_form(employee, form_id)

    for index, assignment_id in enumerate(_assignment_ids(workspace)):
        workspace["assignments"].submit(workspace["vendor"], assignment_id, _details(f"MH12AB000{index}"))

    completed = workspace["forms"].submit_form(employee, form_id)

    assert completed["status"] == FormStatus.COMPLETED.value
    assert completed["completion"]["overall_complete"] is True
    with pytest.raises(FormStateError):
        workspace["forms"].submit_form(employee, form_id)


def test_search_matches_submitted_vehicle_numbers(workspace):
    workspace["assignments"].submit(workspace["vendor"], _assignment_ids(workspace)[0], _details("TN09QQ4321"))

    hits = workspace["forms"].list_forms(workspace["employee"], search="qq4321")
    misses = workspace["forms"].list_forms(workspace["employee"], search="nothing-here")

    assert [form.form_id for form in hits] == [workspace["form"]["form_id"]]
    assert misses == []
