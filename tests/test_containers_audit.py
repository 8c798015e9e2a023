from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from logistics_backend.domain.constraints import default_permissions
from logistics_backend.domain.models import Actor, Allocation, BookingDetails, Dimensions, Role
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.access_service import (
    AccessLinkExpiredError,
    AccessLinkNotFoundError,
    AccessLinkService,
)
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import AuthService, PermissionDeniedError
from logistics_backend.services.container_service import ContainerService, ContainerValidationError
from logistics_backend.services.form_service import FormNotFoundError, TransportFormService
from logistics_backend.services.notification_service import (
    NotificationService,
    PreferenceValidationError,
)
from logistics_backend.services.user_service import DEFAULT_USERS, UserService
from logistics_backend.utils.clock import utc_now
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
    settings = _build_test_settings(tmp_path, "containers.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    audit = AuditService(repository=repository, settings=settings)
    forms = TransportFormService(repository=repository, settings=settings, audit_service=audit)
    admin = _actor(repository, "Admin", Role.ADMIN)
    employee = _actor(repository, "Employee", Role.EMPLOYEE)
    vendor = _actor(repository, "Vendor", Role.VENDOR)
    form = forms.create_form(
        employee,
        BookingDetails(booking_no="BK-9", vehicle_quantity=1),
        [Allocation(vendor.user_id, 1)],
    )
    return {
        "settings": settings,
        "repository": repository,
        "audit": audit,
        "forms": forms,
        "containers": ContainerService(
            repository=repository,
            settings=settings,
            form_service=forms,
            audit_service=audit,
        ),
        "links": AccessLinkService(repository=repository, settings=settings, audit_service=audit),
        "users": UserService(repository=repository, settings=settings, audit_service=audit),
        "admin": admin,
        "employee": employee,
        "vendor": vendor,
        "form": form,
    }


def _add(workspace, number: str):
    return workspace["containers"].add_container(
        workspace["employee"],
        workspace["form"]["form_id"],
        container_number=number,
        seal_number="SEAL",
        do_number="DO",
        iso_code="22G1",
        dimensions=Dimensions(length=6.0, width=2.4, height=2.6),
    )


def test_container_iso_flag_and_duplicate_rejection(workspace):
    valid = _add(workspace, "csqu3054383")
    invalid = _add(workspace, "ABCD1234567")

    assert valid.container_number == "CSQU3054383"
    assert valid.iso_validated is True
    assert invalid.iso_validated is False
    with pytest.raises(ContainerValidationError, match="already exists"):
        _add(workspace, "CSQU3054383")

    form = workspace["repository"].get_form(workspace["form"]["form_id"])
    assert form.completion.containers_complete is True


def test_container_update_revalidates_number_and_vendor_assignment(workspace):
    container = _add(workspace, "ABCD1234567")

    updated = workspace["containers"].update_container(
        workspace["employee"],
        container.container_id,
        {"container_number": "CSQU3054383", "seal_intact": False},
    )
    assigned = workspace["containers"].assign_vendor_to_container(
        workspace["employee"],
        container.container_id,
        workspace["vendor"].user_id,
    )

    assert updated.iso_validated is True
    assert updated.seal_intact is False
    assert assigned.assigned_vendors == (workspace["vendor"].user_id,)
    with pytest.raises(ContainerValidationError):
        workspace["containers"].assign_vendor_to_container(
            workspace["employee"],
            container.container_id,
            workspace["employee"].user_id,
        )


def test_removing_last_container_clears_completion_flag(workspace):
    container = _add(workspace, "CSQU3054383")

    workspace["containers"].remove_container(workspace["employee"], container.container_id)

    form = workspace["repository"].get_form(workspace["form"]["form_id"])
    assert form.completion.containers_complete is False
    assert workspace["containers"].list_containers(workspace["employee"], form.form_id) == []


def test_audit_trail_is_admin_only_and_newest_first(workspace):
    form_id = workspace["form"]["form_id"]
    _add(workspace, "CSQU3054383")

    logs = workspace["audit"].get_audit_logs(workspace["admin"], "transport_form", form_id)
    recent = workspace["audit"].get_recent_activity(workspace["admin"])

    actions = [entry["action"] for entry in logs]
    assert set(actions) == {"created", "vehicles_reconciled"}
    assert logs[0]["user"] == {"name": "Employee", "email": "employee@example.com"}
    assert recent[0]["entity_type"] == "container"
    assert workspace["repository"].count_audit_logs() == len(logs) + 1
    with pytest.raises(PermissionDeniedError):
        workspace["audit"].get_recent_activity(workspace["employee"])


def test_soft_delete_hides_form_until_restored(workspace):
    form_id = workspace["form"]["form_id"]

    with pytest.raises(PermissionDeniedError):
        workspace["forms"].delete_form(workspace["employee"], form_id, reason="typo")
    workspace["forms"].delete_form(workspace["admin"], form_id, reason="duplicate booking")

    with pytest.raises(FormNotFoundError):
        workspace["forms"].get_form(workspace["employee"], form_id)
    assert workspace["forms"].get_form(workspace["admin"], form_id)["deletion_reason"] == "duplicate booking"

    restored = workspace["forms"].restore_form(workspace["admin"], form_id)
    assert restored["is_deleted"] is False
    assert workspace["forms"].get_form_stats(workspace["employee"])["total"] == 1


def test_ref_ids_increment_within_working_year(workspace):
    second = workspace["forms"].create_form(
        workspace["employee"],
        BookingDetails(booking_no="BK-10", vehicle_quantity=0),
    )

    first_counter = int(workspace["form"]["ref_id"].rsplit("-", 1)[1])
    second_counter = int(second["ref_id"].rsplit("-", 1)[1])
    assert second_counter == first_counter + 1


def test_access_link_lifecycle(workspace, monkeypatch):
    container = _add(workspace, "CSQU3054383")
    links = workspace["links"]
    link = links.generate_access_link(
        workspace["admin"],
        workspace["form"]["form_id"],
        container_ids=[container.container_id],
        expiry_hours=1,
    )

    shared = links.access_form_by_token(link.token)
    assert shared["form"]["ref_id"] == workspace["form"]["ref_id"]
    assert "employee_id" not in shared["form"]
    assert [item["container_id"] for item in shared["containers"]] == [container.container_id]
    assert links.list_access_links(workspace["admin"])[0].access_count == 1

    later = utc_now() + timedelta(hours=2)
    monkeypatch.setattr("logistics_backend.services.access_service.utc_now", lambda: later)
    with pytest.raises(AccessLinkExpiredError, match="expired"):
        links.access_form_by_token(link.token)
    monkeypatch.undo()

    links.revoke_access_link(workspace["admin"], link.token)
    with pytest.raises(AccessLinkExpiredError, match="revoked"):
        links.access_form_by_token(link.token)
    with pytest.raises(AccessLinkNotFoundError):
        links.access_form_by_token("not-a-token")
    with pytest.raises(PermissionDeniedError):
        links.generate_access_link(workspace["employee"], workspace["form"]["form_id"])


def test_default_users_are_seeded_once(workspace):
    users = workspace["users"]

    assert users.initialize_default_users() is True
    assert users.initialize_default_users() is False
    assert len(workspace["repository"].list_users()) == 3 + len(DEFAULT_USERS)


def test_role_assignment_replaces_previous_role(workspace):
    users = workspace["users"]
    auth = AuthService(repository=workspace["repository"], settings=workspace["settings"])
    vendor_id = workspace["vendor"].user_id

    view = users.assign_role(workspace["admin"], vendor_id, Role.ORDER_PLACER)
    actor = auth.resolve_actor(vendor_id)

    assert view["role"] == "order_placer"
    assert actor.role is Role.ORDER_PLACER
    assert actor.permissions == frozenset({"forms.view_readonly"})
    assert [user.user_id for user in users.list_vendors(workspace["admin"])] == []
    with pytest.raises(PermissionDeniedError):
        users.assign_role(workspace["employee"], vendor_id, Role.ADMIN)


def test_vendor_notification_inbox(workspace):
    inbox = NotificationService(repository=workspace["repository"], settings=workspace["settings"])
    vendor = workspace["vendor"]

    notifications = inbox.list_notifications(vendor)
    assert len(notifications) == 1
    assert notifications[0].type == "vehicle_assigned"
    assert inbox.unread_count(vendor) == 1

    with pytest.raises(PermissionDeniedError):
        inbox.mark_as_read(workspace["employee"], notifications[0].notification_id)
    inbox.mark_as_read(vendor, notifications[0].notification_id)
    assert inbox.unread_count(vendor) == 0


def test_notification_preferences_default_then_persist_partial_updates(workspace):
    inbox = NotificationService(repository=workspace["repository"], settings=workspace["settings"])
    vendor = workspace["vendor"]

    defaults = inbox.get_preferences(vendor)
    assert defaults.notification_types == ("vehicle_assigned",)
    assert defaults.timezone == "Asia/Kolkata"
    assert workspace["repository"].get_preferences(vendor.user_id) is None

    saved = inbox.update_preferences(vendor, {"language": "hi", "push_notifications": False})

    assert saved.language == "hi"
    assert saved.push_notifications is False
    assert saved.email_notifications is True
    assert workspace["repository"].get_preferences(vendor.user_id) == saved
    with pytest.raises(PreferenceValidationError):
        inbox.update_preferences(vendor, {"theme": "dark"})
    with pytest.raises(PreferenceValidationError):
        inbox.update_preferences(vendor, {"timezone": "  "})


def test_inbox_skips_event_types_the_vendor_opted_out_of(workspace):
    inbox = NotificationService(repository=workspace["repository"], settings=workspace["settings"])
    vendor = workspace["vendor"]
    inbox.update_preferences(vendor, {"notification_types": []})

    second = workspace["forms"].create_form(
        workspace["employee"],
        BookingDetails(booking_no="BK-11", vehicle_quantity=2),
        [Allocation(vendor.user_id, 2)],
    )

    assert inbox.unread_count(vendor) == 1
    assert workspace["repository"].count_assignments(second["form_id"]) == 2
