"""Transport form (booking) lifecycle: creation, edits, submission and soft delete."""

from __future__ import annotations

import sqlite3
from dataclasses import asdict
from datetime import date, datetime
from typing import Any, Optional, Sequence

from logistics_backend.domain.constraints import InvalidAllocationError
from logistics_backend.domain.models import (
    Actor,
    Allocation,
    BookingDetails,
    CompletionStatus,
    FormStatus,
    ReconcileResult,
    SubmittedAssignment,
    TransportForm,
)
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.allocation_service import AllocationReconciliationService
from logistics_backend.services.assignment_service import assignment_to_dict
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import PermissionDeniedError, require_permission
from logistics_backend.services.completion import compute_completion, refresh_completion
from logistics_backend.utils.clock import to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)


class FormNotFoundError(Exception):
    """Raised when a form id does not exist or is hidden from the caller."""


class FormValidationError(Exception):
    """Raised when booking details are malformed."""


class FormStateError(Exception):
    """Raised when an operation conflicts with the form's lifecycle state."""


def compute_working_year(moment: datetime, start_month: int = 4) -> str:
    """Financial working year label, e.g. 2025-26 for any date from April 2025 to March 2026."""
    start_year = moment.year if moment.month >= start_month else moment.year - 1
    return f"{start_year}-{str(start_year + 1)[-2:]}"


def format_ref_id(prefix: str, working_year: str, counter: int) -> str:
    return f"{prefix}{working_year}-{counter:05d}"


def form_to_dict(form: TransportForm) -> dict[str, Any]:
    return {
        "form_id": form.form_id,
        "ref_id": form.ref_id,
        "employee_id": form.employee_id,
        "status": form.status.value,
        "booking_details": form.booking_details.to_dict(),
        "completion": form.completion.to_dict(),
        "created_at": form.created_at,
        "updated_at": form.updated_at,
        "submitted_at": form.submitted_at,
        "is_deleted": form.is_deleted,
        "deleted_at": form.deleted_at,
        "deleted_by": form.deleted_by,
        "deletion_reason": form.deletion_reason,
    }


def _validate_booking_details(details: BookingDetails) -> None:
    if not details.booking_no.strip():
        raise FormValidationError("booking_no is required")
    if details.vehicle_quantity < 0:
        raise FormValidationError("vehicle_quantity must be >= 0")


class TransportFormService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        reconciliation_service: Optional[AllocationReconciliationService] = None,
        audit_service: Optional[AuditService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._audit_service = audit_service or AuditService(
            repository=self._repository,
            settings=self._settings,
        )
        self._reconciliation_service = reconciliation_service or AllocationReconciliationService(
            repository=self._repository,
            settings=self._settings,
            audit_service=self._audit_service,
        )

    # ------------------------------------------------------------------
    # Access helpers
    # ------------------------------------------------------------------

    def load_form(
        self,
        form_id: int,
        include_deleted: bool = False,
        conn: Optional[sqlite3.Connection] = None,
    ) -> TransportForm:
        form = self._repository.get_form(form_id, conn=conn)
        if form is None or (form.is_deleted and not include_deleted):
            raise FormNotFoundError(f"Form {form_id} not found")
        return form

    def _load_for_edit(self, actor: Actor, form_id: int, conn: sqlite3.Connection) -> TransportForm:
        """Read the form under the write lock and check it can still be edited."""
        form = self.load_form(form_id, conn=conn)
        self.require_editable(actor, form)
        return form

    def can_view(self, actor: Actor, form: TransportForm) -> bool:
        if actor.is_admin or actor.has_permission("forms.view_readonly"):
            return True
        if actor.has_permission("forms.view_own") and form.employee_id == actor.user_id:
            return True
        if actor.has_permission("forms.view_assigned"):
            return any(
                item.vendor_id == actor.user_id
                for item in self._repository.list_assignments_for_form(form.form_id)
            )
        return False

    def require_editable(self, actor: Actor, form: TransportForm) -> None:
        require_permission(actor, "forms.edit")
        if not actor.is_admin and form.employee_id != actor.user_id:
            raise PermissionDeniedError("You can only edit your own forms")
        if form.status is FormStatus.COMPLETED:
            raise FormStateError(f"Form {form.ref_id} is already completed")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_form(
        self,
        actor: Actor,
        booking_details: BookingDetails,
        allocations: Sequence[Allocation] = (),
    ) -> dict[str, Any]:
        require_permission(actor, "forms.create")
        _validate_booking_details(booking_details)

        now = utc_now()
        working_year = compute_working_year(now, self._settings.working_year_start_month)
        with self._repository.transaction() as conn:
            counter = self._repository.next_ref_counter(working_year, to_iso(now), conn=conn)
            ref_id = format_ref_id(self._settings.ref_id_prefix, working_year, counter)
            form_id = self._repository.insert_form(
                ref_id=ref_id,
                employee_id=actor.user_id,
                booking_details=booking_details,
                completion=CompletionStatus(),
                created_at=to_iso(now),
                conn=conn,
            )
            result = self._reconciliation_service.reconcile_form(
                form_id,
                allocations,
                actor,
                conn,
                total_vehicle_quantity=booking_details.vehicle_quantity,
            )
            refresh_completion(self._repository, form_id, conn)
            self._audit_service.log_action(
                entity_type="transport_form",
                entity_id=form_id,
                action="created",
                user_id=actor.user_id,
                changes={"after": booking_details.to_dict()},
                metadata={"ref_id": ref_id},
                conn=conn,
            )

        self._reconciliation_service.notify_created(result, ref_id=ref_id)
        logger.info("Created form %s (%s) with %s draft vehicles", form_id, ref_id, len(result.created))
        return self._form_view(self.load_form(form_id))

    def get_form(self, actor: Actor, form_id: int) -> dict[str, Any]:
        form = self.load_form(form_id, include_deleted=actor.is_admin)
        if not self.can_view(actor, form):
            raise PermissionDeniedError("You do not have access to this form")
        return self._form_view(form)

    def _form_view(self, form: TransportForm) -> dict[str, Any]:
        payload = form_to_dict(form)
        payload["allocations"] = [
            asdict(item) for item in self._repository.list_allocations(form.form_id)
        ]
        payload["assignments"] = [
            assignment_to_dict(item)
            for item in self._repository.list_assignments_for_form(form.form_id)
        ]
        payload["containers"] = [
            asdict(item) for item in self._repository.list_containers(form.form_id)
        ]
        return payload

    def list_forms(
        self,
        actor: Actor,
        status: Optional[FormStatus] = None,
        employee_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        search: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[TransportForm]:
        if actor.is_admin or actor.has_permission("forms.view_readonly"):
            scoped_employee = employee_id
        elif actor.has_permission("forms.view_own"):
            scoped_employee = actor.user_id
        else:
            raise PermissionDeniedError("You do not have access to forms")

        forms = self._repository.list_forms(
            employee_id=scoped_employee,
            include_deleted=include_deleted and actor.is_admin,
        )
        if status is not None:
            forms = [form for form in forms if form.status is status]
        if date_from is not None:
            forms = [form for form in forms if form.created_at[:10] >= date_from.isoformat()]
        if date_to is not None:
            forms = [form for form in forms if form.created_at[:10] <= date_to.isoformat()]
        if search:
            needle = search.strip().lower()
            forms = [form for form in forms if self._matches_search(form, needle)]
        return forms[: self._settings.list_page_limit]

    def _matches_search(self, form: TransportForm, needle: str) -> bool:
        if needle in form.ref_id.lower():
            return True
        if needle in form.booking_details.shipper_name.lower():
            return True
        return any(
            needle in item.details.vehicle_number.lower()
            for item in self._repository.list_assignments_for_form(form.form_id)
            if isinstance(item, SubmittedAssignment)
        )

    def update_form(self, actor: Actor, form_id: int, booking_details: BookingDetails) -> dict[str, Any]:
        _validate_booking_details(booking_details)

        with self._repository.transaction() as conn:
            form = self._load_for_edit(actor, form_id, conn)
            allocated = sum(
                item.requested_count
                for item in self._repository.list_allocations(form_id, conn=conn)
            )
            if allocated > booking_details.vehicle_quantity:
                raise InvalidAllocationError(
                    f"Allocated ({allocated}) exceeds total vehicles ({booking_details.vehicle_quantity})"
                )
            self._repository.update_form(
                form_id,
                {"booking_details": booking_details, "updated_at": to_iso(utc_now())},
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="transport_form",
                entity_id=form_id,
                action="updated",
                user_id=actor.user_id,
                changes={
                    "before": form.booking_details.to_dict(),
                    "after": booking_details.to_dict(),
                },
                conn=conn,
            )
        return self._form_view(self.load_form(form_id))

    def update_allocations(
        self,
        actor: Actor,
        form_id: int,
        allocations: Sequence[Allocation],
    ) -> ReconcileResult:
        with self._repository.transaction() as conn:
            form = self._load_for_edit(actor, form_id, conn)
            result = self._reconciliation_service.reconcile_form(
                form_id,
                allocations,
                actor,
                conn,
                total_vehicle_quantity=form.booking_details.vehicle_quantity,
            )
            refresh_completion(self._repository, form_id, conn)

        self._reconciliation_service.notify_created(result, ref_id=form.ref_id)
        return result

    def submit_form(self, actor: Actor, form_id: int) -> dict[str, Any]:
        with self._repository.transaction() as conn:
            form = self._load_for_edit(actor, form_id, conn)
            completion = compute_completion(self._repository, form_id, conn)
            if not completion.containers_complete:
                raise FormValidationError("At least one container is required before submission")
            if not completion.transport_details_complete:
                raise FormValidationError(
                    "All vehicle assignments must be submitted by vendors before submission"
                )
            now = to_iso(utc_now())
            self._repository.update_form(
                form_id,
                {
                    "status": FormStatus.COMPLETED,
                    "completion_status": completion,
                    "submitted_at": now,
                    "updated_at": now,
                },
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="transport_form",
                entity_id=form_id,
                action="submitted",
                user_id=actor.user_id,
                metadata={"ref_id": form.ref_id},
                conn=conn,
            )
        logger.info("Form %s submitted", form.ref_id)
        return self._form_view(self.load_form(form_id))

    def delete_form(self, actor: Actor, form_id: int, reason: Optional[str] = None) -> None:
        require_permission(actor, "forms.delete")

        with self._repository.transaction() as conn:
            form = self.load_form(form_id, include_deleted=True, conn=conn)
            if form.is_deleted:
                raise FormStateError(f"Form {form.ref_id} is already deleted")
            now = to_iso(utc_now())
            self._repository.update_form(
                form_id,
                {
                    "is_deleted": True,
                    "deleted_at": now,
                    "deleted_by": actor.user_id,
                    "deletion_reason": reason,
                    "updated_at": now,
                },
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="transport_form",
                entity_id=form_id,
                action="deleted",
                user_id=actor.user_id,
                metadata={"reason": reason},
                conn=conn,
            )

    def restore_form(self, actor: Actor, form_id: int) -> dict[str, Any]:
        require_permission(actor, "forms.restore")

        with self._repository.transaction() as conn:
            form = self.load_form(form_id, include_deleted=True, conn=conn)
            if not form.is_deleted:
                raise FormStateError(f"Form {form.ref_id} is not deleted")
            self._repository.update_form(
                form_id,
                {
                    "is_deleted": False,
                    "deleted_at": None,
                    "deleted_by": None,
                    "deletion_reason": None,
                    "updated_at": to_iso(utc_now()),
                },
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="transport_form",
                entity_id=form_id,
                action="restored",
                user_id=actor.user_id,
                conn=conn,
            )
        return self._form_view(self.load_form(form_id))

    def get_form_stats(self, actor: Actor) -> dict[str, int]:
        if actor.is_admin or actor.has_permission("forms.view_readonly"):
            forms = self._repository.list_forms()
        elif actor.has_permission("forms.view_own"):
            forms = self._repository.list_forms(employee_id=actor.user_id)
        else:
            raise PermissionDeniedError("You do not have access to form statistics")

        month_prefix = utc_now().strftime("%Y-%m")
        return {
            "total": len(forms),
            "pending": sum(1 for form in forms if form.status is FormStatus.PENDING),
            "completed": sum(1 for form in forms if form.status is FormStatus.COMPLETED),
            "this_month": sum(1 for form in forms if form.created_at.startswith(month_prefix)),
        }
