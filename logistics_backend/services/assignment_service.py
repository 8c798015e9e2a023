"""Vendor-side operations on vehicle assignments."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from logistics_backend.domain.models import (
    Actor,
    AssignmentStatus,
    DraftDetails,
    SubmittedAssignment,
    TransportDetails,
    VehicleAssignment,
)
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import PermissionDeniedError, require_permission
from logistics_backend.services.completion import refresh_completion
from logistics_backend.utils.clock import to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)


class AlreadySubmittedError(Exception):
    """Raised when a vehicle assignment is no longer a draft."""


class AssignmentNotFoundError(Exception):
    """Raised when an assignment id does not exist."""


class AssignmentValidationError(Exception):
    """Raised when submitted transport details are incomplete."""


def assignment_to_dict(assignment: VehicleAssignment) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "assignment_id": assignment.assignment_id,
        "form_id": assignment.booking_id,
        "vendor_id": assignment.vendor_id,
        "status": assignment.status.value,
        "created_at": assignment.created_at,
        "details": asdict(assignment.details),
        "submitted_at": None,
        "submitted_by": None,
    }
    if isinstance(assignment, SubmittedAssignment):
        payload["submitted_at"] = assignment.submitted_at
        payload["submitted_by"] = assignment.submitted_by
    return payload


class VehicleAssignmentService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        audit_service: Optional[AuditService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._audit_service = audit_service or AuditService(
            repository=self._repository,
            settings=self._settings,
        )

    def _load_owned(self, actor: Actor, assignment_id: int) -> VehicleAssignment:
        assignment = self._repository.get_assignment(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
        if not actor.is_admin and assignment.vendor_id != actor.user_id:
            raise PermissionDeniedError("You can only access your own assignments")
        return assignment

    def list_for_vendor(
        self,
        actor: Actor,
        status: Optional[AssignmentStatus] = None,
    ) -> list[dict[str, Any]]:
        require_permission(actor, "forms.view_assigned")
        assignments = self._repository.list_assignments_for_vendor(actor.user_id, status=status)
        ref_ids: dict[int, Optional[str]] = {}
        results = []
        for assignment in assignments:
            if assignment.booking_id not in ref_ids:
                form = self._repository.get_form(assignment.booking_id)
                ref_ids[assignment.booking_id] = form.ref_id if form is not None else None
            payload = assignment_to_dict(assignment)
            payload["ref_id"] = ref_ids[assignment.booking_id]
            results.append(payload)
        return results

    def get_assignment(self, actor: Actor, assignment_id: int) -> VehicleAssignment:
        return self._load_owned(actor, assignment_id)

    def save_draft(self, actor: Actor, assignment_id: int, details: DraftDetails) -> VehicleAssignment:
        assignment = self._load_owned(actor, assignment_id)
        if isinstance(assignment, SubmittedAssignment):
            raise AlreadySubmittedError(f"Assignment {assignment_id} is already submitted")

        with self._repository.transaction() as conn:
            saved = self._repository.save_draft_details(
                assignment_id,
                details,
                updated_by=actor.user_id,
                updated_at=to_iso(utc_now()),
                conn=conn,
            )
            if not saved:
                raise AlreadySubmittedError(f"Assignment {assignment_id} is already submitted")
            self._audit_service.log_action(
                entity_type="vehicle_assignment",
                entity_id=assignment_id,
                action="draft_saved",
                user_id=actor.user_id,
                changes={"after": asdict(details)},
                conn=conn,
            )
            updated = self._repository.get_assignment(assignment_id, conn=conn)
        return updated

    def submit(self, actor: Actor, assignment_id: int, details: TransportDetails) -> SubmittedAssignment:
        """Compare-and-set a draft to submitted; a second submit raises AlreadySubmittedError."""
        require_permission(actor, "vehicles.submit")
        missing = [
            name
            for name in ("vehicle_number", "driver_name", "driver_mobile")
            if not str(getattr(details, name) or "").strip()
        ]
        if missing:
            raise AssignmentValidationError(f"Missing required fields: {', '.join(missing)}")

        assignment = self._load_owned(actor, assignment_id)
        with self._repository.transaction() as conn:
            submitted = self._repository.submit_assignment(
                assignment_id,
                details,
                submitted_by=actor.user_id,
                submitted_at=to_iso(utc_now()),
                conn=conn,
            )
            if not submitted:
                raise AlreadySubmittedError(f"Assignment {assignment_id} is already submitted")
            self._audit_service.log_action(
                entity_type="vehicle_assignment",
                entity_id=assignment_id,
                action="vehicle_submitted",
                user_id=actor.user_id,
                changes={"after": asdict(details)},
                metadata={"form_id": assignment.booking_id},
                conn=conn,
            )
            refresh_completion(self._repository, assignment.booking_id, conn)
            result = self._repository.get_assignment(assignment_id, conn=conn)

        logger.info("Assignment %s submitted by vendor=%s", assignment_id, actor.user_id)
        return result

    def list_assigned_forms(self, actor: Actor) -> list[dict[str, Any]]:
        require_permission(actor, "forms.view_assigned")
        per_form: dict[int, list[VehicleAssignment]] = {}
        for assignment in self._repository.list_assignments_for_vendor(actor.user_id):
            per_form.setdefault(assignment.booking_id, []).append(assignment)

        summaries = []
        for form_id, assignments in per_form.items():
            form = self._repository.get_form(form_id)
            if form is None or form.is_deleted:
                continue
            summaries.append(
                {
                    "form_id": form.form_id,
                    "ref_id": form.ref_id,
                    "booking_no": form.booking_details.booking_no,
                    "shipper_name": form.booking_details.shipper_name,
                    "status": form.status.value,
                    "created_at": form.created_at,
                    "total_vehicles": len(assignments),
                    "submitted_vehicles": sum(
                        1 for item in assignments if isinstance(item, SubmittedAssignment)
                    ),
                }
            )
        summaries.sort(key=lambda item: (item["created_at"], item["form_id"]), reverse=True)
        return summaries
