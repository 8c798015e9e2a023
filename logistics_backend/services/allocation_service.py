"""Vehicle-allocation reconciliation.

`reconcile` is a pure diff between a booking's vendor allocations and its
existing vehicle assignments. `AllocationReconciliationService` runs that diff
inside the caller's write transaction, persists the plan, and notifies vendors
about new drafts once the transaction has committed.
"""

from __future__ import annotations

import sqlite3
from collections import defaultdict
from typing import Iterable, Optional, Sequence

from logistics_backend.domain.constraints import InvalidAllocationError, validate_allocations
from logistics_backend.domain.models import (
    Actor,
    Allocation,
    DraftAssignment,
    NotificationEvent,
    ReconcilePlan,
    ReconcileResult,
    Role,
    VehicleAssignment,
)
from logistics_backend.repository.data_repository import DataRepository, StorageConflictError
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.notification_service import (
    InboxNotifier,
    NotificationDeliveryError,
    Notifier,
)
from logistics_backend.utils.clock import to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)

__all__ = [
    "AllocationReconciliationService",
    "InvalidAllocationError",
    "reconcile",
]

VEHICLE_ASSIGNED_EVENT = "vehicle_assigned"


def reconcile(
    booking_id: int,
    allocations: Iterable[Allocation],
    existing_assignments: Iterable[VehicleAssignment],
) -> ReconcilePlan:
    """Compute the creates and deletes that align assignment counts with allocations.

    Only drafts are deletion candidates, oldest first. Vendors absent from
    `allocations` keep their assignments; callers deallocate a vendor by
    passing it with a zero count.
    """
    allocations = list(allocations)
    validate_allocations(allocations)

    groups: dict[int, list[VehicleAssignment]] = defaultdict(list)
    for assignment in existing_assignments:
        groups[assignment.vendor_id].append(assignment)

    created: list[DraftAssignment] = []
    deleted: list[int] = []
    for allocation in allocations:
        group = groups.get(allocation.vendor_id, [])
        current = len(group)

        if current < allocation.requested_count:
            created.extend(
                DraftAssignment(booking_id=booking_id, vendor_id=allocation.vendor_id)
                for _ in range(allocation.requested_count - current)
            )
        elif current > allocation.requested_count:
            drafts = sorted(
                (
                    item
                    for item in group
                    if isinstance(item, DraftAssignment) and item.assignment_id is not None
                ),
                key=lambda item: (item.created_at, item.assignment_id),
            )
            surplus = current - allocation.requested_count
            # Fewer drafts than surplus leaves the vendor over-provisioned.
            deleted.extend(int(item.assignment_id) for item in drafts[:surplus])

    return ReconcilePlan(created=created, deleted=deleted)


class AllocationReconciliationService:
    """Booking-edit handler that keeps VehicleAssignments in step with FormAllocations."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        audit_service: Optional[AuditService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._notifier = notifier or InboxNotifier(repository=self._repository, settings=self._settings)
        self._audit_service = audit_service or AuditService(
            repository=self._repository,
            settings=self._settings,
        )

    def reconcile_form(
        self,
        form_id: int,
        allocations: Sequence[Allocation],
        actor: Actor,
        conn: sqlite3.Connection,
        total_vehicle_quantity: Optional[int] = None,
    ) -> ReconcileResult:
        """Replace a form's allocations and apply the resulting plan in `conn`."""
        allocations = list(allocations)
        validate_allocations(allocations, total_vehicle_quantity)
        self._require_active_vendors(allocations, conn)

        previous = self._repository.list_allocations(form_id, conn=conn)
        requested_vendors = {allocation.vendor_id for allocation in allocations}
        dropped = [
            Allocation(vendor_id=item.vendor_id, requested_count=0)
            for item in previous
            if item.vendor_id not in requested_vendors
        ]

        existing = self._repository.list_assignments_for_form(form_id, conn=conn)
        plan = reconcile(form_id, [*allocations, *dropped], existing)

        self._repository.replace_allocations(form_id, allocations, conn=conn)
        result = self.apply_plan(form_id, plan, actor, conn, allocations=allocations)

        if result.created or result.deleted or result.skipped:
            self._audit_service.log_action(
                entity_type="transport_form",
                entity_id=form_id,
                action="vehicles_reconciled",
                user_id=actor.user_id,
                changes={
                    "created": [item.assignment_id for item in result.created],
                    "deleted": result.deleted,
                    "skipped": result.skipped,
                },
                conn=conn,
            )
        return result

    def _require_active_vendors(
        self,
        allocations: Sequence[Allocation],
        conn: sqlite3.Connection,
    ) -> None:
        # Zero counts only deallocate, so a since-demoted vendor can still be dropped.
        for allocation in allocations:
            if allocation.requested_count <= 0:
                continue
            role = self._repository.get_active_role(allocation.vendor_id, conn=conn)
            if role is None or role.role is not Role.VENDOR:
                raise InvalidAllocationError(
                    f"User {allocation.vendor_id} is not an active vendor"
                )

    def apply_plan(
        self,
        form_id: int,
        plan: ReconcilePlan,
        actor: Actor,
        conn: sqlite3.Connection,
        allocations: Sequence[Allocation] = (),
    ) -> ReconcileResult:
        by_vendor = {allocation.vendor_id: allocation for allocation in allocations}
        created_at = to_iso(utc_now())

        created: list[DraftAssignment] = []
        for draft in plan.created:
            created.append(
                self._repository.insert_draft_assignment(
                    draft,
                    created_at=created_at,
                    allocation=by_vendor.get(draft.vendor_id),
                    updated_by=actor.user_id,
                    conn=conn,
                )
            )

        deleted: list[int] = []
        skipped: list[int] = []
        for assignment_id in plan.deleted:
            try:
                self._repository.delete_draft_assignment(assignment_id, conn=conn)
            except StorageConflictError as exc:
                logger.warning("Skipping deletion for form=%s: %s", form_id, exc)
                skipped.append(assignment_id)
                continue
            deleted.append(assignment_id)

        logger.info(
            "Reconciled form=%s created=%s deleted=%s skipped=%s",
            form_id,
            len(created),
            len(deleted),
            len(skipped),
        )
        return ReconcileResult(created=created, deleted=deleted, skipped=skipped)

    def notify_created(self, result: ReconcileResult, ref_id: Optional[str] = None) -> int:
        """Send one notification per created draft; returns how many were delivered.

        Runs after commit, so no notifier failure is allowed to reach the caller.
        """
        delivered = 0
        for draft in result.created:
            booking_label = ref_id or f"#{draft.booking_id}"
            event = NotificationEvent(
                type=VEHICLE_ASSIGNED_EVENT,
                title="New Vehicle Assignment",
                message=f"You have been assigned a vehicle for booking {booking_label}",
                data={
                    "form_id": draft.booking_id,
                    "ref_id": ref_id,
                    "assignment_id": draft.assignment_id,
                },
            )
            try:
                self._notifier.notify(draft.vendor_id, event)
            except NotificationDeliveryError as exc:
                logger.error(
                    "Notification for assignment=%s vendor=%s failed: %s",
                    draft.assignment_id,
                    draft.vendor_id,
                    exc,
                )
                continue
            except Exception:
                logger.exception(
                    "Notifier raised unexpectedly for assignment=%s vendor=%s",
                    draft.assignment_id,
                    draft.vendor_id,
                )
                continue
            delivered += 1
        return delivered
