"""Container records attached to transport forms."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from logistics_backend.domain.constraints import is_valid_iso6346
from logistics_backend.domain.models import Actor, Container, Dimensions, Role, TransportForm
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import PermissionDeniedError
from logistics_backend.services.completion import refresh_completion
from logistics_backend.services.form_service import TransportFormService
from logistics_backend.utils.clock import to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)

_EDITABLE_FIELDS = {
    "container_number",
    "seal_number",
    "do_number",
    "iso_code",
    "dimensions",
    "seal_intact",
    "damage_reported",
    "damage_description",
}


class ContainerNotFoundError(Exception):
    """Raised when a container id does not exist."""


class ContainerValidationError(Exception):
    """Raised for duplicate numbers, bad dimensions or unknown fields."""


def _normalize_number(container_number: str) -> str:
    normalized = container_number.strip().upper()
    if not normalized:
        raise ContainerValidationError("container_number is required")
    return normalized


def _validate_dimensions(dimensions: Dimensions) -> None:
    if min(dimensions.length, dimensions.width, dimensions.height) <= 0:
        raise ContainerValidationError("Container dimensions must be positive")


class ContainerService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        form_service: Optional[TransportFormService] = None,
        audit_service: Optional[AuditService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._audit_service = audit_service or AuditService(
            repository=self._repository,
            settings=self._settings,
        )
        self._form_service = form_service or TransportFormService(
            repository=self._repository,
            settings=self._settings,
            audit_service=self._audit_service,
        )

    def _editable_form(self, actor: Actor, form_id: int) -> TransportForm:
        form = self._form_service.load_form(form_id)
        self._form_service.require_editable(actor, form)
        return form

    def _load_container(self, container_id: int) -> Container:
        container = self._repository.get_container(container_id)
        if container is None:
            raise ContainerNotFoundError(f"Container {container_id} not found")
        return container

    def list_containers(self, actor: Actor, form_id: int) -> list[Container]:
        form = self._form_service.load_form(form_id)
        if not self._form_service.can_view(actor, form):
            raise PermissionDeniedError("You do not have access to this form")
        return self._repository.list_containers(form_id)

    def add_container(
        self,
        actor: Actor,
        form_id: int,
        container_number: str,
        seal_number: str,
        do_number: str,
        iso_code: str,
        dimensions: Dimensions,
        seal_intact: bool = True,
        damage_reported: bool = False,
        damage_description: Optional[str] = None,
    ) -> Container:
        self._editable_form(actor, form_id)
        number = _normalize_number(container_number)
        _validate_dimensions(dimensions)

        with self._repository.transaction() as conn:
            if self._repository.find_container_by_number(form_id, number, conn=conn) is not None:
                raise ContainerValidationError(
                    f"Container number {number} already exists on this form"
                )
            iso_validated = is_valid_iso6346(number)
            container_id = self._repository.insert_container(
                form_id=form_id,
                container_number=number,
                seal_number=seal_number,
                do_number=do_number,
                iso_code=iso_code,
                dimensions=dimensions,
                iso_validated=iso_validated,
                seal_intact=seal_intact,
                damage_reported=damage_reported,
                damage_description=damage_description,
                created_at=to_iso(utc_now()),
                conn=conn,
            )
            refresh_completion(self._repository, form_id, conn)
            self._audit_service.log_action(
                entity_type="container",
                entity_id=container_id,
                action="created",
                user_id=actor.user_id,
                metadata={"form_id": form_id, "container_number": number},
                conn=conn,
            )
            container = self._repository.get_container(container_id, conn=conn)

        if not iso_validated:
            logger.warning("Container %s failed ISO 6346 check digit validation", number)
        return container

    def update_container(self, actor: Actor, container_id: int, changes: dict[str, Any]) -> Container:
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ContainerValidationError(f"Unsupported container fields: {sorted(unknown)}")

        existing = self._load_container(container_id)
        self._editable_form(actor, existing.form_id)

        updates: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "dimensions":
                _validate_dimensions(value)
                updates.update(length=value.length, width=value.width, height=value.height)
            elif name == "container_number":
                updates["container_number"] = _normalize_number(value)
            else:
                updates[name] = value

        with self._repository.transaction() as conn:
            number = updates.get("container_number")
            if number is not None and number != existing.container_number:
                duplicate = self._repository.find_container_by_number(existing.form_id, number, conn=conn)
                if duplicate is not None:
                    raise ContainerValidationError(
                        f"Container number {number} already exists on this form"
                    )
                updates["iso_validated"] = is_valid_iso6346(number)
            updates["updated_at"] = to_iso(utc_now())
            self._repository.update_container(container_id, updates, conn=conn)
            updated = self._repository.get_container(container_id, conn=conn)
            self._audit_service.log_action(
                entity_type="container",
                entity_id=container_id,
                action="updated",
                user_id=actor.user_id,
                changes={"before": asdict(existing), "after": asdict(updated)},
                conn=conn,
            )
        return updated

    def remove_container(self, actor: Actor, container_id: int) -> None:
        existing = self._load_container(container_id)
        self._editable_form(actor, existing.form_id)

        with self._repository.transaction() as conn:
            self._repository.delete_container(container_id, conn=conn)
            refresh_completion(self._repository, existing.form_id, conn)
            self._audit_service.log_action(
                entity_type="container",
                entity_id=container_id,
                action="deleted",
                user_id=actor.user_id,
                changes={"before": asdict(existing)},
                conn=conn,
            )

    def assign_vendor_to_container(self, actor: Actor, container_id: int, vendor_id: int) -> Container:
        existing = self._load_container(container_id)
        self._editable_form(actor, existing.form_id)

        vendor_role = self._repository.get_active_role(vendor_id)
        if vendor_role is None or vendor_role.role is not Role.VENDOR:
            raise ContainerValidationError(f"User {vendor_id} is not an active vendor")
        if vendor_id in existing.assigned_vendors:
            return existing

        with self._repository.transaction() as conn:
            self._repository.update_container(
                container_id,
                {
                    "assigned_vendors": [*existing.assigned_vendors, vendor_id],
                    "updated_at": to_iso(utc_now()),
                },
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="container",
                entity_id=container_id,
                action="vendor_assigned",
                user_id=actor.user_id,
                metadata={"vendor_id": vendor_id},
                conn=conn,
            )
            updated = self._repository.get_container(container_id, conn=conn)
        return updated
