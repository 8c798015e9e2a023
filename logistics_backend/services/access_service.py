"""Time-limited read-only access links for sharing a form outside the app."""

from __future__ import annotations

import secrets
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Optional, Sequence

from logistics_backend.domain.models import AccessLink, Actor
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import require_admin
from logistics_backend.services.form_service import form_to_dict
from logistics_backend.utils.clock import parse_iso, to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)


class AccessLinkError(Exception):
    """Base access-link failure."""


class AccessLinkNotFoundError(AccessLinkError):
    """Raised when a token or its form does not exist."""


class AccessLinkExpiredError(AccessLinkError):
    """Raised when a link is revoked or past its expiry."""


class AccessLinkValidationError(AccessLinkError):
    """Raised when link parameters are invalid."""


class AccessLinkService:
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

    def generate_access_link(
        self,
        actor: Actor,
        form_id: int,
        container_ids: Sequence[int] = (),
        expiry_hours: Optional[int] = None,
    ) -> AccessLink:
        require_admin(actor)
        hours = self._settings.access_link_default_expiry_hours if expiry_hours is None else expiry_hours
        if hours <= 0:
            raise AccessLinkValidationError("expiry_hours must be positive")

        form = self._repository.get_form(form_id)
        if form is None or form.is_deleted:
            raise AccessLinkNotFoundError(f"Form {form_id} not found")
        known = {item.container_id for item in self._repository.list_containers(form_id)}
        foreign = [item for item in container_ids if item not in known]
        if foreign:
            raise AccessLinkValidationError(f"Containers {foreign} do not belong to form {form_id}")

        now = utc_now()
        token = secrets.token_urlsafe(32)
        with self._repository.transaction() as conn:
            link_id = self._repository.insert_access_link(
                token=token,
                form_id=form_id,
                container_ids=list(container_ids),
                created_by=actor.user_id,
                created_at=to_iso(now),
                expires_at=to_iso(now + timedelta(hours=hours)),
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="access_link",
                entity_id=link_id,
                action="generated",
                user_id=actor.user_id,
                metadata={"form_id": form_id, "expiry_hours": hours},
                conn=conn,
            )
            link = self._repository.get_access_link_by_token(token, conn=conn)
        return link

    def revoke_access_link(self, actor: Actor, token: str) -> None:
        require_admin(actor)
        with self._repository.transaction() as conn:
            link = self._repository.get_access_link_by_token(token, conn=conn)
            if link is None:
                raise AccessLinkNotFoundError("Access link not found")
            self._repository.revoke_access_link(
                link.link_id,
                revoked_by=actor.user_id,
                revoked_at=to_iso(utc_now()),
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="access_link",
                entity_id=link.link_id,
                action="revoked",
                user_id=actor.user_id,
                conn=conn,
            )

    def access_form_by_token(self, token: str) -> dict[str, Any]:
        """Validate a token, count the visit and return a read-only form projection."""
        now = utc_now()
        with self._repository.transaction() as conn:
            link = self._repository.get_access_link_by_token(token, conn=conn)
            if link is None:
                raise AccessLinkNotFoundError("Invalid access link")
            if link.is_revoked:
                raise AccessLinkExpiredError("This access link has been revoked")
            if parse_iso(link.expires_at) <= now:
                raise AccessLinkExpiredError("This access link has expired")

            form = self._repository.get_form(link.form_id, conn=conn)
            if form is None or form.is_deleted:
                raise AccessLinkNotFoundError("Form not found")
            self._repository.record_access_link_use(link.link_id, to_iso(now), conn=conn)

            containers = self._repository.list_containers(link.form_id, conn=conn)
            if link.container_ids:
                wanted = set(link.container_ids)
                containers = [item for item in containers if item.container_id in wanted]

        payload = form_to_dict(form)
        for private in ("employee_id", "deleted_at", "deleted_by", "deletion_reason", "is_deleted"):
            payload.pop(private)
        return {
            "form": payload,
            "containers": [asdict(item) for item in containers],
            "expires_at": link.expires_at,
        }

    def list_access_links(self, actor: Actor) -> list[AccessLink]:
        require_admin(actor)
        return self._repository.list_access_links()
