"""HTTP controller layer for users, roles, audit trail and access links."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from logistics_backend.controllers.dependencies import (
    get_access_link_service,
    get_actor,
    get_audit_service,
    get_user_service,
)
from logistics_backend.controllers.errors import DOMAIN_ERRORS, internal_error, to_http_exception
from logistics_backend.domain.models import AccessLink, Actor, Role
from logistics_backend.services.access_service import AccessLinkService
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.user_service import UserService
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["admin"])


class CreateUserRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    role: Optional[Role] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if "@" not in normalized:
            raise ValueError("email must contain '@'")
        return normalized


class AssignRoleRequest(BaseModel):
    role: Role


class GenerateLinkRequest(BaseModel):
    form_id: int = Field(gt=0)
    container_ids: list[int] = Field(default_factory=list)
    expiry_hours: Optional[int] = Field(default=None, gt=0, le=24 * 30)


def _link_payload(link: AccessLink) -> dict[str, Any]:
    payload = asdict(link)
    payload["container_ids"] = list(link.container_ids)
    return payload


# ----------------------------------------------------------------------
# Users and roles
# ----------------------------------------------------------------------


@router.get("/users/me")
async def current_user(
    actor: Actor = Depends(get_actor),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    try:
        return service.get_current_user(actor)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected current user lookup failure")
        raise internal_error() from exc


@router.get("/users")
async def list_users(
    actor: Actor = Depends(get_actor),
    service: UserService = Depends(get_user_service),
) -> list[dict[str, Any]]:
    try:
        return service.list_users_with_roles(actor)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected user listing failure")
        raise internal_error() from exc


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: CreateUserRequest,
    actor: Actor = Depends(get_actor),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    try:
        return service.create_user(actor, payload.name, payload.email, role=payload.role)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected user creation failure")
        raise internal_error() from exc


@router.post("/users/{user_id}/role")
async def assign_role(
    user_id: int,
    payload: AssignRoleRequest,
    actor: Actor = Depends(get_actor),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    try:
        return service.assign_role(actor, user_id, payload.role)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected role assignment failure")
        raise internal_error() from exc


@router.get("/vendors")
async def list_vendors(
    actor: Actor = Depends(get_actor),
    service: UserService = Depends(get_user_service),
) -> list[dict[str, Any]]:
    try:
        return [asdict(user) for user in service.list_vendors(actor)]
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected vendor listing failure")
        raise internal_error() from exc


# ----------------------------------------------------------------------
# Audit trail
# ----------------------------------------------------------------------


@router.get("/audit/recent")
async def recent_activity(
    limit: Optional[int] = Query(default=None, gt=0, le=500),
    actor: Actor = Depends(get_actor),
    service: AuditService = Depends(get_audit_service),
) -> list[dict[str, Any]]:
    try:
        return service.get_recent_activity(actor, limit=limit)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected recent activity failure")
        raise internal_error() from exc


@router.get("/audit/{entity_type}/{entity_id}")
async def audit_logs(
    entity_type: str,
    entity_id: str,
    actor: Actor = Depends(get_actor),
    service: AuditService = Depends(get_audit_service),
) -> list[dict[str, Any]]:
    try:
        return service.get_audit_logs(actor, entity_type, entity_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected audit log lookup failure")
        raise internal_error() from exc


# ----------------------------------------------------------------------
# Access links
# ----------------------------------------------------------------------


@router.post("/access_links", status_code=status.HTTP_201_CREATED)
async def generate_access_link(
    payload: GenerateLinkRequest,
    actor: Actor = Depends(get_actor),
    service: AccessLinkService = Depends(get_access_link_service),
) -> dict[str, Any]:
    try:
        link = service.generate_access_link(
            actor,
            payload.form_id,
            container_ids=payload.container_ids,
            expiry_hours=payload.expiry_hours,
        )
        return _link_payload(link)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected access link generation failure")
        raise internal_error() from exc


@router.get("/access_links")
async def list_access_links(
    actor: Actor = Depends(get_actor),
    service: AccessLinkService = Depends(get_access_link_service),
) -> list[dict[str, Any]]:
    try:
        return [_link_payload(link) for link in service.list_access_links(actor)]
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected access link listing failure")
        raise internal_error() from exc


@router.post("/access_links/{token}/revoke", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_access_link(
    token: str,
    actor: Actor = Depends(get_actor),
    service: AccessLinkService = Depends(get_access_link_service),
) -> None:
    try:
        service.revoke_access_link(actor, token)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected access link revocation failure")
        raise internal_error() from exc


@router.get("/shared/{token}")
async def shared_form(
    token: str,
    service: AccessLinkService = Depends(get_access_link_service),
) -> dict[str, Any]:
    """Public read-only view; the token itself is the credential."""
    try:
        return service.access_form_by_token(token)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected shared form access failure")
        raise internal_error() from exc
