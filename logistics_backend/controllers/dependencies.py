"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from logistics_backend.domain.models import Actor
from logistics_backend.services.access_service import AccessLinkService
from logistics_backend.services.assignment_service import VehicleAssignmentService
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import (
    AuthService,
    InvalidServiceTokenError,
    NotAuthenticatedError,
)
from logistics_backend.services.container_service import ContainerService
from logistics_backend.services.form_service import TransportFormService
from logistics_backend.services.notification_service import NotificationService
from logistics_backend.services.user_service import UserService


bearer_scheme = HTTPBearer(auto_error=False)


def _state_service(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    return _state_service(request, "auth_service", "Auth")


def get_form_service(request: Request) -> TransportFormService:
    return _state_service(request, "form_service", "Form")


def get_container_service(request: Request) -> ContainerService:
    return _state_service(request, "container_service", "Container")


def get_assignment_service(request: Request) -> VehicleAssignmentService:
    return _state_service(request, "assignment_service", "Assignment")


def get_user_service(request: Request) -> UserService:
    return _state_service(request, "user_service", "User")


def get_audit_service(request: Request) -> AuditService:
    return _state_service(request, "audit_service", "Audit")


def get_notification_service(request: Request) -> NotificationService:
    return _state_service(request, "notification_service", "Notification")


def get_access_link_service(request: Request) -> AccessLinkService:
    return _state_service(request, "access_link_service", "Access link")


async def require_service_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if not auth_service.auth_enabled:
        return
    try:
        auth_service.validate_bearer_token(credentials.credentials if credentials else None)
    except InvalidServiceTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def get_actor(
    _: None = Depends(require_service_token),
    x_user_id: Optional[int] = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
) -> Actor:
    """Resolve the caller from the X-User-Id header."""
    try:
        return auth_service.resolve_actor(x_user_id)
    except NotAuthenticatedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
