"""Caller identity resolution and permission checks."""

from __future__ import annotations

import secrets
from typing import Optional

from logistics_backend.domain.models import Actor
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class NotAuthenticatedError(AuthenticationError):
    """Raised when no usable caller identity was supplied."""


class InvalidServiceTokenError(AuthenticationError):
    """Raised when the provided bearer token does not match SERVICE_TOKEN."""


class PermissionDeniedError(Exception):
    """Raised when an actor lacks the role, permission or ownership required."""


def require_permission(actor: Actor, permission: str) -> None:
    if not actor.has_permission(permission):
        raise PermissionDeniedError(f"Permission '{permission}' is required")


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError("Admin access required")


class AuthService:
    """Validates the optional service token and loads the caller's active role."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.service_token)

    def validate_bearer_token(self, bearer_token: Optional[str]) -> None:
        if not self.auth_enabled:
            return
        if not bearer_token:
            raise InvalidServiceTokenError("Authorization header with Bearer token is required")
        if not secrets.compare_digest(bearer_token, str(self._settings.service_token)):
            raise InvalidServiceTokenError("Invalid bearer token")

    def resolve_actor(self, user_id: Optional[int]) -> Actor:
        if user_id is None:
            raise NotAuthenticatedError("X-User-Id header is required")
        if self._repository.get_user(user_id) is None:
            raise NotAuthenticatedError(f"Unknown user {user_id}")

        user_role = self._repository.get_active_role(user_id)
        if user_role is None:
            return Actor(user_id=user_id, role=None, permissions=frozenset())
        return Actor(
            user_id=user_id,
            role=user_role.role,
            permissions=frozenset(user_role.permissions),
        )
