"""User accounts, role assignment and demo seeding."""

from __future__ import annotations

import sqlite3
from typing import Any, Optional

from logistics_backend.domain.constraints import default_permissions
from logistics_backend.domain.models import Actor, Role, User
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.audit_service import AuditService
from logistics_backend.services.auth_service import require_admin
from logistics_backend.utils.clock import to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_USERS_FLAG = "default_users_initialized"

DEFAULT_USERS: tuple[tuple[str, str, Role], ...] = (
    ("System Admin", "admin@logistics.local", Role.ADMIN),
    ("Booking Employee", "employee@logistics.local", Role.EMPLOYEE),
    ("Alpha Transport", "alpha.transport@logistics.local", Role.VENDOR),
    ("Beta Carriers", "beta.carriers@logistics.local", Role.VENDOR),
    ("Order Desk", "orders@logistics.local", Role.ORDER_PLACER),
)


class UserNotFoundError(Exception):
    """Raised when a user id does not exist."""


class UserValidationError(Exception):
    """Raised for blank names or duplicate e-mail addresses."""


class UserService:
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

    def _insert_user(
        self,
        conn: sqlite3.Connection,
        name: str,
        email: str,
        role: Optional[Role],
        assigned_by: Optional[int],
    ) -> int:
        name = name.strip()
        email = email.strip().lower()
        if not name:
            raise UserValidationError("name is required")
        if "@" not in email:
            raise UserValidationError("A valid email is required")
        try:
            user_id = self._repository.create_user(name, email, conn=conn)
        except sqlite3.IntegrityError as exc:
            raise UserValidationError(f"Email {email} is already registered") from exc
        if role is not None:
            self._repository.replace_role(
                user_id,
                role,
                default_permissions(role),
                assigned_by=assigned_by,
                conn=conn,
            )
        return user_id

    def create_user(self, actor: Actor, name: str, email: str, role: Optional[Role] = None) -> dict[str, Any]:
        require_admin(actor)
        with self._repository.transaction() as conn:
            user_id = self._insert_user(conn, name, email, role, assigned_by=actor.user_id)
            self._audit_service.log_action(
                entity_type="user",
                entity_id=user_id,
                action="created",
                user_id=actor.user_id,
                metadata={"role": role.value if role else None},
                conn=conn,
            )
        return self._user_view(user_id)

    def assign_role(self, actor: Actor, user_id: int, role: Role) -> dict[str, Any]:
        """Deactivate the user's current roles and grant `role` with its default permissions."""
        require_admin(actor)
        if self._repository.get_user(user_id) is None:
            raise UserNotFoundError(f"User {user_id} not found")

        with self._repository.transaction() as conn:
            previous = self._repository.get_active_role(user_id, conn=conn)
            self._repository.replace_role(
                user_id,
                role,
                default_permissions(role),
                assigned_by=actor.user_id,
                conn=conn,
            )
            self._audit_service.log_action(
                entity_type="user_role",
                entity_id=user_id,
                action="role_assigned",
                user_id=actor.user_id,
                changes={
                    "before": previous.role.value if previous else None,
                    "after": role.value,
                },
                conn=conn,
            )
        logger.info("User %s assigned role %s by %s", user_id, role.value, actor.user_id)
        return self._user_view(user_id)

    def _user_view(self, user_id: int) -> dict[str, Any]:
        user = self._repository.get_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        role = self._repository.get_active_role(user_id)
        return {
            "user_id": user.user_id,
            "name": user.name,
            "email": user.email,
            "role": role.role.value if role else None,
            "permissions": list(role.permissions) if role else [],
        }

    def list_users_with_roles(self, actor: Actor) -> list[dict[str, Any]]:
        require_admin(actor)
        return [self._user_view(user.user_id) for user in self._repository.list_users()]

    def list_vendors(self, actor: Actor) -> list[User]:
        vendors = self._repository.list_active_users_by_role(Role.VENDOR)
        return sorted(vendors, key=lambda user: (user.name.lower() or user.email.lower()))

    def get_current_user(self, actor: Actor) -> dict[str, Any]:
        return self._user_view(actor.user_id)

    def has_permission(self, actor: Actor, permission: str) -> bool:
        return actor.has_permission(permission)

    def initialize_default_users(self) -> bool:
        """Seed demo accounts once; returns False when they already exist."""
        with self._repository.transaction() as conn:
            if self._repository.get_system_config(DEFAULT_USERS_FLAG, conn=conn):
                return False
            for name, email, role in DEFAULT_USERS:
                self._insert_user(conn, name, email, role, assigned_by=None)
            self._repository.set_system_config(
                DEFAULT_USERS_FLAG,
                True,
                updated_by=None,
                updated_at=to_iso(utc_now()),
                conn=conn,
            )
        logger.info("Seeded %s default users", len(DEFAULT_USERS))
        return True
