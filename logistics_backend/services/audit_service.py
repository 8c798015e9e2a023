"""Audit trail writes and admin-facing queries."""

from __future__ import annotations

import sqlite3
from datetime import timedelta
from typing import Any, Optional

from logistics_backend.domain.models import Actor, AuditEntry
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.auth_service import require_admin
from logistics_backend.utils.clock import to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)


class AuditService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def log_action(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        user_id: int,
        changes: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        """Record an action; pass `conn` so the entry commits with the change it describes."""
        audit_id = self._repository.insert_audit_log(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            user_id=user_id,
            timestamp=to_iso(utc_now()),
            changes=changes,
            metadata=metadata,
            conn=conn,
        )
        logger.info(
            "Audit %s %s/%s by user=%s",
            action,
            entity_type,
            entity_id,
            user_id,
        )
        return audit_id

    def get_audit_logs(self, actor: Actor, entity_type: str, entity_id: Any) -> list[dict[str, Any]]:
        require_admin(actor)
        entries = self._repository.list_audit_logs(entity_type, str(entity_id))
        return self._with_users(entries)

    def get_recent_activity(self, actor: Actor, limit: Optional[int] = None) -> list[dict[str, Any]]:
        require_admin(actor)
        since = utc_now() - timedelta(days=self._settings.audit_recent_activity_days)
        effective_limit = limit or self._settings.audit_recent_activity_limit
        entries = self._repository.list_recent_audit_logs(to_iso(since), effective_limit)
        return self._with_users(entries)

    def _with_users(self, entries: list[AuditEntry]) -> list[dict[str, Any]]:
        users = {user.user_id: user for user in self._repository.list_users()}
        results: list[dict[str, Any]] = []
        for entry in entries:
            user = users.get(entry.user_id)
            results.append(
                {
                    "audit_id": entry.audit_id,
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    "action": entry.action,
                    "user_id": entry.user_id,
                    "timestamp": entry.timestamp,
                    "changes": entry.changes,
                    "metadata": entry.metadata,
                    "user": (
                        {"name": user.name, "email": user.email} if user is not None else None
                    ),
                }
            )
        return results
