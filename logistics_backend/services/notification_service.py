"""Vendor notifications and the per-user in-app inbox."""

from __future__ import annotations

import sqlite3
import time
from dataclasses import replace
from typing import Any, Mapping, Optional, Protocol

from logistics_backend.domain.models import Actor, Notification, NotificationEvent, UserPreferences
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.services.auth_service import PermissionDeniedError
from logistics_backend.utils.clock import to_iso, utc_now
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)


class NotificationDeliveryError(Exception):
    """Raised by a notifier once all delivery attempts are exhausted."""


class NotificationNotFoundError(Exception):
    """Raised when a notification id does not exist."""


class PreferenceValidationError(Exception):
    """Raised when a preferences update carries unknown or malformed fields."""


DEFAULT_NOTIFICATION_TYPES = ("vehicle_assigned",)
DEFAULT_TIMEZONE = "Asia/Kolkata"
DEFAULT_LANGUAGE = "en"
_PREFERENCE_FIELDS = frozenset(
    {"email_notifications", "push_notifications", "notification_types", "timezone", "language"}
)


def default_preferences(user_id: int) -> UserPreferences:
    return UserPreferences(
        user_id=user_id,
        email_notifications=True,
        push_notifications=True,
        notification_types=DEFAULT_NOTIFICATION_TYPES,
        timezone=DEFAULT_TIMEZONE,
        language=DEFAULT_LANGUAGE,
    )


class Notifier(Protocol):
    def notify(self, user_id: int, event: NotificationEvent) -> None:
        ...


class InboxNotifier:
    """Delivers events into the Notifications table with bounded retries."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        retry_delay_seconds: float = 0.05,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._retry_delay_seconds = retry_delay_seconds

    def notify(self, user_id: int, event: NotificationEvent) -> None:
        preferences = self._repository.get_preferences(user_id)
        if preferences is not None and not preferences.accepts(event.type):
            logger.info("User=%s opted out of '%s' notifications", user_id, event.type)
            return

        attempts = max(1, self._settings.notification_max_attempts)
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                self._repository.insert_notification(
                    user_id=user_id,
                    event=event,
                    created_at=to_iso(utc_now()),
                )
                return
            except sqlite3.Error as exc:
                last_error = exc
                logger.warning(
                    "Notification attempt %s/%s for user=%s failed: %s",
                    attempt,
                    attempts,
                    user_id,
                    exc,
                )
                if attempt < attempts:
                    time.sleep(self._retry_delay_seconds)
        raise NotificationDeliveryError(
            f"Could not deliver '{event.type}' to user {user_id}: {last_error}"
        )


class NotificationService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def list_notifications(self, actor: Actor, limit: Optional[int] = None) -> list[Notification]:
        return self._repository.list_notifications(
            actor.user_id,
            limit or self._settings.notification_list_limit,
        )

    def mark_as_read(self, actor: Actor, notification_id: int) -> None:
        notification = self._repository.get_notification(notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        if notification.user_id != actor.user_id:
            raise PermissionDeniedError("Cannot modify another user's notification")
        self._repository.mark_notification_read(notification_id)

    def unread_count(self, actor: Actor) -> int:
        return self._repository.count_unread_notifications(actor.user_id)

    def get_preferences(self, actor: Actor) -> UserPreferences:
        """Stored preferences, or the defaults when the user never saved any."""
        stored = self._repository.get_preferences(actor.user_id)
        return stored or default_preferences(actor.user_id)

    def update_preferences(self, actor: Actor, changes: Mapping[str, Any]) -> UserPreferences:
        """Merge `changes` over the current preferences; the first write stores defaults too."""
        unknown = set(changes) - _PREFERENCE_FIELDS
        if unknown:
            raise PreferenceValidationError(f"Unknown preference fields: {', '.join(sorted(unknown))}")

        updates = dict(changes)
        if "notification_types" in updates:
            types = [str(item).strip() for item in updates["notification_types"]]
            if any(not item for item in types):
                raise PreferenceValidationError("notification_types cannot contain blank entries")
            updates["notification_types"] = tuple(dict.fromkeys(types))
        for key in ("timezone", "language"):
            if key in updates:
                updates[key] = str(updates[key]).strip()
                if not updates[key]:
                    raise PreferenceValidationError(f"{key} cannot be blank")

        with self._repository.transaction() as conn:
            current = self._repository.get_preferences(actor.user_id, conn=conn)
            preferences = replace(current or default_preferences(actor.user_id), **updates)
            self._repository.save_preferences(preferences, updated_at=to_iso(utc_now()), conn=conn)
        logger.info("Updated notification preferences for user=%s", actor.user_id)
        return preferences
