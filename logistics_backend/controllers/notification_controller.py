"""HTTP controller layer for the in-app notification inbox."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from logistics_backend.controllers.dependencies import get_actor, get_notification_service
from logistics_backend.controllers.errors import DOMAIN_ERRORS, internal_error, to_http_exception
from logistics_backend.domain.models import Actor
from logistics_backend.services.notification_service import NotificationService
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


class UnreadCountResponse(BaseModel):
    unread: int = Field(ge=0)


class PreferencesUpdateRequest(BaseModel):
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
    notification_types: Optional[list[str]] = None
    timezone: Optional[str] = Field(default=None, max_length=64)
    language: Optional[str] = Field(default=None, max_length=16)

    def to_changes(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


@router.get("")
async def list_notifications(
    limit: Optional[int] = Query(default=None, gt=0, le=200),
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
) -> list[dict[str, Any]]:
    try:
        return [asdict(item) for item in service.list_notifications(actor, limit=limit)]
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected notification listing failure")
        raise internal_error() from exc


@router.get("/unread_count", response_model=UnreadCountResponse)
async def unread_count(
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
) -> UnreadCountResponse:
    try:
        return UnreadCountResponse(unread=service.unread_count(actor))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected unread count failure")
        raise internal_error() from exc


@router.post("/{notification_id}/read", response_model=UnreadCountResponse)
async def mark_as_read(
    notification_id: int,
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
) -> UnreadCountResponse:
    try:
        service.mark_as_read(actor, notification_id)
        return UnreadCountResponse(unread=service.unread_count(actor))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected notification update failure")
        raise internal_error() from exc


@router.get("/preferences")
async def get_preferences(
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    try:
        return asdict(service.get_preferences(actor))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected preference lookup failure")
        raise internal_error() from exc


@router.put("/preferences")
async def update_preferences(
    payload: PreferencesUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    try:
        return asdict(service.update_preferences(actor, payload.to_changes()))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected preference update failure")
        raise internal_error() from exc
