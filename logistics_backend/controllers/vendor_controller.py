"""HTTP controller layer for vendor vehicle submissions."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from logistics_backend.controllers.dependencies import get_actor, get_assignment_service
from logistics_backend.controllers.errors import DOMAIN_ERRORS, internal_error, to_http_exception
from logistics_backend.domain.models import Actor, AssignmentStatus, DraftDetails, TransportDetails
from logistics_backend.services.assignment_service import VehicleAssignmentService, assignment_to_dict
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/vendor", tags=["vendor"])


class DraftDetailsRequest(BaseModel):
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_mobile: Optional[str] = None
    container_number: Optional[str] = None
    seal_number: Optional[str] = None
    estimated_departure: Optional[str] = None
    estimated_arrival: Optional[str] = None


class SubmitDetailsRequest(BaseModel):
    vehicle_number: str = Field(min_length=1)
    driver_name: str = Field(min_length=1)
    driver_mobile: str = Field(min_length=1)
    container_number: Optional[str] = None
    seal_number: Optional[str] = None
    estimated_departure: Optional[str] = None
    estimated_arrival: Optional[str] = None

    @field_validator("vehicle_number")
    @classmethod
    def normalize_vehicle_number(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError("vehicle_number must be non-empty")
        return normalized


@router.get("/assignments")
async def list_assignments(
    status: Optional[AssignmentStatus] = None,
    actor: Actor = Depends(get_actor),
    service: VehicleAssignmentService = Depends(get_assignment_service),
) -> list[dict[str, Any]]:
    try:
        return service.list_for_vendor(actor, status=status)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected vendor assignment listing failure")
        raise internal_error() from exc


@router.get("/assignments/{assignment_id}")
async def get_assignment(
    assignment_id: int,
    actor: Actor = Depends(get_actor),
    service: VehicleAssignmentService = Depends(get_assignment_service),
) -> dict[str, Any]:
    try:
        return assignment_to_dict(service.get_assignment(actor, assignment_id))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected vendor assignment lookup failure")
        raise internal_error() from exc


@router.put("/assignments/{assignment_id}/draft")
async def save_draft(
    assignment_id: int,
    payload: DraftDetailsRequest,
    actor: Actor = Depends(get_actor),
    service: VehicleAssignmentService = Depends(get_assignment_service),
) -> dict[str, Any]:
    try:
        assignment = service.save_draft(actor, assignment_id, DraftDetails(**payload.model_dump()))
        return assignment_to_dict(assignment)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected draft save failure")
        raise internal_error() from exc


@router.post("/assignments/{assignment_id}/submit")
async def submit_assignment(
    assignment_id: int,
    payload: SubmitDetailsRequest,
    actor: Actor = Depends(get_actor),
    service: VehicleAssignmentService = Depends(get_assignment_service),
) -> dict[str, Any]:
    """Finalize vehicle details; a repeated submit returns 409."""
    try:
        assignment = service.submit(actor, assignment_id, TransportDetails(**payload.model_dump()))
        return assignment_to_dict(assignment)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected vehicle submission failure")
        raise internal_error() from exc


@router.get("/forms")
async def list_assigned_forms(
    actor: Actor = Depends(get_actor),
    service: VehicleAssignmentService = Depends(get_assignment_service),
) -> list[dict[str, Any]]:
    try:
        return service.list_assigned_forms(actor)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected assigned form listing failure")
        raise internal_error() from exc
