"""HTTP controller layer for transport forms, allocations and containers."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from logistics_backend.controllers.dependencies import (
    get_actor,
    get_container_service,
    get_form_service,
)
from logistics_backend.controllers.errors import DOMAIN_ERRORS, internal_error, to_http_exception
from logistics_backend.domain.models import (
    Actor,
    Allocation,
    BookingDetails,
    Dimensions,
    FormStatus,
)
from logistics_backend.services.container_service import ContainerService
from logistics_backend.services.form_service import TransportFormService, form_to_dict
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["forms"])


class BookingDetailsPayload(BaseModel):
    booking_no: str = Field(min_length=1)
    vehicle_quantity: int = Field(ge=0)
    po_number: str = ""
    shipper_name: str = ""
    vessel: str = ""
    stuffing_date: Optional[date] = None
    cutoff_date: Optional[date] = None
    stuffing_place: str = ""
    commodity: str = ""
    category: str = ""
    placement_date: Optional[date] = None
    factory: str = ""
    remark: str = ""
    clearance_location: str = ""

    @field_validator("booking_no")
    @classmethod
    def validate_booking_no(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("booking_no must be non-empty")
        return value.strip()

    def to_domain(self) -> BookingDetails:
        payload = self.model_dump()
        for key in ("stuffing_date", "cutoff_date", "placement_date"):
            if payload[key] is not None:
                payload[key] = payload[key].isoformat()
        return BookingDetails(**payload)


class AllocationPayload(BaseModel):
    vendor_id: int = Field(gt=0)
    requested_count: int = Field(ge=0)
    transporter_name: str = ""
    contact_person: Optional[str] = None
    contact_mobile: Optional[str] = None

    def to_domain(self) -> Allocation:
        return Allocation(**self.model_dump())


class CreateFormRequest(BaseModel):
    booking_details: BookingDetailsPayload
    allocations: list[AllocationPayload] = Field(default_factory=list)


class UpdateAllocationsRequest(BaseModel):
    allocations: list[AllocationPayload]


class DeleteFormRequest(BaseModel):
    reason: Optional[str] = None


class ReconcileResponse(BaseModel):
    created: list[int]
    deleted: list[int]
    skipped: list[int]


class FormStatsResponse(BaseModel):
    total: int = Field(ge=0)
    pending: int = Field(ge=0)
    completed: int = Field(ge=0)
    this_month: int = Field(ge=0)


class DimensionsPayload(BaseModel):
    length: float = Field(gt=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class ContainerRequest(BaseModel):
    container_number: str = Field(min_length=1)
    seal_number: str = ""
    do_number: str = ""
    iso_code: str = ""
    dimensions: DimensionsPayload
    seal_intact: bool = True
    damage_reported: bool = False
    damage_description: Optional[str] = None


class ContainerUpdateRequest(BaseModel):
    container_number: Optional[str] = None
    seal_number: Optional[str] = None
    do_number: Optional[str] = None
    iso_code: Optional[str] = None
    dimensions: Optional[DimensionsPayload] = None
    seal_intact: Optional[bool] = None
    damage_reported: Optional[bool] = None
    damage_description: Optional[str] = None

    def to_changes(self) -> dict[str, Any]:
        changes = {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key == "damage_description"
        }
        if "dimensions" in changes:
            changes["dimensions"] = Dimensions(**changes["dimensions"])
        return changes


class AssignVendorRequest(BaseModel):
    vendor_id: int = Field(gt=0)


# ----------------------------------------------------------------------
# Forms
# ----------------------------------------------------------------------


@router.post("/forms", status_code=status.HTTP_201_CREATED)
async def create_form(
    payload: CreateFormRequest,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> dict[str, Any]:
    try:
        return service.create_form(
            actor,
            payload.booking_details.to_domain(),
            [item.to_domain() for item in payload.allocations],
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form creation failure")
        raise internal_error() from exc


@router.get("/forms")
async def list_forms(
    status_filter: Optional[FormStatus] = Query(default=None, alias="status"),
    employee_id: Optional[int] = Query(default=None, gt=0),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    include_deleted: bool = False,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> list[dict[str, Any]]:
    try:
        forms = service.list_forms(
            actor,
            status=status_filter,
            employee_id=employee_id,
            date_from=date_from,
            date_to=date_to,
            search=search,
            include_deleted=include_deleted,
        )
        return [form_to_dict(form) for form in forms]
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form listing failure")
        raise internal_error() from exc


@router.get("/forms/stats", response_model=FormStatsResponse)
async def form_stats(
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> FormStatsResponse:
    try:
        return FormStatsResponse(**service.get_form_stats(actor))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form stats failure")
        raise internal_error() from exc


@router.get("/forms/{form_id}")
async def get_form(
    form_id: int,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> dict[str, Any]:
    try:
        return service.get_form(actor, form_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form lookup failure")
        raise internal_error() from exc


@router.patch("/forms/{form_id}")
async def update_form(
    form_id: int,
    payload: BookingDetailsPayload,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> dict[str, Any]:
    try:
        return service.update_form(actor, form_id, payload.to_domain())
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form update failure")
        raise internal_error() from exc


@router.put("/forms/{form_id}/allocations", response_model=ReconcileResponse)
async def update_allocations(
    form_id: int,
    payload: UpdateAllocationsRequest,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> ReconcileResponse:
    """Replace vendor allocations and reconcile vehicle assignments."""
    try:
        result = service.update_allocations(
            actor,
            form_id,
            [item.to_domain() for item in payload.allocations],
        )
        return ReconcileResponse(
            created=[int(item.assignment_id) for item in result.created],
            deleted=result.deleted,
            skipped=result.skipped,
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected allocation update failure")
        raise internal_error() from exc


@router.post("/forms/{form_id}/submit")
async def submit_form(
    form_id: int,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> dict[str, Any]:
    try:
        return service.submit_form(actor, form_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form submission failure")
        raise internal_error() from exc


@router.delete("/forms/{form_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_form(
    form_id: int,
    payload: Optional[DeleteFormRequest] = None,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> None:
    try:
        service.delete_form(actor, form_id, reason=payload.reason if payload else None)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form deletion failure")
        raise internal_error() from exc


@router.post("/forms/{form_id}/restore")
async def restore_form(
    form_id: int,
    actor: Actor = Depends(get_actor),
    service: TransportFormService = Depends(get_form_service),
) -> dict[str, Any]:
    try:
        return service.restore_form(actor, form_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected form restore failure")
        raise internal_error() from exc


# ----------------------------------------------------------------------
# Containers
# ----------------------------------------------------------------------


def _container_payload(container: Any) -> dict[str, Any]:
    return {
        "container_id": container.container_id,
        "form_id": container.form_id,
        "container_number": container.container_number,
        "seal_number": container.seal_number,
        "do_number": container.do_number,
        "iso_code": container.iso_code,
        "dimensions": {
            "length": container.dimensions.length,
            "width": container.dimensions.width,
            "height": container.dimensions.height,
        },
        "iso_validated": container.iso_validated,
        "seal_intact": container.seal_intact,
        "damage_reported": container.damage_reported,
        "damage_description": container.damage_description,
        "assigned_vendors": list(container.assigned_vendors),
        "created_at": container.created_at,
        "updated_at": container.updated_at,
    }


@router.get("/forms/{form_id}/containers")
async def list_containers(
    form_id: int,
    actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
) -> list[dict[str, Any]]:
    try:
        return [_container_payload(item) for item in service.list_containers(actor, form_id)]
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected container listing failure")
        raise internal_error() from exc


@router.post("/forms/{form_id}/containers", status_code=status.HTTP_201_CREATED)
async def add_container(
    form_id: int,
    payload: ContainerRequest,
    actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
) -> dict[str, Any]:
    try:
        container = service.add_container(
            actor,
            form_id,
            container_number=payload.container_number,
            seal_number=payload.seal_number,
            do_number=payload.do_number,
            iso_code=payload.iso_code,
            dimensions=Dimensions(**payload.dimensions.model_dump()),
            seal_intact=payload.seal_intact,
            damage_reported=payload.damage_reported,
            damage_description=payload.damage_description,
        )
        return _container_payload(container)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected container creation failure")
        raise internal_error() from exc


@router.patch("/containers/{container_id}")
async def update_container(
    container_id: int,
    payload: ContainerUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
) -> dict[str, Any]:
    changes = payload.to_changes()
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No container fields supplied",
        )
    try:
        return _container_payload(service.update_container(actor, container_id, changes))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected container update failure")
        raise internal_error() from exc


@router.delete("/containers/{container_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_container(
    container_id: int,
    actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
) -> None:
    try:
        service.remove_container(actor, container_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected container removal failure")
        raise internal_error() from exc


@router.post("/containers/{container_id}/vendors")
async def assign_vendor(
    container_id: int,
    payload: AssignVendorRequest,
    actor: Actor = Depends(get_actor),
    service: ContainerService = Depends(get_container_service),
) -> dict[str, Any]:
    try:
        return _container_payload(
            service.assign_vendor_to_container(actor, container_id, payload.vendor_id)
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected container vendor assignment failure")
        raise internal_error() from exc
