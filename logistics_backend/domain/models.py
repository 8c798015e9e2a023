"""Domain models for bookings, vendor allocations and vehicle assignments."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Optional, Union


class Role(str, Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"
    VENDOR = "vendor"
    ORDER_PLACER = "order_placer"


class FormStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class AssignmentStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"


@dataclass(frozen=True)
class Actor:
    """Explicit caller identity handed to every service operation."""

    user_id: int
    role: Optional[Role]
    permissions: frozenset[str] = frozenset()

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def has_permission(self, permission: str) -> bool:
        return "*" in self.permissions or permission in self.permissions


@dataclass(frozen=True)
class Allocation:
    vendor_id: int
    requested_count: int
    transporter_name: str = ""
    contact_person: Optional[str] = None
    contact_mobile: Optional[str] = None


@dataclass(frozen=True)
class TransportDetails:
    """Vendor-supplied vehicle data; required once an assignment is submitted."""

    vehicle_number: str
    driver_name: str
    driver_mobile: str
    container_number: Optional[str] = None
    seal_number: Optional[str] = None
    estimated_departure: Optional[str] = None
    estimated_arrival: Optional[str] = None


@dataclass(frozen=True)
class DraftDetails:
    """Partially filled vendor data saved before submission."""

    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_mobile: Optional[str] = None
    container_number: Optional[str] = None
    seal_number: Optional[str] = None
    estimated_departure: Optional[str] = None
    estimated_arrival: Optional[str] = None


@dataclass(frozen=True)
class DraftAssignment:
    booking_id: int
    vendor_id: int
    assignment_id: Optional[int] = None
    created_at: str = ""
    details: DraftDetails = field(default_factory=DraftDetails)

    @property
    def status(self) -> AssignmentStatus:
        return AssignmentStatus.DRAFT


@dataclass(frozen=True)
class SubmittedAssignment:
    assignment_id: int
    booking_id: int
    vendor_id: int
    created_at: str
    details: TransportDetails
    submitted_at: str
    submitted_by: int

    @property
    def status(self) -> AssignmentStatus:
        return AssignmentStatus.SUBMITTED


VehicleAssignment = Union[DraftAssignment, SubmittedAssignment]


@dataclass(frozen=True)
class ReconcilePlan:
    created: list[DraftAssignment]
    deleted: list[int]

    @property
    def is_empty(self) -> bool:
        return not self.created and not self.deleted


@dataclass(frozen=True)
class ReconcileResult:
    """Persisted outcome of applying a plan."""

    created: list[DraftAssignment]
    deleted: list[int]
    skipped: list[int]


@dataclass(frozen=True)
class BookingDetails:
    booking_no: str
    vehicle_quantity: int
    po_number: str = ""
    shipper_name: str = ""
    vessel: str = ""
    stuffing_date: Optional[str] = None
    cutoff_date: Optional[str] = None
    stuffing_place: str = ""
    commodity: str = ""
    category: str = ""
    placement_date: Optional[str] = None
    factory: str = ""
    remark: str = ""
    clearance_location: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "BookingDetails":
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass(frozen=True)
class CompletionStatus:
    transport_details_complete: bool = False
    booking_details_complete: bool = True
    containers_complete: bool = False
    overall_complete: bool = False

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class TransportForm:
    form_id: int
    ref_id: str
    employee_id: int
    status: FormStatus
    booking_details: BookingDetails
    completion: CompletionStatus
    created_at: str
    updated_at: str
    submitted_at: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[str] = None
    deleted_by: Optional[int] = None
    deletion_reason: Optional[str] = None


@dataclass(frozen=True)
class Dimensions:
    length: float
    width: float
    height: float


@dataclass(frozen=True)
class Container:
    container_id: int
    form_id: int
    container_number: str
    seal_number: str
    do_number: str
    iso_code: str
    dimensions: Dimensions
    iso_validated: bool
    seal_intact: bool
    damage_reported: bool
    damage_description: Optional[str]
    assigned_vendors: tuple[int, ...]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class User:
    user_id: int
    name: str
    email: str


@dataclass(frozen=True)
class UserRole:
    user_id: int
    role: Role
    permissions: tuple[str, ...]
    assigned_by: Optional[int]
    is_active: bool


@dataclass(frozen=True)
class AuditEntry:
    audit_id: int
    entity_type: str
    entity_id: str
    action: str
    user_id: int
    timestamp: str
    changes: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Notification:
    notification_id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Optional[dict[str, Any]]
    is_read: bool
    created_at: str


@dataclass(frozen=True)
class UserPreferences:
    user_id: int
    email_notifications: bool
    push_notifications: bool
    notification_types: tuple[str, ...]
    timezone: str
    language: str

    def accepts(self, event_type: str) -> bool:
        return event_type in self.notification_types


@dataclass(frozen=True)
class AccessLink:
    link_id: int
    token: str
    form_id: int
    container_ids: tuple[int, ...]
    created_by: int
    expires_at: str
    is_revoked: bool
    access_count: int
    revoked_at: Optional[str] = None
    revoked_by: Optional[int] = None
    last_accessed_at: Optional[str] = None
