"""Domain-level validation rules for allocations, permissions and containers."""

from __future__ import annotations

import re
import string
from typing import Iterable, Optional

from logistics_backend.domain.models import Allocation, Role


ROLE_PERMISSIONS: dict[Role, tuple[str, ...]] = {
    Role.EMPLOYEE: ("forms.create", "forms.edit", "forms.view_own", "photos.upload"),
    Role.ADMIN: ("*",),
    Role.VENDOR: ("photos.upload", "forms.view_assigned", "vehicles.submit"),
    Role.ORDER_PLACER: ("forms.view_readonly",),
}

_CONTAINER_NUMBER_PATTERN = re.compile(r"^[A-Z]{4}[0-9]{7}$")


class InvalidAllocationError(ValueError):
    """Raised when an allocation list cannot be reconciled."""


def validate_allocations(
    allocations: Iterable[Allocation],
    total_vehicle_quantity: Optional[int] = None,
) -> None:
    seen_vendors: set[int] = set()
    total_requested = 0
    for allocation in allocations:
        if allocation.requested_count < 0:
            raise InvalidAllocationError(
                f"requested_count for vendor {allocation.vendor_id} must be >= 0"
            )
        if allocation.vendor_id in seen_vendors:
            raise InvalidAllocationError(
                f"vendor {allocation.vendor_id} appears more than once in allocations"
            )
        seen_vendors.add(allocation.vendor_id)
        total_requested += allocation.requested_count

    if total_vehicle_quantity is not None and total_requested > total_vehicle_quantity:
        raise InvalidAllocationError(
            f"Allocated ({total_requested}) exceeds total vehicles ({total_vehicle_quantity})"
        )


def _iso6346_letter_values() -> dict[str, int]:
    # Letter values start at 10 and skip multiples of 11.
    values: dict[str, int] = {}
    value = 10
    for letter in string.ascii_uppercase:
        if value % 11 == 0:
            value += 1
        values[letter] = value
        value += 1
    return values


_LETTER_VALUES = _iso6346_letter_values()


def is_valid_iso6346(container_number: str) -> bool:
    """Check owner code format and the ISO 6346 check digit."""
    candidate = container_number.strip().upper()
    if _CONTAINER_NUMBER_PATTERN.fullmatch(candidate) is None:
        return False

    total = 0
    for position, char in enumerate(candidate[:10]):
        char_value = _LETTER_VALUES[char] if char.isalpha() else int(char)
        total += char_value * (2**position)
    check_digit = (total % 11) % 10
    return check_digit == int(candidate[10])


def default_permissions(role: Role) -> tuple[str, ...]:
    return ROLE_PERMISSIONS[role]
