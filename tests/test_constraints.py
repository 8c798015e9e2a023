from __future__ import annotations

from datetime import datetime, timezone

import pytest

from logistics_backend.domain.constraints import (
    InvalidAllocationError,
    default_permissions,
    is_valid_iso6346,
    validate_allocations,
)
from logistics_backend.domain.models import Actor, Allocation, Role
from logistics_backend.services.form_service import compute_working_year, format_ref_id


def test_allocations_within_vehicle_quantity_are_accepted():
    validate_allocations(
        [Allocation(1, 2), Allocation(2, 3)],
        total_vehicle_quantity=5,
    )


def test_allocations_exceeding_vehicle_quantity_are_rejected():
    with pytest.raises(InvalidAllocationError, match="exceeds total vehicles"):
        validate_allocations(
            [Allocation(1, 4), Allocation(2, 3)],
            total_vehicle_quantity=5,
        )


def test_iso6346_accepts_valid_check_digit():
    assert is_valid_iso6346("CSQU3054383")
    assert is_valid_iso6346(" csqu3054383 ")


@pytest.mark.parametrize(
    "container_number",
    ["CSQU3054384", "CSQ3054383", "CSQU305438", "1234567890A", ""],
)
def test_iso6346_rejects_bad_numbers(container_number):
    assert not is_valid_iso6346(container_number)


def test_working_year_rolls_over_in_april():
    assert compute_working_year(datetime(2026, 3, 31, tzinfo=timezone.utc)) == "2025-26"
    assert compute_working_year(datetime(2026, 4, 1, tzinfo=timezone.utc)) == "2026-27"
    assert compute_working_year(datetime(2099, 12, 1, tzinfo=timezone.utc)) == "2099-00"


def test_ref_id_is_zero_padded():
    assert format_ref_id("IFL", "2025-26", 42) == "IFL2025-26-00042"


def test_admin_wildcard_grants_every_permission():
    admin = Actor(user_id=1, role=Role.ADMIN, permissions=frozenset(default_permissions(Role.ADMIN)))
    vendor = Actor(user_id=2, role=Role.VENDOR, permissions=frozenset(default_permissions(Role.VENDOR)))

    assert admin.has_permission("forms.delete")
    assert admin.is_admin
    assert vendor.has_permission("vehicles.submit")
    assert not vendor.has_permission("forms.create")
