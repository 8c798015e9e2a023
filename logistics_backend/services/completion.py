"""Completion flags derived from a form's assignments and containers."""

from __future__ import annotations

import sqlite3

from logistics_backend.domain.models import CompletionStatus, SubmittedAssignment
from logistics_backend.repository.data_repository import DataRepository
from logistics_backend.utils.clock import to_iso, utc_now


def compute_completion(repository: DataRepository, form_id: int, conn: sqlite3.Connection) -> CompletionStatus:
    assignments = repository.list_assignments_for_form(form_id, conn=conn)
    containers = repository.list_containers(form_id, conn=conn)

    transport_complete = bool(assignments) and all(
        isinstance(item, SubmittedAssignment) for item in assignments
    )
    containers_complete = bool(containers)
    return CompletionStatus(
        transport_details_complete=transport_complete,
        booking_details_complete=True,
        containers_complete=containers_complete,
        overall_complete=transport_complete and containers_complete,
    )


def refresh_completion(repository: DataRepository, form_id: int, conn: sqlite3.Connection) -> CompletionStatus:
    completion = compute_completion(repository, form_id, conn)
    repository.update_form(
        form_id,
        {"completion_status": completion, "updated_at": to_iso(utc_now())},
        conn=conn,
    )
    return completion
