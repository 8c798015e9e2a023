"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from logistics_backend.domain.models import (
    AccessLink,
    Allocation,
    AssignmentStatus,
    AuditEntry,
    BookingDetails,
    CompletionStatus,
    Container,
    Dimensions,
    DraftAssignment,
    DraftDetails,
    FormStatus,
    Notification,
    NotificationEvent,
    Role,
    SubmittedAssignment,
    TransportDetails,
    TransportForm,
    User,
    UserPreferences,
    UserRole,
    VehicleAssignment,
)
from logistics_backend.utils.config import Settings, get_settings
from logistics_backend.utils.logger import get_logger


logger = get_logger(__name__)


class RepositoryError(Exception):
    """Base persistence failure."""


class StorageConflictError(RepositoryError):
    """Raised when a guarded write finds the row in an unexpected state."""


_FORM_UPDATABLE_COLUMNS = {
    "status",
    "booking_details",
    "completion_status",
    "updated_at",
    "submitted_at",
    "is_deleted",
    "deleted_at",
    "deleted_by",
    "deletion_reason",
}

_CONTAINER_UPDATABLE_COLUMNS = {
    "container_number",
    "seal_number",
    "do_number",
    "iso_code",
    "length",
    "width",
    "height",
    "iso_validated",
    "seal_intact",
    "damage_reported",
    "damage_description",
    "assigned_vendors",
    "updated_at",
}


def _dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


def _load_json(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized read-modify-write scope; commits on success, rolls back on error."""
        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()

    @contextmanager
    def _session(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.transaction() as own:
            yield own

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self.transaction() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS UserRoles (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        role TEXT NOT NULL
                            CHECK (role IN ('employee','admin','vendor','order_placer')),
                        permissions TEXT NOT NULL,
                        assigned_by INTEGER,
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                        FOREIGN KEY (user_id) REFERENCES Users(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS SystemConfig (
                        key TEXT PRIMARY KEY,
                        value TEXT,
                        updated_by INTEGER,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RefIdCounters (
                        working_year TEXT PRIMARY KEY,
                        counter INTEGER NOT NULL,
                        last_used TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS TransportForms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        ref_id TEXT NOT NULL UNIQUE,
                        employee_id INTEGER NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending','completed')),
                        booking_details TEXT NOT NULL,
                        completion_status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        submitted_at TEXT,
                        is_deleted INTEGER NOT NULL DEFAULT 0 CHECK (is_deleted IN (0,1)),
                        deleted_at TEXT,
                        deleted_by INTEGER,
                        deletion_reason TEXT,
                        FOREIGN KEY (employee_id) REFERENCES Users(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS FormAllocations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        form_id INTEGER NOT NULL,
                        position INTEGER NOT NULL,
                        vendor_id INTEGER NOT NULL,
                        requested_count INTEGER NOT NULL CHECK (requested_count >= 0),
                        transporter_name TEXT NOT NULL DEFAULT '',
                        contact_person TEXT,
                        contact_mobile TEXT,
                        FOREIGN KEY (form_id) REFERENCES TransportForms(id),
                        UNIQUE (form_id, vendor_id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS VehicleAssignments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        form_id INTEGER NOT NULL,
                        vendor_id INTEGER NOT NULL,
                        transporter_name TEXT NOT NULL DEFAULT '',
                        contact_person TEXT,
                        contact_mobile TEXT,
                        vehicle_number TEXT,
                        driver_name TEXT,
                        driver_mobile TEXT,
                        container_number TEXT,
                        seal_number TEXT,
                        estimated_departure TEXT,
                        estimated_arrival TEXT,
                        status TEXT NOT NULL DEFAULT 'draft'
                            CHECK (status IN ('draft','submitted')),
                        submitted_at TEXT,
                        submitted_by INTEGER,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        updated_by INTEGER,
                        FOREIGN KEY (form_id) REFERENCES TransportForms(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Containers (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        form_id INTEGER NOT NULL,
                        container_number TEXT NOT NULL,
                        seal_number TEXT NOT NULL,
                        do_number TEXT NOT NULL,
                        iso_code TEXT NOT NULL,
                        length REAL NOT NULL,
                        width REAL NOT NULL,
                        height REAL NOT NULL,
                        iso_validated INTEGER NOT NULL CHECK (iso_validated IN (0,1)),
                        seal_intact INTEGER NOT NULL CHECK (seal_intact IN (0,1)),
                        damage_reported INTEGER NOT NULL CHECK (damage_reported IN (0,1)),
                        damage_description TEXT,
                        assigned_vendors TEXT NOT NULL DEFAULT '[]',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (form_id) REFERENCES TransportForms(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AuditLogs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        entity_type TEXT NOT NULL,
                        entity_id TEXT NOT NULL,
                        action TEXT NOT NULL,
                        user_id INTEGER NOT NULL,
                        timestamp TEXT NOT NULL,
                        changes TEXT,
                        metadata TEXT
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Notifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        type TEXT NOT NULL,
                        title TEXT NOT NULL,
                        message TEXT NOT NULL,
                        data TEXT,
                        is_read INTEGER NOT NULL DEFAULT 0 CHECK (is_read IN (0,1)),
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS UserPreferences (
                        user_id INTEGER PRIMARY KEY,
                        email_notifications INTEGER NOT NULL CHECK (email_notifications IN (0,1)),
                        push_notifications INTEGER NOT NULL CHECK (push_notifications IN (0,1)),
                        notification_types TEXT NOT NULL,
                        timezone TEXT NOT NULL,
                        language TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AccessLinks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        token TEXT NOT NULL UNIQUE,
                        form_id INTEGER NOT NULL,
                        container_ids TEXT NOT NULL,
                        created_by INTEGER NOT NULL,
                        created_at TEXT NOT NULL,
                        expires_at TEXT NOT NULL,
                        is_revoked INTEGER NOT NULL DEFAULT 0 CHECK (is_revoked IN (0,1)),
                        revoked_at TEXT,
                        revoked_by INTEGER,
                        access_count INTEGER NOT NULL DEFAULT 0,
                        last_accessed_at TEXT,
                        FOREIGN KEY (form_id) REFERENCES TransportForms(id)
                    );
                    """
                )

                cursor.execute(
                    "CREATE INDEX IF NOT EXISTS idx_roles_user ON UserRoles(user_id, is_active);"
                )
                cursor.execute(
                    "CREATE INDEX IF NOT EXISTS idx_forms_employee ON TransportForms(employee_id);"
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_assignments_form_vendor
                    ON VehicleAssignments(form_id, vendor_id, status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_assignments_vendor_status
                    ON VehicleAssignments(vendor_id, status);
                    """
                )
                cursor.execute(
                    "CREATE INDEX IF NOT EXISTS idx_containers_form ON Containers(form_id);"
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_audit_entity
                    ON AuditLogs(entity_type, entity_id);
                    """
                )
                cursor.execute(
                    "CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON AuditLogs(timestamp);"
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_notifications_user_unread
                    ON Notifications(user_id, is_read);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Users, roles and system configuration
    # ------------------------------------------------------------------

    def create_user(
        self,
        name: str,
        email: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        with self._session(conn) as session:
            cursor = session.execute(
                "INSERT INTO Users (name, email) VALUES (?, ?);",
                (name, email),
            )
            return int(cursor.lastrowid)

    def get_user(
        self,
        user_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[User]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT id, name, email FROM Users WHERE id = ?;",
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return User(user_id=int(row["id"]), name=str(row["name"]), email=str(row["email"]))

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session(None) as session:
            row = session.execute(
                "SELECT id, name, email FROM Users WHERE email = ?;",
                (email,),
            ).fetchone()
            if row is None:
                return None
            return User(user_id=int(row["id"]), name=str(row["name"]), email=str(row["email"]))

    def list_users(self) -> list[User]:
        with self._session(None) as session:
            rows = session.execute("SELECT id, name, email FROM Users ORDER BY id ASC;").fetchall()
            return [
                User(user_id=int(row["id"]), name=str(row["name"]), email=str(row["email"]))
                for row in rows
            ]

    def get_active_role(
        self,
        user_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[UserRole]:
        with self._session(conn) as session:
            row = session.execute(
                """
                SELECT user_id, role, permissions, assigned_by, is_active
                FROM UserRoles
                WHERE user_id = ? AND is_active = 1
                ORDER BY id DESC
                LIMIT 1;
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return UserRole(
                user_id=int(row["user_id"]),
                role=Role(row["role"]),
                permissions=tuple(_load_json(row["permissions"]) or ()),
                assigned_by=int(row["assigned_by"]) if row["assigned_by"] is not None else None,
                is_active=bool(row["is_active"]),
            )

    def replace_role(
        self,
        user_id: int,
        role: Role,
        permissions: Sequence[str],
        assigned_by: Optional[int],
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Deactivate existing roles and insert the new active one."""
        with self._session(conn) as session:
            session.execute(
                "UPDATE UserRoles SET is_active = 0 WHERE user_id = ?;",
                (user_id,),
            )
            session.execute(
                """
                INSERT INTO UserRoles (user_id, role, permissions, assigned_by, is_active)
                VALUES (?, ?, ?, ?, 1);
                """,
                (user_id, role.value, _dump_json(list(permissions)), assigned_by),
            )

    def list_active_users_by_role(self, role: Role) -> list[User]:
        with self._session(None) as session:
            rows = session.execute(
                """
                SELECT DISTINCT u.id, u.name, u.email
                FROM UserRoles AS r
                INNER JOIN Users AS u ON u.id = r.user_id
                WHERE r.role = ? AND r.is_active = 1
                ORDER BY u.id ASC;
                """,
                (role.value,),
            ).fetchall()
            return [
                User(user_id=int(row["id"]), name=str(row["name"]), email=str(row["email"]))
                for row in rows
            ]

    def get_system_config(
        self,
        key: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Any:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT value FROM SystemConfig WHERE key = ?;",
                (key,),
            ).fetchone()
            if row is None:
                return None
            return _load_json(row["value"])

    def set_system_config(
        self,
        key: str,
        value: Any,
        updated_by: Optional[int],
        updated_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO SystemConfig (key, value, updated_by, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_by = excluded.updated_by,
                    updated_at = excluded.updated_at;
                """,
                (key, _dump_json(value), updated_by, updated_at),
            )

    # ------------------------------------------------------------------
    # Transport forms
    # ------------------------------------------------------------------

    def next_ref_counter(
        self,
        working_year: str,
        used_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        """Increment and return the per-working-year reference counter."""
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO RefIdCounters (working_year, counter, last_used)
                VALUES (?, 1, ?)
                ON CONFLICT(working_year) DO UPDATE SET
                    counter = counter + 1,
                    last_used = excluded.last_used;
                """,
                (working_year, used_at),
            )
            row = session.execute(
                "SELECT counter FROM RefIdCounters WHERE working_year = ?;",
                (working_year,),
            ).fetchone()
            return int(row["counter"])

    def insert_form(
        self,
        ref_id: str,
        employee_id: int,
        booking_details: BookingDetails,
        completion: CompletionStatus,
        created_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        with self._session(conn) as session:
            cursor = session.execute(
                """
                INSERT INTO TransportForms (
                    ref_id,
                    employee_id,
                    status,
                    booking_details,
                    completion_status,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, 'pending', ?, ?, ?, ?);
                """,
                (
                    ref_id,
                    employee_id,
                    _dump_json(booking_details.to_dict()),
                    _dump_json(completion.to_dict()),
                    created_at,
                    created_at,
                ),
            )
            return int(cursor.lastrowid)

    @staticmethod
    def _row_to_form(row: sqlite3.Row) -> TransportForm:
        return TransportForm(
            form_id=int(row["id"]),
            ref_id=str(row["ref_id"]),
            employee_id=int(row["employee_id"]),
            status=FormStatus(row["status"]),
            booking_details=BookingDetails.from_dict(_load_json(row["booking_details"])),
            completion=CompletionStatus(**_load_json(row["completion_status"])),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            submitted_at=row["submitted_at"],
            is_deleted=bool(row["is_deleted"]),
            deleted_at=row["deleted_at"],
            deleted_by=int(row["deleted_by"]) if row["deleted_by"] is not None else None,
            deletion_reason=row["deletion_reason"],
        )

    def get_form(
        self,
        form_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[TransportForm]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM TransportForms WHERE id = ?;",
                (form_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_form(row)

    def list_forms(
        self,
        employee_id: Optional[int] = None,
        include_deleted: bool = False,
    ) -> list[TransportForm]:
        """Return forms newest first, optionally scoped to one employee."""
        clauses: list[str] = []
        params: list[Any] = []
        if employee_id is not None:
            clauses.append("employee_id = ?")
            params.append(employee_id)
        if not include_deleted:
            clauses.append("is_deleted = 0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._session(None) as session:
            rows = session.execute(
                f"SELECT * FROM TransportForms {where} ORDER BY created_at DESC, id DESC;",
                tuple(params),
            ).fetchall()
            return [self._row_to_form(row) for row in rows]

    def update_form(
        self,
        form_id: int,
        changes: dict[str, Any],
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        unknown = set(changes) - _FORM_UPDATABLE_COLUMNS
        if unknown:
            raise RepositoryError(f"Unsupported form columns: {sorted(unknown)}")
        if not changes:
            return

        values: list[Any] = []
        for column, value in changes.items():
            if column == "booking_details":
                value = _dump_json(value.to_dict())
            elif column == "completion_status":
                value = _dump_json(value.to_dict())
            elif column == "status":
                value = FormStatus(value).value
            elif column == "is_deleted":
                value = int(bool(value))
            values.append(value)

        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._session(conn) as session:
            session.execute(
                f"UPDATE TransportForms SET {assignments} WHERE id = ?;",
                (*values, form_id),
            )

    # ------------------------------------------------------------------
    # Allocations
    # ------------------------------------------------------------------

    def list_allocations(
        self,
        form_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[Allocation]:
        with self._session(conn) as session:
            rows = session.execute(
                """
                SELECT vendor_id, requested_count, transporter_name, contact_person, contact_mobile
                FROM FormAllocations
                WHERE form_id = ?
                ORDER BY position ASC;
                """,
                (form_id,),
            ).fetchall()
            return [
                Allocation(
                    vendor_id=int(row["vendor_id"]),
                    requested_count=int(row["requested_count"]),
                    transporter_name=str(row["transporter_name"]),
                    contact_person=row["contact_person"],
                    contact_mobile=row["contact_mobile"],
                )
                for row in rows
            ]

    def replace_allocations(
        self,
        form_id: int,
        allocations: Sequence[Allocation],
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute("DELETE FROM FormAllocations WHERE form_id = ?;", (form_id,))
            session.executemany(
                """
                INSERT INTO FormAllocations (
                    form_id,
                    position,
                    vendor_id,
                    requested_count,
                    transporter_name,
                    contact_person,
                    contact_mobile
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        form_id,
                        position,
                        allocation.vendor_id,
                        allocation.requested_count,
                        allocation.transporter_name,
                        allocation.contact_person,
                        allocation.contact_mobile,
                    )
                    for position, allocation in enumerate(allocations)
                ],
            )

    # ------------------------------------------------------------------
    # Vehicle assignments
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_assignment(row: sqlite3.Row) -> VehicleAssignment:
        if row["status"] == AssignmentStatus.SUBMITTED.value:
            return SubmittedAssignment(
                assignment_id=int(row["id"]),
                booking_id=int(row["form_id"]),
                vendor_id=int(row["vendor_id"]),
                created_at=str(row["created_at"]),
                details=TransportDetails(
                    vehicle_number=str(row["vehicle_number"]),
                    driver_name=str(row["driver_name"]),
                    driver_mobile=str(row["driver_mobile"]),
                    container_number=row["container_number"],
                    seal_number=row["seal_number"],
                    estimated_departure=row["estimated_departure"],
                    estimated_arrival=row["estimated_arrival"],
                ),
                submitted_at=str(row["submitted_at"]),
                submitted_by=int(row["submitted_by"]),
            )
        return DraftAssignment(
            assignment_id=int(row["id"]),
            booking_id=int(row["form_id"]),
            vendor_id=int(row["vendor_id"]),
            created_at=str(row["created_at"]),
            details=DraftDetails(
                vehicle_number=row["vehicle_number"],
                driver_name=row["driver_name"],
                driver_mobile=row["driver_mobile"],
                container_number=row["container_number"],
                seal_number=row["seal_number"],
                estimated_departure=row["estimated_departure"],
                estimated_arrival=row["estimated_arrival"],
            ),
        )

    def list_assignments_for_form(
        self,
        form_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[VehicleAssignment]:
        with self._session(conn) as session:
            rows = session.execute(
                """
                SELECT *
                FROM VehicleAssignments
                WHERE form_id = ?
                ORDER BY created_at ASC, id ASC;
                """,
                (form_id,),
            ).fetchall()
            return [self._row_to_assignment(row) for row in rows]

    def list_assignments_for_vendor(
        self,
        vendor_id: int,
        status: Optional[AssignmentStatus] = None,
    ) -> list[VehicleAssignment]:
        query = "SELECT * FROM VehicleAssignments WHERE vendor_id = ?"
        params: list[Any] = [vendor_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at ASC, id ASC;"
        with self._session(None) as session:
            rows = session.execute(query, tuple(params)).fetchall()
            return [self._row_to_assignment(row) for row in rows]

    def get_assignment(
        self,
        assignment_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[VehicleAssignment]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM VehicleAssignments WHERE id = ?;",
                (assignment_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_assignment(row)

    def insert_draft_assignment(
        self,
        draft: DraftAssignment,
        created_at: str,
        allocation: Optional[Allocation] = None,
        updated_by: Optional[int] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> DraftAssignment:
        """Persist a draft slot and return it with its generated id."""
        with self._session(conn) as session:
            cursor = session.execute(
                """
                INSERT INTO VehicleAssignments (
                    form_id,
                    vendor_id,
                    transporter_name,
                    contact_person,
                    contact_mobile,
                    status,
                    created_at,
                    updated_at,
                    updated_by
                )
                VALUES (?, ?, ?, ?, ?, 'draft', ?, ?, ?);
                """,
                (
                    draft.booking_id,
                    draft.vendor_id,
                    allocation.transporter_name if allocation else "",
                    allocation.contact_person if allocation else None,
                    allocation.contact_mobile if allocation else None,
                    created_at,
                    created_at,
                    updated_by,
                ),
            )
            return DraftAssignment(
                booking_id=draft.booking_id,
                vendor_id=draft.vendor_id,
                assignment_id=int(cursor.lastrowid),
                created_at=created_at,
            )

    def delete_draft_assignment(
        self,
        assignment_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Delete only while the row is still a draft."""
        with self._session(conn) as session:
            cursor = session.execute(
                "DELETE FROM VehicleAssignments WHERE id = ? AND status = 'draft';",
                (assignment_id,),
            )
            if cursor.rowcount == 0:
                raise StorageConflictError(
                    f"Assignment {assignment_id} is no longer a deletable draft"
                )

    def save_draft_details(
        self,
        assignment_id: int,
        details: DraftDetails,
        updated_by: int,
        updated_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        with self._session(conn) as session:
            cursor = session.execute(
                """
                UPDATE VehicleAssignments
                SET vehicle_number = ?,
                    driver_name = ?,
                    driver_mobile = ?,
                    container_number = ?,
                    seal_number = ?,
                    estimated_departure = ?,
                    estimated_arrival = ?,
                    updated_at = ?,
                    updated_by = ?
                WHERE id = ? AND status = 'draft';
                """,
                (
                    details.vehicle_number,
                    details.driver_name,
                    details.driver_mobile,
                    details.container_number,
                    details.seal_number,
                    details.estimated_departure,
                    details.estimated_arrival,
                    updated_at,
                    updated_by,
                    assignment_id,
                ),
            )
            return cursor.rowcount == 1

    def submit_assignment(
        self,
        assignment_id: int,
        details: TransportDetails,
        submitted_by: int,
        submitted_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Compare-and-set draft -> submitted; False when the row was not a draft."""
        with self._session(conn) as session:
            cursor = session.execute(
                """
                UPDATE VehicleAssignments
                SET vehicle_number = ?,
                    driver_name = ?,
                    driver_mobile = ?,
                    container_number = ?,
                    seal_number = ?,
                    estimated_departure = ?,
                    estimated_arrival = ?,
                    status = 'submitted',
                    submitted_at = ?,
                    submitted_by = ?,
                    updated_at = ?,
                    updated_by = ?
                WHERE id = ? AND status = 'draft';
                """,
                (
                    details.vehicle_number,
                    details.driver_name,
                    details.driver_mobile,
                    details.container_number,
                    details.seal_number,
                    details.estimated_departure,
                    details.estimated_arrival,
                    submitted_at,
                    submitted_by,
                    submitted_at,
                    submitted_by,
                    assignment_id,
                ),
            )
            return cursor.rowcount == 1

    def count_assignments(self, form_id: Optional[int] = None) -> int:
        with self._session(None) as session:
            if form_id is None:
                row = session.execute("SELECT COUNT(*) AS count FROM VehicleAssignments;").fetchone()
            else:
                row = session.execute(
                    "SELECT COUNT(*) AS count FROM VehicleAssignments WHERE form_id = ?;",
                    (form_id,),
                ).fetchone()
            return int(row["count"])

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_container(row: sqlite3.Row) -> Container:
        return Container(
            container_id=int(row["id"]),
            form_id=int(row["form_id"]),
            container_number=str(row["container_number"]),
            seal_number=str(row["seal_number"]),
            do_number=str(row["do_number"]),
            iso_code=str(row["iso_code"]),
            dimensions=Dimensions(
                length=float(row["length"]),
                width=float(row["width"]),
                height=float(row["height"]),
            ),
            iso_validated=bool(row["iso_validated"]),
            seal_intact=bool(row["seal_intact"]),
            damage_reported=bool(row["damage_reported"]),
            damage_description=row["damage_description"],
            assigned_vendors=tuple(int(item) for item in _load_json(row["assigned_vendors"])),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )

    def insert_container(
        self,
        form_id: int,
        container_number: str,
        seal_number: str,
        do_number: str,
        iso_code: str,
        dimensions: Dimensions,
        iso_validated: bool,
        seal_intact: bool,
        damage_reported: bool,
        damage_description: Optional[str],
        created_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        with self._session(conn) as session:
            cursor = session.execute(
                """
                INSERT INTO Containers (
                    form_id,
                    container_number,
                    seal_number,
                    do_number,
                    iso_code,
                    length,
                    width,
                    height,
                    iso_validated,
                    seal_intact,
                    damage_reported,
                    damage_description,
                    assigned_vendors,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '[]', ?, ?);
                """,
                (
                    form_id,
                    container_number,
                    seal_number,
                    do_number,
                    iso_code,
                    dimensions.length,
                    dimensions.width,
                    dimensions.height,
                    int(iso_validated),
                    int(seal_intact),
                    int(damage_reported),
                    damage_description,
                    created_at,
                    created_at,
                ),
            )
            return int(cursor.lastrowid)

    def get_container(
        self,
        container_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Container]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM Containers WHERE id = ?;",
                (container_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_container(row)

    def list_containers(
        self,
        form_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[Container]:
        with self._session(conn) as session:
            rows = session.execute(
                "SELECT * FROM Containers WHERE form_id = ? ORDER BY id ASC;",
                (form_id,),
            ).fetchall()
            return [self._row_to_container(row) for row in rows]

    def find_container_by_number(
        self,
        form_id: int,
        container_number: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Container]:
        with self._session(conn) as session:
            row = session.execute(
                """
                SELECT * FROM Containers
                WHERE form_id = ? AND container_number = ?
                LIMIT 1;
                """,
                (form_id, container_number),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_container(row)

    def update_container(
        self,
        container_id: int,
        changes: dict[str, Any],
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        unknown = set(changes) - _CONTAINER_UPDATABLE_COLUMNS
        if unknown:
            raise RepositoryError(f"Unsupported container columns: {sorted(unknown)}")
        if not changes:
            return

        values: list[Any] = []
        for column, value in changes.items():
            if column == "assigned_vendors":
                value = _dump_json(list(value))
            elif column in {"iso_validated", "seal_intact", "damage_reported"}:
                value = int(bool(value))
            values.append(value)

        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._session(conn) as session:
            session.execute(
                f"UPDATE Containers SET {assignments} WHERE id = ?;",
                (*values, container_id),
            )

    def delete_container(
        self,
        container_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute("DELETE FROM Containers WHERE id = ?;", (container_id,))

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_audit(row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            audit_id=int(row["id"]),
            entity_type=str(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            action=str(row["action"]),
            user_id=int(row["user_id"]),
            timestamp=str(row["timestamp"]),
            changes=_load_json(row["changes"]),
            metadata=_load_json(row["metadata"]),
        )

    def insert_audit_log(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        user_id: int,
        timestamp: str,
        changes: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        with self._session(conn) as session:
            cursor = session.execute(
                """
                INSERT INTO AuditLogs (
                    entity_type,
                    entity_id,
                    action,
                    user_id,
                    timestamp,
                    changes,
                    metadata
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    entity_type,
                    entity_id,
                    action,
                    user_id,
                    timestamp,
                    _dump_json(changes),
                    _dump_json(metadata),
                ),
            )
            return int(cursor.lastrowid)

    def list_audit_logs(self, entity_type: str, entity_id: str) -> list[AuditEntry]:
        with self._session(None) as session:
            rows = session.execute(
                """
                SELECT * FROM AuditLogs
                WHERE entity_type = ? AND entity_id = ?
                ORDER BY timestamp DESC, id DESC;
                """,
                (entity_type, entity_id),
            ).fetchall()
            return [self._row_to_audit(row) for row in rows]

    def list_recent_audit_logs(self, since: str, limit: int) -> list[AuditEntry]:
        with self._session(None) as session:
            rows = session.execute(
                """
                SELECT * FROM AuditLogs
                WHERE timestamp > ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?;
                """,
                (since, limit),
            ).fetchall()
            return [self._row_to_audit(row) for row in rows]

    def count_audit_logs(self) -> int:
        with self._session(None) as session:
            row = session.execute("SELECT COUNT(*) AS count FROM AuditLogs;").fetchone()
            return int(row["count"])

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            notification_id=int(row["id"]),
            user_id=int(row["user_id"]),
            type=str(row["type"]),
            title=str(row["title"]),
            message=str(row["message"]),
            data=_load_json(row["data"]),
            is_read=bool(row["is_read"]),
            created_at=str(row["created_at"]),
        )

    def insert_notification(
        self,
        user_id: int,
        event: NotificationEvent,
        created_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        with self._session(conn) as session:
            cursor = session.execute(
                """
                INSERT INTO Notifications (user_id, type, title, message, data, is_read, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?);
                """,
                (
                    user_id,
                    event.type,
                    event.title,
                    event.message,
                    _dump_json(event.data or None),
                    created_at,
                ),
            )
            return int(cursor.lastrowid)

    def list_notifications(self, user_id: int, limit: int) -> list[Notification]:
        with self._session(None) as session:
            rows = session.execute(
                """
                SELECT * FROM Notifications
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?;
                """,
                (user_id, limit),
            ).fetchall()
            return [self._row_to_notification(row) for row in rows]

    def get_notification(self, notification_id: int) -> Optional[Notification]:
        with self._session(None) as session:
            row = session.execute(
                "SELECT * FROM Notifications WHERE id = ?;",
                (notification_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_notification(row)

    def mark_notification_read(self, notification_id: int) -> None:
        with self._session(None) as session:
            session.execute(
                "UPDATE Notifications SET is_read = 1 WHERE id = ?;",
                (notification_id,),
            )

    def count_unread_notifications(self, user_id: int) -> int:
        with self._session(None) as session:
            row = session.execute(
                """
                SELECT COUNT(*) AS count FROM Notifications
                WHERE user_id = ? AND is_read = 0;
                """,
                (user_id,),
            ).fetchone()
            return int(row["count"])

    def get_preferences(
        self,
        user_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[UserPreferences]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM UserPreferences WHERE user_id = ?;",
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return UserPreferences(
                user_id=int(row["user_id"]),
                email_notifications=bool(row["email_notifications"]),
                push_notifications=bool(row["push_notifications"]),
                notification_types=tuple(_load_json(row["notification_types"]) or ()),
                timezone=str(row["timezone"]),
                language=str(row["language"]),
            )

    def save_preferences(
        self,
        preferences: UserPreferences,
        updated_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO UserPreferences (
                    user_id,
                    email_notifications,
                    push_notifications,
                    notification_types,
                    timezone,
                    language,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    email_notifications = excluded.email_notifications,
                    push_notifications = excluded.push_notifications,
                    notification_types = excluded.notification_types,
                    timezone = excluded.timezone,
                    language = excluded.language,
                    updated_at = excluded.updated_at;
                """,
                (
                    preferences.user_id,
                    int(preferences.email_notifications),
                    int(preferences.push_notifications),
                    _dump_json(list(preferences.notification_types)),
                    preferences.timezone,
                    preferences.language,
                    updated_at,
                ),
            )

    # ------------------------------------------------------------------
    # Access links
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_access_link(row: sqlite3.Row) -> AccessLink:
        return AccessLink(
            link_id=int(row["id"]),
            token=str(row["token"]),
            form_id=int(row["form_id"]),
            container_ids=tuple(int(item) for item in _load_json(row["container_ids"])),
            created_by=int(row["created_by"]),
            expires_at=str(row["expires_at"]),
            is_revoked=bool(row["is_revoked"]),
            access_count=int(row["access_count"]),
            revoked_at=row["revoked_at"],
            revoked_by=int(row["revoked_by"]) if row["revoked_by"] is not None else None,
            last_accessed_at=row["last_accessed_at"],
        )

    def insert_access_link(
        self,
        token: str,
        form_id: int,
        container_ids: Sequence[int],
        created_by: int,
        created_at: str,
        expires_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        with self._session(conn) as session:
            cursor = session.execute(
                """
                INSERT INTO AccessLinks (
                    token,
                    form_id,
                    container_ids,
                    created_by,
                    created_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (token, form_id, _dump_json(list(container_ids)), created_by, created_at, expires_at),
            )
            return int(cursor.lastrowid)

    def get_access_link_by_token(
        self,
        token: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[AccessLink]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM AccessLinks WHERE token = ?;",
                (token,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_access_link(row)

    def revoke_access_link(
        self,
        link_id: int,
        revoked_by: int,
        revoked_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                UPDATE AccessLinks
                SET is_revoked = 1, revoked_at = ?, revoked_by = ?
                WHERE id = ?;
                """,
                (revoked_at, revoked_by, link_id),
            )

    def record_access_link_use(
        self,
        link_id: int,
        accessed_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                UPDATE AccessLinks
                SET access_count = access_count + 1, last_accessed_at = ?
                WHERE id = ?;
                """,
                (accessed_at, link_id),
            )

    def list_access_links(self) -> list[AccessLink]:
        with self._session(None) as session:
            rows = session.execute(
                "SELECT * FROM AccessLinks ORDER BY created_at DESC, id DESC;"
            ).fetchall()
            return [self._row_to_access_link(row) for row in rows]
