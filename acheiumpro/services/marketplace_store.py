import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from acheiumpro import config, policies
from acheiumpro.models import (
    Appointment,
    AppointmentStatus,
    Proposal,
    ProposalStatus,
    RequestStatus,
    Role,
    ServiceRequest,
    Urgency,
    User,
)

logger = logging.getLogger(__name__)


# Every write to service_requests.status goes through _transition_request,
# which only allows the moves listed here. Only pending reaches in_progress,
# so a proposal is accepted only while its request is open.
REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {
            RequestStatus.PENDING,
            RequestStatus.ACCEPTED,
            RequestStatus.IN_PROGRESS,
            RequestStatus.REJECTED,
            RequestStatus.CANCELLED,
        }
    ),
    RequestStatus.ACCEPTED: frozenset(
        {
            RequestStatus.ACCEPTED,
            RequestStatus.PENDING,
            RequestStatus.COMPLETED,
            RequestStatus.REJECTED,
            RequestStatus.CANCELLED,
        }
    ),
    RequestStatus.IN_PROGRESS: frozenset(
        {
            RequestStatus.ACCEPTED,
            RequestStatus.COMPLETED,
            RequestStatus.CANCELLED,
        }
    ),
    RequestStatus.REJECTED: frozenset({RequestStatus.PENDING}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

PROVIDER_SETTABLE_STATUSES = frozenset(
    {
        RequestStatus.PENDING,
        RequestStatus.ACCEPTED,
        RequestStatus.REJECTED,
        RequestStatus.COMPLETED,
    }
)

PROPOSAL_ACTIONS = frozenset({"accept", "reject"})


class MarketplaceError(ValueError):
    """Base class for user-visible marketplace errors."""


class MarketplaceValidationError(MarketplaceError):
    pass


class MarketplaceNotFoundError(MarketplaceError):
    pass


class MarketplaceConflictError(MarketplaceError):
    pass


class MarketplacePermissionError(MarketplaceError):
    pass


class MarketplaceTransactionError(MarketplaceError):
    pass


@dataclass
class ProposalResolution:
    action: str
    proposal: Proposal
    request: ServiceRequest
    # Providers whose pending proposals were rejected by an accept
    rejected_provider_ids: List[int] = field(default_factory=list)


@dataclass
class RequestStatusChange:
    request: ServiceRequest
    previous_status: RequestStatus
    appointment: Optional[Appointment] = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_optional(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


@dataclass
class MarketplaceStore:
    db_path: str
    timeout: float = 5.0

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS service_requests (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        client_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        provider_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
                        title TEXT NOT NULL,
                        category TEXT NOT NULL,
                        description TEXT NOT NULL,
                        location TEXT NOT NULL,
                        budget TEXT,
                        urgency TEXT NOT NULL DEFAULT 'medium',
                        status TEXT NOT NULL DEFAULT 'pending',
                        scheduled_at TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS service_proposals (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        request_id INTEGER NOT NULL REFERENCES service_requests(id) ON DELETE CASCADE,
                        provider_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        proposed_price REAL NOT NULL,
                        message TEXT,
                        status TEXT NOT NULL DEFAULT 'pending',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        UNIQUE (request_id, provider_id)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS appointments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        request_id INTEGER NOT NULL UNIQUE REFERENCES service_requests(id) ON DELETE CASCADE,
                        provider_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        client_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        scheduled_for TEXT,
                        status TEXT NOT NULL DEFAULT 'confirmed',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_requests_status ON service_requests (status)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_requests_client ON service_requests (client_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_proposals_request ON service_proposals (request_id)")
                conn.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the body in one BEGIN IMMEDIATE transaction.

        The reserved lock is taken before the first read, so concurrent writers
        on the same database queue up behind it instead of interleaving.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except MarketplaceError:
            conn.rollback()
            raise
        except sqlite3.Error as exc:
            conn.rollback()
            logger.exception("Marketplace transaction rolled back")
            raise MarketplaceTransactionError("Transaction failed and was rolled back") from exc
        finally:
            conn.close()

    def _row_to_request(self, row: sqlite3.Row) -> ServiceRequest:
        return ServiceRequest(
            id=row["id"],
            client_id=row["client_id"],
            provider_id=row["provider_id"],
            title=row["title"],
            category=row["category"],
            description=row["description"],
            location=row["location"],
            budget=row["budget"],
            urgency=row["urgency"],
            status=row["status"],
            scheduled_at=row["scheduled_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            proposal_count=row["proposal_count"] if "proposal_count" in row.keys() else 0,
        )

    def _row_to_proposal(self, row: sqlite3.Row) -> Proposal:
        return Proposal(
            id=row["id"],
            request_id=row["request_id"],
            provider_id=row["provider_id"],
            provider_name=row["provider_name"] if "provider_name" in row.keys() else None,
            proposed_price=row["proposed_price"],
            message=row["message"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_appointment(self, row: sqlite3.Row) -> Appointment:
        return Appointment(
            id=row["id"],
            request_id=row["request_id"],
            provider_id=row["provider_id"],
            client_id=row["client_id"],
            scheduled_for=row["scheduled_for"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _parse_timestamp(self, value: Optional[str], *, field_name: str = "scheduled_at") -> Optional[str]:
        cleaned = _clean_optional(value)
        if cleaned is None:
            return None
        try:
            return datetime.fromisoformat(cleaned.replace("Z", "+00:00")).isoformat()
        except ValueError as exc:
            raise MarketplaceValidationError(f"Invalid {field_name}. Use ISO 8601") from exc

    def _load_request_row(self, conn: sqlite3.Connection, request_id: int) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Request not found")
        return row

    def _load_proposal_row(self, conn: sqlite3.Connection, proposal_id: int) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM service_proposals WHERE id = ?", (proposal_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Proposal not found")
        return row

    def _load_appointment(self, conn: sqlite3.Connection, request_id: int) -> Optional[Appointment]:
        row = conn.execute("SELECT * FROM appointments WHERE request_id = ?", (request_id,)).fetchone()
        return self._row_to_appointment(row) if row else None

    def _transition_request(
        self,
        conn: sqlite3.Connection,
        request_row: sqlite3.Row,
        next_status: RequestStatus,
        *,
        provider_id: Optional[int] = None,
        scheduled_at: Optional[str] = None,
    ) -> RequestStatus:
        current_status = RequestStatus(request_row["status"])
        if next_status not in REQUEST_TRANSITIONS[current_status]:
            raise MarketplaceConflictError(
                f"Invalid status transition: {current_status.value} -> {next_status.value}"
            )
        conn.execute(
            """
            UPDATE service_requests
            SET status = ?,
                provider_id = COALESCE(?, provider_id),
                scheduled_at = COALESCE(?, scheduled_at),
                updated_at = ?
            WHERE id = ?
            """,
            (next_status.value, provider_id, scheduled_at, _utc_now_iso(), request_row["id"]),
        )
        return current_status

    def _set_appointment_status(self, conn: sqlite3.Connection, request_id: int, status: AppointmentStatus) -> None:
        conn.execute(
            "UPDATE appointments SET status = ?, updated_at = ? WHERE request_id = ?",
            (status.value, _utc_now_iso(), request_id),
        )

    def create_request(
        self,
        *,
        actor: User,
        title: str,
        description: str,
        category: str,
        location: str,
        urgency: Urgency = Urgency.MEDIUM,
        budget: Optional[str] = None,
        scheduled_at: Optional[str] = None,
    ) -> ServiceRequest:
        if not policies.can_create_request(actor):
            raise MarketplacePermissionError("Only clients can create requests")
        required = {
            "title": title.strip(),
            "description": description.strip(),
            "category": category.strip(),
            "location": location.strip(),
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise MarketplaceValidationError(f"Missing required fields: {', '.join(missing)}")
        try:
            urgency_value = Urgency(urgency).value
        except ValueError as exc:
            raise MarketplaceValidationError("Invalid urgency. Allowed: low, medium, high") from exc
        scheduled_iso = self._parse_timestamp(scheduled_at)

        now_iso = _utc_now_iso()
        with self._lock:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO service_requests (
                        client_id, provider_id, title, category, description, location,
                        budget, urgency, status, scheduled_at, created_at, updated_at
                    ) VALUES (?, NULL, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
                    """,
                    (
                        actor.id,
                        required["title"],
                        required["category"],
                        required["description"],
                        required["location"],
                        _clean_optional(budget),
                        urgency_value,
                        scheduled_iso,
                        now_iso,
                        now_iso,
                    ),
                )
                row = self._load_request_row(conn, cursor.lastrowid)
        return self._row_to_request(row)

    def list_requests(self, *, actor: User, status: Optional[str] = None) -> List[ServiceRequest]:
        clauses: List[str] = []
        params: List[object] = []
        if status:
            try:
                status_value = RequestStatus(status).value
            except ValueError as exc:
                raise MarketplaceValidationError(f"Invalid status value: {status}") from exc
            clauses.append("sr.status = ?")
            params.append(status_value)

        if policies.is_admin(actor):
            pass
        elif actor.role == Role.PROVIDER:
            clauses.append("(sr.status = 'pending' OR sr.provider_id = ?)")
            params.append(actor.id)
        else:
            clauses.append("sr.client_id = ?")
            params.append(actor.id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT sr.*,
                           (SELECT COUNT(*) FROM service_proposals sp WHERE sp.request_id = sr.id) AS proposal_count
                    FROM service_requests sr
                    {where}
                    ORDER BY sr.created_at DESC, sr.id DESC
                    """,
                    params,
                ).fetchall()
        return [self._row_to_request(row) for row in rows]

    def get_request(self, *, actor: User, request_id: int) -> ServiceRequest:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT sr.*,
                           (SELECT COUNT(*) FROM service_proposals sp WHERE sp.request_id = sr.id) AS proposal_count
                    FROM service_requests sr
                    WHERE sr.id = ?
                    """,
                    (request_id,),
                ).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Request not found")
        if not policies.can_view_request(actor, row):
            raise MarketplacePermissionError("Not allowed")
        return self._row_to_request(row)

    def cancel_request(self, *, actor: User, request_id: int) -> RequestStatusChange:
        with self._lock:
            with self._transaction() as conn:
                row = self._load_request_row(conn, request_id)
                if not policies.can_manage_request(actor, row):
                    raise MarketplacePermissionError("Not allowed")
                previous = self._transition_request(conn, row, RequestStatus.CANCELLED)
                self._set_appointment_status(conn, request_id, AppointmentStatus.CANCELLED)
                updated = self._load_request_row(conn, request_id)
                appointment = self._load_appointment(conn, request_id)
        return RequestStatusChange(
            request=self._row_to_request(updated),
            previous_status=previous,
            appointment=appointment,
        )

    def delete_request(self, *, actor: User, request_id: int) -> ServiceRequest:
        with self._lock:
            with self._transaction() as conn:
                row = self._load_request_row(conn, request_id)
                if not policies.can_manage_request(actor, row):
                    raise MarketplacePermissionError("Not allowed")
                conn.execute("DELETE FROM service_requests WHERE id = ?", (request_id,))
        return self._row_to_request(row)

    def list_proposals(self, *, actor: User, request_id: int) -> List[Proposal]:
        with self._lock:
            with self._connect() as conn:
                request_row = self._load_request_row(conn, request_id)
                if not policies.can_list_proposals(actor, request_row):
                    raise MarketplacePermissionError("Not allowed")
                rows = conn.execute(
                    """
                    SELECT sp.*, u.name AS provider_name
                    FROM service_proposals sp
                    LEFT JOIN users u ON u.id = sp.provider_id
                    WHERE sp.request_id = ?
                    ORDER BY sp.created_at DESC, sp.id DESC
                    """,
                    (request_id,),
                ).fetchall()
        return [self._row_to_proposal(row) for row in rows]

    def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM service_proposals WHERE id = ?", (proposal_id,)).fetchone()
        return self._row_to_proposal(row) if row else None

    def submit_proposal(
        self,
        *,
        actor: User,
        request_id: int,
        proposed_price: float,
        message: Optional[str] = None,
    ) -> Tuple[Proposal, ServiceRequest]:
        if not policies.can_submit_proposal(actor):
            raise MarketplacePermissionError("Only providers can submit proposals")
        if proposed_price is None or proposed_price <= 0:
            raise MarketplaceValidationError("proposedPrice must be greater than zero")

        now_iso = _utc_now_iso()
        with self._lock:
            with self._transaction() as conn:
                request_row = self._load_request_row(conn, request_id)
                if request_row["status"] != RequestStatus.PENDING.value:
                    raise MarketplaceConflictError("Request is no longer accepting proposals")
                try:
                    cursor = conn.execute(
                        """
                        INSERT INTO service_proposals (
                            request_id, provider_id, proposed_price, message, status, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, 'pending', ?, ?)
                        """,
                        (request_id, actor.id, float(proposed_price), _clean_optional(message), now_iso, now_iso),
                    )
                except sqlite3.IntegrityError as exc:
                    raise MarketplaceConflictError("Provider already submitted a proposal for this request") from exc
                proposal_row = self._load_proposal_row(conn, cursor.lastrowid)
        return self._row_to_proposal(proposal_row), self._row_to_request(request_row)

    def withdraw_proposal(self, *, actor: User, proposal_id: int) -> Tuple[Proposal, ServiceRequest]:
        with self._lock:
            with self._transaction() as conn:
                proposal_row = self._load_proposal_row(conn, proposal_id)
                if not policies.can_withdraw_proposal(actor, proposal_row):
                    raise MarketplacePermissionError("Not allowed")
                if proposal_row["status"] == ProposalStatus.ACCEPTED.value:
                    raise MarketplaceConflictError("Accepted proposals cannot be withdrawn")
                request_row = self._load_request_row(conn, proposal_row["request_id"])
                conn.execute("DELETE FROM service_proposals WHERE id = ?", (proposal_id,))
        return self._row_to_proposal(proposal_row), self._row_to_request(request_row)

    def resolve_proposal(self, *, actor: User, proposal_id: int, action: str) -> ProposalResolution:
        if action not in PROPOSAL_ACTIONS:
            raise MarketplaceValidationError("Invalid action. Allowed: accept, reject")

        with self._lock:
            with self._transaction() as conn:
                proposal_row = self._load_proposal_row(conn, proposal_id)
                request_id = proposal_row["request_id"]
                request_row = self._load_request_row(conn, request_id)
                if not policies.can_resolve_proposal(actor, request_row):
                    raise MarketplacePermissionError("Not allowed")

                now_iso = _utc_now_iso()
                rejected_provider_ids: List[int] = []
                if action == "accept":
                    # Checked inside the transaction so a concurrent accept on a
                    # sibling proposal sees the request already moved and fails here.
                    current_status = RequestStatus(request_row["status"])
                    if RequestStatus.IN_PROGRESS not in REQUEST_TRANSITIONS[current_status]:
                        raise MarketplaceConflictError(
                            f"Request is {current_status.value} and cannot accept a proposal"
                        )
                    sibling_rows = conn.execute(
                        """
                        SELECT provider_id
                        FROM service_proposals
                        WHERE request_id = ? AND id != ? AND status = 'pending'
                        """,
                        (request_id, proposal_id),
                    ).fetchall()
                    rejected_provider_ids = [int(row["provider_id"]) for row in sibling_rows]
                    conn.execute(
                        "UPDATE service_proposals SET status = 'rejected', updated_at = ? WHERE request_id = ?",
                        (now_iso, request_id),
                    )
                    conn.execute(
                        "UPDATE service_proposals SET status = 'accepted', updated_at = ? WHERE id = ?",
                        (now_iso, proposal_id),
                    )
                    self._transition_request(
                        conn,
                        request_row,
                        RequestStatus.IN_PROGRESS,
                        provider_id=proposal_row["provider_id"],
                    )
                elif proposal_row["status"] != ProposalStatus.REJECTED.value:
                    conn.execute(
                        "UPDATE service_proposals SET status = 'rejected', updated_at = ? WHERE id = ?",
                        (now_iso, proposal_id),
                    )

                updated_proposal = self._load_proposal_row(conn, proposal_id)
                updated_request = self._load_request_row(conn, request_id)

        return ProposalResolution(
            action=action,
            proposal=self._row_to_proposal(updated_proposal),
            request=self._row_to_request(updated_request),
            rejected_provider_ids=rejected_provider_ids,
        )

    def set_request_status(
        self,
        *,
        actor: User,
        request_id: int,
        new_status: str,
        scheduled_at: Optional[str] = None,
    ) -> RequestStatusChange:
        try:
            next_status = RequestStatus(new_status)
        except ValueError as exc:
            raise MarketplaceValidationError("Invalid status") from exc
        if next_status not in PROVIDER_SETTABLE_STATUSES:
            raise MarketplaceValidationError("Invalid status")
        scheduled_iso = self._parse_timestamp(scheduled_at)

        with self._lock:
            with self._transaction() as conn:
                request_row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
                if actor.role == Role.CLIENT:
                    if not request_row:
                        raise MarketplaceNotFoundError("Request not found")
                    raise MarketplacePermissionError("Only providers can update requests")
                if not request_row or not policies.can_set_request_status(actor, request_row):
                    raise MarketplaceNotFoundError("Request not found or unauthorized")

                if next_status == RequestStatus.ACCEPTED and request_row["provider_id"] is None:
                    raise MarketplaceValidationError("Request has no assigned provider")

                previous = self._transition_request(conn, request_row, next_status, scheduled_at=scheduled_iso)
                now_iso = _utc_now_iso()
                if next_status == RequestStatus.ACCEPTED:
                    conn.execute(
                        """
                        INSERT INTO appointments (
                            request_id, provider_id, client_id, scheduled_for, status, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, 'confirmed', ?, ?)
                        ON CONFLICT(request_id) DO UPDATE SET
                            provider_id = excluded.provider_id,
                            scheduled_for = COALESCE(excluded.scheduled_for, appointments.scheduled_for),
                            status = 'confirmed',
                            updated_at = excluded.updated_at
                        """,
                        (
                            request_id,
                            request_row["provider_id"],
                            request_row["client_id"],
                            scheduled_iso or request_row["scheduled_at"],
                            now_iso,
                            now_iso,
                        ),
                    )
                elif next_status == RequestStatus.COMPLETED:
                    self._set_appointment_status(conn, request_id, AppointmentStatus.COMPLETED)
                elif next_status in (RequestStatus.REJECTED, RequestStatus.PENDING):
                    self._set_appointment_status(conn, request_id, AppointmentStatus.CANCELLED)

                updated = self._load_request_row(conn, request_id)
                appointment = self._load_appointment(conn, request_id)

        return RequestStatusChange(
            request=self._row_to_request(updated),
            previous_status=previous,
            appointment=appointment,
        )

    def list_appointments(self, *, actor: User) -> List[Appointment]:
        with self._lock:
            with self._connect() as conn:
                if policies.is_admin(actor):
                    rows = conn.execute(
                        "SELECT * FROM appointments ORDER BY scheduled_for ASC, id ASC"
                    ).fetchall()
                else:
                    rows = conn.execute(
                        """
                        SELECT *
                        FROM appointments
                        WHERE client_id = ? OR provider_id = ?
                        ORDER BY scheduled_for ASC, id ASC
                        """,
                        (actor.id, actor.id),
                    ).fetchall()
        return [self._row_to_appointment(row) for row in rows]

    def appointments_for_request(self, request_id: int) -> List[Appointment]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM appointments WHERE request_id = ? ORDER BY id ASC",
                    (request_id,),
                ).fetchall()
        return [self._row_to_appointment(row) for row in rows]

    def _load_managed_appointment(self, conn: sqlite3.Connection, actor: User, appointment_id: int) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,)).fetchone()
        if not row or not policies.can_manage_appointment(actor, row):
            raise MarketplaceNotFoundError("Appointment not found or access denied")
        return row

    def update_appointment(
        self,
        *,
        actor: User,
        appointment_id: int,
        status: str,
        scheduled_for: Optional[str] = None,
    ) -> Appointment:
        """Change an appointment's status, optionally rescheduling it.

        The parent request keeps its own status; providers move it with
        set_request_status.
        """
        try:
            next_status = AppointmentStatus(status)
        except ValueError as exc:
            raise MarketplaceValidationError("Invalid status") from exc
        scheduled_iso = self._parse_timestamp(scheduled_for, field_name="scheduled_for")

        with self._lock:
            with self._transaction() as conn:
                self._load_managed_appointment(conn, actor, appointment_id)
                conn.execute(
                    """
                    UPDATE appointments
                    SET status = ?, scheduled_for = COALESCE(?, scheduled_for), updated_at = ?
                    WHERE id = ?
                    """,
                    (next_status.value, scheduled_iso, _utc_now_iso(), appointment_id),
                )
                updated = conn.execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,)).fetchone()
        return self._row_to_appointment(updated)

    def delete_appointment(self, *, actor: User, appointment_id: int) -> Appointment:
        with self._lock:
            with self._transaction() as conn:
                row = self._load_managed_appointment(conn, actor, appointment_id)
                conn.execute("DELETE FROM appointments WHERE id = ?", (appointment_id,))
        return self._row_to_appointment(row)


marketplace_store = MarketplaceStore(db_path=config.DB_PATH, timeout=config.DB_TIMEOUT_SECONDS)
