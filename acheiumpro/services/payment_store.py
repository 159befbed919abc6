import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import List, Optional, Tuple

from acheiumpro import config, policies
from acheiumpro.models import Payment, PaymentStatus, Role, User
from acheiumpro.services.marketplace_store import (
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceValidationError,
)

PAYMENT_SELECT = """
    SELECT pay.*, sr.description, pu.name AS provider_name, cu.name AS client_name
    FROM payments pay
    JOIN service_requests sr ON sr.id = pay.request_id
    LEFT JOIN users pu ON pu.id = pay.provider_id
    LEFT JOIN users cu ON cu.id = pay.client_id
"""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PaymentStore:
    """Payment tracking for assigned requests. No money moves through here."""

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
                    CREATE TABLE IF NOT EXISTS payments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        request_id INTEGER NOT NULL UNIQUE REFERENCES service_requests(id) ON DELETE CASCADE,
                        provider_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        client_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        amount REAL NOT NULL,
                        currency TEXT NOT NULL DEFAULT 'BRL',
                        status TEXT NOT NULL DEFAULT 'awaiting_payment',
                        checkout_url TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.commit()

    def _row_to_payment(self, row: sqlite3.Row) -> Payment:
        return Payment(
            id=row["id"],
            request_id=row["request_id"],
            provider_id=row["provider_id"],
            client_id=row["client_id"],
            amount=row["amount"],
            currency=row["currency"],
            status=row["status"],
            checkout_url=row["checkout_url"],
            description=row["description"],
            provider_name=row["provider_name"],
            client_name=row["client_name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def list_payments(self, *, actor: User) -> List[Payment]:
        if policies.is_admin(actor):
            query = f"{PAYMENT_SELECT} ORDER BY pay.created_at DESC, pay.id DESC LIMIT 200"
            params: Tuple[object, ...] = ()
        elif actor.role == Role.PROVIDER:
            query = f"{PAYMENT_SELECT} WHERE pay.provider_id = ? ORDER BY pay.created_at DESC, pay.id DESC"
            params = (actor.id,)
        else:
            query = f"{PAYMENT_SELECT} WHERE pay.client_id = ? ORDER BY pay.created_at DESC, pay.id DESC"
            params = (actor.id,)
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        return [self._row_to_payment(row) for row in rows]

    def create_payment(
        self,
        *,
        actor: User,
        request_id: int,
        amount: float,
        checkout_url: Optional[str] = None,
    ) -> Payment:
        """Open or reset the payment of a request. One payment per request."""
        if actor.role != Role.PROVIDER:
            raise MarketplacePermissionError("Only providers can create payments")
        if amount is None or amount <= 0:
            raise MarketplaceValidationError("Valor inválido")

        now_iso = _utc_now_iso()
        with self._lock:
            with self._connect() as conn:
                request_row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
                if not request_row or not policies.can_create_payment(actor, request_row):
                    raise MarketplaceNotFoundError("Request not found")
                conn.execute(
                    """
                    INSERT INTO payments (
                        request_id, provider_id, client_id, amount, currency, status, checkout_url, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, 'BRL', 'awaiting_payment', ?, ?, ?)
                    ON CONFLICT(request_id) DO UPDATE SET
                        amount = excluded.amount,
                        status = 'awaiting_payment',
                        checkout_url = excluded.checkout_url,
                        updated_at = excluded.updated_at
                    """,
                    (
                        request_id,
                        actor.id,
                        request_row["client_id"],
                        float(amount),
                        (checkout_url or "").strip() or None,
                        now_iso,
                        now_iso,
                    ),
                )
                conn.commit()
                row = conn.execute(f"{PAYMENT_SELECT} WHERE pay.request_id = ?", (request_id,)).fetchone()
        return self._row_to_payment(row)

    def update_status(self, *, actor: User, payment_id: int, status: str) -> Payment:
        try:
            next_status = PaymentStatus(status)
        except ValueError as exc:
            raise MarketplaceValidationError("Invalid status") from exc

        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM payments WHERE id = ?", (payment_id,)).fetchone()
                if not row:
                    raise MarketplaceNotFoundError("Payment not found")
                if not policies.can_update_payment(actor, row):
                    raise MarketplacePermissionError("Not allowed")
                conn.execute(
                    "UPDATE payments SET status = ?, updated_at = ? WHERE id = ?",
                    (next_status.value, _utc_now_iso(), payment_id),
                )
                conn.commit()
                updated = conn.execute(f"{PAYMENT_SELECT} WHERE pay.id = ?", (payment_id,)).fetchone()
        return self._row_to_payment(updated)


payment_store = PaymentStore(db_path=config.DB_PATH, timeout=config.DB_TIMEOUT_SECONDS)
