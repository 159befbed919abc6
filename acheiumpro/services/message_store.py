import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import List, Optional

from acheiumpro import config, policies
from acheiumpro.models import Message, User
from acheiumpro.services.marketplace_store import (
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceValidationError,
)

MESSAGE_SELECT = """
    SELECT m.*, u.name AS sender_name
    FROM messages m
    LEFT JOIN users u ON u.id = m.sender_id
"""


@dataclass
class MessageStore:
    """Per-request message threads between a client and the assigned provider."""

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
                    CREATE TABLE IF NOT EXISTS messages (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        request_id INTEGER NOT NULL REFERENCES service_requests(id) ON DELETE CASCADE,
                        sender_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        recipient_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        content TEXT,
                        attachment_url TEXT,
                        attachment_type TEXT,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_request ON messages (request_id, id)")
                conn.commit()

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            request_id=row["request_id"],
            sender_id=row["sender_id"],
            sender_name=row["sender_name"],
            recipient_id=row["recipient_id"],
            content=row["content"],
            attachment_url=row["attachment_url"],
            attachment_type=row["attachment_type"],
            created_at=row["created_at"],
        )

    def _load_thread_request(self, conn: sqlite3.Connection, actor: User, request_id: int) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
        # A thread only exists once a provider is assigned
        if not row or row["provider_id"] is None:
            raise MarketplaceNotFoundError("Request not found")
        if not policies.can_join_thread(actor, row):
            raise MarketplacePermissionError("Not allowed")
        return row

    def list_messages(self, *, actor: User, request_id: int) -> List[Message]:
        with self._lock:
            with self._connect() as conn:
                self._load_thread_request(conn, actor, request_id)
                rows = conn.execute(
                    f"{MESSAGE_SELECT} WHERE m.request_id = ? ORDER BY m.created_at ASC, m.id ASC",
                    (request_id,),
                ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def post_message(
        self,
        *,
        actor: User,
        request_id: int,
        content: Optional[str] = None,
        attachment_url: Optional[str] = None,
        attachment_type: Optional[str] = None,
    ) -> Message:
        cleaned_content = (content or "").strip() or None
        cleaned_url = (attachment_url or "").strip() or None
        if not cleaned_content and not cleaned_url:
            raise MarketplaceValidationError("Mensagem vazia")

        with self._lock:
            with self._connect() as conn:
                request_row = self._load_thread_request(conn, actor, request_id)
                if actor.id == request_row["client_id"]:
                    recipient_id = request_row["provider_id"]
                else:
                    recipient_id = request_row["client_id"]
                cursor = conn.execute(
                    """
                    INSERT INTO messages (
                        request_id, sender_id, recipient_id, content, attachment_url, attachment_type, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request_id,
                        actor.id,
                        recipient_id,
                        cleaned_content,
                        cleaned_url,
                        (attachment_type or "").strip() or None,
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
                conn.commit()
                row = conn.execute(f"{MESSAGE_SELECT} WHERE m.id = ?", (cursor.lastrowid,)).fetchone()
        return self._row_to_message(row)


message_store = MessageStore(db_path=config.DB_PATH, timeout=config.DB_TIMEOUT_SECONDS)
