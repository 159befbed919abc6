import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from acheiumpro import config
from acheiumpro.models import NotificationChannel, NotificationRecord, OutboxEntry

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def resolve_channels(channels: Optional[Iterable[str]]) -> List[NotificationChannel]:
    requested = list(channels) if channels else list(config.NOTIFICATION_CHANNELS)
    resolved: List[NotificationChannel] = []
    for name in requested or [NotificationChannel.IN_APP.value]:
        try:
            channel = NotificationChannel(name)
        except ValueError:
            logger.warning("Ignoring unknown notification channel %r", name)
            continue
        if channel not in resolved:
            resolved.append(channel)
    return resolved or [NotificationChannel.IN_APP]


@dataclass
class NotificationStore:
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
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS notifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        channel TEXT NOT NULL DEFAULT 'in_app',
                        title TEXT NOT NULL,
                        body TEXT NOT NULL,
                        metadata_json TEXT NOT NULL DEFAULT '{}',
                        read_at TEXT,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS notification_outbox (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        notification_id INTEGER NOT NULL,
                        user_id INTEGER NOT NULL,
                        channel TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        attempts INTEGER NOT NULL DEFAULT 0,
                        last_error TEXT,
                        created_at TEXT NOT NULL,
                        delivered_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS notification_subscriptions (
                        user_id INTEGER NOT NULL,
                        device_token TEXT NOT NULL,
                        platform TEXT NOT NULL DEFAULT 'web',
                        created_at TEXT NOT NULL,
                        PRIMARY KEY (user_id, device_token)
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, created_at)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_outbox_status ON notification_outbox (status)")
                conn.commit()

    def _row_to_record(self, row: sqlite3.Row) -> NotificationRecord:
        return NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            channel=row["channel"],
            title=row["title"],
            body=row["body"],
            metadata=self._safe_json_object(row["metadata_json"]),
            read_at=row["read_at"],
            created_at=row["created_at"],
        )

    def register_device_token(self, user_id: int, device_token: str, platform: str = "web") -> None:
        if not device_token.strip():
            return
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO notification_subscriptions (user_id, device_token, platform, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id, device_token) DO UPDATE SET platform = excluded.platform
                    """,
                    (user_id, device_token.strip(), platform, _utc_now_iso()),
                )
                conn.commit()

    def device_tokens(self, user_id: int) -> List[str]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT device_token FROM notification_subscriptions WHERE user_id = ?",
                    (user_id,),
                ).fetchall()
        return [str(row["device_token"]) for row in rows]

    def remove_device_tokens(self, user_id: int, tokens: Iterable[str]) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.executemany(
                    "DELETE FROM notification_subscriptions WHERE user_id = ? AND device_token = ?",
                    [(user_id, token) for token in tokens],
                )
                conn.commit()

    def trigger(
        self,
        user_id: int,
        title: str,
        body: str,
        channels: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[NotificationRecord]:
        """Record one inbox row per channel and queue delivery for the non in-app ones."""
        metadata_json = json.dumps(metadata or {})
        now_iso = _utc_now_iso()
        created_ids: List[int] = []
        with self._lock:
            with self._connect() as conn:
                for channel in resolve_channels(channels):
                    cursor = conn.execute(
                        """
                        INSERT INTO notifications (user_id, channel, title, body, metadata_json, read_at, created_at)
                        VALUES (?, ?, ?, ?, ?, NULL, ?)
                        """,
                        (user_id, channel.value, title, body, metadata_json, now_iso),
                    )
                    created_ids.append(int(cursor.lastrowid))
                    if channel != NotificationChannel.IN_APP:
                        conn.execute(
                            """
                            INSERT INTO notification_outbox (notification_id, user_id, channel, status, attempts, created_at)
                            VALUES (?, ?, ?, 'pending', 0, ?)
                            """,
                            (cursor.lastrowid, user_id, channel.value, now_iso),
                        )
                conn.commit()
                rows = conn.execute(
                    f"SELECT * FROM notifications WHERE id IN ({', '.join('?' for _ in created_ids)}) ORDER BY id ASC",
                    created_ids,
                ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_for_user(self, user_id: int, unread_only: bool = False) -> List[NotificationRecord]:
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read_at IS NULL"
        query += " ORDER BY created_at DESC, id DESC LIMIT 100"
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def mark_read(self, user_id: int, notification_id: int) -> Optional[NotificationRecord]:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE notifications
                    SET read_at = COALESCE(read_at, ?)
                    WHERE id = ? AND user_id = ?
                    """,
                    (_utc_now_iso(), notification_id, user_id),
                )
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM notifications WHERE id = ? AND user_id = ?",
                    (notification_id, user_id),
                ).fetchone()
        return self._row_to_record(row) if row else None

    def mark_many_read(self, user_id: int, notification_ids: Iterable[int]) -> int:
        ids = [int(value) for value in notification_ids]
        if not ids:
            return 0
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"""
                    UPDATE notifications
                    SET read_at = ?
                    WHERE user_id = ? AND read_at IS NULL AND id IN ({', '.join('?' for _ in ids)})
                    """,
                    (_utc_now_iso(), user_id, *ids),
                )
                conn.commit()
        return cursor.rowcount

    def pending_outbox(self, limit: int = 100, max_attempts: Optional[int] = None) -> List[OutboxEntry]:
        max_attempts = max_attempts or config.NOTIFICATION_MAX_ATTEMPTS
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT o.*, n.title, n.body, n.metadata_json
                    FROM notification_outbox o
                    JOIN notifications n ON n.id = o.notification_id
                    WHERE o.status = 'pending' AND o.attempts < ?
                    ORDER BY o.id ASC
                    LIMIT ?
                    """,
                    (max_attempts, limit),
                ).fetchall()
        return [
            OutboxEntry(
                id=row["id"],
                notification_id=row["notification_id"],
                user_id=row["user_id"],
                channel=row["channel"],
                title=row["title"],
                body=row["body"],
                metadata=self._safe_json_object(row["metadata_json"]),
                status=row["status"],
                attempts=row["attempts"],
                last_error=row["last_error"],
            )
            for row in rows
        ]

    def record_delivery(
        self,
        outbox_id: int,
        status: str,
        error: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        """Store a delivery outcome. A failure stays pending until it runs out of attempts."""
        if status not in {"delivered", "skipped", "failed"}:
            raise ValueError(f"Invalid outbox status: {status}")
        max_attempts = max_attempts or config.NOTIFICATION_MAX_ATTEMPTS
        with self._lock:
            with self._connect() as conn:
                if status == "failed":
                    conn.execute(
                        """
                        UPDATE notification_outbox
                        SET attempts = attempts + 1,
                            last_error = ?,
                            status = CASE WHEN attempts + 1 >= ? THEN 'failed' ELSE 'pending' END
                        WHERE id = ?
                        """,
                        (error, max_attempts, outbox_id),
                    )
                else:
                    conn.execute(
                        """
                        UPDATE notification_outbox
                        SET attempts = attempts + 1, status = ?, last_error = ?, delivered_at = ?
                        WHERE id = ?
                        """,
                        (status, error, _utc_now_iso(), outbox_id),
                    )
                conn.commit()

    def outbox_status(self, outbox_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM notification_outbox WHERE id = ?", (outbox_id,)).fetchone()
        return dict(row) if row else None

    def _safe_json_object(self, raw_value: Any) -> Dict[str, Any]:
        if raw_value in (None, ""):
            return {}
        if isinstance(raw_value, dict):
            return raw_value
        if not isinstance(raw_value, str):
            return {}
        try:
            parsed = json.loads(raw_value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}


notification_store = NotificationStore(db_path=config.DB_PATH, timeout=config.DB_TIMEOUT_SECONDS)
