import hashlib
import hmac
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

from acheiumpro import config
from acheiumpro.models import Role, User

PBKDF2_ITERATIONS = 200_000


class UserStoreError(ValueError):
    """Base class for user-visible account errors."""


class UserStoreValidationError(UserStoreError):
    pass


class UserStoreConflictError(UserStoreError):
    pass


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algorithm, iterations, salt, expected = password_hash.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


@dataclass
class UserStore:
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
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        password_hash TEXT NOT NULL,
                        role TEXT NOT NULL CHECK (role IN ('client', 'provider', 'admin')),
                        phone TEXT,
                        location TEXT,
                        status TEXT NOT NULL DEFAULT 'active',
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.commit()

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            role=row["role"],
            phone=row["phone"],
            location=row["location"],
            status=row["status"],
            created_at=row["created_at"],
        )

    def create_user(
        self,
        *,
        name: str,
        email: str,
        password: str,
        role: Role = Role.CLIENT,
        phone: Optional[str] = None,
        location: Optional[str] = None,
    ) -> User:
        cleaned_name = name.strip()
        cleaned_email = email.strip().lower()
        if not cleaned_name:
            raise UserStoreValidationError("Name is required")
        if "@" not in cleaned_email:
            raise UserStoreValidationError("A valid email is required")
        if len(password) < 6:
            raise UserStoreValidationError("Password must have at least 6 characters")

        now_iso = datetime.now(timezone.utc).isoformat()
        with self._lock:
            with self._connect() as conn:
                try:
                    cursor = conn.execute(
                        """
                        INSERT INTO users (name, email, password_hash, role, phone, location, status, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, 'active', ?)
                        """,
                        (
                            cleaned_name,
                            cleaned_email,
                            hash_password(password),
                            Role(role).value,
                            (phone or "").strip() or None,
                            (location or "").strip() or None,
                            now_iso,
                        ),
                    )
                except sqlite3.IntegrityError as exc:
                    raise UserStoreConflictError("Email already registered") from exc
                conn.commit()
                row = conn.execute("SELECT * FROM users WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return self._row_to_user(row)

    def ensure_admin(self, *, email: str, password: str, name: str = "Admin") -> User:
        existing = self.get_user_by_email(email)
        if existing:
            return existing
        return self.create_user(name=name, email=email, password=password, role=Role.ADMIN)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM users WHERE email = ?",
                    (email.strip().lower(),),
                ).fetchone()
        if not row or row["status"] != "active":
            return None
        if not verify_password(password, row["password_hash"]):
            return None
        return self._row_to_user(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM users WHERE email = ?",
                    (email.strip().lower(),),
                ).fetchone()
        return self._row_to_user(row) if row else None

    def set_status(self, user_id: int, status: str) -> None:
        if status not in {"active", "suspended"}:
            raise UserStoreValidationError("Invalid status. Allowed: active, suspended")
        with self._lock:
            with self._connect() as conn:
                conn.execute("UPDATE users SET status = ? WHERE id = ?", (status, user_id))
                conn.commit()


user_store = UserStore(db_path=config.DB_PATH, timeout=config.DB_TIMEOUT_SECONDS)
