import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import List, Optional, Tuple

from acheiumpro import config, policies
from acheiumpro.models import RequestStatus, Review, ReviewStats, User
from acheiumpro.services.marketplace_store import (
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceValidationError,
)

REVIEW_SELECT = """
    SELECT r.*, u.name AS client_name
    FROM reviews r
    LEFT JOIN users u ON u.id = r.client_id
"""


@dataclass
class ReviewStore:
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
                    CREATE TABLE IF NOT EXISTS reviews (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        client_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                        comment TEXT,
                        created_at TEXT NOT NULL,
                        UNIQUE (provider_id, client_id)
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_reviews_provider ON reviews (provider_id)")
                conn.commit()

    def _row_to_review(self, row: sqlite3.Row) -> Review:
        return Review(
            id=row["id"],
            provider_id=row["provider_id"],
            client_id=row["client_id"],
            client_name=row["client_name"],
            rating=row["rating"],
            comment=row["comment"],
            created_at=row["created_at"],
        )

    def list_reviews(self, provider_id: int, client_id: Optional[int] = None) -> List[Review]:
        query = f"{REVIEW_SELECT} WHERE r.provider_id = ?"
        params: List[object] = [provider_id]
        if client_id:
            query += " AND r.client_id = ?"
            params.append(client_id)
        query += " ORDER BY r.created_at DESC, r.id DESC"
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        return [self._row_to_review(row) for row in rows]

    def submit_review(
        self,
        *,
        actor: User,
        provider_id: int,
        rating: int,
        comment: Optional[str] = None,
    ) -> Tuple[Review, bool]:
        """Create or replace the actor's review of a provider.

        Returns the review and whether it was newly created. Only a client
        with a completed request served by the provider may review.
        """
        if not policies.can_review(actor):
            raise MarketplacePermissionError("Only clients can create reviews")
        if not 1 <= rating <= 5:
            raise MarketplaceValidationError("Rating must be between 1 and 5")

        now_iso = datetime.now(timezone.utc).isoformat()
        with self._lock:
            with self._connect() as conn:
                completed = conn.execute(
                    """
                    SELECT 1 FROM service_requests
                    WHERE client_id = ? AND provider_id = ? AND status = ?
                    LIMIT 1
                    """,
                    (actor.id, provider_id, RequestStatus.COMPLETED.value),
                ).fetchone()
                if not completed:
                    raise MarketplacePermissionError("Você só pode avaliar prestadores após concluir um serviço")
                existing = conn.execute(
                    "SELECT id FROM reviews WHERE provider_id = ? AND client_id = ?",
                    (provider_id, actor.id),
                ).fetchone()
                conn.execute(
                    """
                    INSERT INTO reviews (provider_id, client_id, rating, comment, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(provider_id, client_id) DO UPDATE SET
                        rating = excluded.rating,
                        comment = excluded.comment,
                        created_at = excluded.created_at
                    """,
                    (provider_id, actor.id, rating, (comment or "").strip() or None, now_iso),
                )
                conn.commit()
                row = conn.execute(
                    f"{REVIEW_SELECT} WHERE r.provider_id = ? AND r.client_id = ?",
                    (provider_id, actor.id),
                ).fetchone()
        return self._row_to_review(row), existing is None

    def stats_for(self, user_id: int) -> ReviewStats:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT u.name AS user_name,
                           COUNT(r.id) AS total_reviews,
                           ROUND(COALESCE(AVG(r.rating), 0), 2) AS average_rating,
                           SUM(CASE WHEN r.rating = 1 THEN 1 ELSE 0 END) AS rating_1,
                           SUM(CASE WHEN r.rating = 2 THEN 1 ELSE 0 END) AS rating_2,
                           SUM(CASE WHEN r.rating = 3 THEN 1 ELSE 0 END) AS rating_3,
                           SUM(CASE WHEN r.rating = 4 THEN 1 ELSE 0 END) AS rating_4,
                           SUM(CASE WHEN r.rating = 5 THEN 1 ELSE 0 END) AS rating_5
                    FROM users u
                    LEFT JOIN reviews r ON r.provider_id = u.id
                    WHERE u.id = ?
                    GROUP BY u.id, u.name
                    """,
                    (user_id,),
                ).fetchone()
        if not row:
            return ReviewStats(user_id=user_id)
        return ReviewStats(
            user_id=user_id,
            user_name=row["user_name"],
            total_reviews=row["total_reviews"],
            average_rating=row["average_rating"],
            rating_distribution={star: row[f"rating_{star}"] or 0 for star in range(1, 6)},
        )

    def delete_review(self, *, actor: User, review_id: int) -> None:
        if not policies.can_moderate_reviews(actor):
            raise MarketplacePermissionError("Not allowed")
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
                conn.commit()
        if cursor.rowcount == 0:
            raise MarketplaceNotFoundError("Review not found")


review_store = ReviewStore(db_path=config.DB_PATH, timeout=config.DB_TIMEOUT_SECONDS)
