"""SQLite-backed offline draft store."""

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from linguaroute.models.draft import DraftStatus, OfflineDraft
from linguaroute.services.drafts.draft_store import utc_now, validate_patch

logger = logging.getLogger(__name__)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO text so timestamps compare correctly as strings."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SQLiteDraftStore:
    """Draft store persisting to a single SQLite table.

    Opens a connection per operation; the conditional update relies on
    SQLite's row-level atomicity so two replay workers cannot claim the
    same draft.
    """

    COLUMNS = (
        "id",
        "user_id",
        "tenant_id",
        "channel_id",
        "original_text",
        "source_language",
        "target_language",
        "tone",
        "metadata",
        "status",
        "attempts",
        "error_reason",
        "last_error_code",
        "next_attempt_at",
        "result_text",
        "created_at",
        "updated_at",
        "completed_at",
    )

    def __init__(
        self,
        db_path: str,
        max_entries_per_user: int = 20,
        retention_hours: float = 72,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_entries_per_user < 1:
            raise ValueError("max_entries_per_user must be at least 1")
        self.db_path = db_path
        self.max_entries_per_user = max_entries_per_user
        self.retention = timedelta(hours=retention_hours)
        self._clock = clock or utc_now
        self._create_tables()

    def clock(self) -> datetime:
        return self._clock()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_tables(self):
        """Create database tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS offline_drafts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL DEFAULT '',
                channel_id TEXT,
                original_text TEXT NOT NULL,
                source_language TEXT,
                target_language TEXT NOT NULL,
                tone TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'PENDING',
                attempts INTEGER NOT NULL DEFAULT 0,
                error_reason TEXT,
                last_error_code TEXT,
                next_attempt_at TEXT,
                result_text TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT
            )
        """
        )

        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_offline_drafts_user ON offline_drafts(user_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_offline_drafts_pending ON offline_drafts(status, next_attempt_at)"
        )

        conn.commit()
        conn.close()

    def _row_to_draft(self, row: sqlite3.Row) -> OfflineDraft:
        return OfflineDraft(
            id=row["id"],
            user_id=row["user_id"],
            tenant_id=row["tenant_id"],
            channel_id=row["channel_id"],
            original_text=row["original_text"],
            source_language=row["source_language"],
            target_language=row["target_language"],
            tone=row["tone"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            status=DraftStatus(row["status"]),
            attempts=row["attempts"],
            error_reason=row["error_reason"],
            last_error_code=row["last_error_code"],
            next_attempt_at=_from_db(row["next_attempt_at"]),
            result_text=row["result_text"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
            completed_at=_from_db(row["completed_at"]),
        )

    def _cutoff(self, now: datetime) -> str:
        return _to_db(now - self.retention)  # type: ignore[return-value]

    def save(self, user_id: str, draft: OfflineDraft) -> OfflineDraft:
        now = self.clock()
        entry = draft.model_copy(
            update={
                "user_id": user_id,
                "created_at": draft.created_at or now,
                "updated_at": now,
                "next_attempt_at": draft.next_attempt_at or now,
            },
            deep=True,
        )

        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM offline_drafts WHERE user_id = ? AND created_at < ?",
                (user_id, self._cutoff(now)),
            )
            cursor.execute(
                f"""
                INSERT OR REPLACE INTO offline_drafts ({", ".join(self.COLUMNS)})
                VALUES ({", ".join("?" for _ in self.COLUMNS)})
                """,
                (
                    entry.id,
                    entry.user_id,
                    entry.tenant_id,
                    entry.channel_id,
                    entry.original_text,
                    entry.source_language,
                    entry.target_language,
                    entry.tone,
                    json.dumps(entry.metadata, ensure_ascii=False, default=str),
                    entry.status.value,
                    entry.attempts,
                    entry.error_reason,
                    entry.last_error_code,
                    _to_db(entry.next_attempt_at),
                    entry.result_text,
                    _to_db(entry.created_at),
                    _to_db(entry.updated_at),
                    _to_db(entry.completed_at),
                ),
            )
            # Keep only the newest drafts for this user
            cursor.execute(
                """
                DELETE FROM offline_drafts
                WHERE user_id = ? AND id NOT IN (
                    SELECT id FROM offline_drafts
                    WHERE user_id = ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                )
                """,
                (user_id, user_id, self.max_entries_per_user),
            )
            evicted = cursor.rowcount
            conn.commit()
        finally:
            conn.close()

        if evicted > 0:
            logger.info(
                f"Evicted {evicted} oldest draft(s) for user {user_id} "
                f"(cap {self.max_entries_per_user})"
            )
        return entry

    def get(self, user_id: str, draft_id: str) -> Optional[OfflineDraft]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM offline_drafts WHERE user_id = ? AND id = ?",
                (user_id, draft_id),
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_draft(row) if row else None

    def list_drafts(self, user_id: str) -> List[OfflineDraft]:
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM offline_drafts
                WHERE user_id = ? AND created_at >= ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (user_id, self._cutoff(self.clock())),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_draft(row) for row in rows]

    def list_pending(self, limit: Optional[int] = None) -> List[OfflineDraft]:
        """Pending drafts whose retry time has come, oldest first."""
        query = """
            SELECT * FROM offline_drafts
            WHERE status = ? AND (next_attempt_at IS NULL OR next_attempt_at <= ?)
            ORDER BY created_at ASC, rowid ASC
        """
        params: List[Any] = [DraftStatus.PENDING.value, _to_db(self.clock())]
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [self._row_to_draft(row) for row in rows]

    def update_if_status(
        self,
        user_id: str,
        draft_id: str,
        expected_status: DraftStatus,
        patch: Mapping[str, Any],
    ) -> bool:
        """Apply `patch` only if the draft is still in `expected_status`.

        Raises:
            ValueError: If the patch names a field that may not change
        """
        validate_patch(patch)

        values = {**patch, "updated_at": self.clock()}
        assignments = []
        params: List[Any] = []
        for column, value in values.items():
            assignments.append(f"{column} = ?")
            if isinstance(value, DraftStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = _to_db(value)
            params.append(value)
        params.extend([draft_id, user_id, DraftStatus(expected_status).value])

        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                UPDATE offline_drafts SET {", ".join(assignments)}
                WHERE id = ? AND user_id = ? AND status = ?
                """,
                params,
            )
            conn.commit()
            updated = cursor.rowcount == 1
        finally:
            conn.close()
        return updated

    def delete(self, user_id: str, draft_id: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM offline_drafts WHERE user_id = ? AND id = ?",
                (user_id, draft_id),
            )
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()
        return deleted

    def prune_expired(self) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM offline_drafts WHERE created_at < ?",
                (self._cutoff(self.clock()),),
            )
            conn.commit()
            removed = cursor.rowcount
        finally:
            conn.close()
        if removed:
            logger.info(f"Pruned {removed} expired offline draft(s)")
        return removed
