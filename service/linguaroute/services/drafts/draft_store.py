"""Offline draft store contract and the in-memory implementation."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from linguaroute.models.draft import DRAFT_PATCHABLE_FIELDS, DraftStatus, OfflineDraft

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_patch(patch: Mapping[str, Any]) -> None:
    """Reject patch fields the replay engine is not allowed to change.

    Raises:
        ValueError: If any key is not patchable
    """
    invalid = set(patch) - DRAFT_PATCHABLE_FIELDS
    if invalid:
        raise ValueError(
            f"Invalid draft patch field(s): {', '.join(sorted(invalid))}. "
            f"Allowed fields: {', '.join(sorted(DRAFT_PATCHABLE_FIELDS))}"
        )


class DraftStore(Protocol):
    """Persistence contract consumed by the pipeline and the replay engine."""

    def save(self, user_id: str, draft: OfflineDraft) -> OfflineDraft: ...

    def get(self, user_id: str, draft_id: str) -> Optional[OfflineDraft]: ...

    def list_drafts(self, user_id: str) -> List[OfflineDraft]: ...

    def list_pending(self, limit: Optional[int] = None) -> List[OfflineDraft]: ...

    def update_if_status(
        self,
        user_id: str,
        draft_id: str,
        expected_status: DraftStatus,
        patch: Mapping[str, Any],
    ) -> bool: ...

    def delete(self, user_id: str, draft_id: str) -> bool: ...

    def prune_expired(self) -> int: ...

    def clock(self) -> datetime: ...


class InMemoryDraftStore:
    """Lock-protected draft store keeping each user's drafts newest first.

    Saving beyond `max_entries_per_user` evicts the oldest drafts; drafts older
    than `retention_hours` are dropped on save, listing and pruning.
    """

    def __init__(
        self,
        max_entries_per_user: int = 20,
        retention_hours: float = 72,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_entries_per_user < 1:
            raise ValueError("max_entries_per_user must be at least 1")
        self.max_entries_per_user = max_entries_per_user
        self.retention = timedelta(hours=retention_hours)
        self._clock = clock or utc_now
        self._records: Dict[str, List[OfflineDraft]] = {}
        self._lock = threading.Lock()

    def clock(self) -> datetime:
        return self._clock()

    def _retained(self, drafts: List[OfflineDraft], now: datetime) -> List[OfflineDraft]:
        return [
            draft
            for draft in drafts
            if draft.created_at is None or now - draft.created_at <= self.retention
        ]

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
        with self._lock:
            drafts = self._retained(self._records.get(user_id, []), now)
            drafts.insert(0, entry)
            evicted = drafts[self.max_entries_per_user :]
            self._records[user_id] = drafts[: self.max_entries_per_user]
        if evicted:
            logger.info(
                f"Evicted {len(evicted)} oldest draft(s) for user {user_id} "
                f"(cap {self.max_entries_per_user})"
            )
        return entry.model_copy(deep=True)

    def get(self, user_id: str, draft_id: str) -> Optional[OfflineDraft]:
        with self._lock:
            for draft in self._records.get(user_id, []):
                if draft.id == draft_id:
                    return draft.model_copy(deep=True)
        return None

    def list_drafts(self, user_id: str) -> List[OfflineDraft]:
        now = self.clock()
        with self._lock:
            drafts = self._retained(self._records.get(user_id, []), now)
            self._records[user_id] = drafts
            return [draft.model_copy(deep=True) for draft in drafts]

    def list_pending(self, limit: Optional[int] = None) -> List[OfflineDraft]:
        """Pending drafts whose retry time has come, oldest first."""
        now = self.clock()
        with self._lock:
            pending = [
                draft
                for drafts in self._records.values()
                for draft in drafts
                if draft.status is DraftStatus.PENDING
                and (draft.next_attempt_at is None or draft.next_attempt_at <= now)
            ]
        pending.sort(key=lambda d: d.created_at or now)
        if limit:
            pending = pending[:limit]
        return [draft.model_copy(deep=True) for draft in pending]

    def update_if_status(
        self,
        user_id: str,
        draft_id: str,
        expected_status: DraftStatus,
        patch: Mapping[str, Any],
    ) -> bool:
        """Apply `patch` only if the draft is still in `expected_status`.

        Returns:
            True if the draft was updated, False if it is missing or has moved on

        Raises:
            ValueError: If the patch names a field that may not change
        """
        validate_patch(patch)
        now = self.clock()
        with self._lock:
            drafts = self._records.get(user_id, [])
            for index, draft in enumerate(drafts):
                if draft.id != draft_id:
                    continue
                if draft.status is not expected_status:
                    return False
                drafts[index] = draft.model_copy(update={**patch, "updated_at": now})
                return True
        return False

    def delete(self, user_id: str, draft_id: str) -> bool:
        with self._lock:
            drafts = self._records.get(user_id, [])
            remaining = [draft for draft in drafts if draft.id != draft_id]
            self._records[user_id] = remaining
            return len(remaining) != len(drafts)

    def prune_expired(self) -> int:
        now = self.clock()
        removed = 0
        with self._lock:
            for user_id in list(self._records):
                drafts = self._records[user_id]
                retained = self._retained(drafts, now)
                removed += len(drafts) - len(retained)
                if retained:
                    self._records[user_id] = retained
                else:
                    del self._records[user_id]
        if removed:
            logger.info(f"Pruned {removed} expired offline draft(s)")
        return removed
