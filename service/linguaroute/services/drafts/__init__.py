"""Offline draft persistence and replay."""

from linguaroute.services.drafts.draft_store import DraftStore, InMemoryDraftStore
from linguaroute.services.drafts.replay_engine import (
    DraftNotifier,
    DraftReplayEngine,
    create_draft_store,
    create_replay_engine,
    default_backoff_ms,
)
from linguaroute.services.drafts.sqlite_draft_store import SQLiteDraftStore

__all__ = [
    "DraftNotifier",
    "DraftReplayEngine",
    "DraftStore",
    "InMemoryDraftStore",
    "SQLiteDraftStore",
    "create_draft_store",
    "create_replay_engine",
    "default_backoff_ms",
]
