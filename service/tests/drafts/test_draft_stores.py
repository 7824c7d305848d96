"""Tests shared by the in-memory and SQLite draft stores."""

from datetime import timedelta

import pytest
from linguaroute.core.config import Settings
from linguaroute.models.draft import DraftStatus, OfflineDraft
from linguaroute.services.drafts.draft_store import InMemoryDraftStore
from linguaroute.services.drafts.replay_engine import create_draft_store
from linguaroute.services.drafts.sqlite_draft_store import SQLiteDraftStore


def make_draft(text="Hello", user_id="u1", **kwargs):
    return OfflineDraft(
        user_id=user_id,
        tenant_id="acme",
        original_text=text,
        target_language="ja",
        **kwargs,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, clock, tmp_path):
    if request.param == "memory":
        return InMemoryDraftStore(max_entries_per_user=3, retention_hours=72, clock=clock)
    return SQLiteDraftStore(
        db_path=str(tmp_path / "drafts.db"),
        max_entries_per_user=3,
        retention_hours=72,
        clock=clock,
    )


class TestSave:
    @pytest.mark.unit
    def test_save_sets_timestamps(self, store, clock):
        saved = store.save("u1", make_draft(metadata={"thread": "t-1"}))

        fetched = store.get("u1", saved.id)
        assert fetched.status is DraftStatus.PENDING
        assert fetched.created_at == clock()
        assert fetched.updated_at == clock()
        assert fetched.next_attempt_at == clock()
        assert fetched.metadata == {"thread": "t-1"}
        assert fetched.attempts == 0

    @pytest.mark.unit
    def test_drafts_are_listed_newest_first(self, store, clock):
        first = store.save("u1", make_draft("one"))
        clock.advance(minutes=1)
        second = store.save("u1", make_draft("two"))

        assert [d.id for d in store.list_drafts("u1")] == [second.id, first.id]
        assert store.list_drafts("u2") == []

    @pytest.mark.unit
    def test_cap_evicts_oldest(self, store, clock):
        saved = []
        for index in range(5):
            saved.append(store.save("u1", make_draft(f"draft {index}")))
            clock.advance(minutes=1)

        remaining = [d.id for d in store.list_drafts("u1")]

        assert remaining == [saved[4].id, saved[3].id, saved[2].id]
        assert store.get("u1", saved[0].id) is None

    @pytest.mark.unit
    def test_cap_is_per_user(self, store):
        for index in range(3):
            store.save("u1", make_draft(f"u1 {index}"))
        store.save("u2", make_draft("u2", user_id="u2"))

        assert len(store.list_drafts("u1")) == 3
        assert len(store.list_drafts("u2")) == 1


class TestRetention:
    @pytest.mark.unit
    def test_expired_drafts_are_pruned(self, store, clock):
        old = store.save("u1", make_draft("old"))
        clock.advance(hours=48)
        fresh = store.save("u1", make_draft("fresh"))
        clock.advance(hours=30)

        assert store.prune_expired() == 1
        assert [d.id for d in store.list_drafts("u1")] == [fresh.id]
        assert store.get("u1", old.id) is None

    @pytest.mark.unit
    def test_draft_at_retention_boundary_is_kept(self, store, clock):
        store.save("u1", make_draft())
        clock.advance(hours=72)

        assert store.prune_expired() == 0
        assert len(store.list_drafts("u1")) == 1


class TestPending:
    @pytest.mark.unit
    def test_pending_respects_next_attempt(self, store, clock):
        due = store.save("u1", make_draft("due"))
        later = store.save(
            "u2",
            make_draft("later", user_id="u2", next_attempt_at=clock() + timedelta(seconds=30)),
        )

        assert [d.id for d in store.list_pending()] == [due.id]

        clock.advance(seconds=30)
        assert {d.id for d in store.list_pending()} == {due.id, later.id}

    @pytest.mark.unit
    def test_pending_oldest_first_with_limit(self, store, clock):
        first = store.save("u1", make_draft("first"))
        clock.advance(seconds=1)
        second = store.save("u2", make_draft("second", user_id="u2"))
        clock.advance(seconds=1)
        store.save("u1", make_draft("third"))

        assert [d.id for d in store.list_pending(limit=2)] == [first.id, second.id]

    @pytest.mark.unit
    def test_non_pending_drafts_are_excluded(self, store):
        draft = store.save("u1", make_draft())
        store.update_if_status("u1", draft.id, DraftStatus.PENDING, {"status": DraftStatus.PROCESSING})

        assert store.list_pending() == []


class TestConditionalUpdate:
    @pytest.mark.unit
    def test_claim_succeeds_once(self, store, clock):
        draft = store.save("u1", make_draft())
        clock.advance(seconds=5)

        patch = {"status": DraftStatus.PROCESSING, "attempts": 1, "error_reason": None}
        assert store.update_if_status("u1", draft.id, DraftStatus.PENDING, patch) is True
        assert store.update_if_status("u1", draft.id, DraftStatus.PENDING, patch) is False

        fetched = store.get("u1", draft.id)
        assert fetched.status is DraftStatus.PROCESSING
        assert fetched.attempts == 1
        assert fetched.updated_at == clock()

    @pytest.mark.unit
    def test_terminal_patch(self, store, clock):
        draft = store.save("u1", make_draft())
        store.update_if_status("u1", draft.id, DraftStatus.PENDING, {"status": DraftStatus.PROCESSING})

        store.update_if_status(
            "u1",
            draft.id,
            DraftStatus.PROCESSING,
            {
                "status": DraftStatus.SUCCEEDED,
                "result_text": "こんにちは",
                "completed_at": clock(),
                "next_attempt_at": None,
            },
        )

        fetched = store.get("u1", draft.id)
        assert fetched.status is DraftStatus.SUCCEEDED
        assert fetched.status.is_terminal
        assert fetched.result_text == "こんにちは"
        assert fetched.completed_at == clock()
        assert fetched.next_attempt_at is None

    @pytest.mark.unit
    def test_unknown_draft_or_user(self, store):
        draft = store.save("u1", make_draft())

        assert not store.update_if_status("u2", draft.id, DraftStatus.PENDING, {"attempts": 1})
        assert not store.update_if_status("u1", "missing", DraftStatus.PENDING, {"attempts": 1})

    @pytest.mark.unit
    def test_patch_fields_are_restricted(self, store):
        draft = store.save("u1", make_draft())

        with pytest.raises(ValueError):
            store.update_if_status("u1", draft.id, DraftStatus.PENDING, {"original_text": "x"})


@pytest.mark.unit
def test_delete(store):
    draft = store.save("u1", make_draft())

    assert store.delete("u1", draft.id) is True
    assert store.delete("u1", draft.id) is False
    assert store.list_drafts("u1") == []


@pytest.mark.unit
def test_returned_drafts_are_copies():
    store = InMemoryDraftStore()
    draft = store.save("u1", make_draft(metadata={"thread": "t-1"}))

    draft.metadata["thread"] = "changed"

    assert store.get("u1", draft.id).metadata == {"thread": "t-1"}


@pytest.mark.unit
def test_sqlite_store_persists_across_instances(tmp_path, clock):
    path = str(tmp_path / "drafts.db")
    draft = SQLiteDraftStore(path, clock=clock).save("u1", make_draft("persist me"))

    reopened = SQLiteDraftStore(path, clock=clock)

    assert reopened.get("u1", draft.id).original_text == "persist me"


@pytest.mark.unit
def test_invalid_cap():
    with pytest.raises(ValueError):
        InMemoryDraftStore(max_entries_per_user=0)


@pytest.mark.unit
def test_create_draft_store_backends(tmp_path):
    memory = create_draft_store(Settings(DATA_DIR=str(tmp_path)))
    sqlite = create_draft_store(
        Settings(DATA_DIR=str(tmp_path), DRAFT_STORE_BACKEND="sqlite", DRAFT_MAX_ENTRIES_PER_USER=5)
    )

    assert isinstance(memory, InMemoryDraftStore)
    assert isinstance(sqlite, SQLiteDraftStore)
    assert sqlite.max_entries_per_user == 5
    assert sqlite.db_path.endswith("offline_drafts.db")
