"""Tests for the content record model and store."""

from datetime import datetime, timedelta

import pytest

from services.shared.errors import DuplicateError, InvalidTransitionError, RecordNotFoundError, ValidationError
from services.shared.models import CaptureStatus, validate_transition
from services.shared.store import RecordFilters, decode_cursor, encode_cursor

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def make_record(store, url, user_id="user-1", source_type="web", minutes=0, **fields):
    record = store.create(user_id, url, source_type)
    when = BASE_TIME + timedelta(minutes=minutes)
    return store.update_fields(record.id, created_at=when, captured_at=when, **fields)


class TestStatusTransitions:
    """Test suite for the capture status lifecycle."""

    @pytest.mark.parametrize("current,target", [
        ("pending", "complete"),
        ("pending", "failed"),
    ])
    def test_allowed(self, current, target):
        """Test the forward transitions."""
        validate_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        ("complete", "pending"),
        ("complete", "failed"),
        ("failed", "complete"),
        ("failed", "pending"),
        ("pending", "pending"),
    ])
    def test_rejected(self, current, target):
        """Test that other transitions are illegal."""
        with pytest.raises(InvalidTransitionError):
            validate_transition(current, target)

    def test_requeue_only_from_failed(self):
        """Test the explicit requeue transition."""
        validate_transition(CaptureStatus.FAILED, CaptureStatus.PENDING, requeue=True)
        with pytest.raises(InvalidTransitionError):
            validate_transition(CaptureStatus.COMPLETE, CaptureStatus.PENDING, requeue=True)


class TestContentStore:
    """Test suite for ContentStore."""

    def test_create_pending(self, store):
        """Test that new records start pending with no attempts."""
        record = store.create("user-1", "https://example.com/", "web", platform_data={"user_notes": "read"})

        loaded = store.get(record.id)
        assert loaded.status == "pending"
        assert loaded.processing_attempts == 0
        assert loaded.platform_data == {"user_notes": "read"}
        assert loaded.images == []

    def test_duplicate_per_user(self, store):
        """Test the (url, user) uniqueness rule."""
        store.create("user-1", "https://example.com/", "web")
        with pytest.raises(DuplicateError):
            store.create("user-1", "https://example.com/", "web")
        other = store.create("user-2", "https://example.com/", "web")
        assert other.user_id == "user-2"

    def test_find_by_url(self, store):
        """Test lookup by normalized URL and owner."""
        record = store.create("user-1", "https://example.com/a", "web")
        assert store.find_by_url("https://example.com/a", "user-1").id == record.id
        assert store.find_by_url("https://example.com/a", "user-2") is None

    def test_lifecycle(self, store):
        """Test attempts, failure, requeue and completion."""
        record = store.create("user-1", "https://example.com/", "web")

        store.start_attempt(record.id)
        failed = store.mark_failed(record.id, "[network] timeout")
        assert failed.status == "failed"
        assert failed.error_message == "[network] timeout"
        assert failed.processing_attempts == 1

        requeued = store.requeue(record.id)
        assert requeued.status == "pending"
        assert requeued.error_message is None

        store.start_attempt(record.id)
        done = store.mark_complete(record.id, {"title": "Example", "images": [{"url": "https://img"}]})
        assert done.status == "complete"
        assert done.title == "Example"
        assert done.processing_attempts == 2
        assert done.processed_at is not None

    def test_complete_is_terminal(self, store):
        """Test that a completed record cannot fail or be requeued."""
        record = store.create("user-1", "https://example.com/", "web")
        store.mark_complete(record.id, {})
        with pytest.raises(InvalidTransitionError):
            store.mark_failed(record.id, "late failure")
        with pytest.raises(InvalidTransitionError):
            store.requeue(record.id)
        assert store.get(record.id).status == "complete"

    def test_missing_record(self, store):
        """Test operations on unknown ids."""
        assert store.get("nope") is None
        with pytest.raises(RecordNotFoundError):
            store.require("nope")
        with pytest.raises(RecordNotFoundError):
            store.start_attempt("nope")

    def test_set_embedding(self, store):
        """Test embedding lineage fields."""
        record = store.create("user-1", "https://example.com/", "web")
        updated = store.set_embedding(record.id, [0.1, 0.2], "text-embedding-3-small")
        assert updated.embedding == [0.1, 0.2]
        assert updated.embedding_model == "text-embedding-3-small"
        assert updated.embedding_generated_at is not None
        assert updated.to_dict()["has_embedding"] is True

    def test_list_failed_oldest_first(self, store):
        """Test failed-record selection order and filters."""
        newer = make_record(store, "https://example.com/new", minutes=5)
        older = make_record(store, "https://example.com/old", minutes=1)
        pdf = make_record(store, "https://example.com/a.pdf", source_type="pdf", minutes=3)
        make_record(store, "https://example.com/ok", minutes=2)
        for record in (newer, older, pdf):
            store.mark_failed(record.id, "boom")

        assert [r.id for r in store.list_failed()] == [older.id, pdf.id, newer.id]
        assert [r.id for r in store.list_failed(source_type="pdf")] == [pdf.id]
        assert len(store.list_failed(limit=2)) == 2

    def test_list_searchable_scope(self, store):
        """Test that only complete, embedded records of the user are searchable."""
        mine = store.create("user-1", "https://example.com/1", "web")
        store.mark_complete(mine.id, {"topics": ["ml", "search"]})
        store.set_embedding(mine.id, [1.0, 0.0], "m")
        pending = store.create("user-1", "https://example.com/2", "web")
        store.set_embedding(pending.id, [1.0, 0.0], "m")
        theirs = store.create("user-2", "https://example.com/1", "web")
        store.mark_complete(theirs.id, {})
        store.set_embedding(theirs.id, [1.0, 0.0], "m")

        assert [r.id for r in store.list_searchable("user-1")] == [mine.id]
        assert [r.id for r in store.list_searchable("user-1", topic="ml")] == [mine.id]
        assert store.list_searchable("user-1", topic="cooking") == []

    def test_list_missing_embeddings(self, store):
        """Test backfill candidates."""
        record = store.create("user-1", "https://example.com/", "web")
        assert store.list_missing_embeddings() == []
        store.mark_complete(record.id, {})
        assert [r.id for r in store.list_missing_embeddings()] == [record.id]

    def test_list_stale_pending(self, store):
        """Test that only never-attempted pending records older than the cutoff are returned."""
        newer = make_record(store, "https://example.com/newer", minutes=10)
        older = make_record(store, "https://example.com/older", minutes=5)
        recent = make_record(store, "https://example.com/recent", minutes=60)
        attempted = make_record(store, "https://example.com/attempted", minutes=1)
        store.start_attempt(attempted.id)
        done = make_record(store, "https://example.com/done", minutes=2)
        store.mark_complete(done.id, {})

        cutoff = BASE_TIME + timedelta(minutes=30)
        assert [r.id for r in store.list_stale_pending(cutoff)] == [older.id, newer.id]
        assert [r.id for r in store.list_stale_pending(cutoff, limit=1)] == [older.id]
        assert recent.id not in [r.id for r in store.list_stale_pending(BASE_TIME + timedelta(minutes=60))]


class TestListPage:
    """Test suite for cursor pagination."""

    @pytest.fixture
    def records(self, store):
        return [make_record(store, f"https://example.com/{i}", minutes=i,
                            source_type="pdf" if i % 2 else "web",
                            topics=["ml"] if i < 2 else [])
                for i in range(5)]

    def test_pages_newest_first(self, store, records):
        """Test walking every page with the returned cursor."""
        first, cursor = store.list_page("user-1", limit=2)
        second, cursor2 = store.list_page("user-1", cursor=cursor, limit=2)
        third, cursor3 = store.list_page("user-1", cursor=cursor2, limit=2)

        ids = [r.id for r in first + second + third]
        assert ids == [r.id for r in reversed(records)]
        assert cursor3 is None
        assert len(third) == 1

    def test_filters(self, store, records):
        """Test equality and contains filters."""
        pdfs, _ = store.list_page("user-1", RecordFilters(source_type="pdf"))
        assert {r.id for r in pdfs} == {records[1].id, records[3].id}

        tagged, _ = store.list_page("user-1", RecordFilters(topic="ml"))
        assert {r.id for r in tagged} == {records[0].id, records[1].id}

        recent, _ = store.list_page("user-1", RecordFilters(captured_after=BASE_TIME + timedelta(minutes=3)))
        assert {r.id for r in recent} == {records[3].id, records[4].id}

    def test_other_users_excluded(self, store, records):
        """Test that listing is scoped to the owner."""
        items, cursor = store.list_page("user-2")
        assert items == []
        assert cursor is None

    def test_cursor_roundtrip_and_invalid(self, records):
        """Test cursor encoding and rejection of garbage."""
        created_at, record_id = decode_cursor(encode_cursor(records[0]))
        assert created_at == BASE_TIME
        assert record_id == records[0].id
        with pytest.raises(ValidationError):
            decode_cursor("not-a-cursor")
