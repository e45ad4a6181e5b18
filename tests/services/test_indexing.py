"""
Tests for EntityIndexingHook and the in-memory work queue.

Covers:
- sync mode: create/update index the body, delete sends the id only
- governed kinds filter
- deferred mode: enqueue, drain, retry, dead letter, configured attempts
- deleting the same id twice leaves the index unchanged
- failures are logged, never raised
"""

import copy

import pytest

from sgdea_kernel.domain.effects import IndexOperation, IndexRequest
from sgdea_kernel.domain.workflow import EntityKind
from sgdea_services.indexing import (
    EntityIndexingHook,
    InMemorySearchIndex,
    InMemoryWorkQueue,
)


class FlakyIndex(InMemorySearchIndex):
    """Fails the first ``failures`` calls, then behaves."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.calls = 0

    def index_entity(self, index_name, entity_id, body):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("search cluster unavailable")
        super().index_entity(index_name, entity_id, body)


@pytest.fixture
def index():
    return InMemorySearchIndex()


class TestSyncMode:
    def test_created_entity_is_indexed(self, index):
        hook = EntityIndexingHook(index)

        hook.on_created(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        assert index.get("sgdea_document", "12") == {"title": "Minutes"}

    def test_update_replaces_body(self, index):
        hook = EntityIndexingHook(index)
        hook.on_created(EntityKind.CASE_FILE, "3", {"title": "Old"})

        hook.on_updated(EntityKind.CASE_FILE, "3", {"title": "New"})

        assert index.get("sgdea_case_file", "3") == {"title": "New"}

    def test_delete_removes_entry(self, index):
        hook = EntityIndexingHook(index)
        hook.on_created(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        hook.on_deleted(EntityKind.DOCUMENT, "12")

        assert index.get("sgdea_document", "12") is None

    def test_ungoverned_kind_ignored(self, index):
        hook = EntityIndexingHook(index)

        hook.on_created(EntityKind.CONTRACT, "9", {"title": "Lease"})

        assert index.documents == {}

    def test_custom_prefix_and_kinds(self, index):
        hook = EntityIndexingHook(
            index, index_prefix="archive", governed_kinds=["contract"],
        )

        hook.handle(IndexRequest(IndexOperation.UPDATED, EntityKind.CONTRACT, "9", {"a": 1}))

        assert index.get("archive_contract", "9") == {"a": 1}
        assert not hook.governs(EntityKind.DOCUMENT)

    def test_failure_is_logged_not_raised(self, captured_logs):
        hook = EntityIndexingHook(FlakyIndex(failures=1))

        hook.on_created(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        (record,) = [r for r in captured_logs() if r["message"] == "index_operation_failed"]
        assert record["index_name"] == "sgdea_document"
        assert record["mode"] == "sync"


class TestDeferredMode:
    def test_requires_queue(self, index):
        with pytest.raises(ValueError):
            EntityIndexingHook(index, mode="deferred")

    def test_unknown_mode(self, index):
        with pytest.raises(ValueError):
            EntityIndexingHook(index, mode="eventually")

    def test_jobs_wait_for_drain(self, index):
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(index, mode="deferred", queue=queue, queue_name="search")

        hook.on_created(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        assert index.documents == {}
        assert queue.pending("search") == 1
        assert queue.drain("search", index) == 1
        assert index.get("sgdea_document", "12") == {"title": "Minutes"}

    def test_failed_job_is_retried(self):
        index = FlakyIndex(failures=2)
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(index, mode="deferred", queue=queue)
        hook.on_updated(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        done = queue.drain("indexing", index, max_attempts=3)

        assert done == 1
        assert index.calls == 3
        assert queue.dead_letters == []

    def test_exhausted_job_is_dead_lettered(self, captured_logs):
        index = FlakyIndex(failures=10)
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(index, mode="deferred", queue=queue)
        hook.on_updated(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        done = queue.drain("indexing", index, max_attempts=2)

        assert done == 0
        (job,) = queue.dead_letters
        assert job.attempts == 2
        assert queue.pending("indexing") == 0
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("index_job_retry") == 1
        assert "index_job_dead_lettered" in messages

    def test_delete_job_carries_no_body(self, index):
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(index, mode="deferred", queue=queue)
        hook.on_created(EntityKind.DOCUMENT, "12", {"title": "Minutes"})
        hook.on_deleted(EntityKind.DOCUMENT, "12")

        queue.drain("indexing", index)

        assert index.get("sgdea_document", "12") is None

    def test_hook_drain_uses_configured_attempts(self):
        index = FlakyIndex(failures=10)
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(index, mode="deferred", queue=queue, max_attempts=5)
        hook.on_updated(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        assert hook.drain() == 0

        (job,) = queue.dead_letters
        assert job.attempts == 5
        assert index.calls == 5

    def test_hook_drain_recovers_within_configured_attempts(self):
        index = FlakyIndex(failures=4)
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(index, mode="deferred", queue=queue, max_attempts=5)
        hook.on_created(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        assert hook.drain() == 1
        assert queue.dead_letters == []
        assert index.get("sgdea_document", "12") == {"title": "Minutes"}

    def test_max_attempts_must_be_positive(self, index):
        with pytest.raises(ValueError):
            EntityIndexingHook(index, mode="deferred", queue=InMemoryWorkQueue(), max_attempts=0)

    def test_sync_hook_has_nothing_to_drain(self, index):
        assert EntityIndexingHook(index).drain() == 0


OTHER_ENTRY = {"sgdea_document": {"7": {"title": "Agenda"}}}


class TestRepeatedDelete:
    @pytest.fixture
    def seeded_index(self):
        index = InMemorySearchIndex()
        index.index_entity("sgdea_document", "7", {"title": "Agenda"})
        return index

    @pytest.mark.parametrize("present", [True, False], ids=["present", "absent"])
    def test_sync_delete_twice(self, seeded_index, present, captured_logs):
        hook = EntityIndexingHook(seeded_index)
        if present:
            hook.on_created(EntityKind.DOCUMENT, "12", {"title": "Minutes"})

        hook.on_deleted(EntityKind.DOCUMENT, "12")
        after_first = copy.deepcopy(seeded_index.documents)
        hook.on_deleted(EntityKind.DOCUMENT, "12")

        assert seeded_index.documents == after_first == OTHER_ENTRY
        assert not any(r["message"] == "index_operation_failed" for r in captured_logs())

    @pytest.mark.parametrize("present", [True, False], ids=["present", "absent"])
    def test_deferred_delete_drained_twice(self, seeded_index, present, captured_logs):
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(seeded_index, mode="deferred", queue=queue)
        if present:
            seeded_index.index_entity("sgdea_document", "12", {"title": "Minutes"})

        hook.on_deleted(EntityKind.DOCUMENT, "12")
        assert hook.drain() == 1
        after_first = copy.deepcopy(seeded_index.documents)
        hook.on_deleted(EntityKind.DOCUMENT, "12")
        assert hook.drain() == 1

        assert seeded_index.documents == after_first == OTHER_ENTRY
        assert queue.dead_letters == []
        assert queue.pending("indexing") == 0
        messages = [r["message"] for r in captured_logs()]
        assert "index_job_retry" not in messages
        assert "index_job_dead_lettered" not in messages

    def test_redelivered_delete_in_one_drain(self, seeded_index):
        queue = InMemoryWorkQueue()
        hook = EntityIndexingHook(seeded_index, mode="deferred", queue=queue)
        seeded_index.index_entity("sgdea_document", "12", {"title": "Minutes"})

        hook.on_deleted(EntityKind.DOCUMENT, "12")
        hook.on_deleted(EntityKind.DOCUMENT, "12")

        assert hook.drain() == 2
        assert seeded_index.documents == OTHER_ENTRY
        assert queue.dead_letters == []
