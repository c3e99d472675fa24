"""Unit tests for the in-memory backends."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskline.models.job import Job, JobSource, JobStatus
from taskline.persistence.protocols import (
    ICacheBackend,
    IContentStore,
    IJobStore,
    IPacketStore,
    IPipelineCatalog,
    IProcessedItems,
    ITaskQueue,
)
from tests.fakes import (
    MemoryCacheBackend,
    MemoryContentStore,
    MemoryJobStore,
    MemoryPacketStore,
    MemoryPipelineCatalog,
    MemoryProcessedItems,
    MemoryTaskQueue,
)


def _job(job_id: str) -> Job:
    return Job(
        job_id=job_id, source=JobSource.PIPELINE, owner_ref="p1",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestMemoryJobStore:
    def test_reads_are_isolated_copies(self):
        store = MemoryJobStore()
        store.insert(_job("j1"))
        job = store.get("j1")
        job.engine_context["leak"] = True
        assert store.get("j1").engine_context == {}

    def test_transition_is_conditional(self):
        store = MemoryJobStore()
        store.insert(_job("j1"))
        assert not store.transition("j1", JobStatus.COMPLETED, allowed_from={JobStatus.PROCESSING})
        assert store.transition("j1", JobStatus.PROCESSING, allowed_from={JobStatus.PENDING})
        assert store.get("j1").status == JobStatus.PROCESSING


class TestMemoryProcessedItems:
    def test_clear_for_job_only_removes_that_job(self):
        items = MemoryProcessedItems()
        items.mark_processed("fetch-1", "a", "j1")
        items.mark_processed("fetch-1", "b", "j2")
        assert items.clear_for_job("j1") == 1
        assert items.is_processed("fetch-1", "b")
        assert items.has_processed_items("fetch-1")


class TestMemoryCacheBackend:
    def test_values_expire(self, clock):
        cache = MemoryCacheBackend(clock)
        cache.setex("k", 10, "v")
        clock.advance(9)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None

    def test_incr_keeps_first_window(self, clock):
        cache = MemoryCacheBackend(clock)
        cache.incr("c", 10)
        clock.advance(5)
        assert cache.incr("c", 10) == 2
        clock.advance(5)
        assert cache.incr("c", 10) == 1


class TestMemoryTaskQueue:
    def test_pending_sorted_by_run_at(self, clock):
        queue = MemoryTaskQueue(clock)
        queue.enqueue_at(clock.now + 10, "h", {"n": 2})
        queue.enqueue_at(clock.now + 5, "h", {"n": 1})
        assert [t.args["n"] for t in queue.pending()] == [1, 2]

    def test_cancel_all_with_filter(self, clock):
        queue = MemoryTaskQueue(clock)
        queue.enqueue_now("run_flow", {"pipeline_id": "p1"})
        queue.enqueue_now("run_flow", {"pipeline_id": "p2"})
        assert queue.cancel_all("run_flow", {"pipeline_id": "p2"}) == 1
        assert [t.args for t in queue.pending()] == [{"pipeline_id": "p1"}]


class TestMemoryContentStore:
    def test_restore_revision_checks_target(self):
        store = MemoryContentStore()
        store.content["post-1"] = "v1"
        revision = store.save_revision("post-1")
        assert not store.restore_revision("post-2", revision)
        store.content["post-1"] = "v2"
        assert store.restore_revision("post-1", revision)
        assert store.content["post-1"] == "v1"


class TestProtocolConformance:
    @pytest.mark.parametrize("backend,protocol", [
        (MemoryJobStore(), IJobStore),
        (MemoryProcessedItems(), IProcessedItems),
        (MemoryPacketStore(), IPacketStore),
        (MemoryPipelineCatalog(), IPipelineCatalog),
        (MemoryCacheBackend(), ICacheBackend),
        (MemoryTaskQueue(), ITaskQueue),
        (MemoryContentStore(), IContentStore),
    ])
    def test_memory_backends_satisfy_protocols(self, backend, protocol):
        assert isinstance(backend, protocol)
