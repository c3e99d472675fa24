"""Chunked fan-out of many task items into child jobs."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from taskline.core.exceptions import JobNotFoundError, QueueUnavailableError, StorageError
from taskline.core.protocols import ICacheBackend, ITaskQueue
from taskline.core.types import Clock, utcnow
from taskline.models.batch import (
    BatchItems,
    BatchReceipt,
    BatchStatusReport,
    ChildJobCounts,
    ChunkResult,
)
from taskline.models.job import Job, JobSource, JobStatus
from taskline.orchestration.engine_context import EngineContextStore
from taskline.orchestration.hooks import PROCESS_BATCH
from taskline.orchestration.ledger import JobLedger
from taskline.orchestration.tasks import TaskRunner

logger = logging.getLogger(__name__)

DIRECT_BATCH_ID = "direct"

_CHILD_BUCKETS = {
    JobStatus.COMPLETED: "completed",
    JobStatus.COMPLETED_NO_ITEMS: "completed",
    JobStatus.FAILED: "failed",
    JobStatus.CANCELLED: "failed",
    JobStatus.PROCESSING: "processing",
    JobStatus.WAITING: "processing",
    JobStatus.PENDING: "pending",
}


class BatchScheduler:
    """Schedules N items of one task type without flooding the queue.

    Up to ``chunk_size`` items are scheduled directly. Larger batches get a
    ``batch-parent`` job whose ``offset`` is the single source of truth for
    progress; items wait in the side store and each chunk callback creates at
    most ``chunk_size`` children before re-enqueuing itself.
    """

    def __init__(
        self,
        *,
        ledger: JobLedger,
        contexts: EngineContextStore,
        tasks: TaskRunner,
        cache: ICacheBackend,
        queue: ITaskQueue,
        chunk_size: int = 10,
        chunk_delay: int = 30,
        side_store_ttl: int = 4 * 60 * 60,
        clock: Clock = time.time,
    ) -> None:
        self._ledger = ledger
        self._contexts = contexts
        self._tasks = tasks
        self._cache = cache
        self._queue = queue
        self._chunk_size = chunk_size
        self._chunk_delay = chunk_delay
        self._side_store_ttl = side_store_ttl
        self._clock = clock

    def schedule_batch(
        self,
        task_type: str,
        items: list[dict[str, Any]],
        context: dict[str, Any] | None = None,
    ) -> BatchReceipt:
        self._tasks.registry.require(task_type)
        total = len(items)

        if total <= self._chunk_size:
            job_ids = [
                job_id for item in items
                if (job_id := self._tasks.schedule_task(task_type, item, context=context)) is not None
            ]
            return BatchReceipt(
                batch_id=DIRECT_BATCH_ID, total=total, scheduled=len(job_ids),
                chunk_size=self._chunk_size, job_ids=job_ids,
            )

        batch_id = uuid.uuid4().hex
        side_store_key = f"batch:{batch_id}"
        started_at = utcnow(self._clock).isoformat()
        parent_id = self._ledger.create(
            task_type, JobSource.BATCH_PARENT,
            label=f"Batch: {task_type} ({total} items)",
            context={
                "batch": True,
                "task_type": task_type,
                "batch_id": batch_id,
                "side_store_key": side_store_key,
                "total": total,
                "chunk_size": self._chunk_size,
                "offset": 0,
                "tasks_scheduled": 0,
                "cancelled": False,
                "started_at": started_at,
            },
        )
        if parent_id is None:
            raise StorageError(f"Could not create batch parent for {task_type}")
        self._ledger.start(parent_id)

        payload = BatchItems(
            batch_id=batch_id, batch_job_id=parent_id, task_type=task_type,
            context=context or {}, items=items, chunk_size=self._chunk_size,
            total=total, created_at=started_at,
        )
        self._cache.setex(side_store_key, self._side_store_ttl, payload.model_dump_json())

        try:
            self._queue.enqueue_now(PROCESS_BATCH, {"batch_job_id": parent_id})
        except QueueUnavailableError as exc:
            self._ledger.fail(parent_id, f"Failed to schedule batch: {exc}")
            self._cache.delete(side_store_key)
            raise

        logger.info("Batch scheduled", extra={"batch_job_id": parent_id, "task_type": task_type, "total": total})
        return BatchReceipt(
            batch_id=batch_id, batch_job_id=parent_id, total=total, chunk_size=self._chunk_size,
        )

    def process_chunk(self, batch_job_id: str) -> ChunkResult:
        """Queue callback: schedule the next slice of children."""
        parent = self._ledger.require(batch_job_id)
        ctx = parent.engine_context
        batch_id = ctx.get("batch_id", "")
        total = int(ctx.get("total", 0))
        offset = int(ctx.get("offset", 0))

        if parent.status != JobStatus.PROCESSING:
            return ChunkResult(batch_id=batch_id, offset=offset, total=total,
                               completed=parent.is_terminal, cancelled=parent.status == JobStatus.CANCELLED)

        if ctx.get("cancelled"):
            self._finish(batch_job_id, ctx, JobStatus.CANCELLED, "Batch cancelled")
            return ChunkResult(batch_id=batch_id, offset=offset, total=total, completed=True, cancelled=True)

        raw = self._cache.get(ctx["side_store_key"])
        if raw is None:
            self._finish(batch_job_id, ctx, JobStatus.FAILED, "Batch items expired from side store")
            return ChunkResult(batch_id=batch_id, offset=offset, total=total, completed=True)
        batch = BatchItems.model_validate_json(raw)

        scheduled = 0
        for item in batch.items[offset:offset + batch.chunk_size]:
            child_id = self._tasks.schedule_task(
                batch.task_type, item,
                context=batch.context,
                source=JobSource.BATCH_CHILD,
                batch_job_id=batch_job_id,
            )
            if child_id is not None:
                scheduled += 1

        new_offset = min(offset + batch.chunk_size, total)
        self._contexts.merge(batch_job_id, {
            "offset": new_offset,
            "tasks_scheduled": int(ctx.get("tasks_scheduled", 0)) + scheduled,
        })
        logger.info(
            "Batch chunk scheduled",
            extra={"batch_job_id": batch_job_id, "offset": new_offset, "total": total, "scheduled": scheduled},
        )

        if new_offset >= total:
            self._finish(batch_job_id, ctx, JobStatus.COMPLETED)
            return ChunkResult(batch_id=batch_id, offset=new_offset, total=total, scheduled=scheduled, completed=True)

        self._cache.setex(ctx["side_store_key"], self._side_store_ttl, raw)
        try:
            self._queue.enqueue_at(self._clock() + self._chunk_delay, PROCESS_BATCH, {"batch_job_id": batch_job_id})
        except QueueUnavailableError as exc:
            self._finish(batch_job_id, ctx, JobStatus.FAILED, f"Failed to schedule next chunk: {exc}")
            return ChunkResult(batch_id=batch_id, offset=new_offset, total=total, scheduled=scheduled, completed=True)
        return ChunkResult(batch_id=batch_id, offset=new_offset, total=total, scheduled=scheduled)

    def _finish(self, batch_job_id: str, ctx: dict[str, Any], status: JobStatus, reason: str = "") -> None:
        self._contexts.merge(batch_job_id, {"completed_at": utcnow(self._clock).isoformat()})
        self._ledger.complete(batch_job_id, status, reason)
        self._cache.delete(ctx["side_store_key"])

    # ---- inspection & control ----

    def _require_parent(self, batch_job_id: str) -> Job:
        job = self._ledger.require(batch_job_id)
        if job.source != JobSource.BATCH_PARENT:
            raise JobNotFoundError(batch_job_id)
        return job

    def get_status(self, batch_job_id: str) -> BatchStatusReport:
        parent = self._require_parent(batch_job_id)
        return self._report(parent, self._ledger.list(source=JobSource.BATCH_CHILD, limit=None))

    def _report(self, parent: Job, children: list[Job]) -> BatchStatusReport:
        ctx = parent.engine_context
        counts = ChildJobCounts()
        for child in children:
            if child.engine_context.get("batch_job_id") != parent.job_id:
                continue
            counts.total += 1
            bucket = _CHILD_BUCKETS[child.status]
            setattr(counts, bucket, getattr(counts, bucket) + 1)
        return BatchStatusReport(
            batch_job_id=parent.job_id,
            task_type=ctx.get("task_type", ""),
            status=parent.status.value,
            total_items=int(ctx.get("total", 0)),
            offset=int(ctx.get("offset", 0)),
            chunk_size=int(ctx.get("chunk_size", 0)),
            tasks_scheduled=int(ctx.get("tasks_scheduled", 0)),
            started_at=ctx.get("started_at", ""),
            completed_at=ctx.get("completed_at", ""),
            cancelled=bool(ctx.get("cancelled")),
            child_jobs=counts,
        )

    def cancel(self, batch_job_id: str) -> bool:
        """Flag the batch; the next chunk run stops it. Already scheduled children keep running."""
        parent = self._require_parent(batch_job_id)
        if parent.is_terminal:
            return False
        self._contexts.merge(batch_job_id, {"cancelled": True})
        logger.info("Batch cancellation requested", extra={"batch_job_id": batch_job_id})
        return True

    def list(self, status: JobStatus | None = None, limit: int | None = 50) -> list[BatchStatusReport]:
        parents = self._ledger.list(source=JobSource.BATCH_PARENT, status=status, limit=limit)
        children = self._ledger.list(source=JobSource.BATCH_CHILD, limit=None)
        return [self._report(parent, children) for parent in parents]
