"""In-memory backends: dict-backed, used by unit tests and the ``memory`` backend."""

from __future__ import annotations

import copy
import threading
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable

from taskline.models.job import Job, JobSource, JobStatus
from taskline.models.pipeline import PipelineDefinition
from taskline.models.queue import QueuedTask


class MemoryJobStore:
    """Dict-backed IJobStore. Transitions are guarded by a lock."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def insert(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.job_id] = job.model_copy(deep=True)

    def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        allowed_from: Iterable[JobStatus],
        reason: str = "",
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in set(allowed_from):
                return False
            update: dict[str, Any] = {"status": status, "reason": reason}
            if started_at is not None:
                update["started_at"] = started_at
            if completed_at is not None:
                update["completed_at"] = completed_at
            self._jobs[job_id] = job.model_copy(update=update)
            return True

    def put_context(self, job_id: str, context: dict[str, Any]) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                self._jobs[job_id] = job.model_copy(update={"engine_context": copy.deepcopy(context)})

    def list_jobs(
        self,
        *,
        source: JobSource | None = None,
        status: JobStatus | None = None,
        limit: int | None = 50,
    ) -> list[Job]:
        jobs = [
            j for j in self._jobs.values()
            if (source is None or j.source == source) and (status is None or j.status == status)
        ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        if limit is not None:
            jobs = jobs[:limit]
        return [j.model_copy(deep=True) for j in jobs]

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None


class MemoryProcessedItems:
    """Dict-backed IProcessedItems."""

    def __init__(self) -> None:
        self._items: dict[str, dict[str, str]] = {}  # step_id -> {item_id: job_id}

    def has_processed_items(self, step_id: str) -> bool:
        return bool(self._items.get(step_id))

    def is_processed(self, step_id: str, item_id: str) -> bool:
        return item_id in self._items.get(step_id, {})

    def mark_processed(self, step_id: str, item_id: str, job_id: str) -> None:
        self._items.setdefault(step_id, {})[item_id] = job_id

    def clear_for_job(self, job_id: str) -> int:
        removed = 0
        for items in self._items.values():
            for item_id in [k for k, v in items.items() if v == job_id]:
                del items[item_id]
                removed += 1
        return removed


class MemoryPacketStore:
    """Dict-backed IPacketStore."""

    def __init__(self) -> None:
        self._packets: dict[str, list[dict[str, Any]]] = {}

    def store(self, job_id: str, packets: list[dict[str, Any]]) -> None:
        self._packets[job_id] = copy.deepcopy(packets)

    def load(self, job_id: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._packets.get(job_id, []))

    def cleanup(self, job_id: str) -> None:
        self._packets.pop(job_id, None)


class MemoryPipelineCatalog:
    """Dict-backed IPipelineCatalog."""

    def __init__(self, pipelines: Iterable[PipelineDefinition] = ()) -> None:
        self._pipelines: dict[str, PipelineDefinition] = {p.pipeline_id: p for p in pipelines}

    def get_pipeline(self, pipeline_id: str) -> PipelineDefinition | None:
        pipeline = self._pipelines.get(pipeline_id)
        return pipeline.model_copy(deep=True) if pipeline else None

    def save_pipeline(self, pipeline: PipelineDefinition) -> None:
        self._pipelines[pipeline.pipeline_id] = pipeline.model_copy(deep=True)

    def list_pipelines(self) -> list[PipelineDefinition]:
        return [p.model_copy(deep=True) for p in self._pipelines.values()]


class MemoryCacheBackend:
    """Dict-backed ICacheBackend honouring TTLs against an injectable clock."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._store: dict[str, tuple[str, float]] = {}
        self._clock = clock

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._store.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._store[key]
            return None
        return entry

    def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def incr(self, key: str, ttl: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._store[key] = ("1", self._clock() + ttl)
            return 1
        count = int(entry[0]) + 1
        self._store[key] = (str(count), entry[1])
        return count


class MemoryTaskQueue:
    """List-backed ITaskQueue. Claimed tasks are removed, recurring ones re-armed."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._tasks: list[QueuedTask] = []
        self._clock = clock
        self._lock = threading.Lock()

    def _add(self, task: QueuedTask) -> str:
        with self._lock:
            self._tasks.append(task)
        return task.task_id

    def enqueue_now(self, hook: str, args: dict[str, Any]) -> str:
        return self._add(QueuedTask(hook=hook, args=dict(args), run_at=self._clock()))

    def enqueue_at(self, timestamp: float, hook: str, args: dict[str, Any]) -> str:
        return self._add(QueuedTask(hook=hook, args=dict(args), run_at=timestamp))

    def enqueue_recurring(
        self, first_run: float, interval: int, hook: str, args: dict[str, Any]
    ) -> str:
        return self._add(QueuedTask(hook=hook, args=dict(args), run_at=first_run, interval=interval))

    def cancel_all(self, hook: str, args_filter: dict[str, Any] | None = None) -> int:
        with self._lock:
            keep = [t for t in self._tasks if not t.matches(hook, args_filter)]
            removed = len(self._tasks) - len(keep)
            self._tasks = keep
        return removed

    def claim_due(self, now: float, limit: int = 10) -> list[QueuedTask]:
        with self._lock:
            due = sorted((t for t in self._tasks if t.run_at <= now), key=lambda t: t.run_at)[:limit]
            claimed_ids = {t.task_id for t in due}
            self._tasks = [t for t in self._tasks if t.task_id not in claimed_ids]
            for task in due:
                follow_up = task.next_occurrence()
                if follow_up is not None:
                    self._tasks.append(follow_up)
        return due

    def pending(self, hook: str | None = None) -> list[QueuedTask]:
        tasks = [t for t in self._tasks if hook is None or t.hook == hook]
        return sorted(tasks, key=lambda t: t.run_at)


class MemoryContentStore:
    """Dict-backed IContentStore with revision and artifact bookkeeping."""

    def __init__(self) -> None:
        self.attributes: dict[str, dict[str, Any]] = {}
        self.content: dict[str, Any] = {}
        self.revisions: dict[str, tuple[str, Any]] = {}  # revision_id -> (target_id, content)
        self.artifacts: dict[str, Any] = {}

    def get_attribute(self, target_id: str, key: str) -> Any:
        return self.attributes.get(target_id, {}).get(key)

    def set_attribute(self, target_id: str, key: str, value: Any) -> None:
        self.attributes.setdefault(target_id, {})[key] = value

    def delete_attribute(self, target_id: str, key: str) -> None:
        self.attributes.get(target_id, {}).pop(key, None)

    def save_revision(self, target_id: str) -> str:
        revision_id = uuid.uuid4().hex
        self.revisions[revision_id] = (target_id, copy.deepcopy(self.content.get(target_id)))
        return revision_id

    def restore_revision(self, target_id: str, revision_id: str) -> bool:
        revision = self.revisions.get(revision_id)
        if revision is None or revision[0] != target_id:
            return False
        self.content[target_id] = copy.deepcopy(revision[1])
        return True

    def create_artifact(self, payload: Any) -> str:
        artifact_id = uuid.uuid4().hex
        self.artifacts[artifact_id] = payload
        return artifact_id

    def delete_artifact(self, artifact_id: str) -> bool:
        return self.artifacts.pop(artifact_id, None) is not None
