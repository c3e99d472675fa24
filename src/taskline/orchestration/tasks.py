"""One-shot system tasks: scheduling and execution of ``system`` and batch-child jobs."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from taskline.core.exceptions import QueueUnavailableError
from taskline.core.protocols import ITaskQueue
from taskline.core.types import Clock, utcnow
from taskline.models.effects import Effect
from taskline.models.job import JobSource, JobStatus
from taskline.orchestration.engine_context import (
    EFFECTS_KEY,
    JOB_STATUS_KEY,
    UNDO_KEY,
    EngineContextStore,
)
from taskline.orchestration.hooks import HANDLE_TASK
from taskline.orchestration.ledger import JobLedger
from taskline.orchestration.registry import TaskRegistry
from taskline.orchestration.retry import ATTEMPTS_KEY, MAX_ATTEMPTS_KEY, RetryPoller

logger = logging.getLogger(__name__)

# Context keys written by the engine; everything else is a task parameter.
RUNTIME_KEYS = frozenset({
    "task_type",
    "context",
    "scheduled_at",
    "batch_job_id",
    "result",
    ATTEMPTS_KEY,
    MAX_ATTEMPTS_KEY,
    EFFECTS_KEY,
    JOB_STATUS_KEY,
    UNDO_KEY,
})


class SystemTask(ABC):
    """Base class for system task types.

    Subclasses set ``task_type`` and implement ``execute``. A task finishes
    its job through the TaskContext; returning without doing so completes the
    job, unless the task rescheduled itself.
    """

    task_type: ClassVar[str]
    supports_undo: ClassVar[bool] = False

    @abstractmethod
    def execute(self, job_id: str, params: dict[str, Any], context: TaskContext) -> None: ...


class TaskContext:
    """Handle a running task uses to report back to the engine."""

    def __init__(
        self,
        job_id: str,
        *,
        ledger: JobLedger,
        contexts: EngineContextStore,
        retry: RetryPoller | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        self.job_id = job_id
        self.meta = meta or {}
        self._ledger = ledger
        self._contexts = contexts
        self._retry = retry
        self.rescheduled = False

    @property
    def engine(self) -> dict[str, Any]:
        return self._contexts.get(self.job_id)

    def merge(self, partial: dict[str, Any]) -> None:
        self._contexts.merge(self.job_id, partial)

    def record_effect(self, effect: Effect | dict[str, Any]) -> None:
        if isinstance(effect, dict):
            effect = Effect.model_validate(effect)
        self._contexts.append(self.job_id, EFFECTS_KEY, effect.model_dump())

    def complete(self, result: dict[str, Any] | None = None) -> bool:
        if result:
            self._contexts.merge(self.job_id, {"result": result})
        return self._ledger.complete(self.job_id, JobStatus.COMPLETED)

    def fail(self, reason: str) -> bool:
        return self._ledger.fail(self.job_id, reason)

    def reschedule(self, delay: int | None = None, max_attempts: int | None = None) -> bool:
        if self._retry is None:
            raise RuntimeError("No retry helper configured for this task context")
        self.rescheduled = self._retry.reschedule(
            self.job_id,
            hook=HANDLE_TASK,
            args={"job_id": self.job_id},
            delay=delay,
            max_attempts=max_attempts,
        )
        return self.rescheduled


class TaskRunner:
    """Creates system jobs, enqueues them and runs them when the queue delivers."""

    def __init__(
        self,
        *,
        ledger: JobLedger,
        contexts: EngineContextStore,
        registry: TaskRegistry,
        queue: ITaskQueue,
        retry: RetryPoller | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._ledger = ledger
        self._contexts = contexts
        self._registry = registry
        self._queue = queue
        self._retry = retry
        self._clock = clock

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    def build_context(
        self,
        task_type: str,
        params: dict[str, Any],
        *,
        context: dict[str, Any] | None = None,
        batch_job_id: str | None = None,
    ) -> dict[str, Any]:
        data = {
            **params,
            "task_type": task_type,
            "context": dict(context or {}),
            "scheduled_at": utcnow(self._clock).isoformat(),
        }
        if batch_job_id:
            data["batch_job_id"] = batch_job_id
        return data

    def schedule_task(
        self,
        task_type: str,
        params: dict[str, Any],
        *,
        context: dict[str, Any] | None = None,
        source: JobSource = JobSource.SYSTEM,
        batch_job_id: str | None = None,
        label: str = "",
    ) -> str | None:
        """Create, start and enqueue a task job. Returns None if nothing was scheduled."""
        job_id = self._ledger.create(
            task_type, source,
            label=label or task_type,
            context=self.build_context(task_type, params, context=context, batch_job_id=batch_job_id),
        )
        if job_id is None:
            return None
        return job_id if self.dispatch(job_id) else None

    def dispatch(self, job_id: str) -> bool:
        """Start an already created task job and hand it to the queue."""
        self._ledger.start(job_id)
        try:
            self._queue.enqueue_now(HANDLE_TASK, {"job_id": job_id})
        except QueueUnavailableError as exc:
            self._ledger.fail(job_id, f"Failed to schedule task: {exc}")
            return False
        return True

    def handle_task(self, job_id: str) -> JobStatus | None:
        """Queue callback. Returns the job's status afterwards, None if skipped."""
        job = self._ledger.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            logger.info("Skipping task delivery", extra={"job_id": job_id})
            return None

        task_type = job.engine_context.get("task_type")
        if not task_type:
            self._ledger.fail(job_id, "Missing task type")
            return JobStatus.FAILED
        task = self._registry.get(task_type)
        if task is None:
            self._ledger.fail(job_id, f"Unknown task type: {task_type}")
            return JobStatus.FAILED

        params = {k: v for k, v in job.engine_context.items() if k not in RUNTIME_KEYS}
        task_context = TaskContext(
            job_id,
            ledger=self._ledger,
            contexts=self._contexts,
            retry=self._retry,
            meta=job.engine_context.get("context") or {},
        )
        try:
            task.execute(job_id, params, task_context)
        except Exception as exc:
            logger.exception("Task raised", extra={"job_id": job_id, "task_type": task_type})
            self._ledger.fail(job_id, f"Task execution exception: {exc}")
            return JobStatus.FAILED

        job = self._ledger.require(job_id)
        if job.status == JobStatus.PROCESSING and not task_context.rescheduled:
            self._ledger.complete(job_id, JobStatus.COMPLETED)
            job = self._ledger.require(job_id)
        return job.status
