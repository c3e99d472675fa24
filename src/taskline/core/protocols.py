"""Protocol interfaces for all taskline abstractions.

All inter-layer communication uses these Protocols: structural typing,
no inheritance required, easy to test with isinstance().
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from taskline.models.job import Job, JobSource, JobStatus
    from taskline.models.pipeline import PipelineDefinition, ResultPacket
    from taskline.models.queue import QueuedTask
    from taskline.orchestration.engine_context import StepContext


# ---------------------------------------------------------------------------
# Persistence: Job Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IJobStore(Protocol):
    """Row storage for jobs. Every write touches a single row."""

    def insert(self, job: Job) -> None: ...

    def get(self, job_id: str) -> Job | None: ...

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        allowed_from: Iterable[JobStatus],
        reason: str = "",
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> bool: ...

    def put_context(self, job_id: str, context: dict[str, Any]) -> None: ...

    def list_jobs(
        self,
        *,
        source: JobSource | None = None,
        status: JobStatus | None = None,
        limit: int | None = 50,
    ) -> list[Job]: ...

    def delete(self, job_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Persistence: Processed Items History
# ---------------------------------------------------------------------------

@runtime_checkable
class IProcessedItems(Protocol):
    """Per-step history of items a fetch step has already handled."""

    def has_processed_items(self, step_id: str) -> bool: ...

    def is_processed(self, step_id: str, item_id: str) -> bool: ...

    def mark_processed(self, step_id: str, item_id: str, job_id: str) -> None: ...

    def clear_for_job(self, job_id: str) -> int: ...


# ---------------------------------------------------------------------------
# Persistence: Result Packets
# ---------------------------------------------------------------------------

@runtime_checkable
class IPacketStore(Protocol):
    """Result packets handed from one step to the next, keyed by job."""

    def store(self, job_id: str, packets: list[dict[str, Any]]) -> None: ...

    def load(self, job_id: str) -> list[dict[str, Any]]: ...

    def cleanup(self, job_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Persistence: Pipeline Catalog
# ---------------------------------------------------------------------------

@runtime_checkable
class IPipelineCatalog(Protocol):
    """Pipeline definitions, supplied by configuration outside the engine."""

    def get_pipeline(self, pipeline_id: str) -> PipelineDefinition | None: ...

    def save_pipeline(self, pipeline: PipelineDefinition) -> None: ...

    def list_pipelines(self) -> list[PipelineDefinition]: ...


# ---------------------------------------------------------------------------
# Persistence: Cache / Side Store
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheBackend(Protocol):
    """Redis-compatible expiring key/value store."""

    def get(self, key: str) -> str | None: ...

    def setex(self, key: str, ttl: int, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def incr(self, key: str, ttl: int) -> int: ...


# ---------------------------------------------------------------------------
# Task Queue
# ---------------------------------------------------------------------------

@runtime_checkable
class ITaskQueue(Protocol):
    """Durable delayed-task queue with at-least-once delivery."""

    def enqueue_now(self, hook: str, args: dict[str, Any]) -> str: ...

    def enqueue_at(self, timestamp: float, hook: str, args: dict[str, Any]) -> str: ...

    def enqueue_recurring(
        self, first_run: float, interval: int, hook: str, args: dict[str, Any]
    ) -> str: ...

    def cancel_all(self, hook: str, args_filter: dict[str, Any] | None = None) -> int: ...

    def claim_due(self, now: float, limit: int = 10) -> list[QueuedTask]: ...

    def pending(self, hook: str | None = None) -> list[QueuedTask]: ...


# ---------------------------------------------------------------------------
# Host Content Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IContentStore(Protocol):
    """Generic attribute read/write surface of the host system."""

    def get_attribute(self, target_id: str, key: str) -> Any: ...

    def set_attribute(self, target_id: str, key: str, value: Any) -> None: ...

    def delete_attribute(self, target_id: str, key: str) -> None: ...

    def restore_revision(self, target_id: str, revision_id: str) -> bool: ...

    def delete_artifact(self, artifact_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Steps & Navigation
# ---------------------------------------------------------------------------

@runtime_checkable
class IStep(Protocol):
    """One typed unit of pipeline logic. Must tolerate duplicate invocation."""

    def execute(self, job_id: str, step_id: str, context: StepContext) -> list[ResultPacket]: ...


@runtime_checkable
class IPipelineNavigator(Protocol):
    """Decides which step follows the current one."""

    def first_step(self, flow_config: dict[str, Any]) -> str | None: ...

    def next_step(
        self, flow_config: dict[str, Any], current_step_id: str, packets: list[ResultPacket]
    ) -> str | None: ...
