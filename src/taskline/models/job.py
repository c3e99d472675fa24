"""Job ledger models and the job state machine."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    WAITING = "waiting"
    COMPLETED = "completed"
    COMPLETED_NO_ITEMS = "completed_no_items"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class JobSource(StrEnum):
    PIPELINE = "pipeline"
    SYSTEM = "system"
    BATCH_CHILD = "batch-child"
    BATCH_PARENT = "batch-parent"


TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.COMPLETED_NO_ITEMS,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.WAITING}) | TERMINAL_STATUSES,
    JobStatus.WAITING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.CANCELLED}),
}


def sources_for(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which ``target`` is reachable in one step."""
    return frozenset(src for src, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def parse_status(value: str | JobStatus) -> tuple[JobStatus, str]:
    """Split a compound status such as ``"failed - upstream timeout"``.

    Raises ValueError when the leading part is not a known status.
    """
    if isinstance(value, JobStatus):
        return value, ""
    head, sep, tail = str(value).partition(" - ")
    return JobStatus(head.strip()), tail.strip() if sep else ""


class Job(BaseModel):
    """One unit of orchestrated work."""

    job_id: str
    status: JobStatus = JobStatus.PENDING
    source: JobSource
    owner_ref: str
    label: str = ""
    engine_context: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    retried_from: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
