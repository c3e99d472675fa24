"""Batch scheduling models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class BatchReceipt(BaseModel):
    """Returned by schedule_batch."""

    batch_id: str  # "direct" when items were scheduled without a parent
    batch_job_id: Optional[str] = None
    total: int
    scheduled: int = 0
    chunk_size: int
    job_ids: list[str] = Field(default_factory=list)


class BatchItems(BaseModel):
    """Side-store payload holding the items of a running batch."""

    batch_id: str
    batch_job_id: str
    task_type: str
    context: dict[str, Any] = Field(default_factory=dict)
    items: list[dict[str, Any]]
    chunk_size: int
    total: int
    created_at: str


class ChunkResult(BaseModel):
    batch_id: str
    offset: int
    total: int
    scheduled: int = 0
    completed: bool = False
    cancelled: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.offset)


class ChildJobCounts(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    processing: int = 0
    pending: int = 0


class BatchStatusReport(BaseModel):
    batch_job_id: str
    task_type: str = ""
    status: str = ""
    total_items: int = 0
    offset: int = 0
    chunk_size: int = 0
    tasks_scheduled: int = 0
    started_at: str = ""
    completed_at: str = ""
    cancelled: bool = False
    child_jobs: ChildJobCounts = Field(default_factory=ChildJobCounts)
