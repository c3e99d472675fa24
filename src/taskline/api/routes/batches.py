"""Batch endpoints: schedule, inspect and cancel chunked batches."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from taskline.api.deps import get_engine
from taskline.models.job import JobStatus
from taskline.orchestration.engine import Engine

router = APIRouter(tags=["batches"])


class BatchRequest(BaseModel):
    task_type: str
    items: list[dict[str, Any]]
    context: dict[str, Any] = Field(default_factory=dict)


@router.post("")
async def schedule_batch(body: BatchRequest, engine: Engine = Depends(get_engine)) -> dict:
    receipt = engine.batches.schedule_batch(body.task_type, body.items, body.context)
    return receipt.model_dump()


@router.get("")
async def list_batches(
    status: Optional[JobStatus] = None,
    limit: int = 50,
    engine: Engine = Depends(get_engine),
) -> dict:
    reports = engine.batches.list(status=status, limit=limit)
    return {"batches": [r.model_dump() for r in reports], "count": len(reports)}


@router.get("/{batch_job_id}")
async def batch_status(batch_job_id: str, engine: Engine = Depends(get_engine)) -> dict:
    return engine.batches.get_status(batch_job_id).model_dump()


@router.post("/{batch_job_id}/cancel")
async def cancel_batch(batch_job_id: str, engine: Engine = Depends(get_engine)) -> dict:
    return {"batch_job_id": batch_job_id, "cancelled": engine.batches.cancel(batch_job_id)}
