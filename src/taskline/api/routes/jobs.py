"""Job ledger endpoints: inspection, retry, fail, resume, undo and cleanup."""

from __future__ import annotations

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from taskline.api.deps import get_engine
from taskline.models.job import JobSource, JobStatus
from taskline.orchestration.engine import Engine

router = APIRouter(tags=["jobs"])


class FailRequest(BaseModel):
    reason: str = "manual"


class ResumeRequest(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)


@router.get("")
async def list_jobs(
    source: Optional[JobSource] = None,
    status: Optional[JobStatus] = None,
    limit: int = 50,
    engine: Engine = Depends(get_engine),
) -> dict:
    jobs = engine.ledger.list(source=source, status=status, limit=limit)
    return {"jobs": [j.model_dump(mode="json") for j in jobs], "count": len(jobs)}


@router.get("/summary")
async def jobs_summary(engine: Engine = Depends(get_engine)) -> dict[str, int]:
    return engine.ledger.summary()


@router.post("/recover-stuck")
async def recover_stuck(
    timeout_hours: Optional[int] = None,
    dry_run: bool = False,
    engine: Engine = Depends(get_engine),
) -> dict:
    recovered = engine.ledger.recover_stuck(timeout_hours, dry_run=dry_run)
    return {"recovered": recovered, "count": len(recovered), "dry_run": dry_run}


@router.delete("")
async def delete_jobs(
    kind: Literal["failed", "all"] = "failed",
    cleanup_processed: bool = False,
    engine: Engine = Depends(get_engine),
) -> dict:
    deleted = engine.ledger.delete(kind, cleanup_processed=cleanup_processed)
    return {"deleted": deleted, "kind": kind}


@router.get("/{job_id}")
async def show_job(job_id: str, engine: Engine = Depends(get_engine)) -> dict:
    return engine.ledger.require(job_id).model_dump(mode="json")


@router.post("/{job_id}/retry")
async def retry_job(job_id: str, force: bool = False, engine: Engine = Depends(get_engine)) -> dict:
    new_id = engine.retry_job(job_id, force=force)
    return {"job_id": new_id, "retried_from": job_id}


@router.post("/{job_id}/fail")
async def fail_job(job_id: str, body: FailRequest, engine: Engine = Depends(get_engine)) -> dict:
    changed = engine.ledger.fail(job_id, body.reason)
    return {"job_id": job_id, "failed": changed}


@router.post("/{job_id}/resume")
async def resume_job(job_id: str, body: ResumeRequest, engine: Engine = Depends(get_engine)) -> dict:
    result = engine.router.resume(job_id, body.data)
    return {"job_id": job_id, "outcome": result.outcome.value, "next_step_id": result.next_step_id}


@router.post("/{job_id}/undo")
async def undo_job(
    job_id: str,
    force: bool = False,
    dry_run: bool = False,
    engine: Engine = Depends(get_engine),
) -> dict:
    return engine.undo.undo_job(job_id, force=force, dry_run=dry_run).model_dump(mode="json")


@router.post("/undo-by-type/{task_type}")
async def undo_task_type(
    task_type: str,
    force: bool = False,
    dry_run: bool = False,
    engine: Engine = Depends(get_engine),
) -> dict:
    outcomes = engine.undo.undo_task_type(task_type, force=force, dry_run=dry_run)
    return {"task_type": task_type, "jobs": [o.model_dump(mode="json") for o in outcomes]}
