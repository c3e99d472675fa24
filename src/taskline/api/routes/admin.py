"""Admin endpoints for pipeline definitions, schedules and webhook tokens."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from taskline.api.deps import get_engine
from taskline.core.exceptions import PipelineNotFoundError
from taskline.models.pipeline import PipelineDefinition
from taskline.orchestration.engine import Engine

router = APIRouter(tags=["admin"])


class ScheduleRequest(BaseModel):
    interval: str
    timestamp: Optional[float] = None
    interval_seconds: Optional[int] = None


class RateLimitRequest(BaseModel):
    max: int
    window: int


@router.get("/pipelines")
async def list_pipelines(engine: Engine = Depends(get_engine)) -> dict:
    pipelines = engine.persistence.pipelines.list_pipelines()
    return {"pipelines": [p.model_dump(exclude={"webhook": {"token"}}) for p in pipelines]}


@router.get("/pipelines/{pipeline_id}")
async def get_pipeline(pipeline_id: str, engine: Engine = Depends(get_engine)) -> dict:
    pipeline = engine.persistence.pipelines.get_pipeline(pipeline_id)
    if pipeline is None:
        raise PipelineNotFoundError(f"Pipeline {pipeline_id} not found")
    return pipeline.model_dump(exclude={"webhook": {"token"}})


@router.put("/pipelines/{pipeline_id}")
async def save_pipeline(pipeline_id: str, body: PipelineDefinition, engine: Engine = Depends(get_engine)) -> dict:
    pipeline = body.model_copy(update={"pipeline_id": pipeline_id})
    engine.persistence.pipelines.save_pipeline(pipeline)
    return {"pipeline_id": pipeline_id, "saved": True}


@router.post("/pipelines/{pipeline_id}/run")
async def run_pipeline(pipeline_id: str, engine: Engine = Depends(get_engine)) -> dict:
    result = engine.router.run_flow(pipeline_id)
    return {"job_id": result.job_id, "outcome": result.outcome.value, "next_step_id": result.next_step_id}


@router.put("/pipelines/{pipeline_id}/schedule")
async def schedule_pipeline(pipeline_id: str, body: ScheduleRequest, engine: Engine = Depends(get_engine)) -> dict:
    settings = engine.scheduler.schedule(
        pipeline_id, body.interval, timestamp=body.timestamp, interval_seconds=body.interval_seconds,
    )
    return {"pipeline_id": pipeline_id, "scheduling": settings.model_dump(),
            "next_run": engine.scheduler.next_run(pipeline_id)}


@router.get("/pipelines/{pipeline_id}/webhook")
async def webhook_status(pipeline_id: str, engine: Engine = Depends(get_engine)) -> dict:
    return engine.webhooks.status(pipeline_id)


@router.post("/pipelines/{pipeline_id}/webhook/enable")
async def enable_webhook(pipeline_id: str, engine: Engine = Depends(get_engine)) -> dict:
    return {"pipeline_id": pipeline_id, "enabled": True, "token": engine.webhooks.enable(pipeline_id)}


@router.post("/pipelines/{pipeline_id}/webhook/disable")
async def disable_webhook(pipeline_id: str, engine: Engine = Depends(get_engine)) -> dict:
    engine.webhooks.disable(pipeline_id)
    return {"pipeline_id": pipeline_id, "enabled": False}


@router.post("/pipelines/{pipeline_id}/webhook/regenerate")
async def regenerate_webhook_token(pipeline_id: str, engine: Engine = Depends(get_engine)) -> dict:
    return {"pipeline_id": pipeline_id, "token": engine.webhooks.regenerate(pipeline_id)}


@router.put("/pipelines/{pipeline_id}/webhook/rate-limit")
async def set_webhook_rate_limit(
    pipeline_id: str, body: RateLimitRequest, engine: Engine = Depends(get_engine),
) -> dict:
    engine.webhooks.set_rate_limit(pipeline_id, body.max, body.window)
    return engine.webhooks.status(pipeline_id)
