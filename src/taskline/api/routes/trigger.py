"""Inbound webhook trigger endpoint."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request, Response

from taskline.api.deps import get_engine
from taskline.orchestration.engine import Engine
from taskline.orchestration.router import RouteOutcome

router = APIRouter(tags=["trigger"])


@router.post("/trigger/{pipeline_id}")
async def trigger_pipeline(
    pipeline_id: str, request: Request, response: Response, engine: Engine = Depends(get_engine)
) -> dict:
    """Start a pipeline run. Auth failures answer 401, throttled calls 429.

    A run that could not be started (first step not enqueued) answers 500 with
    the reason recorded on the job.
    """
    body = await request.body()
    try:
        payload = json.loads(body) if body else {}
    except ValueError:
        payload = body.decode("utf-8", errors="replace")

    result = engine.webhooks.trigger(
        pipeline_id,
        authorization=request.headers.get("authorization"),
        payload=payload,
        headers=request.headers,
        remote_addr=request.client.host if request.client else "",
    )
    if result.outcome == RouteOutcome.FAILED:
        job = engine.ledger.get(result.job_id)
        reason = result.reason or (job.reason if job else "") or "Flow execution failed"
        response.status_code = 500
        return {"success": False, "job_id": result.job_id, "error": reason}
    return {
        "success": True,
        "job_id": result.job_id,
        "pipeline_id": pipeline_id,
        "message": "Pipeline triggered via webhook.",
    }
