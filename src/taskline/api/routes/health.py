"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from taskline.api.deps import get_engine
from taskline.orchestration.engine import Engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def ready(engine: Engine = Depends(get_engine)) -> dict:
    return {
        "status": "ready",
        "backend": engine.settings.backend,
        "step_types": engine.steps.types,
        "steps": engine.steps.health(),
        "task_types": engine.tasks.types,
    }
