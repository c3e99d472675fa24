"""FastAPI application with lifespan, error mapping and router mounting."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskline.api.routes import admin, batches, health, jobs, trigger
from taskline.core.config import AppSettings
from taskline.core.exceptions import (
    ContextLockedError,
    InvalidScheduleError,
    InvalidTransitionError,
    JobNotFoundError,
    PipelineNotFoundError,
    RateLimitExceededError,
    UnknownTaskTypeError,
    WebhookAuthError,
)
from taskline.core.logging import configure_logging
from taskline.orchestration.engine import Engine, create_engine

_STATUS_CODES: dict[type[Exception], int] = {
    JobNotFoundError: 404,
    PipelineNotFoundError: 404,
    InvalidTransitionError: 409,
    ContextLockedError: 409,
    InvalidScheduleError: 422,
    UnknownTaskTypeError: 422,
    ValueError: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize and tear down application resources."""
    settings = getattr(app.state, "settings", None) or AppSettings()
    configure_logging(settings.log_level, json_output=settings.log_json)
    app.state.settings = settings
    if getattr(app.state, "engine", None) is None:
        app.state.engine = create_engine(settings)
    yield


async def _domain_error(request: Request, exc: Exception) -> JSONResponse:
    code = next(c for cls, c in _STATUS_CODES.items() if isinstance(exc, cls))
    return JSONResponse(status_code=code, content={"detail": str(exc)})


async def _webhook_auth_error(request: Request, exc: WebhookAuthError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"success": False, "error": str(exc)})


async def _rate_limited(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": str(exc)},
        headers={"Retry-After": str(exc.retry_after)},
    )


def create_app(settings: AppSettings | None = None, engine: Engine | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="taskline orchestration engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or (engine.settings if engine else None)
    app.state.engine = engine

    for exc_cls in _STATUS_CODES:
        app.add_exception_handler(exc_cls, _domain_error)
    app.add_exception_handler(WebhookAuthError, _webhook_auth_error)
    app.add_exception_handler(RateLimitExceededError, _rate_limited)

    app.include_router(health.router)
    app.include_router(trigger.router)
    app.include_router(jobs.router, prefix="/jobs")
    app.include_router(batches.router, prefix="/batches")
    app.include_router(admin.router, prefix="/admin")
    return app
