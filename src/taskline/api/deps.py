"""Request-scoped dependencies."""

from __future__ import annotations

from fastapi import Request

from taskline.orchestration.engine import Engine


def get_engine(request: Request) -> Engine:
    return request.app.state.engine
