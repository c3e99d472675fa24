"""Queued task envelope shared by the task queue adapters."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field


class QueuedTask(BaseModel):
    """One entry on the delayed task queue. Only ids travel in ``args``."""

    task_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    hook: str
    args: dict[str, Any] = Field(default_factory=dict)
    run_at: float
    interval: Optional[int] = None  # seconds, recurring tasks only

    def matches(self, hook: str, args_filter: dict[str, Any] | None = None) -> bool:
        if self.hook != hook:
            return False
        return all(self.args.get(k) == v for k, v in (args_filter or {}).items())

    def next_occurrence(self) -> Optional["QueuedTask"]:
        if not self.interval:
            return None
        return self.model_copy(update={"run_at": self.run_at + self.interval})
