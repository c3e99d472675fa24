"""Pipeline definitions, step configuration and result packets."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class PipelineStep(BaseModel):
    """A single configured step of a pipeline."""

    step_id: str
    step_type: str  # fetch, transform, publish, gate, notify, ...
    execution_order: int
    enabled: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)


class WebhookSettings(BaseModel):
    """Inbound trigger configuration for one pipeline."""

    enabled: bool = False
    token: str = ""
    rate_limit_max: Optional[int] = None  # None = settings default, 0 = disabled
    rate_limit_window: Optional[int] = None


class ScheduleSettings(BaseModel):
    """How a pipeline is started: manually, once, or on an interval."""

    interval: str = "manual"
    timestamp: Optional[float] = None
    interval_seconds: Optional[int] = None
    first_run: Optional[float] = None


class PipelineDefinition(BaseModel):
    """Ordered steps plus trigger configuration (loaded from the catalog)."""

    pipeline_id: str
    name: str = ""
    description: str = ""
    steps: list[PipelineStep] = Field(default_factory=list)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    scheduling: ScheduleSettings = Field(default_factory=ScheduleSettings)

    def step(self, step_id: str) -> Optional[PipelineStep]:
        for candidate in self.steps:
            if candidate.step_id == step_id:
                return candidate
        return None


class ResultPacket(BaseModel):
    """What a step hands back to the router."""

    type: str = "data"
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.metadata.get("success", True) is not False

    @property
    def no_new_items(self) -> bool:
        return self.metadata.get("no_new_items") is True

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None, **metadata: Any) -> "ResultPacket":
        return cls(data=data or {}, metadata={"success": True, **metadata})

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> "ResultPacket":
        return cls(type="error", data={"error": error}, metadata={"success": False, **metadata})
