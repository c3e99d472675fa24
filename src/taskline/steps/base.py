"""Base step with common dependency wiring, plus the built-in gate step."""

from __future__ import annotations

from typing import Any, ClassVar

from taskline.core.config import AppSettings
from taskline.models.job import JobStatus
from taskline.models.pipeline import ResultPacket
from taskline.orchestration.engine_context import StepContext


class BaseStep:
    """Common base for taskline steps.

    Subclasses set ``step_type`` and implement ``execute``. Steps must
    tolerate being invoked twice for the same job and step.
    """

    step_type: ClassVar[str] = ""

    def __init__(self, *, settings: AppSettings | None = None) -> None:
        self._settings = settings or AppSettings()

    def execute(self, job_id: str, step_id: str, context: StepContext) -> list[ResultPacket]:
        raise NotImplementedError

    def health_check(self) -> dict[str, Any]:
        return {
            "step": self.__class__.__name__,
            "step_type": self.step_type,
            "environment": self._settings.environment,
        }


class GateStep(BaseStep):
    """Parks the job until something external resumes it.

    Inbound packets are passed through so the step after the gate sees them.
    """

    step_type = "gate"

    def execute(self, job_id: str, step_id: str, context: StepContext) -> list[ResultPacket]:
        context.set_status(JobStatus.WAITING)
        return list(context.packets) or [ResultPacket.ok({"gate": step_id})]
