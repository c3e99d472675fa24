"""Per-job engine data and the context object handed to steps."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from taskline.core.exceptions import ContextLockedError, JobNotFoundError
from taskline.core.protocols import IJobStore, IProcessedItems
from taskline.models.effects import Effect
from taskline.models.job import JobStatus
from taskline.models.pipeline import PipelineStep, ResultPacket
from taskline.orchestration.hooks import EXECUTE_STEP

if TYPE_CHECKING:
    from taskline.orchestration.retry import RetryPoller

logger = logging.getLogger(__name__)

JOB_STATUS_KEY = "job_status"
UNDO_KEY = "undo"
EFFECTS_KEY = "effects"
PARKED_STEP_KEY = "parked_step"
RESCHEDULED_STEP_KEY = "rescheduled_step"


class EngineContextStore:
    """Reads and writes the ``engine_context`` document of a job.

    Merges are shallow and last-write-wins. Once a job is terminal its
    context is frozen except for the ``undo`` key.
    """

    def __init__(self, store: IJobStore) -> None:
        self._store = store

    def _load(self, job_id: str):
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    @staticmethod
    def _check_writable(job, before: dict[str, Any], after: dict[str, Any]) -> None:
        if not job.is_terminal:
            return
        touched = {k for k in before.keys() | after.keys() if before.get(k) != after.get(k)}
        if touched - {UNDO_KEY}:
            raise ContextLockedError(
                f"Job {job.job_id} is {job.status}; only '{UNDO_KEY}' may change, got {sorted(touched)}"
            )

    def _write(self, job, context: dict[str, Any]) -> None:
        self._check_writable(job, job.engine_context, context)
        self._store.put_context(job.job_id, context)

    def get(self, job_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._load(job_id).engine_context)

    def store(self, job_id: str, data: dict[str, Any]) -> None:
        """Replace the whole document."""
        self._write(self._load(job_id), dict(data))

    def merge(self, job_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        job = self._load(job_id)
        merged = {**job.engine_context, **partial}
        self._write(job, merged)
        return merged

    def append(self, job_id: str, key: str, value: Any) -> list[Any]:
        job = self._load(job_id)
        items = list(job.engine_context.get(key) or [])
        items.append(value)
        self._write(job, {**job.engine_context, key: items})
        return items

    def clear(self, job_id: str, *keys: str) -> None:
        job = self._load(job_id)
        if not any(k in job.engine_context for k in keys):
            return
        remaining = {k: v for k, v in job.engine_context.items() if k not in keys}
        self._write(job, remaining)


class StepContext:
    """Everything a step may see or touch while it runs."""

    def __init__(
        self,
        *,
        job_id: str,
        step: PipelineStep,
        packets: list[ResultPacket],
        contexts: EngineContextStore,
        processed_items: IProcessedItems,
        retry: RetryPoller | None = None,
    ) -> None:
        self.job_id = job_id
        self.step = step
        self.packets = packets
        self._contexts = contexts
        self._processed = processed_items
        self._retry = retry

    @property
    def step_id(self) -> str:
        return self.step.step_id

    @property
    def config(self) -> dict[str, Any]:
        return self.step.settings

    @property
    def engine(self) -> dict[str, Any]:
        """Fresh snapshot of the job's engine data."""
        return self._contexts.get(self.job_id)

    def merge(self, partial: dict[str, Any]) -> None:
        self._contexts.merge(self.job_id, partial)

    def set_status(self, status: JobStatus | str) -> None:
        """Override the routing decision, e.g. ``waiting`` or ``"failed - reason"``."""
        self._contexts.merge(self.job_id, {JOB_STATUS_KEY: str(status)})

    def record_effect(self, effect: Effect | dict[str, Any]) -> None:
        if isinstance(effect, dict):
            effect = Effect.model_validate(effect)
        self._contexts.append(self.job_id, EFFECTS_KEY, effect.model_dump())

    def is_processed(self, item_id: str) -> bool:
        return self._processed.is_processed(self.step_id, item_id)

    def mark_processed(self, item_id: str) -> None:
        self._processed.mark_processed(self.step_id, item_id, self.job_id)

    def reschedule(self, delay: int | None = None, max_attempts: int | None = None) -> bool:
        """Run this step again later instead of blocking.

        Returns False when the attempt budget is exhausted; the job has then
        already been failed.
        """
        if self._retry is None:
            raise RuntimeError("No retry helper configured for this step context")
        self._contexts.merge(self.job_id, {RESCHEDULED_STEP_KEY: self.step_id})
        return self._retry.reschedule(
            self.job_id,
            hook=EXECUTE_STEP,
            args={"job_id": self.job_id, "step_id": self.step_id},
            delay=delay,
            max_attempts=max_attempts,
        )
