"""Step router: runs one step per queued delivery and decides what happens next."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from taskline.core.exceptions import (
    PipelineNotFoundError,
    QueueUnavailableError,
    StepConfigError,
    StorageError,
    TasklineError,
    UnknownStepTypeError,
)
from taskline.core.protocols import (
    IPacketStore,
    IPipelineCatalog,
    IPipelineNavigator,
    IProcessedItems,
    ITaskQueue,
)
from taskline.models.job import JobSource, JobStatus, parse_status
from taskline.models.pipeline import PipelineStep, ResultPacket
from taskline.orchestration.engine_context import (
    JOB_STATUS_KEY,
    PARKED_STEP_KEY,
    RESCHEDULED_STEP_KEY,
    EngineContextStore,
    StepContext,
)
from taskline.orchestration.hooks import EXECUTE_STEP
from taskline.orchestration.ledger import JobLedger
from taskline.orchestration.registry import StepRegistry
from taskline.orchestration.retry import ATTEMPTS_KEY, MAX_ATTEMPTS_KEY, RetryPoller

logger = logging.getLogger(__name__)

FETCH_STEP_TYPE = "fetch"


class RouteOutcome(StrEnum):
    NEXT_STEP_SCHEDULED = "next_step_scheduled"
    COMPLETED = "completed"
    COMPLETED_OVERRIDE = "completed_override"
    COMPLETED_NO_ITEMS = "completed_no_items"
    WAITING = "waiting"
    FAILED = "failed"
    RESCHEDULED = "rescheduled"
    FINALIZED = "finalized"
    SKIPPED = "skipped"


@dataclass
class RouteResult:
    job_id: str
    outcome: RouteOutcome
    step_id: str | None = None
    next_step_id: str | None = None
    status: JobStatus | None = None
    reason: str = ""


class StepRouter:
    """Executes a pipeline step and routes the job on its result packets.

    Safe under at-least-once delivery: deliveries for a job that is not
    processing are skipped, and every status change goes through the ledger's
    conditional transitions. Nothing raised by a step escapes ``execute_step``.
    """

    def __init__(
        self,
        *,
        ledger: JobLedger,
        contexts: EngineContextStore,
        steps: StepRegistry,
        navigator: IPipelineNavigator,
        packets: IPacketStore,
        pipelines: IPipelineCatalog,
        queue: ITaskQueue,
        processed_items: IProcessedItems,
        retry: RetryPoller | None = None,
    ) -> None:
        self._ledger = ledger
        self._contexts = contexts
        self._steps = steps
        self._navigator = navigator
        self._packets = packets
        self._pipelines = pipelines
        self._queue = queue
        self._processed = processed_items
        self._retry = retry

    # ---- entry points ----

    def run_flow(
        self,
        pipeline_id: str,
        job_id: str | None = None,
        initial_data: dict[str, Any] | None = None,
    ) -> RouteResult:
        """Start a pipeline run and schedule its first enabled step."""
        pipeline = self._pipelines.get_pipeline(pipeline_id)
        if pipeline is None:
            if job_id is not None:
                self._ledger.fail(job_id, f"Pipeline {pipeline_id} not found")
            raise PipelineNotFoundError(f"Pipeline {pipeline_id} not found")

        if job_id is None:
            job_id = self._ledger.create(
                pipeline_id, JobSource.PIPELINE, label=pipeline.name, context=initial_data,
            )
            if job_id is None:
                raise StorageError(f"Could not create job for pipeline {pipeline_id}")
        elif initial_data:
            self._contexts.merge(job_id, initial_data)

        if not self._ledger.start(job_id):
            logger.info("Flow already running", extra={"job_id": job_id, "pipeline_id": pipeline_id})
            return RouteResult(job_id, RouteOutcome.SKIPPED)

        job = self._ledger.require(job_id)
        flow_config = {step.step_id: step.model_dump() for step in pipeline.steps}
        self._contexts.merge(job_id, {
            "job": {"job_id": job_id, "pipeline_id": pipeline_id, "created_at": job.created_at.isoformat()},
            "pipeline": {"pipeline_id": pipeline_id, "name": pipeline.name},
            "flow_config": flow_config,
        })

        first = self._navigator.first_step(flow_config)
        if first is None:
            return self._finish(job_id, None, JobStatus.FAILED, f"Pipeline {pipeline_id} has no enabled steps")

        if not self.schedule_next_step(job_id, first, []):
            return RouteResult(job_id, RouteOutcome.FAILED, status=JobStatus.FAILED)
        logger.info("Flow started", extra={"job_id": job_id, "pipeline_id": pipeline_id, "step_id": first})
        return RouteResult(job_id, RouteOutcome.NEXT_STEP_SCHEDULED, next_step_id=first)

    def schedule_next_step(self, job_id: str, step_id: str, packets: list[ResultPacket]) -> bool:
        """Persist packets and enqueue the step. Only ids travel on the queue."""
        try:
            self._packets.store(job_id, [p.model_dump() for p in packets])
            self._queue.enqueue_now(EXECUTE_STEP, {"job_id": job_id, "step_id": step_id})
        except (QueueUnavailableError, StorageError) as exc:
            logger.error("Could not schedule step", extra={"job_id": job_id, "step_id": step_id})
            self._ledger.fail(job_id, f"Failed to schedule step {step_id}: {exc}")
            return False
        return True

    def execute_step(self, job_id: str, step_id: str) -> RouteResult:
        try:
            return self._execute(job_id, step_id)
        except (StepConfigError, UnknownStepTypeError) as exc:
            logger.error("Step misconfigured", extra={"job_id": job_id, "step_id": step_id, "error": str(exc)})
            return self._fail_safely(job_id, step_id, str(exc))
        except Exception as exc:
            logger.exception("Step raised", extra={"job_id": job_id, "step_id": step_id})
            return self._fail_safely(job_id, step_id, f"Step execution exception: {exc}")

    def resume(self, job_id: str, data: dict[str, Any] | None = None) -> RouteResult:
        """Continue a waiting job with the successor of the step that parked it."""
        job = self._ledger.require(job_id)
        context = job.engine_context
        parked_step = context.get(PARKED_STEP_KEY)

        self._ledger.resume(job_id)
        self._contexts.clear(job_id, JOB_STATUS_KEY, PARKED_STEP_KEY)
        if data:
            self._contexts.merge(job_id, {"resume_data": data})

        packets = [ResultPacket.model_validate(p) for p in self._packets.load(job_id)]
        next_step = None
        if parked_step:
            next_step = self._navigator.next_step(context.get("flow_config", {}), parked_step, packets)
        if next_step is None:
            return self._finish(job_id, parked_step, JobStatus.COMPLETED)
        if not self.schedule_next_step(job_id, next_step, packets):
            return RouteResult(job_id, RouteOutcome.FAILED, step_id=parked_step, status=JobStatus.FAILED)
        return RouteResult(job_id, RouteOutcome.NEXT_STEP_SCHEDULED, step_id=parked_step, next_step_id=next_step)

    # ---- internals ----

    def _execute(self, job_id: str, step_id: str) -> RouteResult:
        job = self._ledger.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            logger.info(
                "Skipping step delivery",
                extra={"job_id": job_id, "step_id": step_id, "status": str(job.status) if job else None},
            )
            return RouteResult(job_id, RouteOutcome.SKIPPED, step_id=step_id)

        flow_config = job.engine_context.get("flow_config") or {}
        raw = flow_config.get(step_id)
        if not raw:
            raise StepConfigError(f"Step {step_id} has no configuration")
        step_config = PipelineStep.model_validate(raw)
        step = self._steps.get(step_config.step_type)

        inbound = [ResultPacket.model_validate(p) for p in self._packets.load(job_id)]
        step_context = StepContext(
            job_id=job_id,
            step=step_config,
            packets=inbound,
            contexts=self._contexts,
            processed_items=self._processed,
            retry=self._retry,
        )

        logger.info("Executing step", extra={"job_id": job_id, "step_id": step_id, "step_type": step_config.step_type})
        result = step.execute(job_id, step_id, step_context)
        if not isinstance(result, list):
            raise StepConfigError(
                f"Step {step_id} returned {type(result).__name__} instead of a list of packets"
            )
        packets = [p if isinstance(p, ResultPacket) else ResultPacket.model_validate(p) for p in result]
        return self._route(job_id, step_config, packets, flow_config)

    def _route(
        self,
        job_id: str,
        step: PipelineStep,
        packets: list[ResultPacket],
        flow_config: dict[str, Any],
    ) -> RouteResult:
        step_id = step.step_id
        job = self._ledger.require(job_id)
        if job.status != JobStatus.PROCESSING:
            # the step (or its retry budget) already decided the job's fate
            if job.is_terminal:
                self._packets.cleanup(job_id)
            return RouteResult(job_id, RouteOutcome.FINALIZED, step_id=step_id, status=job.status)

        context = self._contexts.get(job_id)
        if context.get(RESCHEDULED_STEP_KEY) == step_id:
            self._contexts.clear(job_id, RESCHEDULED_STEP_KEY)
            return RouteResult(job_id, RouteOutcome.RESCHEDULED, step_id=step_id)

        override = context.get(JOB_STATUS_KEY)
        if override:
            return self._apply_override(job_id, step_id, override, packets)

        if any(p.no_new_items for p in packets):
            return self._finish(job_id, step_id, JobStatus.COMPLETED_NO_ITEMS)

        if packets and all(p.success for p in packets):
            next_step = self._navigator.next_step(flow_config, step_id, packets)
            if next_step is None:
                return self._finish(job_id, step_id, JobStatus.COMPLETED)
            self._contexts.clear(job_id, ATTEMPTS_KEY, MAX_ATTEMPTS_KEY)
            if not self.schedule_next_step(job_id, next_step, packets):
                return RouteResult(job_id, RouteOutcome.FAILED, step_id=step_id, status=JobStatus.FAILED)
            return RouteResult(job_id, RouteOutcome.NEXT_STEP_SCHEDULED, step_id=step_id, next_step_id=next_step)

        if step.step_type == FETCH_STEP_TYPE and self._processed.has_processed_items(step_id):
            return self._finish(job_id, step_id, JobStatus.COMPLETED_NO_ITEMS)

        return self._finish(job_id, step_id, JobStatus.FAILED, self._failure_reason(step_id, packets))

    def _apply_override(
        self, job_id: str, step_id: str, override: str, packets: list[ResultPacket]
    ) -> RouteResult:
        try:
            status, reason = parse_status(override)
        except ValueError:
            return self._finish(job_id, step_id, JobStatus.FAILED, f"Invalid job_status override: {override}")

        if status == JobStatus.WAITING:
            self._contexts.merge(job_id, {PARKED_STEP_KEY: step_id})
            self._packets.store(job_id, [p.model_dump() for p in packets])
            self._ledger.park(job_id)
            return RouteResult(job_id, RouteOutcome.WAITING, step_id=step_id, status=status)

        if not status.is_terminal:
            return self._finish(job_id, step_id, JobStatus.FAILED, f"Unsupported job_status override: {override}")

        result = self._finish(job_id, step_id, status, reason)
        result.outcome = RouteOutcome.COMPLETED_OVERRIDE
        return result

    @staticmethod
    def _failure_reason(step_id: str, packets: list[ResultPacket]) -> str:
        if not packets:
            return f"Step {step_id} returned no results"
        for packet in packets:
            if not packet.success and packet.data.get("error"):
                return f"Step {step_id} failed: {packet.data['error']}"
        return f"Step {step_id} reported failure"

    def _finish(
        self, job_id: str, step_id: str | None, status: JobStatus, reason: str = ""
    ) -> RouteResult:
        self._ledger.complete(job_id, status, reason)
        self._packets.cleanup(job_id)
        outcome = {
            JobStatus.COMPLETED: RouteOutcome.COMPLETED,
            JobStatus.COMPLETED_NO_ITEMS: RouteOutcome.COMPLETED_NO_ITEMS,
            JobStatus.FAILED: RouteOutcome.FAILED,
        }.get(status, RouteOutcome.COMPLETED_OVERRIDE)
        return RouteResult(job_id, outcome, step_id=step_id, status=status, reason=reason)

    def _fail_safely(self, job_id: str, step_id: str, reason: str) -> RouteResult:
        try:
            self._ledger.fail(job_id, reason)
            self._packets.cleanup(job_id)
        except TasklineError:
            logger.exception("Could not record step failure", extra={"job_id": job_id, "step_id": step_id})
        return RouteResult(job_id, RouteOutcome.FAILED, step_id=step_id, status=JobStatus.FAILED, reason=reason)
