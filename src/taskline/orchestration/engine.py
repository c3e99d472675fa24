"""Engine wiring: every service built once and shared by reference."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Mapping

from taskline.core.config import AppSettings
from taskline.core.exceptions import InvalidTransitionError
from taskline.core.protocols import IPipelineNavigator, IStep
from taskline.core.types import Clock
from taskline.models.job import JobSource
from taskline.orchestration.batch import BatchScheduler
from taskline.orchestration.effects import JobUndoer, UndoDispatcher, UndoHandler, default_undo_dispatcher
from taskline.orchestration.engine_context import EngineContextStore
from taskline.orchestration.hooks import (
    EXECUTE_STEP,
    HANDLE_TASK,
    PROCESS_BATCH,
    RUN_FLOW,
    HookDispatcher,
)
from taskline.orchestration.ledger import JobLedger
from taskline.orchestration.navigator import ExecutionOrderNavigator
from taskline.orchestration.registry import StepRegistry, TaskRegistry
from taskline.orchestration.retry import RetryPoller
from taskline.orchestration.router import StepRouter
from taskline.orchestration.scheduling import FlowScheduler
from taskline.orchestration.tasks import RUNTIME_KEYS, SystemTask, TaskRunner
from taskline.orchestration.webhooks import FixedWindowRateLimiter, WebhookTrigger
from taskline.orchestration.worker import Worker
from taskline.persistence import Persistence, create_persistence
from taskline.steps.base import GateStep

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    settings: AppSettings
    persistence: Persistence
    ledger: JobLedger
    contexts: EngineContextStore
    steps: StepRegistry
    tasks: TaskRegistry
    retry: RetryPoller
    router: StepRouter
    runner: TaskRunner
    batches: BatchScheduler
    effects: UndoDispatcher
    undo: JobUndoer
    scheduler: FlowScheduler
    webhooks: WebhookTrigger
    hooks: HookDispatcher
    worker: Worker

    def retry_job(self, job_id: str, *, force: bool = False) -> str:
        """Re-run a finished job as a fresh record. Returns the new job id."""
        job = self.ledger.require(job_id)
        ctx = job.engine_context

        if job.source == JobSource.PIPELINE:
            carried = {k: ctx[k] for k in ("webhook_trigger",) if k in ctx}
            new_id = self.ledger.retry(job_id, force=force, context=carried)
            self.router.run_flow(job.owner_ref, job_id=new_id)
            return new_id

        if job.source in (JobSource.SYSTEM, JobSource.BATCH_CHILD):
            task_type = ctx.get("task_type", job.owner_ref)
            params = {k: v for k, v in ctx.items() if k not in RUNTIME_KEYS}
            new_id = self.ledger.retry(
                job_id, force=force,
                context=self.runner.build_context(
                    task_type, params,
                    context=ctx.get("context"),
                    batch_job_id=ctx.get("batch_job_id"),
                ),
            )
            self.runner.dispatch(new_id)
            return new_id

        raise InvalidTransitionError(job_id, job.status, "retry")


def create_engine(
    settings: AppSettings | None = None,
    persistence: Persistence | None = None,
    *,
    steps: Mapping[str, IStep] | None = None,
    tasks: Iterable[SystemTask] = (),
    effect_handlers: Mapping[str, UndoHandler] | None = None,
    navigator: IPipelineNavigator | None = None,
    clock: Clock = time.time,
) -> Engine:
    """Build the engine from settings and (optionally) pre-built persistence."""
    if settings is None:
        settings = AppSettings()
    if persistence is None:
        persistence = create_persistence(settings)

    step_registry = StepRegistry({GateStep.step_type: GateStep(settings=settings)})
    for step_type, step in (steps or {}).items():
        step_registry.register(step_type, step)
    task_registry = TaskRegistry(tasks)

    ledger = JobLedger(
        persistence.jobs,
        processed_items=persistence.processed_items,
        packets=persistence.packets,
        stuck_timeout_hours=settings.engine.stuck_timeout_hours,
        clock=clock,
    )
    contexts = EngineContextStore(persistence.jobs)
    retry = RetryPoller(
        ledger, contexts, persistence.queue,
        default_max_attempts=settings.engine.default_max_attempts,
        default_delay=settings.engine.reschedule_delay,
        clock=clock,
    )
    router = StepRouter(
        ledger=ledger,
        contexts=contexts,
        steps=step_registry,
        navigator=navigator or ExecutionOrderNavigator(),
        packets=persistence.packets,
        pipelines=persistence.pipelines,
        queue=persistence.queue,
        processed_items=persistence.processed_items,
        retry=retry,
    )
    runner = TaskRunner(
        ledger=ledger, contexts=contexts, registry=task_registry,
        queue=persistence.queue, retry=retry, clock=clock,
    )
    batches = BatchScheduler(
        ledger=ledger, contexts=contexts, tasks=runner,
        cache=persistence.cache, queue=persistence.queue,
        chunk_size=settings.batch.chunk_size,
        chunk_delay=settings.batch.chunk_delay,
        side_store_ttl=settings.batch.side_store_ttl,
        clock=clock,
    )
    effects = default_undo_dispatcher(persistence.content_store, effect_handlers)
    undo = JobUndoer(ledger=ledger, contexts=contexts, dispatcher=effects, tasks=task_registry, clock=clock)
    scheduler = FlowScheduler(persistence.queue, persistence.pipelines, clock=clock)
    webhooks = WebhookTrigger(
        pipelines=persistence.pipelines,
        router=router,
        limiter=FixedWindowRateLimiter(persistence.cache),
        defaults=settings.webhook,
        clock=clock,
    )

    hooks = HookDispatcher()
    hooks.register(EXECUTE_STEP, router.execute_step)
    hooks.register(RUN_FLOW, router.run_flow)
    hooks.register(HANDLE_TASK, runner.handle_task)
    hooks.register(PROCESS_BATCH, batches.process_chunk)

    worker = Worker(
        persistence.queue, hooks,
        batch_size=settings.engine.worker_batch_size,
        poll_interval=settings.engine.worker_poll_interval,
        clock=clock,
    )

    logger.info(
        "Engine created",
        extra={"backend": settings.backend, "step_types": step_registry.types, "task_types": task_registry.types},
    )
    return Engine(
        settings=settings,
        persistence=persistence,
        ledger=ledger,
        contexts=contexts,
        steps=step_registry,
        tasks=task_registry,
        retry=retry,
        router=router,
        runner=runner,
        batches=batches,
        effects=effects,
        undo=undo,
        scheduler=scheduler,
        webhooks=webhooks,
        hooks=hooks,
        worker=worker,
    )
