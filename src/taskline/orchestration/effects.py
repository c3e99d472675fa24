"""Effect undo: reverse a job's recorded side effects, newest first."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from taskline.core.exceptions import EffectRevertError
from taskline.core.protocols import IContentStore
from taskline.core.types import Clock, utcnow
from taskline.models.effects import (
    Effect,
    EffectResult,
    EffectType,
    JobUndoOutcome,
    JobUndoStatus,
    UndoReport,
    UndoStatus,
)
from taskline.models.job import JobStatus
from taskline.orchestration.engine_context import EFFECTS_KEY, UNDO_KEY, EngineContextStore
from taskline.orchestration.ledger import JobLedger
from taskline.orchestration.registry import TaskRegistry

logger = logging.getLogger(__name__)

# Returns optional details for the report; raises to signal failure.
UndoHandler = Callable[[Effect], "dict[str, Any] | None"]


class UndoDispatcher:
    """Replays a list of effects in reverse, dispatching on ``effect.type``.

    Unknown types are skipped and a failing handler is recorded as failed;
    neither stops the remaining effects from being processed.
    """

    def __init__(self, handlers: Mapping[str, UndoHandler] | None = None) -> None:
        self._handlers: dict[str, UndoHandler] = dict(handlers or {})

    def register(self, effect_type: str, handler: UndoHandler) -> None:
        self._handlers[effect_type] = handler

    @property
    def types(self) -> list[str]:
        return sorted(self._handlers)

    def undo(self, effects: list[Effect | dict[str, Any]]) -> UndoReport:
        report = UndoReport(success=True)
        for raw in reversed(effects):
            effect = raw if isinstance(raw, Effect) else Effect.model_validate(raw)
            handler = self._handlers.get(effect.type)
            if handler is None:
                report.skipped.append(EffectResult(
                    status=UndoStatus.SKIPPED, type=effect.type,
                    reason=f"No undo handler for effect type: {effect.type}",
                ))
                continue
            try:
                details = handler(effect) or {}
            except Exception as exc:
                logger.warning("Effect undo failed", extra={"effect_type": effect.type, "error": str(exc)})
                report.failed.append(EffectResult(status=UndoStatus.FAILED, type=effect.type, reason=str(exc)))
                continue
            report.reverted.append(EffectResult(status=UndoStatus.REVERTED, type=effect.type, details=details))

        report.success = not report.failed
        if report.failed:
            report.error = f"{len(report.failed)} effect(s) could not be reverted"
        return report


def _target_value(effect: Effect, key: str) -> Any:
    value = effect.target.get(key)
    if value in (None, ""):
        raise EffectRevertError(f"Effect {effect.type} is missing target.{key}")
    return value


def content_modified_handler(store: IContentStore) -> UndoHandler:
    def undo(effect: Effect) -> dict[str, Any]:
        target_id = _target_value(effect, "target_id")
        revision_id = _target_value(effect, "revision_id")
        if not store.restore_revision(target_id, revision_id):
            raise EffectRevertError(f"Revision {revision_id} could not be restored on {target_id}")
        return {"target_id": target_id, "revision_id": revision_id}
    return undo


def attribute_set_handler(store: IContentStore) -> UndoHandler:
    def undo(effect: Effect) -> dict[str, Any]:
        target_id = _target_value(effect, "target_id")
        key = _target_value(effect, "key")
        if effect.previous_value is None:
            store.delete_attribute(target_id, key)
            return {"target_id": target_id, "key": key, "action": "deleted"}
        store.set_attribute(target_id, key, effect.previous_value)
        return {"target_id": target_id, "key": key, "action": "restored"}
    return undo


def artifact_created_handler(store: IContentStore) -> UndoHandler:
    def undo(effect: Effect) -> dict[str, Any]:
        artifact_id = _target_value(effect, "artifact_id")
        if not store.delete_artifact(artifact_id):
            raise EffectRevertError(f"Artifact {artifact_id} could not be deleted")
        return {"artifact_id": artifact_id}
    return undo


def default_undo_dispatcher(
    content_store: IContentStore | None,
    extra_handlers: Mapping[str, UndoHandler] | None = None,
) -> UndoDispatcher:
    """Dispatcher with the built-in content-store handlers plus any extras."""
    dispatcher = UndoDispatcher()
    if content_store is not None:
        dispatcher.register(EffectType.CONTENT_MODIFIED, content_modified_handler(content_store))
        dispatcher.register(EffectType.ATTRIBUTE_SET, attribute_set_handler(content_store))
        dispatcher.register(EffectType.ARTIFACT_CREATED, artifact_created_handler(content_store))
    for effect_type, handler in (extra_handlers or {}).items():
        dispatcher.register(effect_type, handler)
    return dispatcher


class JobUndoer:
    """Undo at job granularity, recording the outcome under the ``undo`` key."""

    def __init__(
        self,
        *,
        ledger: JobLedger,
        contexts: EngineContextStore,
        dispatcher: UndoDispatcher,
        tasks: TaskRegistry,
        clock: Clock = time.time,
    ) -> None:
        self._ledger = ledger
        self._contexts = contexts
        self._dispatcher = dispatcher
        self._tasks = tasks
        self._clock = clock

    def undo_job(self, job_id: str, *, force: bool = False, dry_run: bool = False) -> JobUndoOutcome:
        job = self._ledger.require(job_id)
        ctx = job.engine_context
        task_type = ctx.get("task_type", "")

        if ctx.get(UNDO_KEY) and not force:
            return JobUndoOutcome(job_id=job_id, status=JobUndoStatus.ALREADY_UNDONE, task_type=task_type)

        if task_type:
            task = self._tasks.get(task_type)
            if task is None or not task.supports_undo:
                return JobUndoOutcome(job_id=job_id, status=JobUndoStatus.UNSUPPORTED, task_type=task_type)

        effects = list(ctx.get(EFFECTS_KEY) or [])
        if not effects:
            return JobUndoOutcome(job_id=job_id, status=JobUndoStatus.NO_EFFECTS, task_type=task_type)

        if dry_run:
            return JobUndoOutcome(
                job_id=job_id, status=JobUndoStatus.WOULD_UNDO, task_type=task_type, effects=effects,
            )

        report = self._dispatcher.undo(effects)
        self._contexts.merge(job_id, {UNDO_KEY: {
            "undone_at": utcnow(self._clock).isoformat(),
            "effects_reverted": len(report.reverted),
            "effects_skipped": len(report.skipped),
            "effects_failed": len(report.failed),
        }})
        logger.info(
            "Job undone",
            extra={"job_id": job_id, "reverted": len(report.reverted), "failed": len(report.failed)},
        )
        return JobUndoOutcome(
            job_id=job_id, status=JobUndoStatus.UNDONE, task_type=task_type, effects=effects, report=report,
        )

    def undo_task_type(self, task_type: str, *, force: bool = False, dry_run: bool = False) -> list[JobUndoOutcome]:
        """Undo every completed job of ``task_type``."""
        outcomes = []
        for job in self._ledger.list(status=JobStatus.COMPLETED, limit=None):
            if job.engine_context.get("task_type") == task_type:
                outcomes.append(self.undo_job(job.job_id, force=force, dry_run=dry_run))
        return outcomes
