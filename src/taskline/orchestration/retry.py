"""Bounded reschedule-and-return for steps and tasks that poll slow work."""

from __future__ import annotations

import logging
import time
from typing import Any

from taskline.core.exceptions import QueueUnavailableError
from taskline.core.protocols import ITaskQueue
from taskline.core.types import Clock
from taskline.orchestration.engine_context import EngineContextStore
from taskline.orchestration.ledger import JobLedger

logger = logging.getLogger(__name__)

ATTEMPTS_KEY = "attempts"
MAX_ATTEMPTS_KEY = "max_attempts"


class RetryPoller:
    """Re-enqueues a hook for later and counts attempts on the job's context.

    ``max_attempts`` is fixed the first time a job reschedules; later calls
    cannot raise it. When the count goes past it the job is failed.
    """

    def __init__(
        self,
        ledger: JobLedger,
        contexts: EngineContextStore,
        queue: ITaskQueue,
        *,
        default_max_attempts: int = 24,
        default_delay: int = 10,
        clock: Clock = time.time,
    ) -> None:
        self._ledger = ledger
        self._contexts = contexts
        self._queue = queue
        self._default_max_attempts = default_max_attempts
        self._default_delay = default_delay
        self._clock = clock

    def reschedule(
        self,
        job_id: str,
        *,
        hook: str,
        args: dict[str, Any],
        delay: int | None = None,
        max_attempts: int | None = None,
    ) -> bool:
        """Returns True if the hook was enqueued again, False if the job was failed."""
        context = self._contexts.get(job_id)
        attempts = int(context.get(ATTEMPTS_KEY, 0)) + 1
        limit = int(context.get(MAX_ATTEMPTS_KEY) or max_attempts or self._default_max_attempts)

        if attempts > limit:
            logger.warning("Retry budget exhausted", extra={"job_id": job_id, "max_attempts": limit})
            self._ledger.fail(job_id, f"Task exceeded maximum attempts ({limit})")
            return False

        self._contexts.merge(job_id, {ATTEMPTS_KEY: attempts, MAX_ATTEMPTS_KEY: limit})
        delay = self._default_delay if delay is None else delay
        try:
            self._queue.enqueue_at(self._clock() + delay, hook, args)
        except QueueUnavailableError as exc:
            self._ledger.fail(job_id, f"Failed to reschedule: {exc}")
            return False

        logger.info(
            "Job rescheduled",
            extra={"job_id": job_id, "hook": hook, "attempt": attempts, "max_attempts": limit, "delay": delay},
        )
        return True
