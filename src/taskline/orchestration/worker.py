"""Queue worker: claims due tasks and hands them to the hook dispatcher."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from taskline.core.protocols import ITaskQueue
from taskline.core.types import Clock
from taskline.orchestration.hooks import HookDispatcher

logger = logging.getLogger(__name__)


class Worker:
    """Single-threaded poll loop. Run several processes for concurrency."""

    def __init__(
        self,
        queue: ITaskQueue,
        dispatcher: HookDispatcher,
        *,
        batch_size: int = 10,
        poll_interval: float = 1.0,
        clock: Clock = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._batch_size = batch_size
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def run_once(self) -> int:
        """Claim and run every task due now, up to ``batch_size``. Returns how many ran."""
        tasks = self._queue.claim_due(self._clock(), self._batch_size)
        for task in tasks:
            try:
                self._dispatcher.dispatch(task)
            except Exception:
                logger.exception("Queued task failed", extra={"hook": task.hook, "task_id": task.task_id})
        return len(tasks)

    def drain(self, max_rounds: int = 1000) -> int:
        """Keep running until nothing is due. Useful for tests and one-shot CLIs."""
        total = 0
        for _ in range(max_rounds):
            ran = self.run_once()
            if not ran:
                break
            total += ran
        return total

    def run_forever(self, stop: threading.Event | None = None) -> None:
        stop = stop or threading.Event()
        logger.info("Worker started", extra={"hooks": self._dispatcher.hooks})
        while not stop.is_set():
            if not self.run_once():
                self._sleep(self._poll_interval)
        logger.info("Worker stopped")
