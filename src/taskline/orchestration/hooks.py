"""Queue hook names and the dispatcher that maps them to engine callables."""

from __future__ import annotations

import logging
from typing import Any, Callable

from taskline.core.exceptions import UnknownHookError
from taskline.models.queue import QueuedTask

logger = logging.getLogger(__name__)

EXECUTE_STEP = "execute_step"
HANDLE_TASK = "handle_task"
PROCESS_BATCH = "process_batch"
RUN_FLOW = "run_flow"


class HookDispatcher:
    """Calls the handler registered for a queued task's hook with its args."""

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[..., Any]] = {}

    def register(self, hook: str, handler: Callable[..., Any]) -> None:
        self._handlers[hook] = handler

    @property
    def hooks(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, task: QueuedTask) -> Any:
        handler = self._handlers.get(task.hook)
        if handler is None:
            raise UnknownHookError(f"No handler registered for hook {task.hook!r}")
        logger.debug("Dispatching task", extra={"hook": task.hook, "task_id": task.task_id})
        return handler(**task.args)
