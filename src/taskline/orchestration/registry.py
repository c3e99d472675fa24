"""Step-type and task-type registries, filled explicitly at startup."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Mapping

from taskline.core.exceptions import UnknownStepTypeError, UnknownTaskTypeError
from taskline.core.protocols import IStep

if TYPE_CHECKING:
    from taskline.orchestration.tasks import SystemTask


class StepRegistry:
    """Maps a ``step_type`` to the step implementation that runs it."""

    def __init__(self, steps: Mapping[str, IStep] | None = None) -> None:
        self._steps: dict[str, IStep] = {}
        for step_type, step in (steps or {}).items():
            self.register(step_type, step)

    def register(self, step_type: str, step: IStep) -> None:
        if not isinstance(step, IStep):
            raise TypeError(f"{type(step).__name__} does not implement execute()")
        self._steps[step_type] = step

    def get(self, step_type: str) -> IStep:
        try:
            return self._steps[step_type]
        except KeyError:
            raise UnknownStepTypeError(step_type) from None

    def __contains__(self, step_type: object) -> bool:
        return step_type in self._steps

    @property
    def types(self) -> list[str]:
        return sorted(self._steps)

    def health(self) -> dict[str, dict]:
        """Per step type, the step's own ``health_check`` report where it has one."""
        report = {}
        for step_type in self.types:
            check = getattr(self._steps[step_type], "health_check", None)
            report[step_type] = check() if callable(check) else {"step": type(self._steps[step_type]).__name__}
        return report


class TaskRegistry:
    """Maps a ``task_type`` to its SystemTask instance."""

    def __init__(self, tasks: Iterable[SystemTask] = ()) -> None:
        self._tasks: dict[str, SystemTask] = {}
        for task in tasks:
            self.register(task)

    def register(self, task: SystemTask) -> None:
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> SystemTask | None:
        return self._tasks.get(task_type)

    def require(self, task_type: str) -> SystemTask:
        task = self._tasks.get(task_type)
        if task is None:
            raise UnknownTaskTypeError(task_type)
        return task

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._tasks

    @property
    def types(self) -> list[str]:
        return sorted(self._tasks)
