"""taskline exception hierarchy."""

from __future__ import annotations


class TasklineError(Exception):
    """Base exception for all taskline errors."""


class StorageError(TasklineError):
    """Job ledger, packet or catalog storage is unavailable or rejected a write."""


class CacheError(TasklineError):
    """Redis side-store operation failed."""


class QueueUnavailableError(TasklineError):
    """The task queue did not accept work for later execution."""


class JobNotFoundError(TasklineError):
    """No job with the given id exists in the ledger."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class InvalidTransitionError(TasklineError):
    """A status change that the job state machine does not allow."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        self.job_id = job_id
        self.current = str(current)
        self.target = str(target)
        super().__init__(f"Job {job_id} cannot move from {self.current!r} to {self.target!r}")


class ContextLockedError(TasklineError):
    """Engine context of a terminal job may only receive undo metadata."""


class PipelineNotFoundError(TasklineError):
    """No pipeline definition for the given id."""


class StepConfigError(TasklineError):
    """Missing or invalid step configuration."""


class UnknownStepTypeError(TasklineError):
    """Step type is not present in the step registry."""

    def __init__(self, step_type: str) -> None:
        self.step_type = step_type
        super().__init__(f"Step type {step_type!r} not found in registry")


class UnknownTaskTypeError(TasklineError):
    """System task type is not present in the task registry."""

    def __init__(self, task_type: str) -> None:
        self.task_type = task_type
        super().__init__(f"Unknown task type: {task_type}")


class UnknownHookError(TasklineError):
    """A queued task names a hook nobody registered."""


class WebhookAuthError(TasklineError):
    """Webhook request failed authentication. Message is deliberately generic."""


class RateLimitExceededError(TasklineError):
    """Fixed-window webhook rate limit exhausted."""

    def __init__(self, limit: int, window: int) -> None:
        self.limit = limit
        self.window = window
        self.retry_after = window
        super().__init__(f"Rate limit exceeded. Maximum {limit} requests per {window} seconds.")


class InvalidScheduleError(TasklineError):
    """Pipeline schedule request could not be honoured."""


class EffectRevertError(TasklineError):
    """An undo handler could not reverse a recorded effect."""
