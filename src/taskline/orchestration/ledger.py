"""Job ledger: durable job records and the only path for status changes."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import timedelta
from typing import Any

from taskline.core.exceptions import InvalidTransitionError, JobNotFoundError, StorageError
from taskline.core.protocols import IJobStore, IPacketStore, IProcessedItems
from taskline.core.types import Clock, utcnow
from taskline.models.job import (
    Job,
    JobSource,
    JobStatus,
    parse_status,
    sources_for,
)
from taskline.orchestration.engine_context import JOB_STATUS_KEY

logger = logging.getLogger(__name__)


class JobLedger:
    """Creates jobs and moves them along ``ALLOWED_TRANSITIONS``.

    Every status write is conditional on the current status, so a duplicate
    delivery that lost the race observes a no-op instead of regressing the job.
    """

    def __init__(
        self,
        store: IJobStore,
        *,
        processed_items: IProcessedItems | None = None,
        packets: IPacketStore | None = None,
        stuck_timeout_hours: int = 2,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self._processed = processed_items
        self._packets = packets
        self._stuck_timeout_hours = stuck_timeout_hours
        self._clock = clock

    # ---- lifecycle ----

    def create(
        self,
        owner_ref: str,
        source: JobSource,
        *,
        label: str = "",
        context: dict[str, Any] | None = None,
        retried_from: str | None = None,
    ) -> str | None:
        """Insert a pending job. Returns None when storage is unavailable."""
        job = Job(
            job_id=uuid.uuid4().hex,
            source=source,
            owner_ref=owner_ref,
            label=label,
            engine_context=dict(context or {}),
            retried_from=retried_from,
            created_at=utcnow(self._clock),
        )
        try:
            self._store.insert(job)
        except StorageError:
            logger.exception("Job creation failed", extra={"owner_ref": owner_ref, "source": str(source)})
            return None
        logger.info("Job created", extra={"job_id": job.job_id, "source": str(source), "owner_ref": owner_ref})
        return job.job_id

    def start(self, job_id: str) -> bool:
        """pending -> processing. Returns False when the job is already processing."""
        if self._store.transition(
            job_id, JobStatus.PROCESSING,
            allowed_from={JobStatus.PENDING},
            started_at=utcnow(self._clock),
        ):
            logger.info("Job started", extra={"job_id": job_id})
            return True
        job = self.require(job_id)
        if job.status == JobStatus.PROCESSING:
            return False
        raise InvalidTransitionError(job_id, job.status, JobStatus.PROCESSING)

    def park(self, job_id: str) -> None:
        """processing -> waiting."""
        self._move(job_id, JobStatus.WAITING, {JobStatus.PROCESSING})
        logger.info("Job parked", extra={"job_id": job_id})

    def resume(self, job_id: str) -> None:
        """waiting -> processing."""
        self._move(job_id, JobStatus.PROCESSING, {JobStatus.WAITING})
        logger.info("Job resumed", extra={"job_id": job_id})

    def complete(self, job_id: str, status: JobStatus | str, reason: str = "") -> bool:
        """Move a job to a terminal status.

        ``status`` may be a compound string such as ``"failed - upstream timeout"``;
        the part after the dash becomes the reason. Returns False (and writes
        nothing) when the job is already terminal.
        """
        target, parsed_reason = parse_status(status)
        if not target.is_terminal:
            raise ValueError(f"{target} is not a terminal status")
        reason = reason or parsed_reason

        if self._store.transition(
            job_id, target,
            allowed_from=sources_for(target),
            reason=reason,
            completed_at=utcnow(self._clock),
        ):
            log = logger.warning if target == JobStatus.FAILED else logger.info
            log("Job finished", extra={"job_id": job_id, "status": str(target), "reason": reason})
            return True

        job = self.require(job_id)
        if job.is_terminal:
            logger.debug("Job already terminal", extra={"job_id": job_id, "status": str(job.status)})
            return False
        raise InvalidTransitionError(job_id, job.status, target)

    def fail(self, job_id: str, reason: str) -> bool:
        return self.complete(job_id, JobStatus.FAILED, reason)

    def _move(self, job_id: str, target: JobStatus, allowed_from: set[JobStatus]) -> None:
        if not self._store.transition(job_id, target, allowed_from=allowed_from):
            job = self.require(job_id)
            raise InvalidTransitionError(job_id, job.status, target)

    # ---- reads ----

    def get(self, job_id: str) -> Job | None:
        return self._store.get(job_id)

    def require(self, job_id: str) -> Job:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list(
        self,
        *,
        source: JobSource | None = None,
        status: JobStatus | None = None,
        limit: int | None = 50,
    ) -> list[Job]:
        return self._store.list_jobs(source=source, status=status, limit=limit)

    def summary(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._store.list_jobs(limit=None):
            counts[job.status.value] += 1
        return counts

    # ---- maintenance ----

    def retry(self, job_id: str, *, force: bool = False, context: dict[str, Any] | None = None) -> str:
        """Create a fresh pending job that records ``retried_from``.

        Only failed jobs are retried unless ``force`` is set; batch parents
        are never retried.
        """
        job = self.require(job_id)
        if not job.is_terminal or job.source == JobSource.BATCH_PARENT:
            raise InvalidTransitionError(job_id, job.status, JobStatus.PENDING)
        if job.status != JobStatus.FAILED and not force:
            raise InvalidTransitionError(job_id, job.status, JobStatus.PENDING)

        new_id = self.create(
            job.owner_ref, job.source,
            label=job.label, context=context, retried_from=job_id,
        )
        if new_id is None:
            raise StorageError(f"Could not create retry job for {job_id}")
        return new_id

    def delete(self, kind: str = "failed", *, cleanup_processed: bool = False) -> int:
        """Delete failed jobs (``kind="failed"``) or every job (``kind="all"``)."""
        if kind not in ("failed", "all"):
            raise ValueError(f"Unknown delete kind: {kind!r}")
        status = JobStatus.FAILED if kind == "failed" else None
        deleted = 0
        for job in self._store.list_jobs(status=status, limit=None):
            if cleanup_processed and self._processed is not None:
                self._processed.clear_for_job(job.job_id)
            if self._packets is not None:
                self._packets.cleanup(job.job_id)
            if self._store.delete(job.job_id):
                deleted += 1
        logger.info("Jobs deleted", extra={"kind": kind, "count": deleted})
        return deleted

    def recover_stuck(self, timeout_hours: int | None = None, *, dry_run: bool = False) -> list[dict[str, Any]]:
        """Finish processing jobs that have made no progress within the timeout.

        A job whose context carries a ``job_status`` override is completed with
        that status; any other stuck job is failed with a timeout reason.
        """
        hours = timeout_hours if timeout_hours is not None else self._stuck_timeout_hours
        cutoff = utcnow(self._clock) - timedelta(hours=hours)
        recovered: list[dict[str, Any]] = []

        for job in self._store.list_jobs(status=JobStatus.PROCESSING, limit=None):
            began = job.started_at or job.created_at
            if began > cutoff:
                continue
            override = job.engine_context.get(JOB_STATUS_KEY)
            if override:
                try:
                    status, reason = parse_status(override)
                except ValueError:
                    status, reason = JobStatus.FAILED, f"Invalid job_status override: {override}"
                if not status.is_terminal:
                    status, reason = JobStatus.FAILED, f"Non-terminal job_status override: {override}"
                action = "override"
            else:
                status, reason = JobStatus.FAILED, f"Job timed out after {hours} hours in processing"
                action = "timeout"

            entry = {"job_id": job.job_id, "action": action, "status": status.value, "reason": reason}
            if not dry_run and not self.complete(job.job_id, status, reason):
                continue
            recovered.append(entry)

        logger.info("Stuck jobs recovered", extra={"count": len(recovered), "dry_run": dry_run})
        return recovered
