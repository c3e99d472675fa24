"""Pipeline schedules: manual, one-time, or recurring with a deterministic stagger."""

from __future__ import annotations

import logging
import time
import zlib

from taskline.core.exceptions import InvalidScheduleError, PipelineNotFoundError
from taskline.core.protocols import IPipelineCatalog, ITaskQueue
from taskline.core.types import Clock
from taskline.models.pipeline import ScheduleSettings
from taskline.orchestration.hooks import RUN_FLOW

logger = logging.getLogger(__name__)

MANUAL = "manual"
ONE_TIME = "one_time"

INTERVALS: dict[str, int] = {
    "every_5_minutes": 5 * 60,
    "hourly": 60 * 60,
    "every_2_hours": 2 * 60 * 60,
    "every_4_hours": 4 * 60 * 60,
    "qtrdaily": 6 * 60 * 60,
    "twicedaily": 12 * 60 * 60,
    "daily": 24 * 60 * 60,
    "weekly": 7 * 24 * 60 * 60,
}

MAX_STAGGER = 3600


def stagger_offset(pipeline_id: str, interval_seconds: int) -> int:
    """Spread pipelines sharing an interval; stable across restarts."""
    window = min(interval_seconds, MAX_STAGGER)
    if window <= 0:
        return 0
    return zlib.crc32(f"taskline_stagger_{pipeline_id}".encode("utf-8")) % window


class FlowScheduler:
    """Writes a pipeline's schedule to the queue and the catalog.

    Any existing ``run_flow`` entries for the pipeline are cancelled first,
    so rescheduling never leaves a duplicate behind.
    """

    def __init__(self, queue: ITaskQueue, pipelines: IPipelineCatalog, clock: Clock = time.time) -> None:
        self._queue = queue
        self._pipelines = pipelines
        self._clock = clock

    def schedule(
        self,
        pipeline_id: str,
        interval: str,
        *,
        timestamp: float | None = None,
        interval_seconds: int | None = None,
    ) -> ScheduleSettings:
        pipeline = self._pipelines.get_pipeline(pipeline_id)
        if pipeline is None:
            raise PipelineNotFoundError(f"Pipeline {pipeline_id} not found")

        now = self._clock()
        args = {"pipeline_id": pipeline_id}

        if interval == MANUAL:
            settings = ScheduleSettings(interval=MANUAL)
        elif interval == ONE_TIME:
            if timestamp is None:
                raise InvalidScheduleError("A one-time schedule needs a timestamp")
            if timestamp <= now:
                raise InvalidScheduleError("A one-time schedule must be in the future")
            settings = ScheduleSettings(interval=ONE_TIME, timestamp=timestamp)
        else:
            seconds = interval_seconds or INTERVALS.get(interval)
            if not seconds or seconds <= 0:
                raise InvalidScheduleError(f"Unknown schedule interval: {interval}")
            first_run = now + stagger_offset(pipeline_id, seconds)
            settings = ScheduleSettings(interval=interval, interval_seconds=seconds, first_run=first_run)

        cancelled = self._queue.cancel_all(RUN_FLOW, args)
        if settings.interval == ONE_TIME:
            self._queue.enqueue_at(settings.timestamp, RUN_FLOW, args)
        elif settings.interval != MANUAL:
            self._queue.enqueue_recurring(settings.first_run, settings.interval_seconds, RUN_FLOW, args)

        pipeline.scheduling = settings
        self._pipelines.save_pipeline(pipeline)
        logger.info(
            "Pipeline scheduled",
            extra={"pipeline_id": pipeline_id, "interval": settings.interval, "replaced": cancelled},
        )
        return settings

    def unschedule(self, pipeline_id: str) -> ScheduleSettings:
        return self.schedule(pipeline_id, MANUAL)

    def next_run(self, pipeline_id: str) -> float | None:
        runs = [t.run_at for t in self._queue.pending(RUN_FLOW) if t.args.get("pipeline_id") == pipeline_id]
        return min(runs) if runs else None
