"""Unit tests for engine wiring and job retry."""

from __future__ import annotations

import pytest

from taskline.core.exceptions import InvalidTransitionError
from taskline.models.job import JobSource, JobStatus
from taskline.orchestration.engine import create_engine
from tests.fakes.steps import EchoTask, FetchStep


class TestCreateEngine:
    def test_defaults_to_memory_backend(self):
        engine = create_engine()
        assert engine.settings.backend == "memory"
        assert engine.steps.types == ["gate"]
        assert engine.hooks.hooks == ["execute_step", "handle_task", "process_batch", "run_flow"]

    def test_registers_supplied_steps_and_tasks(self, make_engine):
        engine = make_engine(steps={"fetch": FetchStep()}, tasks=[EchoTask()])
        assert engine.steps.types == ["fetch", "gate"]
        assert engine.tasks.types == ["echo"]

    def test_effect_handlers_include_content_store_defaults(self, make_engine):
        engine = make_engine(effect_handlers={"email_sent": lambda effect: None})
        assert "attribute_set" in engine.effects.types
        assert "email_sent" in engine.effects.types


class TestRetryJob:
    def test_retry_pipeline_job_runs_a_fresh_flow(self, make_engine, add_pipeline):
        step = FetchStep(items=[])
        engine = make_engine(steps={"fetch": step})
        add_pipeline("p1", ("fetch-1", "fetch"))
        first = engine.router.run_flow("p1", initial_data={"webhook_trigger": {"payload": 1}}).job_id
        engine.worker.drain()
        assert engine.ledger.get(first).status == JobStatus.FAILED

        step.items = ["a"]
        retried = engine.retry_job(first)
        engine.worker.drain()
        job = engine.ledger.get(retried)
        assert job.retried_from == first
        assert job.status == JobStatus.COMPLETED
        assert job.engine_context["webhook_trigger"] == {"payload": 1}

    def test_retry_system_job_keeps_params(self, make_engine):
        echo = EchoTask()
        engine = make_engine(tasks=[echo])
        job_id = engine.runner.schedule_task("echo", {"n": 7}, context={"by": "ops"})
        engine.ledger.fail(job_id, "operator abort")

        retried = engine.retry_job(job_id)
        engine.worker.drain()
        job = engine.ledger.get(retried)
        assert job.status == JobStatus.COMPLETED
        assert job.engine_context["context"] == {"by": "ops"}
        assert echo.seen == [{"n": 7}]

    def test_completed_job_needs_force(self, make_engine, add_pipeline):
        engine = make_engine()
        add_pipeline("p1", ("gate-1", "gate"))
        job_id = engine.router.run_flow("p1").job_id
        engine.worker.drain()
        engine.router.resume(job_id)
        with pytest.raises(InvalidTransitionError):
            engine.retry_job(job_id)
        assert engine.retry_job(job_id, force=True)

    def test_batch_parent_cannot_be_retried(self, make_engine):
        engine = make_engine(tasks=[EchoTask()])
        receipt = engine.batches.schedule_batch("echo", [{"n": i} for i in range(20)])
        engine.ledger.fail(receipt.batch_job_id, "gave up")
        with pytest.raises(InvalidTransitionError):
            engine.retry_job(receipt.batch_job_id)
        assert engine.ledger.list(source=JobSource.BATCH_PARENT, limit=None)[0].status == JobStatus.FAILED
