"""Unit tests for StepRouter driven through the in-memory queue."""

from __future__ import annotations

import pytest

from taskline.core.exceptions import PipelineNotFoundError
from taskline.models.job import JobStatus
from taskline.orchestration.hooks import EXECUTE_STEP
from taskline.orchestration.router import RouteOutcome
from tests.fakes.steps import (
    FailingStep,
    FetchStep,
    NoNewItemsStep,
    NotAListStep,
    OverrideStep,
    PublishStep,
    RaisingStep,
    UpperStep,
)


@pytest.fixture
def fetch():
    return FetchStep(items=["a", "b"])


@pytest.fixture
def publish(content_store):
    return PublishStep(content_store)


@pytest.fixture
def engine(make_engine, fetch, publish):
    return make_engine(steps={
        "fetch": fetch,
        "transform": UpperStep(),
        "publish": publish,
        "failing": FailingStep(),
        "raising": RaisingStep(),
        "not_a_list": NotAListStep(),
        "quiet": NoNewItemsStep(),
        "cancel": OverrideStep("cancelled"),
        "fail_override": OverrideStep("failed - bad input"),
    })


def _run(engine, pipeline_id: str) -> str:
    result = engine.router.run_flow(pipeline_id)
    engine.worker.drain()
    return result.job_id


class TestRunFlow:
    def test_schedules_first_enabled_step(self, engine, add_pipeline, persistence):
        add_pipeline("p1", ("fetch-1", "fetch"), ("publish-1", "publish"))
        result = engine.router.run_flow("p1")
        assert result.outcome == RouteOutcome.NEXT_STEP_SCHEDULED
        assert result.next_step_id == "fetch-1"
        queued = persistence.queue.pending(EXECUTE_STEP)
        assert [t.args for t in queued] == [{"job_id": result.job_id, "step_id": "fetch-1"}]

    def test_snapshots_pipeline_configuration(self, engine, add_pipeline):
        add_pipeline("p1", ("fetch-1", "fetch"), name="Feed import")
        job_id = engine.router.run_flow("p1").job_id
        ctx = engine.contexts.get(job_id)
        assert ctx["pipeline"] == {"pipeline_id": "p1", "name": "Feed import"}
        assert set(ctx["flow_config"]) == {"fetch-1"}
        assert engine.ledger.get(job_id).status == JobStatus.PROCESSING

    def test_unknown_pipeline_raises(self, engine):
        with pytest.raises(PipelineNotFoundError):
            engine.router.run_flow("ghost")

    def test_pipeline_without_steps_fails_job(self, engine, add_pipeline):
        add_pipeline("empty")
        result = engine.router.run_flow("empty")
        assert result.outcome == RouteOutcome.FAILED
        assert engine.ledger.get(result.job_id).reason == "Pipeline empty has no enabled steps"


class TestSuccessPath:
    def test_runs_all_steps_in_order_and_completes(self, engine, add_pipeline, publish, persistence):
        add_pipeline("p1", ("fetch-1", "fetch"), ("upper-1", "transform"), ("publish-1", "publish"))
        job_id = _run(engine, "p1")
        assert engine.ledger.get(job_id).status == JobStatus.COMPLETED
        assert publish.published == ["A", "B"]
        assert persistence.packets.load(job_id) == []

    def test_disabled_steps_are_skipped(self, engine, add_pipeline, persistence, publish):
        pipeline = add_pipeline("p1", ("fetch-1", "fetch"), ("upper-1", "transform"), ("publish-1", "publish"))
        pipeline.steps[1].enabled = False
        persistence.pipelines.save_pipeline(pipeline)
        _run(engine, "p1")
        assert publish.published == ["a", "b"]


class TestFailurePath:
    def test_fetch_with_history_and_nothing_new_is_completed_no_items(self, engine, add_pipeline):
        add_pipeline("p1", ("fetch-1", "fetch"), ("publish-1", "publish"))
        _run(engine, "p1")
        second = _run(engine, "p1")
        assert engine.ledger.get(second).status == JobStatus.COMPLETED_NO_ITEMS

    def test_fetch_without_history_returning_nothing_fails(self, make_engine, add_pipeline):
        engine = make_engine(steps={"fetch": FetchStep(items=[])})
        add_pipeline("p1", ("fetch-1", "fetch"))
        job = engine.ledger.get(_run(engine, "p1"))
        assert job.status == JobStatus.FAILED
        assert job.reason == "Step fetch-1 returned no results"

    def test_explicit_no_new_items_packet(self, engine, add_pipeline):
        add_pipeline("p1", ("quiet-1", "quiet"), ("publish-1", "publish"))
        assert engine.ledger.get(_run(engine, "p1")).status == JobStatus.COMPLETED_NO_ITEMS

    def test_failure_packet_fails_with_reason(self, engine, add_pipeline):
        add_pipeline("p1", ("bad-1", "failing"))
        job = engine.ledger.get(_run(engine, "p1"))
        assert job.status == JobStatus.FAILED
        assert job.reason == "Step bad-1 failed: upstream said no"

    def test_step_exception_is_caught_and_recorded(self, engine, add_pipeline):
        add_pipeline("p1", ("boom-1", "raising"))
        result = engine.router.run_flow("p1")
        routed = engine.router.execute_step(result.job_id, "boom-1")
        assert routed.outcome == RouteOutcome.FAILED
        assert engine.ledger.get(result.job_id).reason == "Step execution exception: kaboom"

    def test_unknown_step_type_fails_immediately(self, engine, add_pipeline):
        add_pipeline("p1", ("mystery-1", "mystery"))
        job = engine.ledger.get(_run(engine, "p1"))
        assert job.status == JobStatus.FAILED
        assert job.reason == "Step type 'mystery' not found in registry"

    def test_non_list_result_fails(self, engine, add_pipeline):
        add_pipeline("p1", ("odd-1", "not_a_list"))
        job = engine.ledger.get(_run(engine, "p1"))
        assert job.status == JobStatus.FAILED
        assert "instead of a list" in job.reason

    def test_missing_step_config_fails(self, engine, add_pipeline):
        add_pipeline("p1", ("fetch-1", "fetch"))
        job_id = engine.router.run_flow("p1").job_id
        result = engine.router.execute_step(job_id, "not-in-pipeline")
        assert result.outcome == RouteOutcome.FAILED
        assert engine.ledger.get(job_id).reason == "Step not-in-pipeline has no configuration"


class TestOverrides:
    def test_terminal_override_completes_job(self, engine, add_pipeline, publish):
        add_pipeline("p1", ("cancel-1", "cancel"), ("publish-1", "publish"))
        job_id = _run(engine, "p1")
        assert engine.ledger.get(job_id).status == JobStatus.CANCELLED
        assert publish.published == []

    def test_compound_override_records_reason(self, engine, add_pipeline):
        add_pipeline("p1", ("stop-1", "fail_override"))
        job = engine.ledger.get(_run(engine, "p1"))
        assert job.status == JobStatus.FAILED
        assert job.reason == "bad input"

    def test_waiting_override_parks_and_resume_continues(self, engine, add_pipeline, publish, persistence):
        add_pipeline("p1", ("fetch-1", "fetch"), ("gate-1", "gate"), ("publish-1", "publish"))
        job_id = _run(engine, "p1")
        job = engine.ledger.get(job_id)
        assert job.status == JobStatus.WAITING
        assert job.engine_context["parked_step"] == "gate-1"
        assert publish.published == []

        result = engine.router.resume(job_id, {"approved_by": "ops"})
        assert result.next_step_id == "publish-1"
        engine.worker.drain()
        assert engine.ledger.get(job_id).status == JobStatus.COMPLETED
        assert publish.published == ["a", "b"]
        ctx = engine.contexts.get(job_id)
        assert "job_status" not in ctx
        assert ctx["resume_data"] == {"approved_by": "ops"}

    def test_resume_of_last_step_completes(self, engine, add_pipeline):
        add_pipeline("p1", ("gate-1", "gate"))
        job_id = _run(engine, "p1")
        result = engine.router.resume(job_id)
        assert result.outcome == RouteOutcome.COMPLETED
        assert engine.ledger.get(job_id).status == JobStatus.COMPLETED


class TestDuplicateDelivery:
    def test_delivery_after_completion_is_skipped(self, engine, add_pipeline, fetch):
        add_pipeline("p1", ("fetch-1", "fetch"))
        job_id = _run(engine, "p1")
        calls = fetch.calls
        result = engine.router.execute_step(job_id, "fetch-1")
        assert result.outcome == RouteOutcome.SKIPPED
        assert fetch.calls == calls
        assert engine.ledger.get(job_id).status == JobStatus.COMPLETED

    def test_run_flow_for_running_job_is_skipped(self, engine, add_pipeline):
        add_pipeline("p1", ("fetch-1", "fetch"))
        job_id = engine.router.run_flow("p1").job_id
        assert engine.router.run_flow("p1", job_id=job_id).outcome == RouteOutcome.SKIPPED

    def test_repeated_step_on_processing_job_makes_same_decision(self, engine, add_pipeline, persistence):
        add_pipeline("p1", ("fetch-1", "fetch"), ("upper-1", "transform"), ("publish-1", "publish"))
        job_id = engine.router.run_flow("p1").job_id
        engine.router.execute_step(job_id, "fetch-1")
        inbound = persistence.packets.load(job_id)
        before = engine.contexts.get(job_id)

        first = engine.router.execute_step(job_id, "upper-1")
        after_first = engine.contexts.get(job_id)
        persistence.packets.store(job_id, inbound)
        second = engine.router.execute_step(job_id, "upper-1")
        after_second = engine.contexts.get(job_id)

        assert first.outcome == second.outcome == RouteOutcome.NEXT_STEP_SCHEDULED
        assert first.next_step_id == second.next_step_id == "publish-1"
        assert after_first == after_second
        assert {k: after_second[k] for k in before} == before
        assert engine.ledger.get(job_id).status == JobStatus.PROCESSING
