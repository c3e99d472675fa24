"""Tests for the base step and the built-in gate step."""

from __future__ import annotations

from taskline.core.config import AppSettings
from taskline.models.job import JobStatus
from taskline.steps.base import GateStep


class TestGateStep:
    def test_gate_parks_job(self, make_engine, add_pipeline):
        add_pipeline("p1", ("gate-1", "gate"))
        engine = make_engine()
        job_id = engine.router.run_flow("p1").job_id
        engine.worker.drain()
        assert engine.ledger.get(job_id).status == JobStatus.WAITING

    def test_health_check(self):
        step = GateStep(settings=AppSettings(environment="uat"))
        assert step.health_check() == {
            "step": "GateStep", "step_type": "gate", "environment": "uat",
        }
