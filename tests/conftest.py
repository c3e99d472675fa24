"""Shared fixtures: an engine wired to in-memory backends and a fake clock."""

from __future__ import annotations

import pytest

from taskline.core.config import AppSettings
from taskline.models.pipeline import PipelineDefinition, PipelineStep
from taskline.orchestration.engine import create_engine
from taskline.persistence import create_memory_persistence
from tests.fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return AppSettings()


@pytest.fixture
def persistence(clock):
    return create_memory_persistence(clock=clock)


@pytest.fixture
def content_store(persistence):
    return persistence.content_store


@pytest.fixture
def make_engine(settings, persistence, clock):
    def _make(steps=None, tasks=(), **kwargs):
        return create_engine(settings, persistence, steps=steps, tasks=tasks, clock=clock, **kwargs)
    return _make


@pytest.fixture
def add_pipeline(persistence):
    """Register a pipeline whose steps are ``(step_id, step_type)`` pairs, in order."""
    def _add(pipeline_id: str, *steps: tuple[str, str], **fields) -> PipelineDefinition:
        pipeline = PipelineDefinition(
            pipeline_id=pipeline_id,
            name=fields.pop("name", pipeline_id),
            steps=[
                PipelineStep(step_id=step_id, step_type=step_type, execution_order=order)
                for order, (step_id, step_type) in enumerate(steps)
            ],
            **fields,
        )
        persistence.pipelines.save_pipeline(pipeline)
        return pipeline
    return _add
