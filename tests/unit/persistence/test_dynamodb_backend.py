"""Unit tests for the DynamoDB job ledger, processed-items and catalog stores using moto."""

from __future__ import annotations

from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

from taskline.models.job import Job, JobSource, JobStatus
from taskline.models.pipeline import PipelineDefinition, PipelineStep
from taskline.persistence.dynamodb_backend import (
    JOBS_TABLE,
    PIPELINES_TABLE,
    PROCESSED_ITEMS_TABLE,
    DynamoDBJobStore,
    DynamoDBPipelineCatalog,
    DynamoDBProcessedItems,
)
from taskline.persistence.memory_backend import MemoryCacheBackend

TABLE_SUFFIX = "-test"
REGION = "us-east-1"

# ---------- helpers ----------

def _create_table(client, name: str, pk: str = "PK", sk: str = "SK"):
    """Create a DynamoDB table with PK/SK key schema."""
    client.create_table(
        TableName=name,
        KeySchema=[
            {"AttributeName": pk, "KeyType": "HASH"},
            {"AttributeName": sk, "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": pk, "AttributeType": "S"},
            {"AttributeName": sk, "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )


def _job(job_id: str, source: JobSource = JobSource.PIPELINE, minute: int = 0, **fields) -> Job:
    return Job(
        job_id=job_id,
        source=source,
        owner_ref=fields.pop("owner_ref", "pipe-1"),
        created_at=datetime(2026, 1, 1, 12, minute, tzinfo=timezone.utc),
        **fields,
    )


# ---------- fixtures ----------

@pytest.fixture
def aws():
    with mock_aws():
        ddb = boto3.resource("dynamodb", region_name=REGION)
        client = boto3.client("dynamodb", region_name=REGION)
        for name in (JOBS_TABLE, PROCESSED_ITEMS_TABLE, PIPELINES_TABLE):
            _create_table(client, f"{name}{TABLE_SUFFIX}")
        yield ddb


@pytest.fixture
def jobs(aws):
    return DynamoDBJobStore(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def processed(aws):
    return DynamoDBProcessedItems(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def cached_catalog(aws):
    cache = MemoryCacheBackend()
    return DynamoDBPipelineCatalog(table_suffix=TABLE_SUFFIX, region=REGION, cache=cache), cache


# ---------- job store ----------

class TestJobStoreInsertAndGet:
    def test_round_trips_job(self, jobs):
        jobs.insert(_job("j1", label="Nightly", engine_context={"nested": {"a": [1, 2]}}))
        job = jobs.get("j1")
        assert job.status == JobStatus.PENDING
        assert job.label == "Nightly"
        assert job.engine_context == {"nested": {"a": [1, 2]}}
        assert job.created_at == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_stores_pk_sk_layout(self, jobs, aws):
        jobs.insert(_job("j1"))
        item = aws.Table(f"{JOBS_TABLE}{TABLE_SUFFIX}").get_item(Key={"PK": "JOB#j1", "SK": "JOB"})["Item"]
        assert item["status"] == "pending"
        assert item["source"] == "pipeline"

    def test_get_missing_returns_none(self, jobs):
        assert jobs.get("ghost") is None


class TestJobStoreTransition:
    def test_moves_when_current_status_allowed(self, jobs):
        jobs.insert(_job("j1"))
        started = datetime(2026, 1, 1, 12, 5, tzinfo=timezone.utc)
        assert jobs.transition("j1", JobStatus.PROCESSING, allowed_from={JobStatus.PENDING}, started_at=started)
        job = jobs.get("j1")
        assert job.status == JobStatus.PROCESSING
        assert job.started_at == started

    def test_refuses_when_current_status_not_allowed(self, jobs):
        jobs.insert(_job("j1", status=JobStatus.COMPLETED))
        assert not jobs.transition("j1", JobStatus.FAILED, allowed_from={JobStatus.PROCESSING}, reason="late")
        job = jobs.get("j1")
        assert job.status == JobStatus.COMPLETED
        assert job.reason == ""

    def test_refuses_missing_job(self, jobs):
        assert not jobs.transition("ghost", JobStatus.PROCESSING, allowed_from={JobStatus.PENDING})

    def test_records_reason_and_completed_at(self, jobs):
        jobs.insert(_job("j1", status=JobStatus.PROCESSING))
        done = datetime(2026, 1, 1, 13, 0, tzinfo=timezone.utc)
        jobs.transition(
            "j1", JobStatus.FAILED,
            allowed_from={JobStatus.PROCESSING, JobStatus.WAITING},
            reason="boom", completed_at=done,
        )
        job = jobs.get("j1")
        assert job.reason == "boom"
        assert job.completed_at == done


class TestJobStoreContextListDelete:
    def test_put_context_replaces_document(self, jobs):
        jobs.insert(_job("j1", engine_context={"old": True}))
        jobs.put_context("j1", {"new": 1})
        assert jobs.get("j1").engine_context == {"new": 1}

    def test_put_context_on_missing_job_is_noop(self, jobs):
        jobs.put_context("ghost", {"a": 1})
        assert jobs.get("ghost") is None

    def test_list_filters_and_sorts_newest_first(self, jobs):
        jobs.insert(_job("old", minute=1))
        jobs.insert(_job("new", minute=2))
        jobs.insert(_job("sys", source=JobSource.SYSTEM, minute=3))
        jobs.insert(_job("done", minute=4, status=JobStatus.COMPLETED))
        assert [j.job_id for j in jobs.list_jobs(source=JobSource.PIPELINE, status=JobStatus.PENDING)] == [
            "new", "old",
        ]
        assert [j.job_id for j in jobs.list_jobs(limit=2)] == ["done", "sys"]

    def test_delete(self, jobs):
        jobs.insert(_job("j1"))
        assert jobs.delete("j1") is True
        assert jobs.delete("j1") is False


# ---------- processed items ----------

class TestProcessedItems:
    def test_marks_and_checks_items(self, processed):
        assert not processed.has_processed_items("fetch-1")
        processed.mark_processed("fetch-1", "guid-1", "j1")
        assert processed.has_processed_items("fetch-1")
        assert processed.is_processed("fetch-1", "guid-1")
        assert not processed.is_processed("fetch-2", "guid-1")

    def test_clear_for_job(self, processed):
        processed.mark_processed("fetch-1", "guid-1", "j1")
        processed.mark_processed("fetch-1", "guid-2", "j2")
        assert processed.clear_for_job("j1") == 1
        assert not processed.is_processed("fetch-1", "guid-1")
        assert processed.is_processed("fetch-1", "guid-2")


# ---------- pipeline catalog ----------

class TestPipelineCatalog:
    def test_save_and_get(self, cached_catalog):
        catalog, _ = cached_catalog
        pipeline = PipelineDefinition(
            pipeline_id="p1", name="Feed",
            steps=[PipelineStep(step_id="fetch-1", step_type="fetch", execution_order=0, settings={"url": "u"})],
        )
        catalog.save_pipeline(pipeline)
        assert catalog.get_pipeline("p1") == pipeline

    def test_unknown_pipeline_returns_none(self, cached_catalog):
        catalog, _ = cached_catalog
        assert catalog.get_pipeline("ghost") is None

    def test_caches_result_and_invalidates_on_save(self, cached_catalog):
        catalog, cache = cached_catalog
        catalog.save_pipeline(PipelineDefinition(pipeline_id="p1", name="v1"))
        catalog.get_pipeline("p1")
        assert "v1" in cache.get("pipeline:p1")

        catalog.save_pipeline(PipelineDefinition(pipeline_id="p1", name="v2"))
        assert cache.get("pipeline:p1") is None
        assert catalog.get_pipeline("p1").name == "v2"

    def test_list_pipelines_sorted(self, cached_catalog):
        catalog, _ = cached_catalog
        for pipeline_id in ("b", "a"):
            catalog.save_pipeline(PipelineDefinition(pipeline_id=pipeline_id))
        assert [p.pipeline_id for p in catalog.list_pipelines()] == ["a", "b"]
