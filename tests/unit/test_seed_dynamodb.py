"""Tests for the DynamoDB/S3 seed script."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import boto3
import pytest
from moto import mock_aws

from taskline.persistence.dynamodb_backend import DynamoDBPipelineCatalog

# Make scripts/ importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent / "scripts"))

from seed_dynamodb import (  # noqa: E402
    SAMPLE_PIPELINE,
    create_bucket,
    create_tables,
    load_pipelines,
    seed_pipelines,
)


@pytest.fixture
def ddb():
    with mock_aws():
        yield boto3.resource("dynamodb", region_name="us-east-1")


class TestCreateTables:
    def test_creates_all_three_tables(self, ddb):
        create_tables(ddb, suffix="-test")
        tables = boto3.client("dynamodb", region_name="us-east-1").list_tables()["TableNames"]
        assert sorted(tables) == [
            "taskline-jobs-test",
            "taskline-pipelines-test",
            "taskline-processed-items-test",
        ]

    def test_idempotent_skips_existing(self, ddb):
        create_tables(ddb, suffix="-test")
        create_tables(ddb, suffix="-test")  # should not raise
        client = boto3.client("dynamodb", region_name="us-east-1")
        assert len(client.list_tables()["TableNames"]) == 3


class TestCreateBucket:
    def test_creates_bucket_once(self, ddb):
        s3 = boto3.client("s3", region_name="us-east-1")
        create_bucket(s3, "taskline-packets-test")
        create_bucket(s3, "taskline-packets-test")
        assert [b["Name"] for b in s3.list_buckets()["Buckets"]] == ["taskline-packets-test"]


class TestSeedPipelines:
    def test_seeded_sample_is_readable_by_catalog(self, ddb):
        create_tables(ddb, suffix="-test")
        assert seed_pipelines(ddb, [SAMPLE_PIPELINE], suffix="-test") == 1
        catalog = DynamoDBPipelineCatalog(table_suffix="-test", region="us-east-1")
        pipeline = catalog.get_pipeline("sample-ingest")
        assert [s.step_type for s in pipeline.steps] == ["fetch", "transform", "publish"]


class TestLoadPipelines:
    def test_defaults_to_sample(self):
        assert load_pipelines(None) == [SAMPLE_PIPELINE]

    def test_reads_wrapped_and_bare_lists(self, tmp_path):
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text(json.dumps({"pipelines": [{"pipeline_id": "a"}]}))
        bare = tmp_path / "bare.json"
        bare.write_text(json.dumps([{"pipeline_id": "b"}]))
        assert load_pipelines(wrapped) == [{"pipeline_id": "a"}]
        assert load_pipelines(bare) == [{"pipeline_id": "b"}]
