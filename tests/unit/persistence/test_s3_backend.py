"""Unit tests for S3PacketStore using moto."""

from __future__ import annotations

import json

import boto3
import pytest
from moto import mock_aws

from taskline.core.exceptions import StorageError
from taskline.persistence.s3_backend import S3PacketStore

BUCKET = "test-taskline-packets"


@pytest.fixture
def s3_client():
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def packets(s3_client):
    return S3PacketStore(bucket=BUCKET, region="us-east-1", prefix="jobs/")


class TestStore:
    def test_writes_json_under_job_prefix(self, packets, s3_client):
        packets.store("j1", [{"data": {"item": "a"}}])
        body = s3_client.get_object(Bucket=BUCKET, Key="jobs/j1/packets.json")["Body"].read()
        assert json.loads(body) == [{"data": {"item": "a"}}]

    def test_overwrites_previous_packets(self, packets):
        packets.store("j1", [{"n": 1}])
        packets.store("j1", [{"n": 2}])
        assert packets.load("j1") == [{"n": 2}]


class TestLoad:
    def test_missing_packets_load_as_empty(self, packets):
        assert packets.load("never-stored") == []

    def test_missing_bucket_raises_storage_error(self, s3_client):
        store = S3PacketStore(bucket="no-such-bucket", region="us-east-1")
        with pytest.raises(StorageError):
            store.store("j1", [])


class TestCleanup:
    def test_removes_packets(self, packets):
        packets.store("j1", [{"n": 1}])
        packets.cleanup("j1")
        assert packets.load("j1") == []

    def test_cleanup_of_missing_job_is_noop(self, packets):
        packets.cleanup("never-stored")  # should not raise
