"""S3 backend implementing IPacketStore."""

from __future__ import annotations

import json
from typing import Any

import boto3
from botocore.exceptions import ClientError

from taskline.core.exceptions import StorageError


class S3PacketStore:
    """Production IPacketStore: one JSON object per job under ``{prefix}/{job_id}/``."""

    def __init__(self, bucket: str, region: str = "us-east-1",
                 endpoint_url: str | None = None, prefix: str = "jobs") -> None:
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._client = boto3.client("s3", **kwargs)

    def _key(self, job_id: str) -> str:
        return f"{self._prefix}/{job_id}/packets.json"

    def store(self, job_id: str, packets: list[dict[str, Any]]) -> None:
        key = self._key(job_id)
        try:
            self._client.put_object(
                Bucket=self._bucket, Key=key,
                Body=json.dumps(packets).encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as exc:
            raise StorageError(f"S3 write failed for {key!r}: {exc}") from exc

    def load(self, job_id: str) -> list[dict[str, Any]]:
        key = self._key(job_id)
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return []
            raise StorageError(f"S3 read failed for {key!r}: {exc}") from exc
        return json.loads(resp["Body"].read())

    def cleanup(self, job_id: str) -> None:
        key = self._key(job_id)
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            raise StorageError(f"S3 delete failed for {key!r}: {exc}") from exc
