"""DynamoDB backends for the job ledger, processed-items history and pipeline catalog."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Iterable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from taskline.core.exceptions import StorageError
from taskline.models.job import Job, JobSource, JobStatus
from taskline.models.pipeline import PipelineDefinition

logger = logging.getLogger(__name__)

JOBS_TABLE = "taskline-jobs"
PROCESSED_ITEMS_TABLE = "taskline-processed-items"
PIPELINES_TABLE = "taskline-pipelines"


def _resource(region: str, endpoint_url: str | None):
    kwargs: dict = {"region_name": region}
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.resource("dynamodb", **kwargs)


def _is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class _DynamoDBTableMixin:
    _table_suffix: str
    _ddb: Any

    def _table(self, base: str):
        return self._ddb.Table(f"{base}{self._table_suffix}")


class DynamoDBJobStore(_DynamoDBTableMixin):
    """Production IJobStore. One item per job, status changes are conditional writes."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._table_suffix = table_suffix
        self._ddb = _resource(region, endpoint_url)

    @staticmethod
    def _to_item(job: Job) -> dict[str, Any]:
        item: dict[str, Any] = {
            "PK": f"JOB#{job.job_id}",
            "SK": "JOB",
            "job_id": job.job_id,
            "status": job.status.value,
            "source": job.source.value,
            "owner_ref": job.owner_ref,
            "label": job.label,
            "engine_context": json.dumps(job.engine_context),
            "reason": job.reason,
            "created_at": job.created_at.isoformat(),
        }
        if job.retried_from:
            item["retried_from"] = job.retried_from
        if job.started_at:
            item["started_at"] = job.started_at.isoformat()
        if job.completed_at:
            item["completed_at"] = job.completed_at.isoformat()
        return item

    @staticmethod
    def _from_item(item: dict[str, Any]) -> Job:
        return Job(
            job_id=item["job_id"],
            status=JobStatus(item["status"]),
            source=JobSource(item["source"]),
            owner_ref=item.get("owner_ref", ""),
            label=item.get("label", ""),
            engine_context=json.loads(item.get("engine_context") or "{}"),
            reason=item.get("reason", ""),
            retried_from=item.get("retried_from"),
            created_at=datetime.fromisoformat(item["created_at"]),
            started_at=datetime.fromisoformat(item["started_at"]) if item.get("started_at") else None,
            completed_at=datetime.fromisoformat(item["completed_at"]) if item.get("completed_at") else None,
        )

    def insert(self, job: Job) -> None:
        try:
            self._table(JOBS_TABLE).put_item(
                Item=self._to_item(job),
                ConditionExpression="attribute_not_exists(PK)",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not insert job {job.job_id}: {exc}") from exc

    def get(self, job_id: str) -> Job | None:
        try:
            resp = self._table(JOBS_TABLE).get_item(Key={"PK": f"JOB#{job_id}", "SK": "JOB"})
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not read job {job_id}: {exc}") from exc
        item = resp.get("Item")
        return self._from_item(item) if item else None

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        allowed_from: Iterable[JobStatus],
        reason: str = "",
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        sources = sorted(s.value for s in allowed_from)
        if not sources:
            return False
        placeholders = [f":from{i}" for i in range(len(sources))]
        values: dict[str, Any] = {":status": status.value, ":reason": reason}
        values.update(dict(zip(placeholders, sources)))
        sets = ["#status = :status", "#reason = :reason"]
        if started_at is not None:
            sets.append("started_at = :started")
            values[":started"] = started_at.isoformat()
        if completed_at is not None:
            sets.append("completed_at = :completed")
            values[":completed"] = completed_at.isoformat()
        try:
            self._table(JOBS_TABLE).update_item(
                Key={"PK": f"JOB#{job_id}", "SK": "JOB"},
                UpdateExpression="SET " + ", ".join(sets),
                ConditionExpression=f"attribute_exists(PK) AND #status IN ({', '.join(placeholders)})",
                ExpressionAttributeNames={"#status": "status", "#reason": "reason"},
                ExpressionAttributeValues=values,
            )
            return True
        except ClientError as exc:
            if _is_condition_failure(exc):
                return False
            raise StorageError(f"Could not move job {job_id} to {status}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not move job {job_id} to {status}: {exc}") from exc

    def put_context(self, job_id: str, context: dict[str, Any]) -> None:
        try:
            self._table(JOBS_TABLE).update_item(
                Key={"PK": f"JOB#{job_id}", "SK": "JOB"},
                UpdateExpression="SET engine_context = :ctx",
                ConditionExpression="attribute_exists(PK)",
                ExpressionAttributeValues={":ctx": json.dumps(context)},
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                return
            raise StorageError(f"Could not write context for job {job_id}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not write context for job {job_id}: {exc}") from exc

    def list_jobs(
        self,
        *,
        source: JobSource | None = None,
        status: JobStatus | None = None,
        limit: int | None = 50,
    ) -> list[Job]:
        filters = ["SK = :sk"]
        values: dict[str, Any] = {":sk": "JOB"}
        names: dict[str, str] = {}
        if source is not None:
            filters.append("#source = :source")
            values[":source"] = source.value
            names["#source"] = "source"
        if status is not None:
            filters.append("#status = :status")
            values[":status"] = status.value
            names["#status"] = "status"
        kwargs: dict[str, Any] = {
            "FilterExpression": " AND ".join(filters),
            "ExpressionAttributeValues": values,
        }
        if names:
            kwargs["ExpressionAttributeNames"] = names
        items: list[dict[str, Any]] = []
        try:
            tbl = self._table(JOBS_TABLE)
            while True:
                resp = tbl.scan(**kwargs)
                items.extend(resp.get("Items", []))
                if "LastEvaluatedKey" not in resp:
                    break
                kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not list jobs: {exc}") from exc
        jobs = sorted((self._from_item(i) for i in items), key=lambda j: j.created_at, reverse=True)
        return jobs[:limit] if limit is not None else jobs

    def delete(self, job_id: str) -> bool:
        try:
            resp = self._table(JOBS_TABLE).delete_item(
                Key={"PK": f"JOB#{job_id}", "SK": "JOB"},
                ReturnValues="ALL_OLD",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not delete job {job_id}: {exc}") from exc
        return bool(resp.get("Attributes"))


class DynamoDBProcessedItems(_DynamoDBTableMixin):
    """Production IProcessedItems: PK=STEP#<step_id>, SK=ITEM#<item_id>."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._table_suffix = table_suffix
        self._ddb = _resource(region, endpoint_url)

    def has_processed_items(self, step_id: str) -> bool:
        try:
            resp = self._table(PROCESSED_ITEMS_TABLE).query(
                KeyConditionExpression="PK = :pk",
                ExpressionAttributeValues={":pk": f"STEP#{step_id}"},
                Limit=1,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not query processed items for {step_id}: {exc}") from exc
        return bool(resp.get("Items"))

    def is_processed(self, step_id: str, item_id: str) -> bool:
        try:
            resp = self._table(PROCESSED_ITEMS_TABLE).get_item(
                Key={"PK": f"STEP#{step_id}", "SK": f"ITEM#{item_id}"},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not read processed item {item_id}: {exc}") from exc
        return "Item" in resp

    def mark_processed(self, step_id: str, item_id: str, job_id: str) -> None:
        try:
            self._table(PROCESSED_ITEMS_TABLE).put_item(Item={
                "PK": f"STEP#{step_id}",
                "SK": f"ITEM#{item_id}",
                "job_id": job_id,
            })
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not mark item {item_id} processed: {exc}") from exc

    def clear_for_job(self, job_id: str) -> int:
        tbl = self._table(PROCESSED_ITEMS_TABLE)
        kwargs: dict[str, Any] = {
            "FilterExpression": "job_id = :job",
            "ExpressionAttributeValues": {":job": job_id},
        }
        removed = 0
        try:
            while True:
                resp = tbl.scan(**kwargs)
                for item in resp.get("Items", []):
                    tbl.delete_item(Key={"PK": item["PK"], "SK": item["SK"]})
                    removed += 1
                if "LastEvaluatedKey" not in resp:
                    break
                kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not clear processed items for job {job_id}: {exc}") from exc
        return removed


class DynamoDBPipelineCatalog(_DynamoDBTableMixin):
    """Production IPipelineCatalog with optional Redis read-through cache."""

    CACHE_TTL = 300  # 5 minutes

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None, cache: Any = None) -> None:
        self._table_suffix = table_suffix
        self._cache = cache
        self._ddb = _resource(region, endpoint_url)

    def get_pipeline(self, pipeline_id: str) -> PipelineDefinition | None:
        cache_key = f"pipeline:{pipeline_id}"
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return PipelineDefinition.model_validate_json(cached)

        try:
            resp = self._table(PIPELINES_TABLE).get_item(
                Key={"PK": f"PIPELINE#{pipeline_id}", "SK": "DEFINITION"},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not read pipeline {pipeline_id}: {exc}") from exc
        item = resp.get("Item")
        if item is None:
            return None
        pipeline = PipelineDefinition.model_validate_json(item["definition"])

        if self._cache is not None:
            self._cache.setex(cache_key, self.CACHE_TTL, item["definition"])
        return pipeline

    def save_pipeline(self, pipeline: PipelineDefinition) -> None:
        try:
            self._table(PIPELINES_TABLE).put_item(Item={
                "PK": f"PIPELINE#{pipeline.pipeline_id}",
                "SK": "DEFINITION",
                "definition": pipeline.model_dump_json(),
            })
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not save pipeline {pipeline.pipeline_id}: {exc}") from exc
        if self._cache is not None:
            self._cache.delete(f"pipeline:{pipeline.pipeline_id}")

    def list_pipelines(self) -> list[PipelineDefinition]:
        try:
            resp = self._table(PIPELINES_TABLE).scan(
                FilterExpression="SK = :sk",
                ExpressionAttributeValues={":sk": "DEFINITION"},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Could not list pipelines: {exc}") from exc
        pipelines = [PipelineDefinition.model_validate_json(i["definition"]) for i in resp.get("Items", [])]
        return sorted(pipelines, key=lambda p: p.pipeline_id)
