"""Create taskline DynamoDB tables and the S3 packet bucket, optionally seeding pipelines.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566
    python scripts/seed_dynamodb.py --pipelines pipelines.json --table-suffix -dev
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import boto3

TABLE_DEFINITIONS: list[dict[str, Any]] = [
    {"name": "taskline-jobs"},
    {"name": "taskline-processed-items"},
    {"name": "taskline-pipelines"},
]

SAMPLE_PIPELINE: dict[str, Any] = {
    "pipeline_id": "sample-ingest",
    "name": "Sample ingest",
    "description": "fetch -> transform -> publish",
    "steps": [
        {"step_id": "sample-fetch", "step_type": "fetch", "execution_order": 0},
        {"step_id": "sample-transform", "step_type": "transform", "execution_order": 1},
        {"step_id": "sample-publish", "step_type": "publish", "execution_order": 2},
    ],
}


def create_tables(ddb: Any, suffix: str = "") -> None:
    """Create all taskline tables. Skips if table already exists."""
    client = ddb.meta.client
    existing = client.list_tables().get("TableNames", [])

    for defn in TABLE_DEFINITIONS:
        table_name = f"{defn['name']}{suffix}"
        if table_name in existing:
            print(f"  Table {table_name} already exists, skipping")
            continue
        client.create_table(
            TableName=table_name,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        print(f"  Created table {table_name}")


def create_bucket(s3: Any, bucket: str, region: str = "us-east-1") -> None:
    """Create the result-packet bucket if it is missing."""
    existing = [b["Name"] for b in s3.list_buckets().get("Buckets", [])]
    if bucket in existing:
        print(f"  Bucket {bucket} already exists, skipping")
        return
    kwargs: dict[str, Any] = {"Bucket": bucket}
    if region != "us-east-1":
        kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
    s3.create_bucket(**kwargs)
    print(f"  Created bucket {bucket}")


def seed_pipelines(ddb: Any, pipelines: list[dict[str, Any]], suffix: str = "") -> int:
    """Write pipeline definitions in the layout DynamoDBPipelineCatalog reads."""
    tbl = ddb.Table(f"taskline-pipelines{suffix}")
    with tbl.batch_writer() as batch:
        for pipeline in pipelines:
            batch.put_item(Item={
                "PK": f"PIPELINE#{pipeline['pipeline_id']}",
                "SK": "DEFINITION",
                "definition": json.dumps(pipeline),
            })
    print(f"  Seeded {len(pipelines)} pipelines")
    return len(pipelines)


def load_pipelines(path: Path | None) -> list[dict[str, Any]]:
    if path is None:
        return [SAMPLE_PIPELINE]
    data = json.loads(path.read_text())
    return data["pipelines"] if isinstance(data, dict) else data


def main() -> None:
    parser = argparse.ArgumentParser(description="Create and seed taskline AWS resources")
    parser.add_argument("--endpoint-url", default=None, help="AWS endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    parser.add_argument("--bucket", default="taskline-packets", help="S3 bucket for result packets")
    parser.add_argument("--pipelines", type=Path, default=None, help="JSON file with pipeline definitions")
    parser.add_argument("--skip-seed", action="store_true", help="Create resources only")
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)
    s3 = boto3.client("s3", **kwargs)

    print("Creating tables...")
    create_tables(ddb, suffix=args.table_suffix)

    print("Creating bucket...")
    create_bucket(s3, args.bucket, region=args.region)

    if not args.skip_seed:
        print("Seeding pipelines...")
        seed_pipelines(ddb, load_pipelines(args.pipelines), suffix=args.table_suffix)

    print("Done!")


if __name__ == "__main__":
    main()
