"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class EngineConfig(BaseSettings):
    """Step router, retry helper and worker tuning."""

    model_config = {"env_prefix": "TASKLINE_ENGINE_"}

    default_max_attempts: int = 24
    reschedule_delay: int = 10  # seconds
    stuck_timeout_hours: int = 2
    worker_batch_size: int = 10
    worker_poll_interval: float = 1.0


class BatchConfig(BaseSettings):
    """Chunked batch scheduling."""

    model_config = {"env_prefix": "TASKLINE_BATCH_"}

    chunk_size: int = 10
    chunk_delay: int = 30  # seconds between chunks
    side_store_ttl: int = 4 * 60 * 60


class WebhookConfig(BaseSettings):
    """Inbound webhook trigger defaults."""

    model_config = {"env_prefix": "TASKLINE_WEBHOOK_"}

    rate_limit_max: int = 60
    rate_limit_window: int = 60


class DynamoDBConfig(BaseSettings):
    """DynamoDB configuration."""

    model_config = {"env_prefix": "TASKLINE_DYNAMO_"}

    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis side-store and task queue configuration."""

    model_config = {"env_prefix": "TASKLINE_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    decode_responses: bool = True
    queue_key_prefix: str = "taskline:queue"


class S3Config(BaseSettings):
    """S3 result-packet storage configuration."""

    model_config = {"env_prefix": "TASKLINE_S3_"}

    bucket: str = "taskline-packets"
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override
    prefix: str = "jobs"


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "TASKLINE_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = True
    backend: Literal["memory", "aws"] = "memory"

    engine: EngineConfig = EngineConfig()
    batch: BatchConfig = BatchConfig()
    webhook: WebhookConfig = WebhookConfig()
    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
    s3: S3Config = S3Config()
