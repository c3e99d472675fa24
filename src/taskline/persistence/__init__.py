"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

import time
from dataclasses import dataclass

from taskline.core.config import AppSettings
from taskline.core.protocols import (
    ICacheBackend,
    IContentStore,
    IJobStore,
    IPacketStore,
    IPipelineCatalog,
    IProcessedItems,
    ITaskQueue,
)
from taskline.core.types import Clock
from taskline.persistence.dynamodb_backend import (
    DynamoDBJobStore,
    DynamoDBPipelineCatalog,
    DynamoDBProcessedItems,
)
from taskline.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryContentStore,
    MemoryJobStore,
    MemoryPacketStore,
    MemoryPipelineCatalog,
    MemoryProcessedItems,
    MemoryTaskQueue,
)
from taskline.persistence.redis_backend import RedisCacheBackend, RedisTaskQueue
from taskline.persistence.s3_backend import S3PacketStore


@dataclass
class Persistence:
    """Every storage collaborator the engine needs, wired together."""

    jobs: IJobStore
    processed_items: IProcessedItems
    packets: IPacketStore
    pipelines: IPipelineCatalog
    cache: ICacheBackend
    queue: ITaskQueue
    content_store: IContentStore | None = None


def create_memory_persistence(
    content_store: IContentStore | None = None,
    clock: Clock = time.time,
) -> Persistence:
    """In-process backends for tests and single-process development."""
    return Persistence(
        jobs=MemoryJobStore(),
        processed_items=MemoryProcessedItems(),
        packets=MemoryPacketStore(),
        pipelines=MemoryPipelineCatalog(),
        cache=MemoryCacheBackend(clock=clock),
        queue=MemoryTaskQueue(clock=clock),
        content_store=content_store or MemoryContentStore(),
    )


def create_persistence(
    settings: AppSettings | None = None,
    content_store: IContentStore | None = None,
) -> Persistence:
    """Create wired-up persistence backends from application settings.

    ``content_store`` is the host system's attribute surface; effect undo
    handlers that need it are only registered when one is supplied.
    """
    if settings is None:
        settings = AppSettings()

    if settings.backend == "memory":
        return create_memory_persistence(content_store)

    cache = RedisCacheBackend(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
        decode_responses=settings.redis.decode_responses,
    )

    queue = RedisTaskQueue(
        key_prefix=settings.redis.queue_key_prefix,
        client=cache.client,
    )

    ddb_kwargs = {
        "table_suffix": settings.dynamodb.table_suffix,
        "region": settings.dynamodb.region,
        "endpoint_url": settings.dynamodb.endpoint_url,
    }

    packets = S3PacketStore(
        bucket=settings.s3.bucket,
        region=settings.s3.region,
        endpoint_url=settings.s3.endpoint_url,
        prefix=settings.s3.prefix,
    )

    return Persistence(
        jobs=DynamoDBJobStore(**ddb_kwargs),
        processed_items=DynamoDBProcessedItems(**ddb_kwargs),
        packets=packets,
        pipelines=DynamoDBPipelineCatalog(**ddb_kwargs, cache=cache),
        cache=cache,
        queue=queue,
        content_store=content_store,
    )
