"""Re-export persistence protocols from core for convenience."""

from __future__ import annotations

from taskline.core.protocols import (
    ICacheBackend,
    IContentStore,
    IJobStore,
    IPacketStore,
    IPipelineCatalog,
    IProcessedItems,
    ITaskQueue,
)

__all__ = [
    "ICacheBackend",
    "IContentStore",
    "IJobStore",
    "IPacketStore",
    "IPipelineCatalog",
    "IProcessedItems",
    "ITaskQueue",
]
