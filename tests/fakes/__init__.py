"""Shared test doubles: re-exported memory backends plus a controllable clock."""

from __future__ import annotations

from taskline.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryContentStore,
    MemoryJobStore,
    MemoryPacketStore,
    MemoryPipelineCatalog,
    MemoryProcessedItems,
    MemoryTaskQueue,
)


class FakeClock:
    """Callable epoch clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


__all__ = [
    "FakeClock",
    "MemoryCacheBackend",
    "MemoryContentStore",
    "MemoryJobStore",
    "MemoryPacketStore",
    "MemoryPipelineCatalog",
    "MemoryProcessedItems",
    "MemoryTaskQueue",
]
