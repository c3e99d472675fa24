"""Redis backends: ICacheBackend side store and ITaskQueue on a sorted set."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import redis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from taskline.core.exceptions import CacheError, QueueUnavailableError
from taskline.models.queue import QueuedTask

logger = logging.getLogger(__name__)

_transient_retry = retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_random_exponential(multiplier=0.1, max=2),
    retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
)


class RedisCacheBackend:
    """Production ICacheBackend backed by Redis."""

    def __init__(self, host: str = "localhost", port: int = 6379, db: int = 0,
                 decode_responses: bool = True) -> None:
        self._host = host
        self._port = port
        self._db = db
        self._client = redis.Redis(
            host=host, port=port, db=db, decode_responses=decode_responses,
        )

    @property
    def client(self) -> redis.Redis:
        return self._client

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis GET failed for key={key!r}: {exc}") from exc

    def setex(self, key: str, ttl: int, value: str) -> None:
        try:
            self._client.setex(key, ttl, value)
        except redis.RedisError as exc:
            raise CacheError(f"Redis SETEX failed for key={key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis DELETE failed for key={key!r}: {exc}") from exc

    def incr(self, key: str, ttl: int) -> int:
        """Increment a counter, starting its expiry window on the first hit."""
        try:
            count = int(self._client.incr(key))
            if count == 1:
                self._client.expire(key, ttl)
            return count
        except redis.RedisError as exc:
            raise CacheError(f"Redis INCR failed for key={key!r}: {exc}") from exc


class RedisTaskQueue:
    """ITaskQueue stored in one Redis sorted set scored by ``run_at``.

    Claiming uses ZREM as the ownership test, so two workers racing on the
    same member never both run it.
    """

    def __init__(self, host: str = "localhost", port: int = 6379, db: int = 0,
                 key_prefix: str = "taskline:queue",
                 client: redis.Redis | None = None,
                 clock: Callable[[], float] = time.time) -> None:
        self._client = client or redis.Redis(host=host, port=port, db=db, decode_responses=True)
        self._key = f"{key_prefix}:scheduled"
        self._clock = clock

    @_transient_retry
    def _zadd(self, task: QueuedTask) -> None:
        self._client.zadd(self._key, {task.model_dump_json(): task.run_at})

    def _add(self, task: QueuedTask) -> str:
        try:
            self._zadd(task)
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Could not enqueue {task.hook!r}: {exc}") from exc
        logger.debug("Task enqueued", extra={"hook": task.hook, "run_at": task.run_at})
        return task.task_id

    def enqueue_now(self, hook: str, args: dict[str, Any]) -> str:
        return self._add(QueuedTask(hook=hook, args=dict(args), run_at=self._clock()))

    def enqueue_at(self, timestamp: float, hook: str, args: dict[str, Any]) -> str:
        return self._add(QueuedTask(hook=hook, args=dict(args), run_at=timestamp))

    def enqueue_recurring(
        self, first_run: float, interval: int, hook: str, args: dict[str, Any]
    ) -> str:
        return self._add(QueuedTask(hook=hook, args=dict(args), run_at=first_run, interval=interval))

    def cancel_all(self, hook: str, args_filter: dict[str, Any] | None = None) -> int:
        removed = 0
        try:
            for member, _score in list(self._client.zscan_iter(self._key)):
                task = QueuedTask.model_validate_json(member)
                if task.matches(hook, args_filter):
                    removed += int(self._client.zrem(self._key, member))
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Could not cancel {hook!r} tasks: {exc}") from exc
        return removed

    def claim_due(self, now: float, limit: int = 10) -> list[QueuedTask]:
        claimed: list[QueuedTask] = []
        try:
            members = self._client.zrangebyscore(self._key, "-inf", now, start=0, num=limit)
            for member in members:
                if not self._client.zrem(self._key, member):
                    continue  # another worker got it
                task = QueuedTask.model_validate_json(member)
                follow_up = task.next_occurrence()
                if follow_up is not None:
                    self._zadd(follow_up)
                claimed.append(task)
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Could not claim due tasks: {exc}") from exc
        return claimed

    def pending(self, hook: str | None = None) -> list[QueuedTask]:
        try:
            members = self._client.zrange(self._key, 0, -1)
        except redis.RedisError as exc:
            raise QueueUnavailableError(f"Could not list queued tasks: {exc}") from exc
        tasks = [QueuedTask.model_validate_json(m) for m in members]
        return [t for t in tasks if hook is None or t.hook == hook]
