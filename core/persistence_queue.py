"""FIFO queue of deferred durable-write tasks.

Updates:
  v0.1.1 - 2026-10-19 - Surface undecodable payloads as MalformedEntryError.
  v0.1.0 - 2026-10-19 - Introduce Redis list and in-process queue backends.
"""

from __future__ import annotations

import logging
import queue
from typing import TYPE_CHECKING, Protocol

import redis

from models.persistence_task import PersistenceTask

from .backends import decode_value
from .exceptions import MalformedEntryError, QueueEmpty, TransientStoreError

if TYPE_CHECKING:
    from .backends import RedisClientProtocol

logger = logging.getLogger("prompt_workbench.persistence_queue")

DEFAULT_QUEUE_KEY = "prompt:persistence:queue"


class PersistenceQueue(Protocol):
    """Capability interface for the durable-write task queue."""

    def enqueue(self, task: PersistenceTask) -> str: ...

    def blocking_pop(self, timeout: float) -> PersistenceTask: ...


def _decode_task(raw: str | bytes) -> PersistenceTask:
    try:
        return PersistenceTask.from_json(raw)
    except ValueError as exc:
        raise MalformedEntryError(f"Undecodable persistence task: {exc}") from exc


class RedisPersistenceQueue:
    """Redis list queue using ``RPUSH`` to enqueue and ``BLPOP`` to consume."""

    def __init__(self, client: RedisClientProtocol, *, key: str = DEFAULT_QUEUE_KEY) -> None:
        self._client = client
        self._key = key

    def enqueue(self, task: PersistenceTask) -> str:
        """Append *task* to the queue and return its identifier."""
        task.ensure_identity()
        try:
            self._client.rpush(self._key, task.to_json())
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to enqueue persistence task") from exc
        logger.debug(
            "Persistence task enqueued",
            extra={"task_id": task.task_id, "workspace_token": task.workspace_token},
        )
        return task.task_id

    def blocking_pop(self, timeout: float) -> PersistenceTask:
        """Block up to *timeout* seconds for the next task.

        Raises :class:`QueueEmpty` when nothing arrives in time. Malformed
        payloads are already removed from the list when
        :class:`MalformedEntryError` is raised.
        """
        try:
            result = self._client.blpop([self._key], timeout=max(0.0, timeout))
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to pop persistence task") from exc
        if not result:
            raise QueueEmpty(self._key)
        raw = decode_value(result[1]) if len(result) > 1 else None
        if raw is None:
            raise MalformedEntryError("Persistence queue returned an empty payload")
        return _decode_task(raw)


class InMemoryPersistenceQueue:
    """Process-local queue used when Redis is not configured."""

    def __init__(self) -> None:
        self._queue: queue.Queue[str] = queue.Queue()

    def enqueue(self, task: PersistenceTask) -> str:
        task.ensure_identity()
        self._queue.put(task.to_json())
        return task.task_id

    def put_raw(self, payload: str) -> None:
        """Push a raw payload, bypassing encoding."""
        self._queue.put(payload)

    def blocking_pop(self, timeout: float) -> PersistenceTask:
        try:
            raw = self._queue.get(timeout=max(0.0, timeout))
        except queue.Empty as exc:
            raise QueueEmpty("in-memory persistence queue") from exc
        return _decode_task(raw)

    def __len__(self) -> int:
        return self._queue.qsize()


__all__ = [
    "DEFAULT_QUEUE_KEY",
    "InMemoryPersistenceQueue",
    "PersistenceQueue",
    "RedisPersistenceQueue",
]
