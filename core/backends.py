"""Redis bootstrap and protocol helpers for the workbench pipeline.

Updates:
  v0.2.0 - 2026-10-19 - Describe hash, list, and scripting commands used by the stores.
  v0.1.0 - 2026-10-19 - Extract Redis client protocol and bootstrap helpers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import redis

if TYPE_CHECKING:  # pragma: no cover - typing only
    from collections.abc import Mapping, Sequence

logger = logging.getLogger("prompt_workbench.backends")

RedisValue = str | bytes | memoryview

__all__ = [
    "RedisClientProtocol",
    "RedisPipelineProtocol",
    "RedisScriptProtocol",
    "RedisValue",
    "build_redis_client",
    "decode_value",
]


class RedisScriptProtocol(Protocol):
    """Callable returned by ``register_script``."""

    def __call__(
        self,
        keys: Sequence[str] | None = None,
        args: Sequence[RedisValue | int | float] | None = None,
    ) -> Any:
        """Evaluate the Lua script against *keys* with *args*."""
        ...


class RedisPipelineProtocol(Protocol):
    """Subset of the redis-py pipeline used for batched writes."""

    def hset(
        self,
        name: str,
        key: str | None = None,
        value: RedisValue | int | None = None,
        mapping: Mapping[str, RedisValue | int] | None = None,
    ) -> Any: ...

    def hsetnx(self, name: str, key: str, value: RedisValue) -> Any: ...

    def hdel(self, name: str, *keys: str) -> Any: ...

    def hincrby(self, name: str, key: str, amount: int = 1) -> Any: ...

    def expire(self, name: str, time: int) -> Any: ...

    def delete(self, *names: str) -> Any: ...

    def execute(self) -> list[Any]:
        """Flush queued commands and return their results."""
        ...


class RedisClientProtocol(Protocol):
    """Subset of redis-py client behaviour used by the workbench stores."""

    def ping(self) -> bool:
        """Return True if the Redis server responds."""
        ...

    def exists(self, *names: str) -> int: ...

    def expire(self, name: str, time: int) -> bool: ...

    def delete(self, *names: str) -> int: ...

    def get(self, name: str) -> RedisValue | None: ...

    def set(
        self,
        name: str,
        value: RedisValue,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool | None: ...

    def hget(self, name: str, key: str) -> RedisValue | None: ...

    def hgetall(self, name: str) -> Mapping[RedisValue, RedisValue]: ...

    def hset(
        self,
        name: str,
        key: str | None = None,
        value: RedisValue | int | None = None,
        mapping: Mapping[str, RedisValue | int] | None = None,
    ) -> int: ...

    def hincrby(self, name: str, key: str, amount: int = 1) -> int: ...

    def hdel(self, name: str, *keys: str) -> int: ...

    def hscan(
        self,
        name: str,
        cursor: int = 0,
        match: str | None = None,
        count: int | None = None,
    ) -> tuple[int, Mapping[RedisValue, RedisValue]]: ...

    def rpush(self, name: str, *values: RedisValue) -> int: ...

    def blpop(self, keys: Sequence[str], timeout: float = 0) -> Sequence[RedisValue] | None: ...

    def pipeline(self, transaction: bool = True) -> RedisPipelineProtocol: ...

    def register_script(self, script: str) -> RedisScriptProtocol: ...

    def close(self) -> None:
        """Release client resources."""
        ...


def decode_value(value: RedisValue | int | None) -> str | None:
    """Return *value* as text regardless of the client's decode settings."""
    if value is None:
        return None
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def build_redis_client(redis_dsn: str) -> tuple[RedisClientProtocol | None, str | None]:
    """Return a Redis client for *redis_dsn* and an optional degradation reason.

    The client is probed with ``PING`` so that a misconfigured DSN falls back to
    in-process backends instead of failing every request.
    """
    try:
        client: Any = redis.Redis.from_url(redis_dsn, decode_responses=True)
        client.ping()
    except (redis.RedisError, ValueError) as exc:
        reason = (
            "Redis unavailable; falling back to in-process stores. "
            f"DSN={redis_dsn!s}; error={exc}"
        )
        logger.warning(reason)
        return None, reason
    return client, None
