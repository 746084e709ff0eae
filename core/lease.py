"""Advisory, short-lived, single-owner leases.

Updates:
  v0.1.0 - 2026-10-19 - Introduce Redis SET NX PX lease with compare-and-delete release.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Protocol

import redis

from .backends import decode_value

if TYPE_CHECKING:
    from collections.abc import Callable

    from .backends import RedisClientProtocol, RedisScriptProtocol

logger = logging.getLogger("prompt_workbench.lease")

# Deletes the key only when it still holds the caller's owner token.
RELEASE_LEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class Lease(Protocol):
    """Named mutual-exclusion capability with automatic expiry."""

    def acquire(self, name: str, owner: str, ttl_seconds: float) -> bool: ...

    def release(self, name: str, owner: str) -> bool: ...


class RedisLease:
    """Lease backed by ``SET NX PX`` and a compare-and-delete script."""

    def __init__(self, client: RedisClientProtocol) -> None:
        self._client = client
        self._release_script: RedisScriptProtocol = client.register_script(RELEASE_LEASE_SCRIPT)

    def acquire(self, name: str, owner: str, ttl_seconds: float) -> bool:
        """Return True when *owner* now holds *name*; store errors count as not acquired."""
        ttl_ms = max(1, int(ttl_seconds * 1000))
        try:
            result = self._client.set(name, owner, px=ttl_ms, nx=True)
        except redis.RedisError as exc:
            logger.warning("Lease acquisition failed", exc_info=exc, extra={"lease": name})
            return False
        return bool(result)

    def release(self, name: str, owner: str) -> bool:
        """Release *name* only if *owner* still holds it."""
        try:
            result = self._release_script(keys=[name], args=[owner])
        except redis.RedisError as exc:
            logger.warning("Lease release failed", exc_info=exc, extra={"lease": name})
            return False
        return int(decode_value(result) or 0) > 0


class InMemoryLease:
    """Process-local lease with clock-based expiry."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._holders: dict[str, tuple[str, float]] = {}

    def acquire(self, name: str, owner: str, ttl_seconds: float) -> bool:
        now = self._clock()
        with self._lock:
            holder = self._holders.get(name)
            if holder is not None and holder[1] > now:
                return False
            self._holders[name] = (owner, now + max(0.001, ttl_seconds))
            return True

    def release(self, name: str, owner: str) -> bool:
        with self._lock:
            holder = self._holders.get(name)
            if holder is None or holder[0] != owner:
                return False
            del self._holders[name]
            return True

    def holder(self, name: str) -> str | None:
        """Return the current live owner of *name*, if any."""
        with self._lock:
            holder = self._holders.get(name)
            if holder is None or holder[1] <= self._clock():
                return None
            return holder[0]


__all__ = ["InMemoryLease", "Lease", "RELEASE_LEASE_SCRIPT", "RedisLease"]
