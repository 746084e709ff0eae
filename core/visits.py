"""Write-buffered visit counting with per-viewer dedup and periodic flushing.

Request handlers add visits to a shared hash in the fast store; a flush loop
moves the buffered deltas into the durable ``visit_count`` column while
holding an advisory lease so only one instance flushes at a time.

Updates:
  v0.3.1 - 2026-10-19 - Keep the flush loop running after unexpected errors.
  v0.3.0 - 2026-10-19 - Settle flushed entries by subtracting the applied delta.
  v0.2.0 - 2026-10-19 - Add lease-guarded flush worker with per-cycle cap.
  v0.1.0 - 2026-10-19 - Introduce visit buffer backends and tracker.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import redis

from .backends import decode_value
from .exceptions import TransientStoreError
from .repository import RepositoryError, RepositoryNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .backends import RedisClientProtocol, RedisScriptProtocol
    from .lease import Lease

logger = logging.getLogger("prompt_workbench.visits")

DEFAULT_BUFFER_KEY = "prompt:visit:buffer"
DEFAULT_GUARD_PREFIX = "prompt:visit:guard"
DEFAULT_GUARD_TTL_SECONDS = 600
DEFAULT_FLUSH_LOCK_KEY = "prompt:visit:flush:lock"
DEFAULT_FLUSH_LOCK_TTL_SECONDS = 10.0
DEFAULT_FLUSH_INTERVAL_SECONDS = 60.0
DEFAULT_FLUSH_BATCH = 128
MAX_VISIT_DELTA = 2**31 - 1

VISIT_COUNTER_COLUMN = "visit_count"

# Subtracts the flushed delta and drops the field once nothing is pending.
SETTLE_VISIT_SCRIPT = """
local remaining = redis.call("HINCRBY", KEYS[1], ARGV[1], -tonumber(ARGV[2]))
if remaining <= 0 then
    redis.call("HDEL", KEYS[1], ARGV[1])
end
return remaining
"""


class VisitBuffer(Protocol):
    """Fast-store operations backing visit buffering."""

    def claim_guard(self, entity_id: int, viewer_id: str, ttl_seconds: int) -> bool: ...

    def add(self, entity_id: int, delta: int = 1) -> int: ...

    def pending(self, entity_id: int) -> str | None: ...

    def scan(self, cursor: int, count: int) -> tuple[int, Sequence[tuple[str, str]]]: ...

    def settle(self, field: str, delta: int) -> int: ...

    def discard(self, field: str) -> None: ...


class VisitCounterStore(Protocol):
    """Durable counter sink."""

    def increment_counter(self, prompt_id: int, column: str, delta: int) -> int: ...


class RedisVisitBuffer:
    """Visit buffer stored in one Redis hash with ``SET NX EX`` guards."""

    def __init__(
        self,
        client: RedisClientProtocol,
        *,
        buffer_key: str = DEFAULT_BUFFER_KEY,
        guard_prefix: str = DEFAULT_GUARD_PREFIX,
    ) -> None:
        self._client = client
        self._buffer_key = buffer_key
        self._guard_prefix = guard_prefix.rstrip(":")
        self._settle_script: RedisScriptProtocol = client.register_script(SETTLE_VISIT_SCRIPT)

    def claim_guard(self, entity_id: int, viewer_id: str, ttl_seconds: int) -> bool:
        key = f"{self._guard_prefix}:{entity_id}:{viewer_id}"
        try:
            return bool(self._client.set(key, "1", ex=max(1, ttl_seconds), nx=True))
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to claim visit guard") from exc

    def add(self, entity_id: int, delta: int = 1) -> int:
        try:
            return int(self._client.hincrby(self._buffer_key, str(entity_id), delta))
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to buffer visit") from exc

    def pending(self, entity_id: int) -> str | None:
        try:
            return decode_value(self._client.hget(self._buffer_key, str(entity_id)))
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to read visit buffer") from exc

    def scan(self, cursor: int, count: int) -> tuple[int, Sequence[tuple[str, str]]]:
        try:
            next_cursor, entries = self._client.hscan(self._buffer_key, cursor, count=count)
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to scan visit buffer") from exc
        pairs = [
            (decode_value(field) or "", decode_value(value) or "")
            for field, value in entries.items()
        ]
        return int(next_cursor), pairs

    def settle(self, field: str, delta: int) -> int:
        try:
            result = self._settle_script(keys=[self._buffer_key], args=[field, delta])
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to settle visit buffer entry") from exc
        return int(decode_value(result) or 0)

    def discard(self, field: str) -> None:
        try:
            self._client.hdel(self._buffer_key, field)
        except redis.RedisError as exc:
            raise TransientStoreError("Failed to discard visit buffer entry") from exc


class InMemoryVisitBuffer:
    """Process-local visit buffer with monotonic-clock guard expiry."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, str] = {}
        self._guards: dict[str, float] = {}

    def claim_guard(self, entity_id: int, viewer_id: str, ttl_seconds: int) -> bool:
        key = f"{entity_id}:{viewer_id}"
        now = self._clock()
        with self._lock:
            expires_at = self._guards.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._guards[key] = now + max(1, ttl_seconds)
            return True

    def add(self, entity_id: int, delta: int = 1) -> int:
        field = str(entity_id)
        with self._lock:
            value = int(self._entries.get(field, "0")) + delta
            self._entries[field] = str(value)
            return value

    def pending(self, entity_id: int) -> str | None:
        with self._lock:
            return self._entries.get(str(entity_id))

    def put_raw(self, field: str, value: str) -> None:
        """Store an arbitrary entry, bypassing validation."""
        with self._lock:
            self._entries[field] = value

    def scan(self, cursor: int, count: int) -> tuple[int, Sequence[tuple[str, str]]]:
        with self._lock:
            items = sorted(self._entries.items())
        window = items[cursor : cursor + max(1, count)]
        next_cursor = cursor + len(window)
        return (0 if next_cursor >= len(items) else next_cursor), window

    def settle(self, field: str, delta: int) -> int:
        with self._lock:
            remaining = int(self._entries.get(field, "0")) - delta
            if remaining <= 0:
                self._entries.pop(field, None)
            else:
                self._entries[field] = str(remaining)
            return remaining

    def discard(self, field: str) -> None:
        with self._lock:
            self._entries.pop(field, None)

    def __contains__(self, entity_id: object) -> bool:
        with self._lock:
            return str(entity_id) in self._entries


class VisitTracker:
    """Request-path visit recording with durable fallback."""

    def __init__(
        self,
        buffer: VisitBuffer | None,
        counters: VisitCounterStore,
        *,
        guard_ttl_seconds: int = DEFAULT_GUARD_TTL_SECONDS,
    ) -> None:
        self._buffer = buffer
        self._counters = counters
        self._guard_ttl = max(1, guard_ttl_seconds)

    def record_visit(self, entity_id: int, viewer_id: str | None = None) -> bool:
        """Count a visit unless *viewer_id* already visited within the guard window.

        Returns True when the visit was counted (buffered or applied durably).
        """
        if self._buffer is None:
            self._counters.increment_counter(entity_id, VISIT_COUNTER_COLUMN, 1)
            return True
        viewer = (viewer_id or "").strip()
        if viewer:
            try:
                if not self._buffer.claim_guard(entity_id, viewer, self._guard_ttl):
                    logger.debug(
                        "Duplicate visit ignored",
                        extra={"prompt_id": entity_id, "viewer_id": viewer},
                    )
                    return False
            except TransientStoreError as exc:
                logger.warning(
                    "Visit guard unavailable; counting without dedup",
                    exc_info=exc,
                    extra={"prompt_id": entity_id},
                )
        try:
            self._buffer.add(entity_id, 1)
        except TransientStoreError as exc:
            logger.warning(
                "Visit buffer unavailable; applying durable increment",
                exc_info=exc,
                extra={"prompt_id": entity_id},
            )
            self._counters.increment_counter(entity_id, VISIT_COUNTER_COLUMN, 1)
        return True

    def pending_delta(self, entity_id: int) -> int:
        """Return buffered visits not yet flushed; 0 when unknown."""
        if self._buffer is None:
            return 0
        try:
            raw = self._buffer.pending(entity_id)
        except TransientStoreError as exc:
            logger.debug("Pending visit lookup failed", exc_info=exc)
            return 0
        if raw is None:
            return 0
        try:
            return max(0, int(raw))
        except ValueError:
            return 0


@dataclass(slots=True)
class FlushReport:
    """Result of a single flush cycle."""

    acquired: bool = False
    processed: int = 0
    applied: int = 0
    discarded: int = 0
    failed: int = 0
    malformed: int = 0
    visits: int = 0


class VisitFlusher:
    """Move buffered visit deltas into durable counters under a lease."""

    def __init__(
        self,
        buffer: VisitBuffer,
        counters: VisitCounterStore,
        lease: Lease,
        *,
        lock_key: str = DEFAULT_FLUSH_LOCK_KEY,
        lock_ttl_seconds: float = DEFAULT_FLUSH_LOCK_TTL_SECONDS,
        batch_size: int = DEFAULT_FLUSH_BATCH,
        owner_token: str | None = None,
    ) -> None:
        self._buffer = buffer
        self._counters = counters
        self._lease = lease
        self._lock_key = lock_key
        self._lock_ttl = lock_ttl_seconds
        self._batch_size = max(1, batch_size)
        self.owner_token = owner_token or uuid.uuid4().hex

    def flush_once(self) -> FlushReport:
        """Flush up to one batch of buffered deltas; no-op if the lease is held."""
        report = FlushReport()
        if not self._lease.acquire(self._lock_key, self.owner_token, self._lock_ttl):
            logger.debug("Visit flush skipped; lease held elsewhere")
            return report
        report.acquired = True
        try:
            self._drain(report)
        except TransientStoreError as exc:
            logger.warning("Visit buffer access failed during flush", exc_info=exc)
        finally:
            self._lease.release(self._lock_key, self.owner_token)
        if report.processed:
            logger.info(
                "Visit buffer flushed",
                extra={
                    "processed": report.processed,
                    "applied": report.applied,
                    "visits": report.visits,
                    "failed": report.failed,
                },
            )
        return report

    def _drain(self, report: FlushReport) -> None:
        cursor = 0
        while report.processed < self._batch_size:
            cursor, entries = self._buffer.scan(cursor, self._batch_size - report.processed)
            for field, raw_value in entries:
                if report.processed >= self._batch_size:
                    break
                parsed = self._parse(field, raw_value, report)
                if parsed is None:
                    continue
                report.processed += 1
                self._apply(field, *parsed, report=report)
            if cursor == 0:
                break

    @staticmethod
    def _parse(field: str, raw_value: str, report: FlushReport) -> tuple[int, int] | None:
        try:
            entity_id = int(field)
        except ValueError:
            report.malformed += 1
            logger.warning("Skipping malformed visit buffer key", extra={"field": field})
            return None
        try:
            delta = int(raw_value)
        except ValueError:
            report.malformed += 1
            logger.warning(
                "Skipping malformed visit buffer value",
                extra={"field": field, "value": raw_value},
            )
            return None
        if entity_id <= 0 or delta <= 0:
            return None
        return entity_id, min(delta, MAX_VISIT_DELTA)

    def _apply(self, field: str, entity_id: int, delta: int, *, report: FlushReport) -> None:
        try:
            self._counters.increment_counter(entity_id, VISIT_COUNTER_COLUMN, delta)
        except RepositoryNotFoundError:
            report.discarded += 1
            self._buffer.discard(field)
            return
        except RepositoryError as exc:
            report.failed += 1
            logger.warning(
                "Durable visit increment failed; entry kept for next cycle",
                exc_info=exc,
                extra={"prompt_id": entity_id, "delta": delta},
            )
            return
        report.applied += 1
        report.visits += delta
        self._buffer.settle(field, delta)


class VisitFlushWorker:
    """Background loop calling :meth:`VisitFlusher.flush_once` on an interval."""

    def __init__(
        self,
        flusher: VisitFlusher,
        *,
        interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
    ) -> None:
        self._flusher = flusher
        self._interval = max(0.01, interval_seconds)
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None

    def start(self, stop_event: threading.Event) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event = stop_event
        self._thread = threading.Thread(target=self._run, name="prompt-visit-flush", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        stop_event = self._stop_event
        assert stop_event is not None  # pragma: no cover - set by start()
        while not stop_event.wait(self._interval):
            try:
                self._flusher.flush_once()
            except Exception:  # noqa: BLE001 - keep the flush loop alive
                logger.exception("Unexpected visit flush failure")

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


__all__ = [
    "DEFAULT_BUFFER_KEY",
    "DEFAULT_FLUSH_BATCH",
    "DEFAULT_FLUSH_INTERVAL_SECONDS",
    "DEFAULT_FLUSH_LOCK_KEY",
    "DEFAULT_FLUSH_LOCK_TTL_SECONDS",
    "DEFAULT_GUARD_PREFIX",
    "DEFAULT_GUARD_TTL_SECONDS",
    "FlushReport",
    "InMemoryVisitBuffer",
    "MAX_VISIT_DELTA",
    "RedisVisitBuffer",
    "SETTLE_VISIT_SCRIPT",
    "VisitBuffer",
    "VisitCounterStore",
    "VisitFlushWorker",
    "VisitFlusher",
    "VisitTracker",
]
