"""Shared repository helpers and error hierarchy.

Updates:
  v0.3.0 - 2026-10-19 - Add RepositorySessionMixin for multi-statement transactions.
  v0.2.1 - 2026-10-19 - Drop JSON helpers; row hydration lives on the record models.
  v0.2.0 - 2026-10-19 - Drop UUID helpers; prompts use integer primary keys.
  v0.1.0 - 2026-10-19 - Extract logger, helpers, and exceptions for the workbench store.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger("prompt_workbench.repository")


class RepositoryError(Exception):
    """Base exception for repository failures."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when a requested record cannot be located."""


def ensure_directory(path: Path) -> None:
    """Ensure the directory for the SQLite database exists."""
    path.parent.mkdir(parents=True, exist_ok=True)


def connect(db_path: Path) -> sqlite3.Connection:
    """Return a configured SQLite connection."""
    conn = sqlite3.connect(str(db_path), timeout=10.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    return conn


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class RepositorySessionMixin:
    """Share one SQLite connection across the store calls of a transaction.

    Outside :meth:`transaction` every call opens its own connection and
    commits on success. Inside it, calls made on the same thread reuse the
    active connection and the whole block commits or rolls back together.
    """

    _db_path: Path
    _session: threading.local

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        active: sqlite3.Connection | None = getattr(self._session, "conn", None)
        if active is not None:
            yield active
            return
        conn = connect(self._db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed store calls atomically; nested blocks join the outer one."""
        if getattr(self._session, "conn", None) is not None:
            yield
            return
        try:
            conn = connect(self._db_path)
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to open SQLite transaction") from exc
        self._session.conn = conn
        try:
            with conn:
                yield
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to commit SQLite transaction") from exc
        finally:
            self._session.conn = None
            conn.close()


__all__ = [
    "RepositoryError",
    "RepositoryNotFoundError",
    "RepositorySessionMixin",
    "connect",
    "ensure_directory",
    "logger",
    "utc_now_iso",
]
