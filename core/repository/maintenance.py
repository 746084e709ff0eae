"""Schema bootstrap and maintenance helpers for the repository.

Updates:
  v0.2.0 - 2026-10-19 - Add public listings, likes, and keyword link tables.
  v0.1.0 - 2026-10-19 - Extract schema management and reset helpers.
"""

from __future__ import annotations

import sqlite3

from .base import RepositoryError, RepositorySessionMixin, logger

_TABLES = (
    "prompt_likes",
    "prompt_keywords",
    "keywords",
    "prompt_versions",
    "public_prompts",
    "prompts",
)


class RepositoryMaintenanceMixin(RepositorySessionMixin):
    """Tasks that create and reset repository storage."""

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        """Create required tables if they do not exist."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS prompts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                topic TEXT NOT NULL,
                body TEXT NOT NULL DEFAULT '',
                instructions TEXT NOT NULL DEFAULT '',
                model TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'draft',
                positive_keywords TEXT,
                negative_keywords TEXT,
                tags TEXT,
                published_at TEXT,
                latest_version_no INTEGER NOT NULL DEFAULT 0,
                like_count INTEGER NOT NULL DEFAULT 0,
                visit_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_prompts_user_topic ON prompts(user_id, topic);"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS prompt_versions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                prompt_id INTEGER NOT NULL,
                version_no INTEGER NOT NULL,
                body TEXT NOT NULL,
                instructions TEXT NOT NULL DEFAULT '',
                positive_keywords TEXT,
                negative_keywords TEXT,
                model TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                UNIQUE(prompt_id, version_no),
                FOREIGN KEY(prompt_id) REFERENCES prompts(id) ON DELETE CASCADE
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS keywords (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                topic TEXT NOT NULL,
                word TEXT NOT NULL,
                polarity TEXT NOT NULL,
                source TEXT NOT NULL DEFAULT 'manual',
                weight INTEGER NOT NULL DEFAULT 5,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(user_id, topic, word, polarity)
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS prompt_keywords (
                prompt_id INTEGER NOT NULL,
                keyword_id INTEGER NOT NULL,
                relation TEXT NOT NULL,
                PRIMARY KEY(prompt_id, keyword_id),
                FOREIGN KEY(prompt_id) REFERENCES prompts(id) ON DELETE CASCADE,
                FOREIGN KEY(keyword_id) REFERENCES keywords(id) ON DELETE CASCADE
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS prompt_likes (
                prompt_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY(prompt_id, user_id),
                FOREIGN KEY(prompt_id) REFERENCES prompts(id) ON DELETE CASCADE
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS public_prompts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_prompt_id INTEGER,
                author_user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'approved',
                download_count INTEGER NOT NULL DEFAULT 0,
                quality_score REAL NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(source_prompt_id) REFERENCES prompts(id) ON DELETE SET NULL
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_public_prompts_source "
            "ON public_prompts(source_prompt_id);"
        )

    def reset_all_data(self) -> None:
        """Delete every stored row while keeping the schema."""
        try:
            with self._connection() as conn:
                for table in _TABLES:
                    conn.execute(f"DELETE FROM {table};")
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to reset repository data") from exc
        logger.info("Repository data reset", extra={"db_path": str(self._db_path)})


__all__ = ["RepositoryMaintenanceMixin"]
