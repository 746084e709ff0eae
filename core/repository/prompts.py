"""Prompt persistence, version history, keyword links, and counters.

Updates:
  v0.3.0 - 2026-10-19 - Add like toggling and signed counter increments.
  v0.2.0 - 2026-10-19 - Add version retention pruning and keyword re-linking.
  v0.1.0 - 2026-10-19 - Extract prompt CRUD helpers into mixin.
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, ClassVar

from models.prompt_record import PromptRecord, PromptVersion, serialize_keywords
from models.workspace import normalize_polarity

from .base import (
    RepositoryError,
    RepositoryNotFoundError,
    RepositorySessionMixin,
    utc_now_iso as _utc_now_iso,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from models.workspace import WorkspaceKeyword

COUNTER_COLUMNS = frozenset({"visit_count", "like_count"})


class PromptStoreMixin(RepositorySessionMixin):
    """Durable prompt, version, and keyword association helpers."""

    _COLUMNS: ClassVar[Sequence[str]] = (
        "user_id",
        "topic",
        "body",
        "instructions",
        "model",
        "status",
        "positive_keywords",
        "negative_keywords",
        "tags",
        "published_at",
        "latest_version_no",
        "like_count",
        "visit_count",
        "created_at",
        "updated_at",
    )

    # Prompt CRUD -------------------------------------------------------- #

    def create_prompt(self, prompt: PromptRecord) -> PromptRecord:
        """Insert *prompt* and return the stored row (explicit ids are honoured)."""
        payload = prompt.to_record()
        columns = list(self._COLUMNS)
        if payload["id"] is not None:
            columns.insert(0, "id")
        placeholders = ", ".join(f":{column}" for column in columns)
        query = f"INSERT INTO prompts ({', '.join(columns)}) VALUES ({placeholders});"
        try:
            with self._connection() as conn:
                cursor = conn.execute(query, payload)
                prompt_id = int(cursor.lastrowid or payload["id"] or 0)
                row = conn.execute("SELECT * FROM prompts WHERE id = ?;", (prompt_id,)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise RepositoryError(f"Prompt {prompt.id} already exists") from exc
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to insert prompt") from exc
        if row is None:  # pragma: no cover - defensive
            raise RepositoryError("Prompt insert succeeded but row missing")
        return PromptRecord.from_record(row)

    def update_prompt(self, prompt: PromptRecord) -> PromptRecord:
        """Overwrite the editable columns of an existing prompt."""
        payload = prompt.to_record()
        payload["updated_at"] = _utc_now_iso()
        assignments = ", ".join(
            f"{column} = :{column}"
            for column in self._COLUMNS
            if column not in {"created_at", "like_count", "visit_count", "user_id"}
        )
        query = f"UPDATE prompts SET {assignments} WHERE id = :id;"
        try:
            with self._connection() as conn:
                cursor = conn.execute(query, payload)
                if cursor.rowcount == 0:
                    raise RepositoryNotFoundError(f"Prompt {prompt.id} not found")
                row = conn.execute("SELECT * FROM prompts WHERE id = ?;", (prompt.id,)).fetchone()
        except RepositoryNotFoundError:
            raise
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update prompt {prompt.id}") from exc
        return PromptRecord.from_record(row)

    def get_prompt(self, prompt_id: int) -> PromptRecord:
        try:
            with self._connection() as conn:
                row = conn.execute("SELECT * FROM prompts WHERE id = ?;", (prompt_id,)).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load prompt {prompt_id}") from exc
        if row is None:
            raise RepositoryNotFoundError(f"Prompt {prompt_id} not found")
        return PromptRecord.from_record(row)

    def find_prompt_by_topic(self, user_id: str, topic: str) -> PromptRecord | None:
        """Return the newest prompt owned by *user_id* with a matching topic."""
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT * FROM prompts WHERE user_id = ? AND topic = ? "
                    "ORDER BY id DESC LIMIT 1;",
                    (user_id, topic),
                ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to look up prompt by topic") from exc
        return PromptRecord.from_record(row) if row is not None else None

    # Counters ----------------------------------------------------------- #

    def increment_counter(self, prompt_id: int, column: str, delta: int) -> int:
        """Apply a signed *delta* to a counter column and return the new value.

        Counters never drop below zero.
        """
        if column not in COUNTER_COLUMNS:
            raise ValueError(f"Unsupported counter column: {column}")
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    f"UPDATE prompts SET {column} = MAX(0, {column} + ?) WHERE id = ?;",
                    (int(delta), prompt_id),
                )
                if cursor.rowcount == 0:
                    raise RepositoryNotFoundError(f"Prompt {prompt_id} not found")
                row = conn.execute(
                    f"SELECT {column} FROM prompts WHERE id = ?;", (prompt_id,)
                ).fetchone()
        except RepositoryNotFoundError:
            raise
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to increment {column} for prompt {prompt_id}") from exc
        return int(row[0])

    def set_like(self, prompt_id: int, user_id: str, liked: bool) -> tuple[bool, int]:
        """Record or remove a like; returns ``(changed, like_count)``."""
        try:
            with self._connection() as conn:
                exists = conn.execute("SELECT 1 FROM prompts WHERE id = ?;", (prompt_id,)).fetchone()
                if exists is None:
                    raise RepositoryNotFoundError(f"Prompt {prompt_id} not found")
                if liked:
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO prompt_likes (prompt_id, user_id, created_at) "
                        "VALUES (?, ?, ?);",
                        (prompt_id, user_id, _utc_now_iso()),
                    )
                    delta = 1
                else:
                    cursor = conn.execute(
                        "DELETE FROM prompt_likes WHERE prompt_id = ? AND user_id = ?;",
                        (prompt_id, user_id),
                    )
                    delta = -1
                changed = cursor.rowcount > 0
                if changed:
                    conn.execute(
                        "UPDATE prompts SET like_count = MAX(0, like_count + ?) WHERE id = ?;",
                        (delta, prompt_id),
                    )
                row = conn.execute(
                    "SELECT like_count FROM prompts WHERE id = ?;", (prompt_id,)
                ).fetchone()
        except RepositoryNotFoundError:
            raise
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update like for prompt {prompt_id}") from exc
        return changed, int(row[0])

    def has_liked(self, prompt_id: int, user_id: str) -> bool:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT 1 FROM prompt_likes WHERE prompt_id = ? AND user_id = ?;",
                    (prompt_id, user_id),
                ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to read like state") from exc
        return row is not None

    # Versions ----------------------------------------------------------- #

    def max_version_no(self, prompt_id: int) -> int:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT COALESCE(MAX(version_no), 0) FROM prompt_versions WHERE prompt_id = ?;",
                    (prompt_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to read prompt version numbers") from exc
        return int(row[0])

    def record_version(self, version: PromptVersion) -> PromptVersion:
        """Append a version row for a published prompt."""
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO prompt_versions (
                        prompt_id,
                        version_no,
                        body,
                        instructions,
                        positive_keywords,
                        negative_keywords,
                        model,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        version.prompt_id,
                        version.version_no,
                        version.body,
                        version.instructions,
                        serialize_keywords(version.positive_keywords),
                        serialize_keywords(version.negative_keywords),
                        version.model,
                        version.created_at.isoformat(),
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM prompt_versions WHERE id = ?;", (cursor.lastrowid,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to record prompt version") from exc
        if row is None:  # pragma: no cover - defensive
            raise RepositoryError("Prompt version insert succeeded but row missing")
        return PromptVersion.from_record(row)

    def list_versions(self, prompt_id: int) -> list[PromptVersion]:
        """Return stored versions for a prompt ordered by newest first."""
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    "SELECT * FROM prompt_versions WHERE prompt_id = ? ORDER BY version_no DESC;",
                    (prompt_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to list prompt versions") from exc
        return [PromptVersion.from_record(row) for row in rows]

    def delete_versions_beyond(self, prompt_id: int, keep: int) -> int:
        """Delete all but the newest *keep* versions and return the number removed."""
        if keep <= 0:
            return 0
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    DELETE FROM prompt_versions
                    WHERE prompt_id = ?
                      AND id NOT IN (
                        SELECT id FROM prompt_versions
                        WHERE prompt_id = ?
                        ORDER BY version_no DESC
                        LIMIT ?
                      );
                    """,
                    (prompt_id, prompt_id, keep),
                )
                removed = int(cursor.rowcount or 0)
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to prune prompt versions") from exc
        return removed

    # Keyword links ------------------------------------------------------ #

    def replace_prompt_keywords(
        self,
        prompt_id: int,
        user_id: str,
        topic: str,
        keywords: Sequence[WorkspaceKeyword],
    ) -> int:
        """Upsert *keywords* into the user's library and relink them to the prompt."""
        timestamp = _utc_now_iso()
        try:
            with self._connection() as conn:
                conn.execute("DELETE FROM prompt_keywords WHERE prompt_id = ?;", (prompt_id,))
                linked = 0
                for keyword in keywords:
                    polarity = normalize_polarity(keyword.polarity)
                    conn.execute(
                        """
                        INSERT INTO keywords (
                            user_id, topic, word, polarity, source, weight, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(user_id, topic, word, polarity) DO UPDATE SET
                            source = excluded.source,
                            weight = excluded.weight,
                            updated_at = excluded.updated_at;
                        """,
                        (
                            user_id,
                            topic,
                            keyword.word,
                            polarity,
                            keyword.source,
                            keyword.weight,
                            timestamp,
                            timestamp,
                        ),
                    )
                    keyword_row = conn.execute(
                        "SELECT id FROM keywords WHERE user_id = ? AND topic = ? "
                        "AND word = ? AND polarity = ?;",
                        (user_id, topic, keyword.word, polarity),
                    ).fetchone()
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO prompt_keywords (prompt_id, keyword_id, relation) "
                        "VALUES (?, ?, ?);",
                        (prompt_id, int(keyword_row[0]), polarity),
                    )
                    linked += cursor.rowcount
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to relink keywords for prompt {prompt_id}") from exc
        return linked

    def list_prompt_keywords(self, prompt_id: int) -> list[tuple[str, str]]:
        """Return ``(word, relation)`` pairs linked to a prompt."""
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    "SELECT k.word, pk.relation FROM prompt_keywords pk "
                    "JOIN keywords k ON k.id = pk.keyword_id "
                    "WHERE pk.prompt_id = ? ORDER BY k.id;",
                    (prompt_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to list prompt keywords") from exc
        return [(str(row[0]), str(row[1])) for row in rows]


__all__ = ["COUNTER_COLUMNS", "PromptStoreMixin"]
