"""Public listing persistence and quality score bookkeeping.

Updates:
  v0.1.1 - 2026-10-19 - Keep updated_at untouched by counter and score writes.
  v0.1.0 - 2026-10-19 - Add public listing CRUD, download counter, and score cursors.
"""

from __future__ import annotations

import sqlite3

from models.prompt_record import PublicPrompt, ScoreCandidate

from .base import RepositoryError, RepositoryNotFoundError, RepositorySessionMixin

_SCORE_SELECT = """
    SELECT
        pp.id AS public_id,
        pp.source_prompt_id AS prompt_id,
        pp.download_count AS downloads,
        COALESCE(p.like_count, 0) AS likes,
        COALESCE(p.visit_count, 0) AS visits,
        pp.updated_at AS updated_at
    FROM public_prompts pp
    LEFT JOIN prompts p ON p.id = pp.source_prompt_id
"""


class PublicPromptStoreMixin(RepositorySessionMixin):
    """Persistence helpers for publicly shared prompt listings."""

    def create_public_prompt(self, entry: PublicPrompt) -> PublicPrompt:
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO public_prompts (
                        source_prompt_id,
                        author_user_id,
                        title,
                        status,
                        download_count,
                        quality_score,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        entry.source_prompt_id,
                        entry.author_user_id,
                        entry.title,
                        entry.status,
                        entry.download_count,
                        entry.quality_score,
                        entry.created_at.isoformat(),
                        entry.updated_at.isoformat(),
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM public_prompts WHERE id = ?;", (cursor.lastrowid,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to insert public prompt") from exc
        return PublicPrompt.from_record(row)

    def get_public_prompt(self, public_id: int) -> PublicPrompt:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT * FROM public_prompts WHERE id = ?;", (public_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load public prompt {public_id}") from exc
        if row is None:
            raise RepositoryNotFoundError(f"Public prompt {public_id} not found")
        return PublicPrompt.from_record(row)

    def list_public_ids_for_prompt(self, prompt_id: int) -> list[int]:
        """Return ids of public listings sourced from *prompt_id*."""
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    "SELECT id FROM public_prompts WHERE source_prompt_id = ? ORDER BY id;",
                    (prompt_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to list public prompts for source") from exc
        return [int(row[0]) for row in rows]

    def increment_download(self, public_id: int) -> int:
        """Increment the download counter and return the new value."""
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "UPDATE public_prompts SET download_count = download_count + 1 WHERE id = ?;",
                    (public_id,),
                )
                if cursor.rowcount == 0:
                    raise RepositoryNotFoundError(f"Public prompt {public_id} not found")
                row = conn.execute(
                    "SELECT download_count FROM public_prompts WHERE id = ?;", (public_id,)
                ).fetchone()
        except RepositoryNotFoundError:
            raise
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to increment downloads for {public_id}") from exc
        return int(row[0])

    def get_score_candidate(self, public_id: int) -> ScoreCandidate:
        try:
            with self._connection() as conn:
                row = conn.execute(f"{_SCORE_SELECT} WHERE pp.id = ?;", (public_id,)).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load score inputs for {public_id}") from exc
        if row is None:
            raise RepositoryNotFoundError(f"Public prompt {public_id} not found")
        return ScoreCandidate.from_record(row)

    def list_for_score(self, after_id: int, limit: int) -> list[ScoreCandidate]:
        """Return up to *limit* score candidates with ids greater than *after_id*."""
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    f"{_SCORE_SELECT} WHERE pp.id > ? ORDER BY pp.id ASC LIMIT ?;",
                    (after_id, max(1, limit)),
                ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError("Failed to list public prompts for scoring") from exc
        return [ScoreCandidate.from_record(row) for row in rows]

    def update_quality_score(self, public_id: int, score: float) -> None:
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "UPDATE public_prompts SET quality_score = ? WHERE id = ?;",
                    (float(score), public_id),
                )
                if cursor.rowcount == 0:
                    raise RepositoryNotFoundError(f"Public prompt {public_id} not found")
        except RepositoryNotFoundError:
            raise
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update quality score for {public_id}") from exc


__all__ = ["PublicPromptStoreMixin"]
