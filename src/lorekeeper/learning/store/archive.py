"""Archive mixin for LearningStore.

Archived patterns leave the active set but keep their full state,
including the ids of the work items they were learned from, so that a
restore brings back the same pattern under the same id.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime

from lorekeeper.core.exceptions import ArchivedPatternNotFoundError, PatternNotFoundError
from lorekeeper.core.logging import LoreLogger
from lorekeeper.learning.store.base import (
    dumps_json,
    row_to_archived_pattern,
    to_timestamp,
)
from lorekeeper.learning.store.models import ArchivedPattern, Pattern


class ArchiveMixin:
    """Mixin providing archive and restore methods.

    This mixin requires that the composed class provides:
    - batch_connection(): Context manager sharing one transaction
    - get_pattern(): Active pattern lookup (from PatternMixin)
    """

    _logger: LoreLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    batch_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    get_pattern: Callable[[str], Pattern | None]

    def archive_pattern(
        self, pattern_id: str, reason: str, now: datetime | None = None
    ) -> ArchivedPattern:
        """Move an active pattern into the archive.

        Copies every field plus the linked work item ids, then deletes the
        active row and its links, all in one transaction.

        Raises:
            PatternNotFoundError: If the pattern is not active.
        """
        archived_at = to_timestamp(now or datetime.now())
        with self.batch_connection() as conn:
            row = conn.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
            if row is None:
                raise PatternNotFoundError(pattern_id)
            links = [
                r["work_item_id"]
                for r in conn.execute(
                    "SELECT work_item_id FROM pattern_work_items "
                    "WHERE pattern_id = ? ORDER BY work_item_id",
                    (pattern_id,),
                ).fetchall()
            ]
            conn.execute(
                """
                INSERT OR REPLACE INTO archived_patterns (
                    id, agent_role, pattern_type, context, solution,
                    effectiveness_score, usage_count, embedding, tags,
                    source_work_item_ids, created_at, updated_at,
                    archived_at, archive_reason
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row["id"],
                    row["agent_role"],
                    row["pattern_type"],
                    row["context"],
                    row["solution"],
                    row["effectiveness_score"],
                    row["usage_count"],
                    row["embedding"],
                    row["tags"],
                    dumps_json(links),
                    row["created_at"],
                    row["updated_at"],
                    archived_at,
                    reason,
                ),
            )
            conn.execute("DELETE FROM pattern_work_items WHERE pattern_id = ?", (pattern_id,))
            conn.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
            archived_row = conn.execute(
                "SELECT * FROM archived_patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
        return row_to_archived_pattern(archived_row)

    def restore_archived_pattern(self, pattern_id: str) -> Pattern:
        """Move an archived pattern back into the active set unchanged.

        Links are recreated for source work items that still exist.

        Raises:
            ArchivedPatternNotFoundError: If the id is not in the archive.
        """
        with self.batch_connection() as conn:
            row = conn.execute(
                "SELECT * FROM archived_patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
            if row is None:
                raise ArchivedPatternNotFoundError(pattern_id)
            archived = row_to_archived_pattern(row)
            conn.execute(
                """
                INSERT INTO patterns (
                    id, agent_role, pattern_type, context, solution,
                    effectiveness_score, usage_count, embedding, tags,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row["id"],
                    row["agent_role"],
                    row["pattern_type"],
                    row["context"],
                    row["solution"],
                    row["effectiveness_score"],
                    row["usage_count"],
                    row["embedding"],
                    row["tags"],
                    row["created_at"],
                    row["updated_at"],
                ),
            )
            for work_item_id in archived.source_work_item_ids:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO pattern_work_items (pattern_id, work_item_id)
                    SELECT ?, id FROM work_items WHERE id = ?
                    """,
                    (pattern_id, work_item_id),
                )
            conn.execute("DELETE FROM archived_patterns WHERE id = ?", (pattern_id,))

        pattern = self.get_pattern(pattern_id)
        assert pattern is not None
        return pattern

    def get_archived_pattern(self, pattern_id: str) -> ArchivedPattern | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM archived_patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
        return row_to_archived_pattern(row) if row else None

    def get_archived_patterns(self, limit: int | None = None) -> list[ArchivedPattern]:
        """Archived patterns, most recently archived first."""
        query = "SELECT * FROM archived_patterns ORDER BY archived_at DESC"
        params: tuple[int, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row_to_archived_pattern(row) for row in rows]

    def count_archived_patterns(self) -> int:
        with self._get_connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM archived_patterns").fetchone()
        return int(row["n"])
