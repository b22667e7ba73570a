"""Pattern mixin for LearningStore.

Provides creation, lookup and mutation of active patterns and their links
to work items:
- create_pattern: Insert a pattern and link its source work items atomically
- get_pattern / get_patterns: Lookups with role, type and usage filters
- update_pattern_category / update_effectiveness_score: Field updates
- increment_usage: Atomic usage counter increments for retrieved patterns
- merge_patterns: Fold duplicates into one survivor in a single transaction
- find_ineffective_patterns / find_archivable_patterns: Cleanup sweeps
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from datetime import datetime

import numpy as np

from lorekeeper.core.exceptions import InvalidPatternError, PatternNotFoundError
from lorekeeper.core.logging import LoreLogger
from lorekeeper.learning.embeddings import to_blob
from lorekeeper.learning.store.base import (
    WhereBuilder,
    dumps_json,
    row_to_pattern,
    to_timestamp,
)
from lorekeeper.learning.store.models import Pattern, PatternDraft, PatternType


class PatternMixin:
    """Mixin providing pattern storage methods.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    - batch_connection(): Context manager sharing one transaction
    """

    _logger: LoreLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    batch_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def create_pattern(
        self,
        draft: PatternDraft,
        embedding: np.ndarray | None = None,
        now: datetime | None = None,
    ) -> Pattern:
        """Persist a new pattern and link it to its source work items.

        The insert and the links are written in one transaction. Source ids
        that do not name an existing work item are skipped, but at least one
        must match.

        Args:
            draft: Validated pattern content with a type and source ids.
            embedding: Precomputed embedding of ``draft.text``.
            now: Creation timestamp, defaults to the current time.

        Returns:
            The stored Pattern.

        Raises:
            InvalidPatternError: If the draft has no type, no source ids, or
                none of its source ids match a recorded work item.
        """
        if draft.pattern_type is None:
            raise InvalidPatternError("Pattern type is required to create a pattern")
        if not draft.source_work_item_ids:
            raise InvalidPatternError("Pattern needs at least one source work item")

        pattern_id = str(uuid.uuid4())
        timestamp = to_timestamp(now or datetime.now())
        tags = sorted(set(draft.tags))
        source_ids = sorted(set(draft.source_work_item_ids))

        with self.batch_connection() as conn:
            conn.execute(
                """
                INSERT INTO patterns (
                    id, agent_role, pattern_type, context, solution,
                    effectiveness_score, usage_count, embedding, tags,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (
                    pattern_id,
                    draft.agent_role,
                    draft.pattern_type.value,
                    draft.context,
                    draft.solution,
                    draft.effectiveness_score,
                    to_blob(embedding) if embedding is not None else None,
                    dumps_json(tags),
                    timestamp,
                    timestamp,
                ),
            )
            linked = self._link_work_items(conn, pattern_id, source_ids)
            if linked == 0:
                # Raising inside the batch rolls back the pattern row
                raise InvalidPatternError(
                    f"None of the source work items exist: {', '.join(source_ids)}"
                )

        self._logger.debug(
            "store.pattern_created",
            pattern_id=pattern_id,
            pattern_type=draft.pattern_type.value,
            links=linked,
        )
        pattern = self.get_pattern(pattern_id)
        assert pattern is not None
        return pattern

    @staticmethod
    def _link_work_items(
        conn: sqlite3.Connection, pattern_id: str, work_item_ids: Iterable[str]
    ) -> int:
        """Insert links to existing work items. Returns the number of new links."""
        linked = 0
        for work_item_id in work_item_ids:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO pattern_work_items (pattern_id, work_item_id)
                SELECT ?, id FROM work_items WHERE id = ?
                """,
                (pattern_id, work_item_id),
            )
            linked += max(cursor.rowcount, 0)
        return linked

    def link_work_items(self, pattern_id: str, work_item_ids: Iterable[str]) -> None:
        """Link an existing pattern to more work items, ignoring duplicates."""
        with self._get_connection() as conn:
            self._link_work_items(conn, pattern_id, work_item_ids)

    def get_linked_work_item_ids(self, pattern_id: str) -> list[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT work_item_id FROM pattern_work_items "
                "WHERE pattern_id = ? ORDER BY work_item_id",
                (pattern_id,),
            ).fetchall()
        return [row["work_item_id"] for row in rows]

    def get_pattern(self, pattern_id: str) -> Pattern | None:
        """Get an active pattern with its linked work item ids."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
            if row is None:
                return None
            links = conn.execute(
                "SELECT work_item_id FROM pattern_work_items "
                "WHERE pattern_id = ? ORDER BY work_item_id",
                (pattern_id,),
            ).fetchall()
        return row_to_pattern(row, [link["work_item_id"] for link in links])

    def get_patterns(
        self,
        agent_role: str | None = None,
        pattern_types: Iterable[PatternType | str] | None = None,
        min_usage: int | None = None,
        with_embedding: bool = False,
        order_by: str = "effectiveness_score DESC, usage_count DESC",
        limit: int | None = None,
    ) -> list[Pattern]:
        """Get active patterns with optional filtering.

        Args:
            agent_role: Only patterns learned for this role.
            pattern_types: Only patterns of these types.
            min_usage: Only patterns used at least this many times.
            with_embedding: Only patterns that carry an embedding.
            order_by: SQL ORDER BY fragment (trusted, never user input).
            limit: Maximum number of patterns to return.

        Returns:
            Matching patterns. Linked work item ids are not loaded.
        """
        wb = WhereBuilder()
        if agent_role is not None:
            wb.add("agent_role = ?", agent_role)
        if pattern_types is not None:
            types = [PatternType(t).value for t in pattern_types]
            if not types:
                return []
            wb.add(f"pattern_type IN ({','.join('?' * len(types))})", *types)
        if min_usage is not None:
            wb.add("usage_count >= ?", min_usage)
        if with_embedding:
            wb.add("embedding IS NOT NULL")
        where_sql, params = wb.build()

        query = f"SELECT * FROM patterns WHERE {where_sql} ORDER BY {order_by}"
        if limit is not None:
            query += " LIMIT ?"
            params = (*params, limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row_to_pattern(row) for row in rows]

    def count_patterns(self) -> int:
        with self._get_connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM patterns").fetchone()
        return int(row["n"])

    def update_effectiveness_score(
        self, pattern_id: str, score: float, now: datetime | None = None
    ) -> None:
        """Write a new effectiveness score.

        Raises:
            InvalidPatternError: If the score is outside [0, 1].
            PatternNotFoundError: If the pattern is not active.
        """
        if not 0.0 <= score <= 1.0:
            raise InvalidPatternError(f"effectiveness_score must be in [0, 1], got {score}")
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE patterns SET effectiveness_score = ?, updated_at = ? WHERE id = ?",
                (score, to_timestamp(now or datetime.now()), pattern_id),
            )
            if cursor.rowcount == 0:
                raise PatternNotFoundError(pattern_id)

    def update_pattern_category(
        self,
        pattern_id: str,
        pattern_type: PatternType,
        tags: Iterable[str] | None = None,
    ) -> None:
        """Change a pattern's type and optionally replace its tags.

        Raises:
            PatternNotFoundError: If the pattern is not active.
        """
        with self._get_connection() as conn:
            if tags is None:
                cursor = conn.execute(
                    "UPDATE patterns SET pattern_type = ?, updated_at = ? WHERE id = ?",
                    (PatternType(pattern_type).value, to_timestamp(datetime.now()), pattern_id),
                )
            else:
                cursor = conn.execute(
                    "UPDATE patterns SET pattern_type = ?, tags = ?, updated_at = ? "
                    "WHERE id = ?",
                    (
                        PatternType(pattern_type).value,
                        dumps_json(sorted(set(tags))),
                        to_timestamp(datetime.now()),
                        pattern_id,
                    ),
                )
            if cursor.rowcount == 0:
                raise PatternNotFoundError(pattern_id)

    def increment_usage(self, pattern_ids: Iterable[str]) -> int:
        """Add one use to each pattern. Unknown ids are ignored.

        Returns:
            Number of patterns updated.
        """
        updated = 0
        with self._get_connection() as conn:
            for pattern_id in pattern_ids:
                cursor = conn.execute(
                    "UPDATE patterns SET usage_count = usage_count + 1 WHERE id = ?",
                    (pattern_id,),
                )
                updated += cursor.rowcount
        return updated

    def delete_pattern(self, pattern_id: str) -> bool:
        """Delete a pattern and its work item links.

        Returns:
            True if a pattern was deleted.
        """
        with self._get_connection() as conn:
            conn.execute("DELETE FROM pattern_work_items WHERE pattern_id = ?", (pattern_id,))
            cursor = conn.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
            return cursor.rowcount > 0

    def merge_patterns(
        self,
        keep_id: str,
        remove_ids: list[str],
        usage_count: int,
        context: str,
        solution: str,
        embedding: np.ndarray | None = None,
    ) -> None:
        """Fold duplicate patterns into a survivor in one transaction.

        The survivor takes the given usage, context and solution. Links of
        the removed patterns are moved to the survivor without duplicates,
        then the removed patterns are deleted. On any failure nothing changes.

        Raises:
            PatternNotFoundError: If the survivor is not active.
        """
        with self.batch_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE patterns SET
                    usage_count = ?, context = ?, solution = ?,
                    embedding = COALESCE(?, embedding), updated_at = ?
                WHERE id = ?
                """,
                (
                    usage_count,
                    context,
                    solution,
                    to_blob(embedding) if embedding is not None else None,
                    to_timestamp(datetime.now()),
                    keep_id,
                ),
            )
            if cursor.rowcount == 0:
                raise PatternNotFoundError(keep_id)
            for remove_id in remove_ids:
                conn.execute(
                    "UPDATE OR IGNORE pattern_work_items SET pattern_id = ? "
                    "WHERE pattern_id = ?",
                    (keep_id, remove_id),
                )
                # Links the survivor already had are left behind by OR IGNORE
                conn.execute(
                    "DELETE FROM pattern_work_items WHERE pattern_id = ?", (remove_id,)
                )
                conn.execute("DELETE FROM patterns WHERE id = ?", (remove_id,))

    def find_ineffective_patterns(
        self,
        max_effectiveness: float,
        max_usage: int,
        created_before: datetime,
        no_success_since: datetime,
    ) -> list[Pattern]:
        """Patterns that score low, are rarely used, are old enough and have
        not contributed to a successful work item since ``no_success_since``.
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT p.* FROM patterns p
                WHERE p.effectiveness_score < ?
                  AND p.usage_count < ?
                  AND p.created_at < ?
                  AND NOT EXISTS (
                      SELECT 1 FROM pattern_work_items pw
                      JOIN work_items w ON w.id = pw.work_item_id
                      JOIN work_item_results r ON r.work_item_id = w.id
                      WHERE pw.pattern_id = p.id
                        AND r.success = 1
                        AND w.completed_at > ?
                  )
                ORDER BY p.created_at
                """,
                (
                    max_effectiveness,
                    max_usage,
                    to_timestamp(created_before),
                    to_timestamp(no_success_since),
                ),
            ).fetchall()
        return [row_to_pattern(row) for row in rows]

    def find_archivable_patterns(
        self,
        created_before: datetime,
        max_usage: int,
        max_effectiveness: float,
    ) -> list[Pattern]:
        """Old, rarely used patterns with mediocre effectiveness."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM patterns
                WHERE created_at < ? AND usage_count < ? AND effectiveness_score < ?
                ORDER BY created_at
                """,
                (to_timestamp(created_before), max_usage, max_effectiveness),
            ).fetchall()
        return [row_to_pattern(row) for row in rows]
