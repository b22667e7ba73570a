"""Work history mixin for LearningStore.

The orchestrator owns work items, their results, reviews and architecture
decision records. Learning code only reads them:
- get_completed_work_items: Extraction input, one row per completed item
- get_pattern_outcomes: Scoring input, one row per linked work item
- get_accepted_adrs / get_approved_reviews: Retrieval sources

The record_* writers exist for the orchestrator and for tests.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime

from lorekeeper.core.logging import LoreLogger
from lorekeeper.learning.store.base import (
    WhereBuilder,
    parse_timestamp,
    to_timestamp,
)
from lorekeeper.learning.store.models import (
    ADRRecord,
    ADRStatus,
    CompletedWorkItem,
    PatternOutcome,
    ReviewRecord,
    ReviewStatus,
    ReviewType,
)

# Latest result and latest review per work item
_LATEST_RESULT = (
    "SELECT lr.id FROM work_item_results lr WHERE lr.work_item_id = w.id "
    "ORDER BY lr.created_at DESC, lr.id DESC LIMIT 1"
)
_LATEST_REVIEW = (
    "SELECT lv.id FROM reviews lv WHERE lv.work_item_id = w.id "
    "ORDER BY lv.created_at DESC, lv.id DESC LIMIT 1"
)


class WorkHistoryMixin:
    """Mixin providing read access to the orchestrator's work history."""

    _logger: LoreLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    # ─── Writers ───

    def record_work_item(
        self,
        work_item_id: str,
        type: str,  # noqa: A002
        title: str,
        description: str = "",
        status: str = "completed",
        created_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> str:
        """Insert a work item, or update it in place if the id exists."""
        created = created_at or datetime.now()
        if completed_at is None and status == "completed":
            completed_at = created
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO work_items
                    (id, type, title, description, status, created_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    type = excluded.type,
                    title = excluded.title,
                    description = excluded.description,
                    status = excluded.status,
                    completed_at = excluded.completed_at
                """,
                (
                    work_item_id,
                    type,
                    title,
                    description,
                    status,
                    to_timestamp(created),
                    to_timestamp(completed_at),
                ),
            )
        return work_item_id

    def record_work_item_result(
        self,
        work_item_id: str,
        agent_role: str,
        implementation_notes: str | None = None,
        success: bool = True,
        files_changed: list[str] | None = None,
        tests_added: bool = False,
        error_message: str | None = None,
        created_at: datetime | None = None,
    ) -> int:
        """Record one attempt at a work item. Several attempts mean rework."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO work_item_results (
                    work_item_id, agent_role, implementation_notes, files_changed,
                    tests_added, success, error_message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    work_item_id,
                    agent_role,
                    implementation_notes,
                    json.dumps(files_changed or []),
                    int(tests_added),
                    int(success),
                    error_message,
                    to_timestamp(created_at or datetime.now()),
                ),
            )
            return int(cursor.lastrowid or 0)

    def record_review(
        self,
        work_item_id: str,
        reviewer_role: str,
        status: ReviewStatus | str = ReviewStatus.APPROVED,
        review_type: ReviewType | str = ReviewType.CODE,
        feedback: str = "",
        suggestions: str | None = None,
        quality_score: float | None = None,
        created_at: datetime | None = None,
        review_id: str | None = None,
    ) -> str:
        review_id = review_id or str(uuid.uuid4())
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO reviews (
                    id, work_item_id, reviewer_role, review_type, status,
                    feedback, suggestions, quality_score, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    review_id,
                    work_item_id,
                    reviewer_role,
                    ReviewType(review_type).value,
                    ReviewStatus(status).value,
                    feedback,
                    suggestions,
                    quality_score,
                    to_timestamp(created_at or datetime.now()),
                ),
            )
        return review_id

    def record_adr(
        self,
        title: str,
        context: str,
        decision: str,
        created_by: str,
        status: ADRStatus | str = ADRStatus.ACCEPTED,
        consequences: str = "",
        work_item_id: str | None = None,
        superseded_by: str | None = None,
        created_at: datetime | None = None,
        adr_id: str | None = None,
    ) -> str:
        adr_id = adr_id or str(uuid.uuid4())
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO adrs (
                    id, title, context, decision, consequences, status,
                    work_item_id, created_by, superseded_by, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    adr_id,
                    title,
                    context,
                    decision,
                    consequences,
                    ADRStatus(status).value,
                    work_item_id,
                    created_by,
                    superseded_by,
                    to_timestamp(created_at or datetime.now()),
                ),
            )
        return adr_id

    # ─── Readers ───

    def get_completed_work_items(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[CompletedWorkItem]:
        """Completed work items joined to their latest result and review.

        Items without any recorded result are left out. Newest first.

        Args:
            since: Only items completed at or after this time.
            until: Only items completed at or before this time.
        """
        wb = WhereBuilder()
        wb.add("w.status = 'completed'")
        if since is not None:
            wb.add("w.completed_at >= ?", to_timestamp(since))
        if until is not None:
            wb.add("w.completed_at <= ?", to_timestamp(until))
        where_sql, params = wb.build()

        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    w.id, w.type, w.title, w.description, w.completed_at,
                    r.agent_role, r.implementation_notes, r.files_changed,
                    r.tests_added, r.success, r.error_message,
                    rv.quality_score, rv.suggestions
                FROM work_items w
                JOIN work_item_results r ON r.id = ({_LATEST_RESULT})
                LEFT JOIN reviews rv ON rv.id = ({_LATEST_REVIEW})
                WHERE {where_sql}
                ORDER BY w.completed_at DESC
                """,
                params,
            ).fetchall()

        return [
            CompletedWorkItem(
                id=row["id"],
                type=row["type"],
                title=row["title"],
                description=row["description"] or "",
                agent_role=row["agent_role"],
                implementation_notes=row["implementation_notes"],
                files_changed=_load_file_list(row["files_changed"]),
                tests_added=bool(row["tests_added"]),
                success=bool(row["success"]),
                error_message=row["error_message"],
                quality_score=row["quality_score"],
                suggestions=row["suggestions"],
                completed_at=parse_timestamp(row["completed_at"]),
            )
            for row in rows
        ]

    def get_pattern_outcomes(self, pattern_id: str) -> list[PatternOutcome]:
        """Outcomes of the work items linked to a pattern, newest completion first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    w.id, w.created_at, w.completed_at,
                    r.success, rv.quality_score, rv.feedback, rv.suggestions,
                    (SELECT COUNT(*) FROM work_item_results a
                     WHERE a.work_item_id = w.id) AS attempt_count
                FROM pattern_work_items pw
                JOIN work_items w ON w.id = pw.work_item_id
                LEFT JOIN work_item_results r ON r.id = ({_LATEST_RESULT})
                LEFT JOIN reviews rv ON rv.id = ({_LATEST_REVIEW})
                WHERE pw.pattern_id = ?
                ORDER BY w.completed_at DESC, w.id
                """,
                (pattern_id,),
            ).fetchall()

        outcomes: list[PatternOutcome] = []
        for row in rows:
            created = parse_timestamp(row["created_at"])
            completed = parse_timestamp(row["completed_at"])
            hours = None
            if created is not None and completed is not None:
                hours = (completed - created).total_seconds() / 3600
            text = " ".join(t for t in (row["feedback"], row["suggestions"]) if t)
            outcomes.append(
                PatternOutcome(
                    work_item_id=row["id"],
                    success=row["success"] == 1,
                    quality_score=row["quality_score"] or 0.0,
                    rework_required=row["attempt_count"] > 1,
                    completion_hours=hours,
                    review_feedback=text or None,
                    completed_at=completed,
                )
            )
        return outcomes

    def get_pattern_review_quality(self) -> dict[str, tuple[int, float | None]]:
        """Per active pattern: linked work item count and mean review quality."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    p.id,
                    COUNT(DISTINCT pw.work_item_id) AS linked,
                    AVG(rv.quality_score) AS avg_quality
                FROM patterns p
                LEFT JOIN pattern_work_items pw ON pw.pattern_id = p.id
                LEFT JOIN reviews rv ON rv.work_item_id = pw.work_item_id
                GROUP BY p.id
                """
            ).fetchall()
        return {row["id"]: (row["linked"], row["avg_quality"]) for row in rows}

    def get_accepted_adrs(self, limit: int = 50) -> list[ADRRecord]:
        """Accepted architecture decisions, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM adrs WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                (ADRStatus.ACCEPTED.value, limit),
            ).fetchall()
        return [
            ADRRecord(
                id=row["id"],
                title=row["title"],
                context=row["context"] or "",
                decision=row["decision"] or "",
                consequences=row["consequences"] or "",
                status=ADRStatus(row["status"]),
                created_by=row["created_by"],
                work_item_id=row["work_item_id"],
                superseded_by=row["superseded_by"],
                created_at=parse_timestamp(row["created_at"]),
            )
            for row in rows
        ]

    def get_approved_reviews(self, agent_role: str, limit: int = 50) -> list[ReviewRecord]:
        """Approved reviews written by ``agent_role`` or of architecture type."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reviews
                WHERE status = ? AND (reviewer_role = ? OR review_type = ?)
                ORDER BY created_at DESC LIMIT ?
                """,
                (
                    ReviewStatus.APPROVED.value,
                    agent_role,
                    ReviewType.ARCHITECTURE.value,
                    limit,
                ),
            ).fetchall()
        return [
            ReviewRecord(
                id=row["id"],
                work_item_id=row["work_item_id"],
                reviewer_role=row["reviewer_role"],
                review_type=ReviewType(row["review_type"]),
                status=ReviewStatus(row["status"]),
                feedback=row["feedback"] or "",
                suggestions=row["suggestions"],
                quality_score=row["quality_score"],
                created_at=parse_timestamp(row["created_at"]),
            )
            for row in rows
        ]


def _load_file_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        files = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(f) for f in files] if isinstance(files, list) else []
