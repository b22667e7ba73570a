"""Learning telemetry mixin for LearningStore.

Each scheduler cycle writes one ``learning_metrics`` row with its duration
and counts; failed cycles also write a ``learning_errors`` row.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any

from lorekeeper.core.logging import LoreLogger
from lorekeeper.learning.store.base import WhereBuilder, dumps_json, to_timestamp
from lorekeeper.learning.store.models import LearningErrorRecord, LearningMetricRecord


class LearningMetricsMixin:
    """Mixin recording and querying learning cycle telemetry."""

    _logger: LoreLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def record_learning_metrics(
        self,
        cycle_type: str,
        metrics: dict[str, Any],
        created_at: datetime | None = None,
    ) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO learning_metrics (cycle_type, metrics, created_at) "
                "VALUES (?, ?, ?)",
                (cycle_type, dumps_json(metrics), to_timestamp(created_at or datetime.now())),
            )
            return int(cursor.lastrowid or 0)

    def record_learning_error(
        self,
        cycle_type: str,
        error_message: str,
        stack_trace: str | None = None,
        created_at: datetime | None = None,
    ) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO learning_errors (cycle_type, error_message, stack_trace, created_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    cycle_type,
                    error_message,
                    stack_trace,
                    to_timestamp(created_at or datetime.now()),
                ),
            )
            return int(cursor.lastrowid or 0)

    def get_learning_metrics(
        self,
        since: datetime | None = None,
        cycle_type: str | None = None,
    ) -> list[LearningMetricRecord]:
        """Metrics rows, newest first."""
        wb = WhereBuilder()
        if since is not None:
            wb.add("created_at >= ?", to_timestamp(since))
        if cycle_type is not None:
            wb.add("cycle_type = ?", cycle_type)
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM learning_metrics WHERE {where_sql} "
                "ORDER BY created_at DESC, id DESC",
                params,
            ).fetchall()
        return [
            LearningMetricRecord(
                id=row["id"],
                cycle_type=row["cycle_type"],
                metrics=json.loads(row["metrics"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def get_learning_errors(self, since: datetime | None = None) -> list[LearningErrorRecord]:
        """Error rows, newest first."""
        wb = WhereBuilder()
        if since is not None:
            wb.add("created_at >= ?", to_timestamp(since))
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM learning_errors WHERE {where_sql} "
                "ORDER BY created_at DESC, id DESC",
                params,
            ).fetchall()
        return [
            LearningErrorRecord(
                id=row["id"],
                cycle_type=row["cycle_type"],
                error_message=row["error_message"],
                stack_trace=row["stack_trace"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def get_last_successful_run(self, cycle_type: str) -> datetime | None:
        """Start time of the most recent completed run of a cycle type."""
        for record in self.get_learning_metrics(cycle_type=cycle_type):
            if record.metrics.get("status") == "completed":
                started = record.metrics.get("started_at")
                return datetime.fromisoformat(started) if started else record.created_at
        return None
