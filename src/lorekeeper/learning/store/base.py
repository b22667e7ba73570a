"""Base class for LearningStore with connection and schema management.

This module provides the foundational `LearningStoreBase` class that handles:
- SQLite database connection management with WAL mode
- Schema creation for learning tables and the shared work-history tables
- Row conversion helpers shared by the mixins

Mixins inherit from this base to add domain-specific functionality.
"""

from __future__ import annotations

import contextvars
import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from lorekeeper.core.logging import get_logger
from lorekeeper.learning.embeddings import from_blob
from lorekeeper.learning.store.models import ArchivedPattern, Pattern, PatternType

_logger = get_logger("learning.store")

DEFAULT_STORE_PATH = Path("lorekeeper.db")

# SQLite accepts str, int, float, bytes, and None as bind parameters.
SQLParam = str | int | float | bytes | None


class WhereBuilder:
    """Accumulates SQL WHERE clauses and their bound parameters.

    Clauses are joined with AND.

    Usage::

        wb = WhereBuilder()
        wb.add("agent_role = ?", role)
        wb.add("effectiveness_score >= ?", min_score)
        where_sql, params = wb.build()
        conn.execute(f"SELECT * FROM patterns WHERE {where_sql}", params)
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[SQLParam] = []

    def add(self, clause: str, *params: SQLParam) -> None:
        """Append a WHERE clause with its bound parameters."""
        self._clauses.append(clause)
        self._params.extend(params)

    def build(self) -> tuple[str, tuple[SQLParam, ...]]:
        """Return the combined WHERE fragment and parameter tuple.

        Returns ``("1=1", ())`` when no clauses have been added.
        """
        if not self._clauses:
            return "1=1", ()
        return " AND ".join(self._clauses), tuple(self._params)


def to_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime the way every timestamp column stores it."""
    return value.isoformat() if value is not None else None


def dumps_json(value: Any) -> str:
    """JSON-encode a column value with stable key order."""
    return json.dumps(value, sort_keys=True)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def row_to_pattern(row: sqlite3.Row, source_ids: list[str] | None = None) -> Pattern:
    """Build a Pattern from a ``patterns`` row."""
    return Pattern(
        id=row["id"],
        agent_role=row["agent_role"],
        pattern_type=PatternType(row["pattern_type"]),
        context=row["context"],
        solution=row["solution"],
        effectiveness_score=row["effectiveness_score"],
        usage_count=row["usage_count"],
        tags=json.loads(row["tags"]) if row["tags"] else [],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        embedding=from_blob(row["embedding"]),
        source_work_item_ids=source_ids or [],
    )


def row_to_archived_pattern(row: sqlite3.Row) -> ArchivedPattern:
    """Build an ArchivedPattern from an ``archived_patterns`` row."""
    return ArchivedPattern(
        id=row["id"],
        agent_role=row["agent_role"],
        pattern_type=PatternType(row["pattern_type"]),
        context=row["context"],
        solution=row["solution"],
        effectiveness_score=row["effectiveness_score"],
        usage_count=row["usage_count"],
        tags=json.loads(row["tags"]) if row["tags"] else [],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        embedding=from_blob(row["embedding"]),
        source_work_item_ids=json.loads(row["source_work_item_ids"] or "[]"),
        archived_at=parse_timestamp(row["archived_at"]),
        archive_reason=row["archive_reason"] or "",
    )


class LearningStoreBase:
    """SQLite-based learning store base class.

    Stores patterns, their links to work items, the pattern archive and
    learning cycle telemetry. The work-history tables (work_items,
    work_item_results, reviews, adrs) belong to the orchestrator; they are
    created here if absent so a fresh database is usable on its own.

    Attributes:
        db_path: Path to the SQLite database file.
        _logger: Module logger instance for consistent logging.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize the learning store.

        Creates the database directory if needed and creates the schema.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path or DEFAULT_STORE_PATH
        self._logger = _logger
        # Scoped per asyncio task / thread context so one batch never leaks
        # into another caller's _get_connection().
        self._batch_conn: contextvars.ContextVar[sqlite3.Connection | None] = (
            contextvars.ContextVar("_batch_conn", default=None)
        )
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._migrate_if_needed()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with proper configuration.

        Inside a ``batch_connection()`` block the batch connection is reused
        and committed by the batch. Otherwise a fresh connection is opened,
        committed on success, rolled back on error and closed.

        Yields:
            A configured sqlite3.Connection instance.

        Raises:
            sqlite3.Error: If connection or the operation fails.
        """
        batch = self._batch_conn.get()
        if batch is not None:
            yield batch
            return

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            _logger.warning(
                "store.operation_failed",
                db_path=str(self.db_path),
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            conn.close()

    @contextmanager
    def batch_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Run several operations in one connection and one transaction.

        All ``_get_connection()`` calls inside the block share the
        connection. It is committed once on successful exit or rolled back
        entirely on error.

        Example::

            with store.batch_connection():
                store.archive_pattern(pattern_id, reason)
                store.delete_pattern(pattern_id)

        Yields:
            The shared sqlite3.Connection instance.
        """
        existing = self._batch_conn.get()
        if existing is not None:
            # Nested batches join the outer transaction
            yield existing
            return

        conn = self._connect()
        token = self._batch_conn.set(conn)
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            _logger.warning(
                "store.batch_failed",
                db_path=str(self.db_path),
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            self._batch_conn.reset(token)
            conn.close()

    def close(self) -> None:  # noqa: B027
        """No-op: connections are managed per operation."""

    def _migrate_if_needed(self) -> None:
        with self._get_connection() as conn:
            try:
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row["version"] if row else 0
            except sqlite3.OperationalError:
                current_version = 0

            if current_version < self.SCHEMA_VERSION:
                self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create all tables and indexes (idempotent)."""
        self._create_schema_version_table(conn)
        self._create_work_history_tables(conn)
        self._create_patterns_table(conn)
        self._create_pattern_work_items_table(conn)
        self._create_archived_patterns_table(conn)
        self._create_learning_telemetry_tables(conn)

        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,),
        )
        self._logger.info("store.schema_created", version=self.SCHEMA_VERSION)

    @staticmethod
    def _create_schema_version_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)

    @staticmethod
    def _create_work_history_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS work_items (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT DEFAULT '',
                status TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_work_items_status "
            "ON work_items(status, completed_at)"
        )
        conn.execute("""
            CREATE TABLE IF NOT EXISTS work_item_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                work_item_id TEXT NOT NULL REFERENCES work_items(id) ON DELETE CASCADE,
                agent_role TEXT NOT NULL,
                implementation_notes TEXT,
                files_changed TEXT,
                tests_added INTEGER DEFAULT 0,
                success INTEGER DEFAULT 0,
                error_message TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_results_work_item "
            "ON work_item_results(work_item_id)"
        )
        conn.execute("""
            CREATE TABLE IF NOT EXISTS reviews (
                id TEXT PRIMARY KEY,
                work_item_id TEXT NOT NULL REFERENCES work_items(id) ON DELETE CASCADE,
                reviewer_role TEXT NOT NULL,
                review_type TEXT NOT NULL,
                status TEXT NOT NULL,
                feedback TEXT DEFAULT '',
                suggestions TEXT,
                quality_score REAL,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_reviews_work_item ON reviews(work_item_id)"
        )
        conn.execute("""
            CREATE TABLE IF NOT EXISTS adrs (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                context TEXT DEFAULT '',
                decision TEXT DEFAULT '',
                consequences TEXT DEFAULT '',
                status TEXT NOT NULL,
                work_item_id TEXT,
                created_by TEXT NOT NULL,
                superseded_by TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """)

    @staticmethod
    def _create_patterns_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS patterns (
                id TEXT PRIMARY KEY,
                agent_role TEXT NOT NULL,
                pattern_type TEXT NOT NULL,
                context TEXT NOT NULL,
                solution TEXT NOT NULL,
                effectiveness_score REAL DEFAULT 0.5
                    CHECK (effectiveness_score >= 0 AND effectiveness_score <= 1),
                usage_count INTEGER DEFAULT 0 CHECK (usage_count >= 0),
                embedding BLOB,
                tags TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_role ON patterns(agent_role)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_type ON patterns(pattern_type)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_effectiveness "
            "ON patterns(effectiveness_score DESC)"
        )

    @staticmethod
    def _create_pattern_work_items_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pattern_work_items (
                pattern_id TEXT NOT NULL REFERENCES patterns(id) ON DELETE CASCADE,
                work_item_id TEXT NOT NULL REFERENCES work_items(id) ON DELETE CASCADE,
                PRIMARY KEY (pattern_id, work_item_id)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_pattern_work_items_item "
            "ON pattern_work_items(work_item_id)"
        )

    @staticmethod
    def _create_archived_patterns_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS archived_patterns (
                id TEXT PRIMARY KEY,
                agent_role TEXT NOT NULL,
                pattern_type TEXT NOT NULL,
                context TEXT NOT NULL,
                solution TEXT NOT NULL,
                effectiveness_score REAL,
                usage_count INTEGER,
                embedding BLOB,
                tags TEXT,
                source_work_item_ids TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                archived_at TIMESTAMP NOT NULL,
                archive_reason TEXT
            )
        """)

    @staticmethod
    def _create_learning_telemetry_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS learning_metrics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cycle_type TEXT NOT NULL,
                metrics TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_learning_metrics_cycle "
            "ON learning_metrics(cycle_type, created_at)"
        )
        conn.execute("""
            CREATE TABLE IF NOT EXISTS learning_errors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cycle_type TEXT NOT NULL,
                error_message TEXT NOT NULL,
                stack_trace TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_learning_errors_created "
            "ON learning_errors(created_at)"
        )
