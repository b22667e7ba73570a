"""Pytest fixtures for Lorekeeper tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import structlog

from lorekeeper.learning.store import LearningStore

# Fixed reference time so age-based rules are deterministic
NOW = datetime(2026, 6, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog and root handlers before and after each test."""
    structlog.reset_defaults()
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Isolated database path for each test."""
    return tmp_path / "lorekeeper-test.db"


@pytest.fixture
def store(db_path: Path) -> LearningStore:
    """Fresh learning store on an empty database."""
    return LearningStore(db_path=db_path)


@pytest.fixture
def now() -> datetime:
    return NOW


RecordWork = Callable[..., str]


@pytest.fixture
def record_work(store: LearningStore) -> RecordWork:
    """Record a completed work item with one result and an optional review.

    Returns a helper taking keyword overrides; the work item id is returned.
    """
    counter = {"n": 0}

    def _record(
        work_item_id: str | None = None,
        *,
        type: str = "feature",  # noqa: A002
        title: str = "Add login endpoint",
        description: str = "REST api for user login",
        agent_role: str = "developer",
        notes: str | None = "Implemented JWT token issuing in the auth service",
        success: bool = True,
        tests_added: bool = True,
        files_changed: list[str] | None = None,
        error_message: str | None = None,
        quality_score: float | None = 0.9,
        feedback: str = "",
        suggestions: str | None = None,
        created_at: datetime | None = None,
        completed_at: datetime | None = None,
        attempts: int = 1,
    ) -> str:
        counter["n"] += 1
        item_id = work_item_id or f"wi-{counter['n']:03d}"
        completed = completed_at or NOW - timedelta(hours=counter["n"])
        created = created_at or completed - timedelta(hours=1)
        store.record_work_item(
            item_id,
            type=type,
            title=title,
            description=description,
            created_at=created,
            completed_at=completed,
        )
        for attempt in range(attempts):
            store.record_work_item_result(
                item_id,
                agent_role=agent_role,
                implementation_notes=notes,
                success=success,
                files_changed=files_changed,
                tests_added=tests_added,
                error_message=error_message,
                created_at=created + timedelta(minutes=attempt + 1),
            )
        if quality_score is not None or feedback or suggestions:
            store.record_review(
                item_id,
                reviewer_role="reviewer",
                feedback=feedback,
                suggestions=suggestions,
                quality_score=quality_score,
                created_at=completed,
            )
        return item_id

    return _record
