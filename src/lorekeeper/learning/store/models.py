"""Data models for the learning store.

Dataclasses and enums for the records Lorekeeper reads and writes: learned
patterns and their archive, plus the read-only work history (work items,
results, reviews, architecture decisions) shared with the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import numpy as np

from lorekeeper.core.exceptions import InvalidPatternError


class PatternType(str, Enum):
    """Kind of knowledge a pattern captures."""

    SOLUTION = "solution"
    """How a piece of functionality was built."""

    APPROACH = "approach"
    """A design strategy or technique that was chosen."""

    TOOL_USAGE = "tool_usage"
    """Which tools or libraries helped with a kind of task."""

    ERROR_HANDLING = "error_handling"
    """How an error encountered during the work was recovered from."""

    OPTIMIZATION = "optimization"
    """Performance or quality improvements suggested by review."""


class ADRStatus(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    DEPRECATED = "deprecated"
    SUPERSEDED = "superseded"


class ReviewStatus(str, Enum):
    APPROVED = "approved"
    NEEDS_CHANGES = "needs_changes"
    REJECTED = "rejected"
    PENDING = "pending"
    NEEDS_REVISION = "needs_revision"


class ReviewType(str, Enum):
    CODE = "code"
    ARCHITECTURE = "architecture"
    SECURITY = "security"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    PERFORMANCE = "performance"


@dataclass
class PatternDraft:
    """Validated content for a pattern that is about to be created or categorized.

    ``pattern_type`` may be None when the draft is handed to the categorizer,
    which decides it. Creation requires a type and at least one source work
    item; the store enforces both.

    Raises:
        InvalidPatternError: On a blank role, blank context and solution, or
            an effectiveness score outside [0, 1].
    """

    agent_role: str
    context: str
    solution: str
    pattern_type: PatternType | None = None
    effectiveness_score: float = 0.5
    tags: list[str] = field(default_factory=list)
    source_work_item_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.agent_role or not self.agent_role.strip():
            raise InvalidPatternError("Pattern agent_role must not be blank")
        if not (self.context or "").strip() and not (self.solution or "").strip():
            raise InvalidPatternError("Pattern needs a context or a solution")
        if not 0.0 <= self.effectiveness_score <= 1.0:
            raise InvalidPatternError(
                f"effectiveness_score must be in [0, 1], got {self.effectiveness_score}"
            )
        if self.pattern_type is not None:
            self.pattern_type = PatternType(self.pattern_type)

    @property
    def text(self) -> str:
        """Text that is embedded for similarity comparisons."""
        return f"{self.context} {self.solution}"


@dataclass
class Pattern:
    """A learned, reusable unit of knowledge."""

    id: str
    agent_role: str
    pattern_type: PatternType
    context: str
    solution: str
    effectiveness_score: float
    usage_count: int
    tags: list[str]
    created_at: datetime
    updated_at: datetime
    embedding: np.ndarray | None = field(default=None, repr=False)
    source_work_item_ids: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return f"{self.context} {self.solution}"


@dataclass
class ArchivedPattern(Pattern):
    """A pattern moved out of the active set, restorable with its identity."""

    archived_at: datetime | None = None
    archive_reason: str = ""


@dataclass
class CompletedWorkItem:
    """A completed work item joined to its latest result and review."""

    id: str
    type: str
    title: str
    description: str
    agent_role: str
    implementation_notes: str | None
    files_changed: list[str]
    tests_added: bool
    success: bool
    error_message: str | None
    quality_score: float | None
    suggestions: str | None
    completed_at: datetime | None


@dataclass
class PatternOutcome:
    """One recorded application of a pattern to a linked work item."""

    work_item_id: str
    success: bool
    quality_score: float
    rework_required: bool
    completion_hours: float | None
    review_feedback: str | None
    completed_at: datetime | None


@dataclass
class ADRRecord:
    id: str
    title: str
    context: str
    decision: str
    consequences: str
    status: ADRStatus
    created_by: str
    work_item_id: str | None = None
    superseded_by: str | None = None
    created_at: datetime | None = None


@dataclass
class ReviewRecord:
    id: str
    work_item_id: str
    reviewer_role: str
    review_type: ReviewType
    status: ReviewStatus
    feedback: str
    suggestions: str | None = None
    quality_score: float | None = None
    created_at: datetime | None = None


@dataclass
class LearningMetricRecord:
    """Metrics written at the end of each scheduler cycle."""

    id: int
    cycle_type: str
    metrics: dict[str, Any]
    created_at: datetime


@dataclass
class LearningErrorRecord:
    id: int
    cycle_type: str
    error_message: str
    stack_trace: str | None
    created_at: datetime
