"""Tests for lorekeeper.learning.extraction module."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

import numpy as np
import pytest

from lorekeeper.core.config import ExtractionConfig
from lorekeeper.learning.categorization import PatternCategorizer
from lorekeeper.learning.extraction import (
    ExtractedPattern,
    PatternExtractor,
    calculate_confidence,
    calculate_effectiveness,
    extract_tags,
    find_tools,
)
from lorekeeper.learning.store import CompletedWorkItem, LearningStore, PatternType


def make_item(**overrides) -> CompletedWorkItem:
    fields = {
        "id": "wi-1",
        "type": "feature",
        "title": "Add login endpoint",
        "description": "REST api for user login",
        "agent_role": "developer",
        "implementation_notes": "Implemented JWT token issuing in the auth service",
        "files_changed": [],
        "tests_added": True,
        "success": True,
        "error_message": None,
        "quality_score": 0.9,
        "suggestions": None,
        "completed_at": datetime(2026, 6, 1),
    }
    fields.update(overrides)
    return CompletedWorkItem(**fields)


def make_candidate(context: str, **overrides) -> ExtractedPattern:
    fields = {
        "agent_role": "developer",
        "pattern_type": PatternType.SOLUTION,
        "context": context,
        "solution": "notes",
        "confidence": 0.8,
        "effectiveness": 0.8,
    }
    fields.update(overrides)
    return ExtractedPattern(**fields)


class FakeEmbedder:
    """Embedder returning fixed vectors keyed by the first word of the text."""

    def __init__(self, vectors: dict[str, list[float]]) -> None:
        self.vectors = {k: np.asarray(v, dtype=np.float32) for k, v in vectors.items()}

    def __call__(self, text: str) -> np.ndarray:
        return self.vectors[text.split()[0]]


# ─── Scoring Helpers ──────────────────────────────────────────────────


class TestCandidateScores:
    """Tests for the confidence and effectiveness formulas."""

    def test_confidence_full_marks(self):
        assert calculate_confidence(make_item()) == pytest.approx(0.5 + 0.27 + 0.1)

    def test_confidence_error_penalty(self):
        item = make_item(tests_added=False, error_message="Timeout", quality_score=None)
        assert calculate_confidence(item) == pytest.approx(0.4)

    def test_effectiveness_capped(self):
        assert calculate_effectiveness(make_item()) == 1.0

    def test_effectiveness_without_review(self):
        item = make_item(quality_score=None, tests_added=False)
        assert calculate_effectiveness(item) == pytest.approx(0.7)

    def test_tags_include_type_and_keywords(self):
        assert extract_tags(make_item()) == {"feature", "api"}

    def test_find_tools(self):
        notes = "Used pytest tool for checks, implemented using fastapi. pytest was helpful for mocks"
        assert find_tools(notes) == ["pytest", "fastapi"]


# ─── Candidate Extraction ─────────────────────────────────────────────


class TestExtractCandidates:
    """Tests for per-item candidate derivation."""

    @pytest.fixture
    def extractor(self, store: LearningStore) -> PatternExtractor:
        return PatternExtractor(store)

    def test_solution_candidate(self, extractor: PatternExtractor):
        [candidate] = extractor.extract_candidates(make_item())
        assert candidate.pattern_type is PatternType.SOLUTION
        assert candidate.context == "feature: Add login endpoint\nREST api for user login"
        assert candidate.solution == "Implemented JWT token issuing in the auth service"
        assert candidate.source_work_item_ids == {"wi-1"}

    def test_failed_item_yields_nothing(self, extractor: PatternExtractor):
        assert extractor.extract_candidates(make_item(success=False)) == []

    def test_blank_notes_yield_nothing(self, extractor: PatternExtractor):
        assert extractor.extract_candidates(make_item(implementation_notes="  ")) == []

    def test_all_four_candidates(self, extractor: PatternExtractor):
        item = make_item(
            error_message="Timeout contacting identity provider",
            files_changed=["auth.py", "routes.py"],
            implementation_notes="Used httpx tool to retry the call",
            suggestions="Cache the signing keys",
        )
        by_type = {c.pattern_type: c for c in extractor.extract_candidates(item)}

        assert set(by_type) == set(PatternType) - {PatternType.APPROACH}

        error = by_type[PatternType.ERROR_HANDLING]
        assert error.context == "Error: Timeout contacting identity provider"
        assert "error-recovery" in error.tags

        tool = by_type[PatternType.TOOL_USAGE]
        assert tool.context == "Working with 2 files: auth.py, routes.py"
        assert tool.solution.startswith("Tools used: httpx\n")
        assert "tools" in tool.tags

        optimization = by_type[PatternType.OPTIMIZATION]
        assert optimization.context == "Add login endpoint"
        assert optimization.solution.endswith("\nOptimizations: Cache the signing keys")
        assert {"performance", "quality"} <= optimization.tags

    def test_no_tool_candidate_without_cue(self, extractor: PatternExtractor):
        item = make_item(files_changed=["a.py"])
        types = {c.pattern_type for c in extractor.extract_candidates(item)}
        assert PatternType.TOOL_USAGE not in types

    def test_no_optimization_at_threshold(self, extractor: PatternExtractor):
        item = make_item(quality_score=0.8, suggestions="faster")
        types = {c.pattern_type for c in extractor.extract_candidates(item)}
        assert PatternType.OPTIMIZATION not in types


# ─── Grouping & Consolidation ─────────────────────────────────────────


class TestGrouping:
    """Tests for exact-key grouping."""

    def test_repeats_increment_frequency_and_blend(self, store: LearningStore):
        extractor = PatternExtractor(store)
        first = make_candidate("same context", effectiveness=0.6, source_work_item_ids={"a"})
        second = make_candidate(
            "same context", effectiveness=1.0, confidence=0.95, source_work_item_ids={"b"}
        )
        third = make_candidate("same context", effectiveness=0.8, source_work_item_ids={"c"})

        [grouped] = extractor.group_candidates([first, second, third])

        assert grouped.frequency == 3
        # ((0.6 + 1.0) / 2 + 0.8) / 2
        assert grouped.effectiveness == pytest.approx(0.8)
        assert grouped.confidence == pytest.approx(0.8)
        assert grouped.source_work_item_ids == {"a", "b", "c"}
        assert first.frequency == 1

    def test_key_uses_context_prefix(self, store: LearningStore):
        extractor = PatternExtractor(store, ExtractionConfig(context_key_length=5))
        grouped = extractor.group_candidates(
            [make_candidate("abcde-one"), make_candidate("abcde-two")]
        )
        assert len(grouped) == 1

    def test_different_roles_stay_apart(self, store: LearningStore):
        extractor = PatternExtractor(store)
        grouped = extractor.group_candidates(
            [make_candidate("ctx"), make_candidate("ctx", agent_role="tester")]
        )
        assert len(grouped) == 2


class TestConsolidation:
    """Tests for similarity-based consolidation."""

    @pytest.fixture
    def extractor(self, store: LearningStore) -> PatternExtractor:
        # alpha and beta have cosine similarity 0.9; gamma is orthogonal
        embedder = FakeEmbedder({
            "alpha": [1.0, 0.0],
            "beta": [0.9, math.sqrt(1 - 0.81)],
            "gamma": [0.0, 1.0],
        })
        return PatternExtractor(store, embedder=embedder)

    def test_near_duplicates_merge(self, extractor: PatternExtractor):
        alpha = make_candidate(
            "alpha context",
            confidence=0.8,
            effectiveness=0.9,
            frequency=2,
            tags={"x"},
            source_work_item_ids={"1", "2"},
        )
        beta = make_candidate(
            "beta context",
            pattern_type=PatternType.APPROACH,
            confidence=0.9,
            effectiveness=0.7,
            tags={"y"},
            source_work_item_ids={"3"},
        )
        gamma = make_candidate("gamma context", source_work_item_ids={"4"})

        result = extractor.consolidate([alpha, beta, gamma])

        assert len(result) == 2
        merged = result[0]
        assert merged.context == "beta context"
        assert merged.pattern_type is PatternType.APPROACH
        assert merged.confidence == pytest.approx(0.9)
        assert merged.frequency == 3
        assert merged.effectiveness == pytest.approx(0.8)
        assert merged.tags == {"x", "y"}
        assert merged.source_work_item_ids == {"1", "2", "3"}
        assert result[1].context == "gamma context"

    def test_consolidation_is_idempotent(self, extractor: PatternExtractor):
        candidates = [
            make_candidate("alpha one"),
            make_candidate("beta two"),
            make_candidate("gamma three"),
        ]
        once = extractor.consolidate(candidates)
        twice = extractor.consolidate(once)
        assert [(c.context, c.frequency) for c in twice] == [
            (c.context, c.frequency) for c in once
        ]

    def test_single_candidate_passthrough(self, extractor: PatternExtractor):
        only = make_candidate("alpha")
        assert extractor.consolidate([only]) == [only]


class TestQualification:
    def test_thresholds(self, store: LearningStore):
        extractor = PatternExtractor(store)
        assert extractor.qualifies(make_candidate("c", frequency=2, confidence=0.7, effectiveness=0.6))
        assert not extractor.qualifies(make_candidate("c", frequency=1))
        assert not extractor.qualifies(make_candidate("c", frequency=2, confidence=0.69))
        assert not extractor.qualifies(make_candidate("c", frequency=2, effectiveness=0.59))


# ─── Pipeline ─────────────────────────────────────────────────────────


class TestExtractionPipeline:
    """End-to-end extraction against the store."""

    def test_recurring_work_becomes_pattern(self, store: LearningStore, record_work):
        record_work("wi-001")
        record_work("wi-002")
        extractor = PatternExtractor(store)

        [candidate] = extractor.extract_patterns()
        assert candidate.frequency == 2
        assert candidate.source_work_item_ids == {"wi-001", "wi-002"}

        [pattern] = extractor.save_patterns([candidate])
        assert pattern.effectiveness_score == pytest.approx(candidate.confidence)
        assert pattern.source_work_item_ids == ["wi-001", "wi-002"]
        assert pattern.embedding is not None

    def test_one_off_work_does_not_qualify(self, store: LearningStore, record_work):
        record_work("wi-001")
        assert PatternExtractor(store).extract_patterns() == []

    def test_window_excludes_older_work(self, store: LearningStore, record_work, now: datetime):
        record_work("wi-001", completed_at=now - timedelta(days=3))
        record_work("wi-002", completed_at=now - timedelta(hours=1))
        record_work("wi-003", completed_at=now - timedelta(hours=2))
        extractor = PatternExtractor(store)

        [candidate] = extractor.extract_patterns(since=now - timedelta(days=1), until=now)
        assert candidate.source_work_item_ids == {"wi-002", "wi-003"}

    def test_failed_save_is_skipped(self, store: LearningStore, record_work):
        record_work("wi-001")
        extractor = PatternExtractor(store)
        good = make_candidate("good", source_work_item_ids={"wi-001"})
        bad = make_candidate("bad", source_work_item_ids=set())

        saved = extractor.save_patterns([bad, good])
        assert [p.context for p in saved] == ["good"]

    def test_extract_and_save_with_categorizer(self, store: LearningStore, record_work):
        record_work("wi-001")
        record_work("wi-002")
        extractor = PatternExtractor(store)

        [pattern] = extractor.extract_and_save(categorizer=PatternCategorizer(store))

        assert pattern.pattern_type is PatternType.SOLUTION
        assert {"feature", "api", "security", "backend", "solution"} <= set(pattern.tags)
        assert store.count_patterns() == 1

    def test_uncategorizable_candidate_does_not_abort_cycle(
        self, store: LearningStore, record_work
    ):
        """Work recorded without an agent role is dropped; the rest is saved."""
        record_work("wi-001")
        record_work("wi-002")
        for item_id in ("wi-003", "wi-004"):
            record_work(
                item_id,
                agent_role="",
                title="Render sales chart",
                description="canvas widget for the dashboard",
                notes="Drew the chart bars with batched canvas paint calls",
            )
        extractor = PatternExtractor(store)

        saved = extractor.extract_and_save(categorizer=PatternCategorizer(store))

        assert [p.agent_role for p in saved] == ["developer"]
        assert store.count_patterns() == 1
