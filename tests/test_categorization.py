"""Tests for lorekeeper.learning.categorization module."""

from __future__ import annotations

import numpy as np
import pytest

from lorekeeper.learning.categorization import (
    CATEGORY_SIGNATURES,
    PatternCategorizer,
    match_signature,
)
from lorekeeper.learning.embeddings import embed
from lorekeeper.learning.store import LearningStore, PatternDraft, PatternType

PLAIN_CONTEXT = "Render chart widgets"
PLAIN_SOLUTION = "Use canvas layers for chart widgets"


def draft(context: str, solution: str, pattern_type: PatternType | None = None) -> PatternDraft:
    return PatternDraft(
        agent_role="developer",
        context=context,
        solution=solution,
        pattern_type=pattern_type,
        source_work_item_ids=["wi-001"],
    )


def signature_for(pattern_type: PatternType):
    return next(s for s in CATEGORY_SIGNATURES if s.pattern_type is pattern_type)


class FixedEmbedder:
    """Embeds every text to the same vector."""

    def __init__(self, vector: list[float]) -> None:
        self.vector = np.asarray(vector, dtype=np.float32)

    def __call__(self, text: str) -> np.ndarray:
        return self.vector


@pytest.fixture
def seeded_store(store: LearningStore, record_work) -> LearningStore:
    record_work("wi-001")
    return store


def add_pattern(
    store: LearningStore,
    pattern_type: PatternType,
    embedding: list[float] | np.ndarray | None,
    context: str = PLAIN_CONTEXT,
    solution: str = PLAIN_SOLUTION,
) -> str:
    vector = np.asarray(embedding, dtype=np.float32) if embedding is not None else None
    return store.create_pattern(
        draft(context, solution, pattern_type), embedding=vector
    ).id


# ─── Signature Matching ───────────────────────────────────────────────


class TestSignatureMatching:
    """Tests for rule-based signature scores."""

    def test_all_types_have_signatures(self):
        assert {s.pattern_type for s in CATEGORY_SIGNATURES} == set(PatternType)

    def test_solution_signature_score(self):
        match = match_signature(
            signature_for(PatternType.SOLUTION),
            "Implement search feature",
            "Created SearchIndex class",
        )
        # (3 keywords x 0.1 + 0.2 + 0.2) x 0.8
        assert match.score == pytest.approx(0.56)
        assert {"implement", "create", "feature"} == set(match.matched_keywords)

    def test_score_capped_at_one(self):
        match = match_signature(
            signature_for(PatternType.ERROR_HANDLING),
            "Error: NullPointerException thrown, bug in parser, fails to load, crashes when empty",
            "Fixed by guarding input, handled parse error, caught exception, resolved by retry",
        )
        assert match.score == 1.0

    def test_no_match_scores_zero(self):
        match = match_signature(signature_for(PatternType.APPROACH), "", "")
        assert match.score == 0.0


class TestCategorize:
    """Tests for the two-stage categorization."""

    def test_error_handling_signature(self, store: LearningStore):
        categorizer = PatternCategorizer(store)
        result = categorizer.categorize(
            draft(
                "Error: NullPointerException thrown when saving",
                "Fixed by adding a null check and handled timeout error gracefully",
            )
        )
        assert result is PatternType.ERROR_HANDLING

    def test_optimization_signature(self, store: LearningStore):
        categorizer = PatternCategorizer(store)
        result = categorizer.categorize(
            draft(
                "Optimize query performance for dashboard",
                "Optimized by adding an index and cached results",
            )
        )
        assert result is PatternType.OPTIMIZATION

    def test_matches_sorted_best_first(self, store: LearningStore):
        matches = PatternCategorizer(store).find_category_matches(
            draft(
                "Error: NullPointerException thrown when saving",
                "Fixed by adding a null check and handled timeout error gracefully",
            )
        )
        scores = [m.score for m in matches]
        assert scores == sorted(scores, reverse=True)
        assert all(score > 0.5 for score in scores)

    def test_defaults_to_solution_without_neighbors(self, store: LearningStore):
        assert (
            PatternCategorizer(store).categorize(draft(PLAIN_CONTEXT, PLAIN_SOLUTION))
            is PatternType.SOLUTION
        )

    def test_nearest_neighbor_vote(self, seeded_store: LearningStore):
        add_pattern(seeded_store, PatternType.APPROACH, embed(f"{PLAIN_CONTEXT} {PLAIN_SOLUTION}"))
        result = PatternCategorizer(seeded_store).categorize(draft(PLAIN_CONTEXT, PLAIN_SOLUTION))
        assert result is PatternType.APPROACH

    def test_votes_are_summed_per_type(self, seeded_store: LearningStore):
        # Two tool_usage neighbours at 0.8 outvote one approach neighbour at 1.0
        add_pattern(seeded_store, PatternType.APPROACH, [1.0, 0.0])
        add_pattern(seeded_store, PatternType.TOOL_USAGE, [0.8, 0.6])
        add_pattern(seeded_store, PatternType.TOOL_USAGE, [0.8, -0.6])
        categorizer = PatternCategorizer(seeded_store, embedder=FixedEmbedder([1.0, 0.0]))
        assert categorizer.categorize(draft(PLAIN_CONTEXT, PLAIN_SOLUTION)) is PatternType.TOOL_USAGE

    def test_distant_patterns_do_not_vote(self, seeded_store: LearningStore):
        add_pattern(seeded_store, PatternType.APPROACH, [0.6, 0.8])
        categorizer = PatternCategorizer(seeded_store, embedder=FixedEmbedder([1.0, 0.0]))
        assert categorizer.categorize(draft(PLAIN_CONTEXT, PLAIN_SOLUTION)) is PatternType.SOLUTION

    def test_excluded_patterns_do_not_vote(self, seeded_store: LearningStore):
        pattern_id = add_pattern(seeded_store, PatternType.APPROACH, [1.0, 0.0])
        categorizer = PatternCategorizer(seeded_store, embedder=FixedEmbedder([1.0, 0.0]))
        result = categorizer.categorize(draft(PLAIN_CONTEXT, PLAIN_SOLUTION), {pattern_id})
        assert result is PatternType.SOLUTION


# ─── Tags ─────────────────────────────────────────────────────────────


class TestExtractTags:
    def test_lexicon_tags_and_type(self, store: LearningStore):
        tags = PatternCategorizer(store).extract_tags(
            draft("Build React component with Redis cache", "Deploy via docker to AWS"),
            PatternType.SOLUTION,
        )
        assert tags == {"react", "caching", "containerization", "cloud", "solution"}

    def test_domain_tags(self, store: LearningStore):
        tags = PatternCategorizer(store).extract_tags(
            draft("Expose REST endpoint", "Backend service behind the api gateway"),
            PatternType.TOOL_USAGE,
        )
        assert {"api", "backend", "tool_usage"} <= tags

    def test_falls_back_to_draft_type(self, store: LearningStore):
        tags = PatternCategorizer(store).extract_tags(
            draft("plain", "text", PatternType.APPROACH)
        )
        assert tags == {"approach"}


# ─── Recategorization ─────────────────────────────────────────────────


class TestRecategorization:
    """Tests for store-wide recategorization and accuracy analysis."""

    def test_recategorize_updates_changed_types(self, seeded_store: LearningStore):
        lone = add_pattern(seeded_store, PatternType.APPROACH, embed("x"))
        error = add_pattern(
            seeded_store,
            PatternType.SOLUTION,
            None,
            context="Error: NullPointerException thrown when saving",
            solution="Fixed by adding a null check and handled timeout error gracefully",
        )

        assert PatternCategorizer(seeded_store).recategorize_patterns() == 2

        lone_pattern = seeded_store.get_pattern(lone)
        assert lone_pattern.pattern_type is PatternType.SOLUTION
        assert "approach" not in lone_pattern.tags
        assert "solution" in lone_pattern.tags
        assert seeded_store.get_pattern(error).pattern_type is PatternType.ERROR_HANDLING

    def test_recategorize_stable_store(self, seeded_store: LearningStore):
        add_pattern(seeded_store, PatternType.SOLUTION, None)
        assert PatternCategorizer(seeded_store).recategorize_patterns() == 0

    def test_accuracy_report(self, seeded_store: LearningStore):
        add_pattern(seeded_store, PatternType.SOLUTION, None)
        moved = add_pattern(seeded_store, PatternType.OPTIMIZATION, None)

        report = PatternCategorizer(seeded_store).analyze_categorization_accuracy()

        assert report.total_patterns == 2
        assert report.by_category["solution"].count == 1
        assert report.by_category["optimization"].linked_work_items == 1
        assert report.by_category["solution"].avg_quality == pytest.approx(0.9)
        [suggestion] = report.suggestions
        assert suggestion.pattern_id == moved
        assert suggestion.suggested_type is PatternType.SOLUTION
