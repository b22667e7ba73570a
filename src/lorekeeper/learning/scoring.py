"""Effectiveness scoring for learned patterns.

Scores each pattern from the outcomes of the work items it is linked to.
The score combines six factors:

    score = 0.25 x success_rate
          + 0.25 x avg_quality_score     (recency-decayed)
          + 0.15 x (1 - rework_rate)
          + 0.15 x review_feedback_score (keyword sentiment)
          + 0.10 x time_to_completion
          + 0.10 x reusability_score

clamped to [0, 1] and rounded to two decimals. Patterns with fewer than
``min_outcomes`` outcomes get the neutral score and are not updated.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

import numpy as np

from lorekeeper.core.config import ScoringConfig
from lorekeeper.core.exceptions import PatternNotFoundError
from lorekeeper.core.logging import get_logger
from lorekeeper.learning.store import LearningStore
from lorekeeper.learning.store.models import Pattern, PatternOutcome

_logger = get_logger("learning.scoring")

POSITIVE_FEEDBACK_KEYWORDS = (
    "excellent",
    "great",
    "good",
    "well",
    "efficient",
    "clean",
    "robust",
    "scalable",
    "maintainable",
    "clear",
    "effective",
)

NEGATIVE_FEEDBACK_KEYWORDS = (
    "poor",
    "bad",
    "inefficient",
    "unclear",
    "complex",
    "brittle",
    "unmaintainable",
    "slow",
    "buggy",
    "incorrect",
    "fails",
)

FACTOR_WEIGHTS = {
    "success_rate": 0.25,
    "avg_quality_score": 0.25,
    "rework": 0.15,
    "review_feedback_score": 0.15,
    "time_to_completion": 0.10,
    "reusability_score": 0.10,
}

# Work items needed for full reuse credit
REUSE_SATURATION = 10


@dataclass
class EffectivenessMetrics:
    """Factor values feeding the effectiveness score. All in [0, 1]."""

    success_rate: float
    avg_quality_score: float
    rework_rate: float
    review_feedback_score: float
    time_to_completion: float
    reusability_score: float
    sample_size: int


@dataclass
class BatchScoringResult:
    updated: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class GroupStats:
    count: int
    avg_effectiveness: float
    total_usage: int


@dataclass
class PatternTrends:
    """Snapshot of how the active pattern set is performing."""

    top_performers: list[Pattern] = field(default_factory=list)
    underperformers: list[Pattern] = field(default_factory=list)
    most_used: list[Pattern] = field(default_factory=list)
    by_type: dict[str, GroupStats] = field(default_factory=dict)
    by_role: dict[str, GroupStats] = field(default_factory=dict)


def score_feedback(text: str) -> float:
    """0.5 shifted by 0.05 per positive or negative keyword, clamped."""
    lowered = text.lower()
    score = 0.5
    score += 0.05 * sum(1 for keyword in POSITIVE_FEEDBACK_KEYWORDS if keyword in lowered)
    score -= 0.05 * sum(1 for keyword in NEGATIVE_FEEDBACK_KEYWORDS if keyword in lowered)
    return max(0.0, min(1.0, score))


class EffectivenessScorer:
    """Computes and persists pattern effectiveness scores.

    Args:
        store: Learning store holding patterns and their outcomes.
        config: Scoring parameters. Uses defaults if None.
    """

    def __init__(self, store: LearningStore, config: ScoringConfig | None = None) -> None:
        self.store = store
        self.config = config or ScoringConfig()

    def calculate_metrics(self, outcomes: list[PatternOutcome]) -> EffectivenessMetrics:
        """Compute factor values from outcomes ordered newest first."""
        total = len(outcomes)
        if total == 0:
            neutral = self.config.neutral_score
            return EffectivenessMetrics(0.0, 0.0, 0.0, neutral, 1.0, neutral, 0)

        successes = sum(1 for o in outcomes if o.success)
        rework = sum(1 for o in outcomes if o.rework_required)

        decayed = [
            o.quality_score * self.config.decay_factor**i for i, o in enumerate(outcomes)
        ]
        positive_decayed = [q for q in decayed if q > 0]
        avg_quality = float(np.mean(positive_decayed)) if positive_decayed else 0.0

        feedback_scores = [score_feedback(o.review_feedback) for o in outcomes if o.review_feedback]
        feedback = (
            float(np.mean(feedback_scores)) if feedback_scores else self.config.neutral_score
        )

        return EffectivenessMetrics(
            success_rate=successes / total,
            avg_quality_score=avg_quality,
            rework_rate=rework / total,
            review_feedback_score=feedback,
            time_to_completion=self.calculate_time_score(outcomes),
            reusability_score=self.calculate_reusability(outcomes),
            sample_size=total,
        )

    @staticmethod
    def calculate_time_score(outcomes: list[PatternOutcome]) -> float:
        """1.0 at one hour or less, falling linearly to 0.0 at eight hours."""
        hours = [o.completion_hours for o in outcomes if o.completion_hours and o.completion_hours > 0]
        if not hours:
            return 1.0
        avg_hours = float(np.mean(hours))
        return max(0.0, min(1.0, 1.0 - (avg_hours - 1.0) / 7.0))

    def calculate_reusability(self, outcomes: list[PatternOutcome]) -> float:
        """Mean of spread across work items and consistency of quality."""
        unique_items = len({o.work_item_id for o in outcomes})
        spread = min(1.0, unique_items / REUSE_SATURATION)

        scores = [o.quality_score for o in outcomes if o.quality_score > 0]
        if len(scores) < 2:
            consistency = self.config.neutral_score
        else:
            consistency = max(0.0, min(1.0, 1.0 - 4.0 * float(np.var(scores))))
        return (spread + consistency) / 2

    @staticmethod
    def compute_score(metrics: EffectivenessMetrics) -> float:
        """Weighted factor sum, clamped to [0, 1] and rounded to two decimals."""
        score = (
            FACTOR_WEIGHTS["success_rate"] * metrics.success_rate
            + FACTOR_WEIGHTS["avg_quality_score"] * metrics.avg_quality_score
            + FACTOR_WEIGHTS["rework"] * (1.0 - metrics.rework_rate)
            + FACTOR_WEIGHTS["review_feedback_score"] * metrics.review_feedback_score
            + FACTOR_WEIGHTS["time_to_completion"] * metrics.time_to_completion
            + FACTOR_WEIGHTS["reusability_score"] * metrics.reusability_score
        )
        return round(max(0.0, min(1.0, score)), 2)

    def update_effectiveness(self, pattern_id: str, now: datetime | None = None) -> float:
        """Recompute a pattern's score from its outcomes and store it.

        With fewer than ``min_outcomes`` outcomes the neutral score is
        returned and the stored score is left unchanged.

        Raises:
            PatternNotFoundError: If the pattern is not active.
        """
        if self.store.get_pattern(pattern_id) is None:
            raise PatternNotFoundError(pattern_id)

        outcomes = self.store.get_pattern_outcomes(pattern_id)
        if len(outcomes) < self.config.min_outcomes:
            _logger.debug(
                "scoring.insufficient_outcomes",
                pattern_id=pattern_id,
                outcomes=len(outcomes),
            )
            return self.config.neutral_score

        metrics = self.calculate_metrics(outcomes)
        score = self.compute_score(metrics)
        self.store.update_effectiveness_score(pattern_id, score, now=now)
        _logger.debug(
            "scoring.pattern_scored",
            pattern_id=pattern_id,
            score=score,
            outcomes=metrics.sample_size,
        )
        return score

    def batch_update_effectiveness(self) -> BatchScoringResult:
        """Rescore every pattern that has been used at least once.

        A failure on one pattern is logged and does not stop the batch.
        """
        result = BatchScoringResult()
        for pattern in self.store.get_patterns(min_usage=1):
            try:
                outcomes = self.store.get_pattern_outcomes(pattern.id)
                if len(outcomes) < self.config.min_outcomes:
                    result.skipped += 1
                    continue
                score = self.compute_score(self.calculate_metrics(outcomes))
                self.store.update_effectiveness_score(pattern.id, score)
                result.updated += 1
            except Exception as e:
                result.failed += 1
                _logger.warning("scoring.pattern_failed", pattern_id=pattern.id, error=str(e))

        _logger.info(
            "scoring.batch_completed",
            updated=result.updated,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    def analyze_pattern_trends(self) -> PatternTrends:
        """Summarize the active patterns by score, usage, type and role."""
        patterns = self.store.get_patterns()
        top_n = self.config.top_n

        def group_stats(key: str) -> dict[str, GroupStats]:
            groups: dict[str, list[Pattern]] = defaultdict(list)
            for p in patterns:
                name = p.pattern_type.value if key == "type" else p.agent_role
                groups[name].append(p)
            return {
                name: GroupStats(
                    count=len(members),
                    avg_effectiveness=float(np.mean([m.effectiveness_score for m in members])),
                    total_usage=sum(m.usage_count for m in members),
                )
                for name, members in sorted(groups.items())
            }

        return PatternTrends(
            top_performers=sorted(patterns, key=lambda p: p.effectiveness_score, reverse=True)[
                :top_n
            ],
            underperformers=[
                p
                for p in patterns
                if p.effectiveness_score < self.config.underperformer_threshold
            ],
            most_used=sorted(patterns, key=lambda p: p.usage_count, reverse=True)[:top_n],
            by_type=group_stats("type"),
            by_role=group_stats("role"),
        )
