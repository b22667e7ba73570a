"""Pattern lifecycle cleanup.

Three sweeps keep the active pattern set small and useful:
- Ineffective removal: low score, little use, old enough, no recent success
- Archival: old, rarely used, mediocre patterns move to the archive
- Duplicate merge: near-identical patterns fold into the strongest one

Each pattern (or merge group) is handled on its own, so one failure is
logged and the rest of the sweep continues. Archived patterns can be
restored with their original identity.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np

from lorekeeper.core.config import CleanupConfig
from lorekeeper.core.logging import get_logger
from lorekeeper.learning.embeddings import Embedder, cluster_by_similarity, embed
from lorekeeper.learning.store import LearningStore
from lorekeeper.learning.store.models import Pattern

_logger = get_logger("learning.cleanup")

ARCHIVE_REASON_AGE = "Age and low usage"


@dataclass
class CleanupResult:
    removed: int = 0
    archived: int = 0
    merged: int = 0
    failed: int = 0


@dataclass
class CleanupStatistics:
    """Counts describing how much of the active set a cleanup would touch."""

    total_patterns: int
    low_effectiveness: int
    low_usage: int
    old_patterns: int
    avg_effectiveness: float
    avg_usage: float
    archived_patterns: int
    config: CleanupConfig


def merge_rank(pattern: Pattern) -> float:
    """Survivor ranking within a duplicate group."""
    return 0.7 * pattern.effectiveness_score + 0.3 * (pattern.usage_count / 100)


class PatternCleaner:
    """Runs lifecycle sweeps over the active patterns.

    Args:
        store: Learning store holding active and archived patterns.
        config: Thresholds. Uses defaults if None.
        embedder: Re-embeds a survivor whose merged text changed.
    """

    def __init__(
        self,
        store: LearningStore,
        config: CleanupConfig | None = None,
        embedder: Embedder = embed,
    ) -> None:
        self.store = store
        self.config = config or CleanupConfig()
        self.embedder = embedder

    def cleanup_ineffective_patterns(
        self, now: datetime | None = None, result: CleanupResult | None = None
    ) -> int:
        """Delete patterns that score low and have not helped recently.

        Returns:
            Number of patterns removed.
        """
        now = now or datetime.now()
        result = result if result is not None else CleanupResult()
        candidates = self.store.find_ineffective_patterns(
            max_effectiveness=self.config.effectiveness_threshold,
            max_usage=self.config.min_usage_for_retention,
            created_before=now - timedelta(days=self.config.ineffective_min_age_days),
            no_success_since=now - timedelta(days=self.config.recent_success_window_days),
        )
        removed = 0
        for pattern in candidates:
            try:
                if self.store.delete_pattern(pattern.id):
                    removed += 1
                    _logger.info(
                        "cleanup.pattern_removed",
                        pattern_id=pattern.id,
                        effectiveness=pattern.effectiveness_score,
                        usage=pattern.usage_count,
                    )
            except Exception as e:
                result.failed += 1
                _logger.warning("cleanup.remove_failed", pattern_id=pattern.id, error=str(e))
        result.removed += removed
        return removed

    def archive_old_patterns(
        self, now: datetime | None = None, result: CleanupResult | None = None
    ) -> int:
        """Archive old patterns that are rarely used and only mediocre.

        Returns:
            Number of patterns archived.
        """
        now = now or datetime.now()
        result = result if result is not None else CleanupResult()
        candidates = self.store.find_archivable_patterns(
            created_before=now - timedelta(days=self.config.max_pattern_age_days),
            max_usage=self.config.min_usage_for_retention * 2,
            max_effectiveness=self.config.archive_effectiveness_ceiling,
        )
        archived = 0
        for pattern in candidates:
            try:
                self.store.archive_pattern(pattern.id, ARCHIVE_REASON_AGE, now=now)
                archived += 1
                _logger.info(
                    "cleanup.pattern_archived",
                    pattern_id=pattern.id,
                    age_days=(now - pattern.created_at).days,
                )
            except Exception as e:
                result.failed += 1
                _logger.warning("cleanup.archive_failed", pattern_id=pattern.id, error=str(e))
        result.archived += archived
        return archived

    def merge_duplicate_patterns(self, result: CleanupResult | None = None) -> int:
        """Fold groups of near-identical patterns into one survivor each.

        The survivor is the member with the best ``merge_rank``. It takes
        the summed usage of the group plus the longest context and the
        longest solution, and inherits every work item link.

        Returns:
            Number of patterns merged away.
        """
        result = result if result is not None else CleanupResult()
        patterns = self.store.get_patterns(with_embedding=True, order_by="created_at, id")
        if len(patterns) < 2:
            return 0

        merged = 0
        for group in self._duplicate_groups(patterns):
            survivor = max(group, key=merge_rank)
            losers = [p for p in group if p.id != survivor.id]
            context = max((p.context for p in group), key=len)
            solution = max((p.solution for p in group), key=len)
            text_changed = context != survivor.context or solution != survivor.solution
            try:
                self.store.merge_patterns(
                    keep_id=survivor.id,
                    remove_ids=[p.id for p in losers],
                    usage_count=sum(p.usage_count for p in group),
                    context=context,
                    solution=solution,
                    embedding=self.embedder(f"{context} {solution}") if text_changed else None,
                )
            except Exception as e:
                result.failed += 1
                _logger.warning(
                    "cleanup.merge_failed",
                    survivor_id=survivor.id,
                    group_size=len(group),
                    error=str(e),
                )
                continue
            merged += len(losers)
            _logger.info(
                "cleanup.patterns_merged",
                survivor_id=survivor.id,
                merged_ids=[p.id for p in losers],
            )
        result.merged += merged
        return merged

    def _duplicate_groups(self, patterns: list[Pattern]) -> list[list[Pattern]]:
        """Similarity groups of two or more patterns.

        Embeddings are only comparable at equal length, so patterns are
        clustered per embedding dimension. Mixed dimensions appear while
        stored vectors from an older embedder are still being replaced.
        """
        by_dimension: dict[int, list[Pattern]] = defaultdict(list)
        for pattern in patterns:
            if pattern.embedding is not None:
                by_dimension[len(pattern.embedding)].append(pattern)

        if len(by_dimension) > 1:
            _logger.warning(
                "cleanup.mixed_embedding_dimensions",
                counts={dim: len(members) for dim, members in sorted(by_dimension.items())},
            )

        groups: list[list[Pattern]] = []
        for members in by_dimension.values():
            if len(members) < 2:
                continue
            components = cluster_by_similarity(
                [m.embedding for m in members],  # type: ignore[misc]
                self.config.duplicate_similarity_threshold,
            )
            groups.extend(
                [members[i] for i in component] for component in components if len(component) > 1
            )
        return groups

    def cleanup_cycle(self, now: datetime | None = None) -> CleanupResult:
        """Run removal, archival and merging in that order."""
        now = now or datetime.now()
        result = CleanupResult()
        self.cleanup_ineffective_patterns(now=now, result=result)
        self.archive_old_patterns(now=now, result=result)
        self.merge_duplicate_patterns(result=result)
        _logger.info(
            "cleanup.cycle_completed",
            removed=result.removed,
            archived=result.archived,
            merged=result.merged,
            failed=result.failed,
        )
        return result

    def restore_archived_pattern(self, pattern_id: str) -> Pattern:
        """Bring an archived pattern back under its original id.

        Raises:
            ArchivedPatternNotFoundError: If the id is not archived.
        """
        pattern = self.store.restore_archived_pattern(pattern_id)
        _logger.info("cleanup.pattern_restored", pattern_id=pattern_id)
        return pattern

    def get_cleanup_statistics(self, now: datetime | None = None) -> CleanupStatistics:
        now = now or datetime.now()
        patterns = self.store.get_patterns()
        cutoff = now - timedelta(days=self.config.max_pattern_age_days)
        return CleanupStatistics(
            total_patterns=len(patterns),
            low_effectiveness=sum(
                1 for p in patterns if p.effectiveness_score < self.config.effectiveness_threshold
            ),
            low_usage=sum(
                1 for p in patterns if p.usage_count < self.config.min_usage_for_retention
            ),
            old_patterns=sum(1 for p in patterns if p.created_at < cutoff),
            avg_effectiveness=(
                float(np.mean([p.effectiveness_score for p in patterns])) if patterns else 0.0
            ),
            avg_usage=float(np.mean([p.usage_count for p in patterns])) if patterns else 0.0,
            archived_patterns=self.store.count_archived_patterns(),
            config=self.config,
        )
