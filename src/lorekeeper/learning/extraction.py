"""Pattern extraction from completed work.

Mines completed, successful work items for reusable knowledge:
- extract_candidates: Up to four candidate patterns per work item
- group_candidates: Exact-key grouping with frequency counting
- consolidate: Similarity clustering across keys
- extract_patterns: The full pipeline, returning qualified candidates
- save_patterns: Persist qualified candidates as linked Patterns

Candidates only become Patterns once they recur (frequency), come from
well-reviewed work (confidence) and carry good outcomes (effectiveness).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING

import numpy as np

from lorekeeper.core.config import ExtractionConfig
from lorekeeper.core.logging import get_logger
from lorekeeper.learning.embeddings import Embedder, cluster_by_similarity, embed
from lorekeeper.learning.store import LearningStore
from lorekeeper.learning.store.models import (
    CompletedWorkItem,
    Pattern,
    PatternDraft,
    PatternType,
)

if TYPE_CHECKING:
    from lorekeeper.learning.categorization import PatternCategorizer

_logger = get_logger("learning.extraction")

TECH_KEYWORDS = (
    "api",
    "database",
    "ui",
    "frontend",
    "backend",
    "auth",
    "security",
    "performance",
    "test",
    "integration",
)

# Phrases in implementation notes that name the tool that helped
TOOL_CUES = (
    re.compile(r"used? (\w+) tool", re.IGNORECASE),
    re.compile(r"implemented using (\w+)", re.IGNORECASE),
    re.compile(r"(\w+) was helpful for", re.IGNORECASE),
)

OPTIMIZATION_QUALITY_THRESHOLD = 0.8


@dataclass
class ExtractedPattern:
    """A candidate pattern before it is persisted.

    Attributes:
        confidence: How much the originating work supports the pattern.
        effectiveness: Outcome quality, blended across repeats.
        frequency: Number of work items that produced this candidate.
    """

    agent_role: str
    pattern_type: PatternType
    context: str
    solution: str
    confidence: float
    effectiveness: float
    frequency: int = 1
    tags: set[str] = field(default_factory=set)
    source_work_item_ids: set[str] = field(default_factory=set)

    @property
    def text(self) -> str:
        return f"{self.context} {self.solution}"

    def key(self, context_length: int = 50) -> str:
        """Exact grouping key: ``type:agentRole:context-prefix``."""
        return f"{self.pattern_type.value}:{self.agent_role}:{self.context[:context_length]}"

    def to_draft(self) -> PatternDraft:
        # New patterns start with the candidate confidence as their score
        return PatternDraft(
            agent_role=self.agent_role,
            pattern_type=self.pattern_type,
            context=self.context,
            solution=self.solution,
            effectiveness_score=self.confidence,
            tags=sorted(self.tags),
            source_work_item_ids=sorted(self.source_work_item_ids),
        )


def calculate_confidence(item: CompletedWorkItem) -> float:
    """0.5 base, +0.3 x review quality, +0.1 for tests, -0.1 for an error."""
    confidence = 0.5
    if item.quality_score:
        confidence += item.quality_score * 0.3
    if item.tests_added:
        confidence += 0.1
    if item.error_message:
        confidence -= 0.1
    return max(0.0, min(1.0, confidence))


def calculate_effectiveness(item: CompletedWorkItem) -> float:
    """Review quality (0.5 without review), +0.2 on success, +0.1 for tests."""
    effectiveness = item.quality_score if item.quality_score else 0.5
    if item.success:
        effectiveness += 0.2
    if item.tests_added:
        effectiveness += 0.1
    return min(effectiveness, 1.0)


def extract_tags(item: CompletedWorkItem) -> set[str]:
    """Work item type plus technology keywords found in title and description."""
    text = f"{item.title} {item.description}".lower()
    tags = {item.type}
    tags.update(keyword for keyword in TECH_KEYWORDS if keyword in text)
    return tags


def find_tools(notes: str) -> list[str]:
    """Tool names mentioned by the fixed cues, in order of first mention."""
    tools: list[str] = []
    for cue in TOOL_CUES:
        for match in cue.finditer(notes):
            tool = match.group(1)
            if tool not in tools:
                tools.append(tool)
    return tools


class PatternExtractor:
    """Extracts, consolidates and persists patterns from completed work.

    Args:
        store: Learning store supplying work history and receiving patterns.
        config: Thresholds. Uses defaults if None.
        embedder: Text embedding used for consolidation and storage.
    """

    def __init__(
        self,
        store: LearningStore,
        config: ExtractionConfig | None = None,
        embedder: Embedder = embed,
    ) -> None:
        self.store = store
        self.config = config or ExtractionConfig()
        self.embedder = embedder

    def extract_candidates(self, item: CompletedWorkItem) -> list[ExtractedPattern]:
        """Derive up to four candidates from one work item.

        Items that failed or carry no implementation notes yield nothing.
        """
        notes = (item.implementation_notes or "").strip()
        if not item.success or not notes:
            return []

        confidence = calculate_confidence(item)
        effectiveness = calculate_effectiveness(item)
        tags = extract_tags(item)

        def candidate(
            pattern_type: PatternType, context: str, solution: str, *extra_tags: str
        ) -> ExtractedPattern:
            return ExtractedPattern(
                agent_role=item.agent_role,
                pattern_type=pattern_type,
                context=context,
                solution=solution,
                confidence=confidence,
                effectiveness=effectiveness,
                tags={*extra_tags, *tags},
                source_work_item_ids={item.id},
            )

        candidates = [
            candidate(
                PatternType.SOLUTION,
                f"{item.type}: {item.title}\n{item.description}".strip(),
                notes,
            )
        ]

        if item.error_message:
            candidates.append(
                candidate(
                    PatternType.ERROR_HANDLING,
                    f"Error: {item.error_message}",
                    notes,
                    "error-recovery",
                )
            )

        if item.files_changed:
            tools = find_tools(notes)
            if tools:
                candidates.append(
                    candidate(
                        PatternType.TOOL_USAGE,
                        f"Working with {len(item.files_changed)} files: "
                        + ", ".join(item.files_changed),
                        f"Tools used: {', '.join(tools)}\n{notes}",
                        "tools",
                    )
                )

        if (
            item.quality_score is not None
            and item.quality_score > OPTIMIZATION_QUALITY_THRESHOLD
            and item.suggestions
        ):
            candidates.append(
                candidate(
                    PatternType.OPTIMIZATION,
                    item.title,
                    f"{notes}\nOptimizations: {item.suggestions}",
                    "performance",
                    "quality",
                )
            )

        return candidates

    def group_candidates(self, candidates: list[ExtractedPattern]) -> list[ExtractedPattern]:
        """Collapse candidates sharing an exact key.

        The first candidate seen for a key keeps its text and confidence.
        Each repeat adds one to the frequency, unions tags and source ids
        and blends effectiveness as ``(old + new) / 2``.
        """
        groups: dict[str, ExtractedPattern] = {}
        for candidate in candidates:
            key = candidate.key(self.config.context_key_length)
            existing = groups.get(key)
            if existing is None:
                groups[key] = replace(
                    candidate,
                    tags=set(candidate.tags),
                    source_work_item_ids=set(candidate.source_work_item_ids),
                )
                continue
            existing.frequency += candidate.frequency
            existing.effectiveness = (existing.effectiveness + candidate.effectiveness) / 2
            existing.tags |= candidate.tags
            existing.source_work_item_ids |= candidate.source_work_item_ids
        return list(groups.values())

    def consolidate(self, candidates: list[ExtractedPattern]) -> list[ExtractedPattern]:
        """Merge candidates whose embeddings are similar across different keys.

        Candidates are clustered as connected components over pairs with
        similarity at or above the threshold. A cluster becomes one
        candidate with summed frequency, unioned tags and source ids,
        averaged effectiveness, and the text, type, role and confidence of
        its highest-confidence member. Consolidating the output again
        performs no merges.
        """
        if len(candidates) < 2:
            return list(candidates)

        vectors = [self.embedder(c.text) for c in candidates]
        clusters = cluster_by_similarity(vectors, self.config.similarity_threshold)

        consolidated: list[ExtractedPattern] = []
        for members in clusters:
            if len(members) == 1:
                consolidated.append(candidates[members[0]])
                continue
            group = [candidates[i] for i in members]
            best = max(group, key=lambda c: c.confidence)
            merged = replace(
                best,
                frequency=sum(c.frequency for c in group),
                effectiveness=float(np.mean([c.effectiveness for c in group])),
                tags=set().union(*(c.tags for c in group)),
                source_work_item_ids=set().union(*(c.source_work_item_ids for c in group)),
            )
            _logger.debug(
                "extraction.candidates_merged",
                size=len(group),
                pattern_type=merged.pattern_type.value,
                frequency=merged.frequency,
            )
            consolidated.append(merged)
        return consolidated

    def qualifies(self, candidate: ExtractedPattern) -> bool:
        return (
            candidate.frequency >= self.config.min_frequency
            and candidate.confidence >= self.config.min_confidence
            and candidate.effectiveness >= self.config.min_effectiveness
        )

    def extract_patterns(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[ExtractedPattern]:
        """Run extraction over completed work in a time window.

        Args:
            since: Only work completed at or after this time.
            until: Only work completed at or before this time.

        Returns:
            Qualified, consolidated candidates. Nothing is persisted.
        """
        items = self.store.get_completed_work_items(since=since, until=until)
        candidates = [c for item in items for c in self.extract_candidates(item)]
        grouped = self.group_candidates(candidates)
        consolidated = self.consolidate(grouped)
        qualified = [c for c in consolidated if self.qualifies(c)]

        _logger.info(
            "extraction.completed",
            work_items=len(items),
            candidates=len(candidates),
            grouped=len(grouped),
            consolidated=len(consolidated),
            qualified=len(qualified),
        )
        return qualified

    def save_patterns(self, candidates: list[ExtractedPattern]) -> list[Pattern]:
        """Persist candidates as Patterns linked to their source work items.

        A candidate that fails to save is logged and skipped.
        """
        saved: list[Pattern] = []
        for candidate in candidates:
            try:
                pattern = self.store.create_pattern(
                    candidate.to_draft(),
                    embedding=self.embedder(candidate.text),
                )
            except Exception as e:
                _logger.warning(
                    "extraction.save_failed",
                    pattern_type=candidate.pattern_type.value,
                    agent_role=candidate.agent_role,
                    error=str(e),
                )
                continue
            saved.append(pattern)
        return saved

    def extract_and_save(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        categorizer: PatternCategorizer | None = None,
    ) -> list[Pattern]:
        """Extract, optionally re-categorize and tag, then persist.

        When a categorizer is given, each candidate's type is decided by
        the categorizer and its lexicon tags are added before saving. A
        candidate that cannot be categorized is logged and dropped.
        """
        candidates = self.extract_patterns(since=since, until=until)
        if categorizer is not None:
            categorized: list[ExtractedPattern] = []
            for candidate in candidates:
                try:
                    draft = candidate.to_draft()
                    candidate.pattern_type = categorizer.categorize(draft)
                    candidate.tags |= categorizer.extract_tags(draft, candidate.pattern_type)
                except Exception as e:
                    _logger.warning(
                        "extraction.categorize_failed",
                        pattern_type=candidate.pattern_type.value,
                        agent_role=candidate.agent_role,
                        error=str(e),
                    )
                    continue
                categorized.append(candidate)
            candidates = categorized
        return self.save_patterns(candidates)
