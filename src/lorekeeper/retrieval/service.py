"""Context retrieval for agent prompts.

ContextRetriever answers "what do we already know that helps with this
task?" for one agent role. It scores stored patterns, accepted
architecture decisions and approved reviews against the task text, ranks
them, records usage of the patterns it surfaces and caches the bundle.

Retrieval never blocks prompt assembly: if the store fails, an empty
bundle is returned and the failure is logged.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Literal

from lorekeeper.core.config import CacheConfig, RetrievalConfig
from lorekeeper.core.exceptions import InvalidRetrievalRequestError
from lorekeeper.core.logging import get_logger
from lorekeeper.learning.store import LearningStore
from lorekeeper.learning.store.models import PatternType
from lorekeeper.retrieval.cache import CacheStats, ContextCache
from lorekeeper.retrieval.relevance import calculate_relevance_score

_logger = get_logger("retrieval.service")

KnowledgeKind = Literal["pattern", "adr", "review"]


@dataclass
class RetrievalContext:
    """The live task an agent is about to work on."""

    current_task: str
    agent_role: str
    work_item_type: str | None = None
    work_item_id: str | None = None
    parent_context: str | None = None
    recent_history: list[str] = field(default_factory=list)

    def validate(self) -> None:
        """Raise InvalidRetrievalRequestError on a blank task or role."""
        if not self.current_task or not self.current_task.strip():
            raise InvalidRetrievalRequestError("current_task must not be blank")
        if not self.agent_role or not self.agent_role.strip():
            raise InvalidRetrievalRequestError("agent_role must not be blank")


@dataclass
class RetrievalOptions:
    max_results: int = 10
    min_relevance_score: float = 0.1
    boost_effectiveness: bool = True
    pattern_types: list[PatternType] | None = None

    @classmethod
    def from_config(cls, config: RetrievalConfig) -> RetrievalOptions:
        return cls(
            max_results=config.max_results,
            min_relevance_score=config.min_relevance_score,
            boost_effectiveness=config.boost_effectiveness,
        )


@dataclass
class RetrievedItem:
    """One piece of knowledge scored against the task.

    Attributes:
        relevance_score: Raw lexical relevance in [0, 1], used for filtering.
        rank_score: Relevance after the effectiveness boost, used for ordering.
    """

    kind: KnowledgeKind
    item_id: str
    content: str
    relevance_score: float
    rank_score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def effectiveness_score(self) -> float | None:
        value = self.metadata.get("effectiveness_score")
        return float(value) if value is not None else None


@dataclass
class ContextBundle:
    patterns: list[RetrievedItem] = field(default_factory=list)
    adrs: list[RetrievedItem] = field(default_factory=list)
    reviews: list[RetrievedItem] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.patterns or self.adrs or self.reviews)

    def __len__(self) -> int:
        return len(self.patterns) + len(self.adrs) + len(self.reviews)

    def copy(self) -> ContextBundle:
        """Independent copy, items and metadata included."""
        return copy.deepcopy(self)


class ContextRetriever:
    """Ranks stored knowledge for a task and caches the result.

    Args:
        store: Learning store with patterns, ADRs and reviews.
        config: Default retrieval options. Uses defaults if None.
        cache: Bundle cache. A new one is built from ``cache_config`` if None.
        cache_config: Cache settings used when ``cache`` is None.
    """

    def __init__(
        self,
        store: LearningStore,
        config: RetrievalConfig | None = None,
        cache: ContextCache[ContextBundle] | None = None,
        cache_config: CacheConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or RetrievalConfig()
        self.cache: ContextCache[ContextBundle] = cache or ContextCache(cache_config)

    def retrieve_context(
        self,
        context: RetrievalContext,
        options: RetrievalOptions | None = None,
    ) -> ContextBundle:
        """Return the most relevant knowledge for a task.

        Every pattern in the returned bundle has its usage count
        incremented. Results are cached per role, work item and task text.

        Raises:
            InvalidRetrievalRequestError: On a blank task or agent role.
        """
        context.validate()
        options = options or RetrievalOptions.from_config(self.config)
        key = self.cache.generate_key(
            context.agent_role, context.work_item_id, context.current_task
        )

        cached = self.cache.get(key)
        if cached is not None:
            _logger.debug("retrieval.cache_hit", agent_role=context.agent_role)
            return cached.copy()

        try:
            bundle = self._retrieve_uncached(context, options)
        except Exception:
            _logger.exception(
                "retrieval.failed",
                agent_role=context.agent_role,
                work_item_id=context.work_item_id,
            )
            return ContextBundle()

        self.cache.set(key, bundle)
        _logger.info(
            "retrieval.completed",
            agent_role=context.agent_role,
            patterns=len(bundle.patterns),
            adrs=len(bundle.adrs),
            reviews=len(bundle.reviews),
        )
        # Callers get their own copy; the cached bundle is never handed out
        return bundle.copy()

    def _retrieve_uncached(
        self, context: RetrievalContext, options: RetrievalOptions
    ) -> ContextBundle:
        items = [
            *self._score_patterns(context, options),
            *self._score_adrs(context),
            *self._score_reviews(context),
        ]
        items.sort(key=lambda item: item.rank_score, reverse=True)
        selected = [
            item for item in items if item.relevance_score >= options.min_relevance_score
        ][: options.max_results]

        bundle = ContextBundle()
        for item in selected:
            if item.kind == "pattern":
                bundle.patterns.append(item)
            elif item.kind == "adr":
                bundle.adrs.append(item)
            else:
                bundle.reviews.append(item)

        if bundle.patterns:
            self.store.increment_usage(item.item_id for item in bundle.patterns)
        return bundle

    def _score(self, context: RetrievalContext, content: str) -> float:
        return calculate_relevance_score(
            context.current_task,
            content,
            context.agent_role,
            context.work_item_type,
        )

    def _score_patterns(
        self, context: RetrievalContext, options: RetrievalOptions
    ) -> list[RetrievedItem]:
        patterns = self.store.get_patterns(
            agent_role=context.agent_role,
            pattern_types=options.pattern_types,
        )
        items = []
        for pattern in patterns:
            content = f"{pattern.context}\nSolution: {pattern.solution}"
            relevance = self._score(context, content)
            rank = relevance
            if options.boost_effectiveness:
                rank = relevance * (1 + pattern.effectiveness_score * 0.5)
            items.append(
                RetrievedItem(
                    kind="pattern",
                    item_id=pattern.id,
                    content=content,
                    relevance_score=relevance,
                    rank_score=rank,
                    metadata={
                        "pattern_type": pattern.pattern_type.value,
                        "effectiveness_score": pattern.effectiveness_score,
                        "usage_count": pattern.usage_count,
                        "tags": list(pattern.tags),
                    },
                )
            )
        return items

    def _score_adrs(self, context: RetrievalContext) -> list[RetrievedItem]:
        items = []
        for adr in self.store.get_accepted_adrs():
            content = f"{adr.title}\nContext: {adr.context}\nDecision: {adr.decision}"
            relevance = self._score(context, content)
            items.append(
                RetrievedItem(
                    kind="adr",
                    item_id=adr.id,
                    content=content,
                    relevance_score=relevance,
                    rank_score=relevance,
                    metadata={
                        "status": adr.status.value,
                        "created_by": adr.created_by,
                        "consequences": adr.consequences,
                    },
                )
            )
        return items

    def _score_reviews(self, context: RetrievalContext) -> list[RetrievedItem]:
        items = []
        for review in self.store.get_approved_reviews(context.agent_role):
            content = f"{review.feedback}\nSuggestions: {review.suggestions or 'None'}"
            relevance = self._score(context, content)
            items.append(
                RetrievedItem(
                    kind="review",
                    item_id=review.id,
                    content=content,
                    relevance_score=relevance,
                    rank_score=relevance,
                    metadata={
                        "reviewer_role": review.reviewer_role,
                        "review_type": review.review_type.value,
                        "quality_score": review.quality_score,
                    },
                )
            )
        return items

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()


def _percent(value: float) -> str:
    return f"{value * 100:.0f}%"


def format_for_prompt(bundle: ContextBundle) -> str:
    """Render a bundle as a prompt section, or "" for an empty bundle."""
    if bundle.is_empty():
        return ""

    lines = [
        "## Historical Context",
        "",
        "The following relevant information from previous work may help inform your decisions:",
        "",
    ]

    if bundle.patterns:
        lines += ["### Patterns", ""]
        for index, item in enumerate(bundle.patterns, start=1):
            lines.append(f"{index}. [Relevance: {_percent(item.relevance_score)}] {item.content}")
            if item.effectiveness_score:
                lines.append(f"   Effectiveness: {_percent(item.effectiveness_score)}")
        lines.append("")

    if bundle.adrs:
        lines += ["### Architecture Decisions", ""]
        for index, item in enumerate(bundle.adrs, start=1):
            lines.append(f"{index}. [Relevance: {_percent(item.relevance_score)}] {item.content}")
        lines.append("")

    if bundle.reviews:
        lines += ["### Review Insights", ""]
        for index, item in enumerate(bundle.reviews, start=1):
            lines.append(f"{index}. [Relevance: {_percent(item.relevance_score)}] {item.content}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
