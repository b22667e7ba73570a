"""Pattern categorization and tagging.

Assigns a PatternType to pattern text in two stages:

1. Signature matching. Each type has a keyword list, context regexes,
   solution regexes and a multiplier. Score is
   ``(0.1 x keywords + 0.2 x context hits + 0.2 x solution hits) x multiplier``
   capped at 1; the best score above the threshold wins.
2. Neighbour voting. Without a signature match, the most similar stored
   patterns vote for their own type weighted by similarity. With no close
   neighbours the pattern is a plain ``solution``.

Tags come from fixed technology and domain lexicons.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from lorekeeper.core.config import CategorizationConfig
from lorekeeper.core.logging import get_logger
from lorekeeper.learning.embeddings import Embedder, cosine_similarity, embed
from lorekeeper.learning.store import LearningStore
from lorekeeper.learning.store.models import Pattern, PatternDraft, PatternType

_logger = get_logger("learning.categorization")


@dataclass(frozen=True)
class CategorySignature:
    pattern_type: PatternType
    keywords: tuple[str, ...]
    context_patterns: tuple[re.Pattern[str], ...]
    solution_patterns: tuple[re.Pattern[str], ...]
    multiplier: float


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


CATEGORY_SIGNATURES: tuple[CategorySignature, ...] = (
    CategorySignature(
        pattern_type=PatternType.SOLUTION,
        keywords=("implement", "create", "build", "develop", "add", "feature", "functionality"),
        context_patterns=_compile(
            r"implement\s+\w+\s+feature",
            r"add\s+new\s+functionality",
            r"create\s+\w+\s+component",
            r"build\s+\w+\s+system",
        ),
        solution_patterns=_compile(
            r"created?\s+\w+\s+class",
            r"implemented?\s+\w+\s+method",
            r"added?\s+new\s+\w+",
        ),
        multiplier=0.8,
    ),
    CategorySignature(
        pattern_type=PatternType.APPROACH,
        keywords=("strategy", "approach", "method", "technique", "pattern", "design"),
        context_patterns=_compile(
            r"design\s+\w+\s+system",
            r"architect\s+\w+\s+solution",
            r"choose\s+\w+\s+approach",
            r"decide\s+between",
        ),
        solution_patterns=_compile(
            r"used?\s+\w+\s+pattern",
            r"applied?\s+\w+\s+approach",
            r"followed?\s+\w+\s+strategy",
        ),
        multiplier=0.75,
    ),
    CategorySignature(
        pattern_type=PatternType.TOOL_USAGE,
        keywords=("tool", "library", "framework", "package", "api", "sdk", "cli"),
        context_patterns=_compile(
            r"use\s+\w+\s+tool",
            r"integrate\s+with\s+\w+",
            r"work\s+with\s+\w+\s+api",
            r"configure\s+\w+",
        ),
        solution_patterns=_compile(
            r"installed?\s+\w+",
            r"configured?\s+\w+",
            r"integrated?\s+\w+",
            r"used?\s+\w+\s+command",
        ),
        multiplier=0.85,
    ),
    CategorySignature(
        pattern_type=PatternType.ERROR_HANDLING,
        keywords=("error", "exception", "bug", "fix", "issue", "problem", "crash", "failure"),
        context_patterns=_compile(
            r"error:\s*.+",
            r"exception\s+thrown",
            r"bug\s+in\s+\w+",
            r"fails?\s+to\s+\w+",
            r"crashes?\s+when",
        ),
        solution_patterns=_compile(
            r"fixed?\s+by\s+\w+",
            r"handled?\s+\w+\s+error",
            r"caught\s+exception",
            r"resolved?\s+by\s+\w+",
        ),
        multiplier=0.9,
    ),
    CategorySignature(
        pattern_type=PatternType.OPTIMIZATION,
        keywords=("optimize", "performance", "speed", "efficiency", "refactor", "improve"),
        context_patterns=_compile(
            r"slow\s+\w+\s+performance",
            r"optimize\s+\w+",
            r"improve\s+\w+\s+efficiency",
            r"reduce\s+\w+\s+time",
        ),
        solution_patterns=_compile(
            r"optimized?\s+by\s+\w+",
            r"improved?\s+performance",
            r"reduced?\s+\w+\s+by",
            r"cached?\s+\w+",
        ),
        multiplier=0.8,
    ),
)

TECHNOLOGY_TAGS: dict[str, re.Pattern[str]] = {
    "react": re.compile(r"\b(react|component|jsx)", re.IGNORECASE),
    "nodejs": re.compile(r"\b(node|express|fastify)", re.IGNORECASE),
    "python": re.compile(r"\b(python|django|flask)", re.IGNORECASE),
    "containerization": re.compile(r"\b(docker|container|kubernetes)", re.IGNORECASE),
    "cloud": re.compile(r"\b(aws|azure|gcp|cloud)", re.IGNORECASE),
    "database": re.compile(r"\b(postgres|mysql|mongodb|database)", re.IGNORECASE),
    "caching": re.compile(r"\b(redis|cache|memcached)", re.IGNORECASE),
    "testing": re.compile(r"\b(test|spec|jest|mocha)", re.IGNORECASE),
    "cicd": re.compile(r"\b(ci/cd|jenkins|github actions)", re.IGNORECASE),
    "security": re.compile(r"\b(security|auth|oauth|jwt)", re.IGNORECASE),
}

DOMAIN_TAGS: dict[str, re.Pattern[str]] = {
    "api": re.compile(r"\b(api|rest|graphql|endpoint)", re.IGNORECASE),
    "frontend": re.compile(r"\b(ui|frontend|interface|ux)", re.IGNORECASE),
    "backend": re.compile(r"\b(backend|server|service)", re.IGNORECASE),
    "mobile": re.compile(r"\b(mobile|ios|android|react native)", re.IGNORECASE),
    "ml": re.compile(r"\b(ml|machine learning|ai|model)", re.IGNORECASE),
    "data": re.compile(r"\b(data|etl|pipeline|analytics)", re.IGNORECASE),
    "microservices": re.compile(r"\b(microservice|distributed|messaging)", re.IGNORECASE),
}


@dataclass
class CategoryMatch:
    pattern_type: PatternType
    score: float
    matched_keywords: list[str] = field(default_factory=list)
    matched_patterns: list[str] = field(default_factory=list)


@dataclass
class CategoryStats:
    count: int = 0
    avg_quality: float = 0.0
    linked_work_items: int = 0


@dataclass
class RecategorizationSuggestion:
    pattern_id: str
    current_type: PatternType
    suggested_type: PatternType
    context: str


@dataclass
class CategorizationReport:
    """How well stored categories agree with what the categorizer would pick now."""

    total_patterns: int = 0
    by_category: dict[str, CategoryStats] = field(default_factory=dict)
    suggestions: list[RecategorizationSuggestion] = field(default_factory=list)


def match_signature(
    signature: CategorySignature, context: str, solution: str
) -> CategoryMatch:
    """Score pattern text against one category signature."""
    text = f"{context} {solution}".lower()
    score = 0.0
    keywords: list[str] = []
    patterns: list[str] = []

    for keyword in signature.keywords:
        if keyword in text:
            score += 0.1
            keywords.append(keyword)

    for regex in signature.context_patterns:
        found = regex.search(context) if context else None
        if found:
            score += 0.2
            patterns.append(found.group(0))

    for regex in signature.solution_patterns:
        found = regex.search(solution) if solution else None
        if found:
            score += 0.2
            patterns.append(found.group(0))

    return CategoryMatch(
        pattern_type=signature.pattern_type,
        score=min(score * signature.multiplier, 1.0),
        matched_keywords=keywords,
        matched_patterns=patterns,
    )


class PatternCategorizer:
    """Decides pattern types and tags.

    Args:
        store: Learning store supplying neighbours for similarity voting.
        config: Thresholds. Uses defaults if None.
        embedder: Text embedding used for neighbour comparison.
    """

    def __init__(
        self,
        store: LearningStore,
        config: CategorizationConfig | None = None,
        embedder: Embedder = embed,
    ) -> None:
        self.store = store
        self.config = config or CategorizationConfig()
        self.embedder = embedder

    def find_category_matches(self, draft: PatternDraft | Pattern) -> list[CategoryMatch]:
        """Signature matches above the threshold, best first.

        Equal scores keep signature order.
        """
        matches = [
            match_signature(signature, draft.context or "", draft.solution or "")
            for signature in CATEGORY_SIGNATURES
        ]
        qualified = [m for m in matches if m.score > self.config.min_signature_score]
        return sorted(qualified, key=lambda m: m.score, reverse=True)

    def categorize(
        self,
        draft: PatternDraft | Pattern,
        exclude_ids: set[str] | None = None,
    ) -> PatternType:
        """Pick the type for a pattern.

        Args:
            draft: Pattern content to categorize.
            exclude_ids: Stored patterns that may not vote, e.g. the
                pattern being recategorized.

        Returns:
            The winning signature type, else the neighbour vote, else
            ``PatternType.SOLUTION``.
        """
        matches = self.find_category_matches(draft)
        if matches:
            best = matches[0]
            _logger.debug(
                "categorization.signature_match",
                pattern_type=best.pattern_type.value,
                score=round(best.score, 3),
                keywords=best.matched_keywords,
            )
            return best.pattern_type
        return self.vote_by_neighbors(draft, exclude_ids or set())

    def vote_by_neighbors(
        self, draft: PatternDraft | Pattern, exclude_ids: set[str] | None = None
    ) -> PatternType:
        """Similarity-weighted vote among the closest stored patterns."""
        exclude_ids = exclude_ids or set()
        vector = self.embedder(f"{draft.context or ''} {draft.solution or ''}")
        pool = self.store.get_patterns(with_embedding=True, limit=self.config.candidate_pool)

        neighbors: list[tuple[float, PatternType]] = []
        for pattern in pool:
            if pattern.id in exclude_ids or pattern.embedding is None:
                continue
            if pattern.embedding.shape != vector.shape:
                continue
            similarity = cosine_similarity(vector, pattern.embedding)
            if similarity > self.config.neighbor_similarity:
                neighbors.append((similarity, pattern.pattern_type))

        neighbors.sort(key=lambda n: n[0], reverse=True)
        votes: dict[PatternType, float] = {t: 0.0 for t in PatternType}
        for similarity, pattern_type in neighbors[: self.config.neighbor_limit]:
            votes[pattern_type] += similarity

        best_type = PatternType.SOLUTION
        best_votes = 0.0
        for pattern_type, total in votes.items():
            if total > best_votes:
                best_type, best_votes = pattern_type, total
        return best_type

    def extract_tags(
        self, draft: PatternDraft | Pattern, pattern_type: PatternType | None = None
    ) -> set[str]:
        """Lexicon tags for the pattern text plus the final pattern type."""
        text = f"{draft.context or ''} {draft.solution or ''}"
        tags = {name for name, regex in TECHNOLOGY_TAGS.items() if regex.search(text)}
        tags.update(name for name, regex in DOMAIN_TAGS.items() if regex.search(text))
        final_type = pattern_type or draft.pattern_type
        if final_type is not None:
            tags.add(PatternType(final_type).value)
        return tags

    def recategorize_patterns(self) -> int:
        """Re-run categorization over stored patterns and fix changed types.

        Returns:
            Number of patterns whose type changed.
        """
        updated = 0
        for pattern in self.store.get_patterns():
            new_type = self.categorize(pattern, exclude_ids={pattern.id})
            if new_type == pattern.pattern_type:
                continue
            tags = set(pattern.tags)
            tags.discard(pattern.pattern_type.value)
            tags.add(new_type.value)
            self.store.update_pattern_category(pattern.id, new_type, tags)
            updated += 1
            _logger.info(
                "categorization.pattern_recategorized",
                pattern_id=pattern.id,
                old_type=pattern.pattern_type.value,
                new_type=new_type.value,
            )
        _logger.info("categorization.recategorization_completed", updated=updated)
        return updated

    def analyze_categorization_accuracy(self) -> CategorizationReport:
        """Per-category stats and the patterns the categorizer would now move."""
        patterns = self.store.get_patterns()
        review_quality = self.store.get_pattern_review_quality()
        report = CategorizationReport(total_patterns=len(patterns))
        quality_sums: dict[str, float] = {}

        for pattern in patterns:
            current = pattern.pattern_type.value
            stats = report.by_category.setdefault(current, CategoryStats())
            linked, avg_quality = review_quality.get(pattern.id, (0, None))
            stats.count += 1
            stats.linked_work_items += linked
            quality_sums[current] = quality_sums.get(current, 0.0) + (avg_quality or 0.0)

            suggested = self.categorize(pattern, exclude_ids={pattern.id})
            if suggested != pattern.pattern_type:
                report.suggestions.append(
                    RecategorizationSuggestion(
                        pattern_id=pattern.id,
                        current_type=pattern.pattern_type,
                        suggested_type=suggested,
                        context=pattern.context[:100],
                    )
                )

        for name, stats in report.by_category.items():
            stats.avg_quality = quality_sums[name] / stats.count if stats.count else 0.0
        return report
