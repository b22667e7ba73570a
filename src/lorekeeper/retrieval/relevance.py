"""Lexical relevance scoring between a live task and stored knowledge.

relevance = matched task keywords / task keywords
          + 0.2 if the text mentions the agent role
          + 0.1 if the text mentions the work item type
          + 0.3 if task and text fall on both sides of a domain pair

clamped to [0, 1]. A task without keywords scores only the boosts.
"""

from __future__ import annotations

import re

STOPWORDS = frozenset({
    "the", "is", "at", "which", "on", "a", "an", "as", "are", "was", "were",
    "been", "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "should", "could", "may", "might", "must", "can", "shall", "to", "of", "in",
    "for", "with", "by", "from", "about", "into", "through", "during", "before",
    "after", "above", "below", "up", "down", "out", "off", "over", "under",
    "again", "further", "then", "once", "that", "this", "these", "those",
})

# (task side, knowledge side) regex pairs for the same domain
DOMAIN_PAIRS: tuple[tuple[re.Pattern[str], re.Pattern[str]], ...] = tuple(
    (re.compile(task, re.IGNORECASE), re.compile(content, re.IGNORECASE))
    for task, content in (
        (
            r"auth|login|security|token|jwt",
            r"auth|login|security|token|jwt|password|credential",
        ),
        (
            r"api|endpoint|rest|http",
            r"api|endpoint|rest|http|route|request|response",
        ),
        (
            r"database|query|sql|orm",
            r"database|query|sql|orm|migration|schema",
        ),
        (
            r"test|testing|unit|integration",
            r"test|testing|unit|integration|mock|assert",
        ),
        (
            r"error|exception|handle|catch",
            r"error|exception|handle|catch|retry|fallback",
        ),
        (
            r"review|code review|quality",
            r"review|code review|quality|feedback|suggestion",
        ),
    )
)

ROLE_BOOST = 0.2
TYPE_BOOST = 0.1
DOMAIN_BOOST = 0.3

_SPLIT_RE = re.compile(r"\W+")


def extract_keywords(text: str) -> list[str]:
    """Distinct lowercased tokens longer than two characters, in first-seen order.

    Stopwords are dropped, so a repeated word counts once toward relevance.
    """
    tokens = (
        token
        for token in _SPLIT_RE.split(text.lower())
        if len(token) > 2 and token not in STOPWORDS
    )
    return list(dict.fromkeys(tokens))


def has_domain_match(task: str, content: str) -> bool:
    return any(
        task_re.search(task) and content_re.search(content)
        for task_re, content_re in DOMAIN_PAIRS
    )


def calculate_relevance_score(
    task: str,
    content: str,
    agent_role: str,
    work_item_type: str | None = None,
) -> float:
    """Score how relevant ``content`` is to a task, in [0, 1].

    A task keyword counts as matched when it is one of the content's
    keywords or occurs anywhere in the content text.
    """
    task_keywords = extract_keywords(task)
    content_lower = content.lower()
    content_keywords = set(extract_keywords(content))

    score = 0.0
    if task_keywords:
        matched = sum(
            1 for kw in task_keywords if kw in content_keywords or kw in content_lower
        )
        score = matched / len(task_keywords)

    if agent_role and agent_role.lower() in content_lower:
        score += ROLE_BOOST
    if work_item_type and work_item_type.lower() in content_lower:
        score += TYPE_BOOST
    if has_domain_match(task, content):
        score += DOMAIN_BOOST

    return max(0.0, min(1.0, score))
