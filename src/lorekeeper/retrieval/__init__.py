"""Context retrieval: relevance ranking, bundle caching and prompt formatting."""

from lorekeeper.retrieval.cache import CacheStats, ContextCache
from lorekeeper.retrieval.relevance import calculate_relevance_score, extract_keywords
from lorekeeper.retrieval.service import (
    ContextBundle,
    ContextRetriever,
    RetrievalContext,
    RetrievalOptions,
    RetrievedItem,
    format_for_prompt,
)

__all__ = [
    "CacheStats",
    "ContextBundle",
    "ContextCache",
    "ContextRetriever",
    "RetrievalContext",
    "RetrievalOptions",
    "RetrievedItem",
    "calculate_relevance_score",
    "extract_keywords",
    "format_for_prompt",
]
