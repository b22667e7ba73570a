"""Core configuration, logging and exceptions."""

from lorekeeper.core.config import (
    CacheConfig,
    CategorizationConfig,
    CleanupConfig,
    ExtractionConfig,
    LoggingConfig,
    LoreConfig,
    RetrievalConfig,
    SchedulerConfig,
    ScoringConfig,
)
from lorekeeper.core.exceptions import (
    ArchivedPatternNotFoundError,
    InvalidPatternError,
    InvalidRetrievalRequestError,
    LoreError,
    PatternNotFoundError,
)

__all__ = [
    "ArchivedPatternNotFoundError",
    "CacheConfig",
    "CategorizationConfig",
    "CleanupConfig",
    "ExtractionConfig",
    "InvalidPatternError",
    "InvalidRetrievalRequestError",
    "LoggingConfig",
    "LoreConfig",
    "LoreError",
    "PatternNotFoundError",
    "RetrievalConfig",
    "SchedulerConfig",
    "ScoringConfig",
]
