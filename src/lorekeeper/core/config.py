"""Configuration models for Lorekeeper.

Pydantic v2 models for each learning component plus the root LoreConfig,
which loads from YAML. Defaults match the tuned production values; every
threshold carries bounds so a bad config file fails at load time rather
than mid-cycle.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator


class ExtractionConfig(BaseModel):
    """Candidate grouping, consolidation and qualification thresholds."""

    min_frequency: int = Field(
        default=2,
        ge=1,
        description="Minimum number of occurrences before a candidate qualifies",
    )
    min_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum candidate confidence to qualify",
    )
    min_effectiveness: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Minimum blended candidate effectiveness to qualify",
    )
    similarity_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Cosine similarity at or above which two candidates are merged. "
        "Tuned for the hashed bag-of-words embedding; re-validate when "
        "switching to a semantic model.",
    )
    context_key_length: int = Field(
        default=50,
        ge=1,
        description="Number of context characters used in the exact grouping key",
    )


class ScoringConfig(BaseModel):
    """Effectiveness scoring over recorded pattern outcomes."""

    decay_factor: float = Field(
        default=0.95,
        gt=0.0,
        le=1.0,
        description="Per-position decay applied to quality scores, newest first",
    )
    min_outcomes: int = Field(
        default=3,
        ge=1,
        description="Outcomes required before a score is computed and persisted",
    )
    neutral_score: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Score reported when there is too little evidence",
    )
    underperformer_threshold: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Patterns scoring below this are reported as underperformers",
    )
    top_n: int = Field(
        default=10,
        ge=1,
        description="Number of patterns listed in top-performer and most-used reports",
    )


class CategorizationConfig(BaseModel):
    """Rule-based signature matching and similarity voting."""

    min_signature_score: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="A signature must score strictly above this to win",
    )
    neighbor_similarity: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Stored patterns must exceed this similarity to vote",
    )
    neighbor_limit: int = Field(
        default=5,
        ge=1,
        description="Maximum number of voting neighbours",
    )
    candidate_pool: int = Field(
        default=100,
        ge=1,
        description="Maximum number of stored patterns compared during voting",
    )


class CleanupConfig(BaseModel):
    """Pattern lifecycle thresholds."""

    effectiveness_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Patterns below this score are candidates for removal",
    )
    max_pattern_age_days: int = Field(
        default=180,
        ge=1,
        description="Age after which low-usage, mediocre patterns are archived",
    )
    min_usage_for_retention: int = Field(
        default=2,
        ge=0,
        description="Usage below this marks a pattern as unused",
    )
    duplicate_similarity_threshold: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Cosine similarity at or above which active patterns are merged",
    )
    ineffective_min_age_days: int = Field(
        default=30,
        ge=0,
        description="Minimum age before an ineffective pattern may be removed",
    )
    recent_success_window_days: int = Field(
        default=30,
        ge=0,
        description="A success inside this window protects a pattern from removal",
    )
    archive_effectiveness_ceiling: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Only patterns scoring below this are archived for age",
    )


class CacheConfig(BaseModel):
    """Context cache sizing and expiry."""

    max_size: int = Field(
        default=500,
        ge=1,
        description="Maximum number of cached retrieval bundles",
    )
    ttl_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Seconds an entry stays valid after it was written",
    )
    enable_stats: bool = Field(
        default=True,
        description="Track hit, miss and eviction counters",
    )


class RetrievalConfig(BaseModel):
    """Default retrieval options."""

    max_results: int = Field(
        default=10,
        ge=1,
        description="Maximum items returned per retrieval",
    )
    min_relevance_score: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Items with raw relevance below this are dropped",
    )
    boost_effectiveness: bool = Field(
        default=True,
        description="Rank patterns by relevance * (1 + effectiveness * 0.5)",
    )


class SchedulerConfig(BaseModel):
    """Background learning cycle intervals."""

    enabled: bool = Field(
        default=True,
        description="Whether start() launches the background loops",
    )
    extraction_interval_seconds: float = Field(
        default=30 * 60,
        gt=0,
        description="Seconds between extraction cycles",
    )
    scoring_interval_seconds: float = Field(
        default=60 * 60,
        gt=0,
        description="Seconds between scoring cycles",
    )
    cleanup_interval_seconds: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Seconds between cleanup cycles",
    )


class LoggingConfig(BaseModel):
    """Structured logging output."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console", "both"] = "console"
    file_path: Path | None = Field(
        default=None,
        description="Rotating log file. Required when format is 'both'.",
    )

    @model_validator(mode="after")
    def _require_file_for_both(self) -> LoggingConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("logging.file_path is required when logging.format is 'both'")
        return self


class LoreConfig(BaseModel):
    """Root configuration for a Lorekeeper deployment."""

    db_path: Path = Field(
        default=Path("lorekeeper.db"),
        description="SQLite database shared with the orchestration platform",
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    categorization: CategorizationConfig = Field(default_factory=CategorizationConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @model_validator(mode="after")
    def _check_threshold_ordering(self) -> LoreConfig:
        """Duplicate merging must be at least as strict as extraction merging."""
        if self.cleanup.duplicate_similarity_threshold < self.extraction.similarity_threshold:
            raise ValueError(
                "cleanup.duplicate_similarity_threshold "
                f"({self.cleanup.duplicate_similarity_threshold}) must not be lower than "
                f"extraction.similarity_threshold ({self.extraction.similarity_threshold})"
            )
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> LoreConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> LoreConfig:
        """Load configuration from a YAML string."""
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data or {})
