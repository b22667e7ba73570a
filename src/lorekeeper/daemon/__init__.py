"""Lorekeeper daemon: background learning cycles."""

from lorekeeper.daemon.learning_scheduler import (
    CycleRun,
    LearningMetricsSummary,
    LearningScheduler,
    SchedulerStatus,
    classify_health,
)

__all__ = [
    "CycleRun",
    "LearningMetricsSummary",
    "LearningScheduler",
    "SchedulerStatus",
    "classify_health",
]
