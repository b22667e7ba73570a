"""Learning store with modular mixins.

This package provides the LearningStore class, composed from mixins that
each handle one domain:

- PatternMixin: Pattern creation, lookup, usage counting and merging
- ArchiveMixin: Archive and restore with preserved identity
- WorkHistoryMixin: Work items, results, reviews and ADRs that patterns come from
- LearningMetricsMixin: Scheduler cycle metrics and errors

The base class (LearningStoreBase) provides SQLite connection management
with WAL mode and schema creation. It is listed LAST so mixins can rely on
self._get_connection() and self._logger.

Usage:
    from lorekeeper.learning.store import LearningStore

    store = LearningStore(db_path=Path("/var/lib/orchestrator/state.db"))
"""

from lorekeeper.learning.store.archive import ArchiveMixin
from lorekeeper.learning.store.base import (
    DEFAULT_STORE_PATH,
    LearningStoreBase,
    WhereBuilder,
)
from lorekeeper.learning.store.metrics import LearningMetricsMixin
from lorekeeper.learning.store.models import (
    ADRRecord,
    ADRStatus,
    ArchivedPattern,
    CompletedWorkItem,
    LearningErrorRecord,
    LearningMetricRecord,
    Pattern,
    PatternDraft,
    PatternOutcome,
    PatternType,
    ReviewRecord,
    ReviewStatus,
    ReviewType,
)
from lorekeeper.learning.store.patterns import PatternMixin
from lorekeeper.learning.store.work_history import WorkHistoryMixin


class LearningStore(
    PatternMixin,
    ArchiveMixin,
    WorkHistoryMixin,
    LearningMetricsMixin,
    LearningStoreBase,
):
    """Persistent store for learned patterns and the history they come from.

    Safe to share between threads: every operation opens its own
    connection unless it runs inside batch_connection().
    """


__all__ = [
    "ADRRecord",
    "ADRStatus",
    "ArchiveMixin",
    "ArchivedPattern",
    "CompletedWorkItem",
    "DEFAULT_STORE_PATH",
    "LearningErrorRecord",
    "LearningMetricRecord",
    "LearningMetricsMixin",
    "LearningStore",
    "LearningStoreBase",
    "Pattern",
    "PatternDraft",
    "PatternMixin",
    "PatternOutcome",
    "PatternType",
    "ReviewRecord",
    "ReviewStatus",
    "ReviewType",
    "WhereBuilder",
    "WorkHistoryMixin",
]
