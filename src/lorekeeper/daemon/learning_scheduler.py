"""Background learning scheduler.

Runs the three learning cycles on independent intervals:

1. **Extraction** (every 30 minutes) mines work completed since the last
   successful extraction, categorizes and tags the results and saves them.
2. **Scoring** (hourly) rescores every used pattern from its outcomes.
3. **Cleanup** (daily) removes, archives and merges patterns.

Each cycle is wrapped at its boundary: success writes a metrics row,
failure writes an error row plus a failed metrics row, and the next
scheduled run goes ahead as usual. Cycles run in a worker thread so the
event loop is never blocked by SQLite.
"""

from __future__ import annotations

import asyncio
import threading
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

from lorekeeper.core.config import LoreConfig
from lorekeeper.core.logging import CycleContext, get_logger, with_context
from lorekeeper.learning.categorization import PatternCategorizer
from lorekeeper.learning.cleanup import PatternCleaner
from lorekeeper.learning.embeddings import Embedder, embed
from lorekeeper.learning.extraction import PatternExtractor
from lorekeeper.learning.scoring import EffectivenessScorer
from lorekeeper.learning.store import LearningStore
from lorekeeper.learning.store.models import LearningErrorRecord

_logger = get_logger("daemon.learning_scheduler")

CycleType = Literal["extraction", "scoring", "cleanup"]
CYCLE_TYPES: tuple[CycleType, ...] = ("extraction", "scoring", "cleanup")

HealthLabel = Literal["excellent", "good", "fair", "poor", "unknown"]

# Metric keys that describe the run rather than count work
_RUN_FIELDS = frozenset({"status", "started_at", "duration_seconds", "error"})


@dataclass
class CycleRun:
    """Result of one cycle invocation."""

    cycle_type: CycleType
    status: Literal["completed", "failed", "skipped"]
    duration_seconds: float = 0.0
    counts: dict[str, int] = field(default_factory=dict)
    error: str | None = None


@dataclass
class SchedulerStatus:
    running: bool
    intervals: dict[str, float]
    last_runs: dict[str, datetime | None]
    next_runs: dict[str, datetime | None]


@dataclass
class CycleSummary:
    runs: int = 0
    failures: int = 0
    avg_duration_seconds: float = 0.0
    totals: dict[str, float] = field(default_factory=dict)


@dataclass
class LearningMetricsSummary:
    period_hours: float
    total_runs: int
    error_rate: float
    health: HealthLabel
    cycles: dict[str, CycleSummary] = field(default_factory=dict)
    errors: list[LearningErrorRecord] = field(default_factory=list)


def classify_health(runs: int, errors: int) -> HealthLabel:
    """Health label from the share of runs that ended in an error."""
    if runs == 0:
        return "unknown"
    error_rate = errors / runs
    if error_rate == 0:
        return "excellent"
    if error_rate <= 0.1:
        return "good"
    if error_rate <= 0.3:
        return "fair"
    return "poor"


class LearningScheduler:
    """Owns the background learning loops for one store.

    Cycles can also be invoked directly with ``run_*_cycle``; a cycle
    type never runs twice at the same time, a concurrent call is skipped.

    Args:
        store: Learning store shared with retrieval.
        config: Lorekeeper configuration. Uses defaults if None.
        embedder: Text embedding shared by extraction, categorization and cleanup.
    """

    def __init__(
        self,
        store: LearningStore,
        config: LoreConfig | None = None,
        embedder: Embedder = embed,
    ) -> None:
        self.store = store
        self.config = config or LoreConfig()
        self.extractor = PatternExtractor(store, self.config.extraction, embedder)
        self.scorer = EffectivenessScorer(store, self.config.scoring)
        self.categorizer = PatternCategorizer(store, self.config.categorization, embedder)
        self.cleaner = PatternCleaner(store, self.config.cleanup, embedder)

        self._cycle_locks = {cycle: threading.Lock() for cycle in CYCLE_TYPES}
        self._last_runs: dict[str, datetime | None] = dict.fromkeys(CYCLE_TYPES)
        self._next_runs: dict[str, datetime | None] = dict.fromkeys(CYCLE_TYPES)
        self._tasks: list[asyncio.Task[None]] = []
        self._stop_event: asyncio.Event | None = None

    @property
    def intervals(self) -> dict[str, float]:
        sched = self.config.scheduler
        return {
            "extraction": sched.extraction_interval_seconds,
            "scoring": sched.scoring_interval_seconds,
            "cleanup": sched.cleanup_interval_seconds,
        }

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    # ─── Lifecycle ───

    async def start(self) -> None:
        """Launch one loop per cycle type. Each loop runs its cycle at once."""
        if self.is_running:
            return
        if not self.config.scheduler.enabled:
            _logger.info("scheduler.disabled")
            return

        self._stop_event = asyncio.Event()
        for cycle_type, interval in self.intervals.items():
            task = asyncio.create_task(
                self._loop(cycle_type, interval),  # type: ignore[arg-type]
                name=f"learning-{cycle_type}",
            )
            task.add_done_callback(self._on_loop_done)
            self._tasks.append(task)
        _logger.info("scheduler.started", intervals=self.intervals)

    async def stop(self) -> None:
        """Stop the loops, letting any cycle in progress finish first."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._stop_event = None
        self._next_runs = dict.fromkeys(CYCLE_TYPES)
        _logger.info("scheduler.stopped")

    async def _loop(self, cycle_type: CycleType, interval: float) -> None:
        assert self._stop_event is not None
        stop_event = self._stop_event
        while not stop_event.is_set():
            self._next_runs[cycle_type] = None
            await asyncio.to_thread(self.run_cycle, cycle_type)
            self._next_runs[cycle_type] = datetime.now() + timedelta(seconds=interval)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                continue

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("scheduler.loop_died", task_name=task.get_name(), error=str(exc))

    # ─── Cycles ───

    def run_cycle(self, cycle_type: CycleType) -> CycleRun:
        bodies: dict[str, Callable[[datetime], dict[str, int]]] = {
            "extraction": self._extraction_body,
            "scoring": self._scoring_body,
            "cleanup": self._cleanup_body,
        }
        return self._run_wrapped(cycle_type, bodies[cycle_type])

    def run_extraction_cycle(self) -> CycleRun:
        return self.run_cycle("extraction")

    def run_scoring_cycle(self) -> CycleRun:
        return self.run_cycle("scoring")

    def run_cleanup_cycle(self) -> CycleRun:
        return self.run_cycle("cleanup")

    def _extraction_body(self, started: datetime) -> dict[str, int]:
        since = self.store.get_last_successful_run("extraction")
        saved = self.extractor.extract_and_save(
            since=since, until=started, categorizer=self.categorizer
        )
        return {"patterns_extracted": len(saved)}

    def _scoring_body(self, started: datetime) -> dict[str, int]:
        result = self.scorer.batch_update_effectiveness()
        return {
            "patterns_updated": result.updated,
            "patterns_skipped": result.skipped,
            "patterns_failed": result.failed,
        }

    def _cleanup_body(self, started: datetime) -> dict[str, int]:
        result = self.cleaner.cleanup_cycle(now=started)
        return {
            "removed": result.removed,
            "archived": result.archived,
            "merged": result.merged,
            "failed": result.failed,
        }

    def _run_wrapped(
        self,
        cycle_type: CycleType,
        body: Callable[[datetime], dict[str, int]],
    ) -> CycleRun:
        lock = self._cycle_locks[cycle_type]
        if not lock.acquire(blocking=False):
            _logger.warning("scheduler.cycle_skipped", cycle_type=cycle_type)
            return CycleRun(cycle_type=cycle_type, status="skipped")

        started = datetime.now()
        t0 = time.monotonic()
        try:
            with with_context(CycleContext(cycle_type=cycle_type)):
                _logger.info("scheduler.cycle_started")
                try:
                    counts = body(started)
                except Exception as e:
                    duration = time.monotonic() - t0
                    _logger.exception("scheduler.cycle_failed", duration_seconds=duration)
                    self._record_failure(cycle_type, started, duration, e)
                    return CycleRun(
                        cycle_type=cycle_type,
                        status="failed",
                        duration_seconds=duration,
                        error=str(e),
                    )

                duration = time.monotonic() - t0
                self._record_success(cycle_type, started, duration, counts)
                _logger.info("scheduler.cycle_completed", duration_seconds=duration, **counts)
                return CycleRun(
                    cycle_type=cycle_type,
                    status="completed",
                    duration_seconds=duration,
                    counts=counts,
                )
        finally:
            self._last_runs[cycle_type] = started
            lock.release()

    def _record_success(
        self,
        cycle_type: CycleType,
        started: datetime,
        duration: float,
        counts: dict[str, int],
    ) -> None:
        metrics: dict[str, Any] = {
            "status": "completed",
            "started_at": started.isoformat(),
            "duration_seconds": round(duration, 3),
            **counts,
        }
        try:
            self.store.record_learning_metrics(cycle_type, metrics)
        except Exception as e:
            _logger.error("scheduler.metrics_write_failed", error=str(e))

    def _record_failure(
        self,
        cycle_type: CycleType,
        started: datetime,
        duration: float,
        error: Exception,
    ) -> None:
        try:
            self.store.record_learning_error(cycle_type, str(error), traceback.format_exc())
            self.store.record_learning_metrics(
                cycle_type,
                {
                    "status": "failed",
                    "started_at": started.isoformat(),
                    "duration_seconds": round(duration, 3),
                    "error": str(error),
                },
            )
        except Exception as e:
            _logger.error("scheduler.error_write_failed", error=str(e))

    # ─── Reporting ───

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.is_running,
            intervals=self.intervals,
            last_runs=dict(self._last_runs),
            next_runs=dict(self._next_runs),
        )

    def get_metrics(self, hours: float = 24, now: datetime | None = None) -> LearningMetricsSummary:
        """Aggregate cycle telemetry over the last ``hours`` hours."""
        since = (now or datetime.now()) - timedelta(hours=hours)
        records = self.store.get_learning_metrics(since=since)
        errors = self.store.get_learning_errors(since=since)

        cycles: dict[str, CycleSummary] = {}
        durations: dict[str, list[float]] = {}
        for record in records:
            summary = cycles.setdefault(record.cycle_type, CycleSummary())
            summary.runs += 1
            if record.metrics.get("status") == "failed":
                summary.failures += 1
            durations.setdefault(record.cycle_type, []).append(
                float(record.metrics.get("duration_seconds", 0.0))
            )
            for name, value in record.metrics.items():
                if name in _RUN_FIELDS or not isinstance(value, int | float):
                    continue
                summary.totals[name] = summary.totals.get(name, 0) + value

        for cycle_type, values in durations.items():
            cycles[cycle_type].avg_duration_seconds = sum(values) / len(values)

        total_runs = len(records)
        error_rate = len(errors) / total_runs if total_runs else 0.0
        return LearningMetricsSummary(
            period_hours=hours,
            total_runs=total_runs,
            error_rate=error_rate,
            health=classify_health(total_runs, len(errors)),
            cycles=cycles,
            errors=errors,
        )


__all__ = [
    "CycleRun",
    "LearningMetricsSummary",
    "LearningScheduler",
    "SchedulerStatus",
    "classify_health",
]
