"""Structured logging infrastructure for Lorekeeper.

Provides structured logging using structlog with Lorekeeper-specific context
such as the learning cycle being run and the component emitting the entry.
Supports console output, JSON output and rotating log files.

Example usage:
    from lorekeeper.core.logging import get_logger, configure_logging

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("extraction")
    logger.info("extraction.completed", candidates=12)

    # Correlate every entry logged inside a learning cycle
    from lorekeeper.core.logging import CycleContext, with_context

    with with_context(CycleContext(cycle_type="cleanup")):
        logger.info("cleanup.pattern_archived")  # includes cycle_type, cycle_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values are redacted before rendering
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "secret",
    "password",
    "credential",
    "bearer",
    "authorization",
})


@dataclass(frozen=True)
class CycleContext:
    """Immutable context correlating log entries within one learning cycle.

    Attributes:
        cycle_type: The cycle being run ("extraction", "scoring", "cleanup").
        cycle_id: Unique id for this run of the cycle.
        component: Component name for the current operation.
    """

    cycle_type: str
    cycle_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    component: str = "scheduler"

    def with_component(self, component: str) -> CycleContext:
        """Return a copy of this context attributed to another component."""
        return CycleContext(
            cycle_type=self.cycle_type,
            cycle_id=self.cycle_id,
            component=component,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_type": self.cycle_type,
            "cycle_id": self.cycle_id,
            "component": self.component,
        }


_current_context: ContextVar[CycleContext | None] = ContextVar(
    "lorekeeper_cycle_context", default=None
)


def get_current_context() -> CycleContext | None:
    """Get the current CycleContext, or None outside a cycle."""
    return _current_context.get()


@contextmanager
def with_context(ctx: CycleContext) -> Iterator[CycleContext]:
    """Set the CycleContext for the duration of a block.

    All log calls within the block include the context fields when the
    context processor is active. The previous context is restored on exit.

    Args:
        ctx: The CycleContext to use for the block.

    Yields:
        The CycleContext that was set.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts values of sensitive-looking keys.

    Nested dicts are sanitized one level deep.
    """
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {
                k: _sanitize_value(k, v) for k, v in value.items()
            }
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds an ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds CycleContext fields to log entries.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            if key not in event_dict:
                event_dict[key] = value
    return event_dict


class LoreLogger:
    """Lorekeeper logger wrapper around structlog.

    The logger is bound to a component name and can carry additional
    context (e.g., pattern_id). The underlying structlog logger is fetched
    lazily on every call so loggers created at import time still respect a
    later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> LoreLogger:
        """Create a new logger with additional bound context."""
        new_logger = LoreLogger.__new__(LoreLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def unbind(self, *keys: str) -> LoreLogger:
        """Create a new logger with the given keys removed from its context."""
        new_logger = LoreLogger.__new__(LoreLogger)
        new_logger._component = self._component
        new_logger._context = {k: v for k, v in self._context.items() if k not in keys}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def critical(self, event: str, **kw: Any) -> None:
        self._get_logger().critical(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback. Call from within an exception handler."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]

    if include_context:
        processors.append(_add_context)

    if include_timestamps:
        processors.append(_add_timestamp)

    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure Lorekeeper structured logging.

    Call once at startup before any logging occurs.

    Args:
        level: Minimum log level to capture.
        format: "json" for structured output, "console" for human-readable,
            "both" for console to stderr plus JSON to a rotating file.
        file_path: Log file path. Required if format="both".
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to include ISO8601 timestamps.
        include_context: Whether to include CycleContext fields when a
            context is active.

    Raises:
        ValueError: If format="both" but file_path is not provided.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    if format in ("json", "both"):
        if file_path:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            handlers.append(file_handler)
        elif format == "json":
            json_handler = logging.StreamHandler(sys.stdout)
            json_handler.setLevel(log_level)
            handlers.append(json_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    # cache_logger_on_first_use=False keeps import-time loggers reconfigurable
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> LoreLogger:
    """Get a Lorekeeper logger for a component.

    Args:
        component: The component name (e.g., "extraction", "cache").
        **initial_context: Additional context to bind.

    Returns:
        A LoreLogger bound to the component.
    """
    return LoreLogger(component, **initial_context)


__all__ = [
    "CycleContext",
    "LoreLogger",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
