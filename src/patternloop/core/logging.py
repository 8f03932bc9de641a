"""Structured logging infrastructure for patternloop.

Structured logging built on structlog, with engine-specific correlation
fields (task_id, agent_id, run_id) and component names. Supports console
and JSON output, optionally to a rotating log file.

Example usage:
    from patternloop.core.logging import configure_logging, get_logger, log_context

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("pipeline")
    logger.info("flush_started", buffered=42)

    with log_context(task_id="task-7", agent_id="coder"):
        logger.info("observation_recorded")  # includes task_id, agent_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from patternloop.core.config import LogConfig

# Field-name fragments that are never logged or persisted in clear text
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "token",
    "secret",
    "password",
    "credential",
    "auth",
    "bearer",
    "key",
})

REDACTED = "[REDACTED]"


@dataclass(frozen=True)
class LogContext:
    """Correlation fields added to every log entry inside ``log_context()``.

    Attributes:
        task_id: Task currently being observed or applied.
        agent_id: Agent performing the task.
        run_id: Unique id for one pipeline lifetime.
        component: Component that opened the scope.
    """

    task_id: str | None = None
    agent_id: str | None = None
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    component: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the non-empty fields as a dict."""
        result: dict[str, Any] = {"run_id": self.run_id}
        if self.task_id is not None:
            result["task_id"] = self.task_id
        if self.agent_id is not None:
            result["agent_id"] = self.agent_id
        if self.component is not None:
            result["component"] = self.component
        return result


_current_context: ContextVar[LogContext | None] = ContextVar(
    "patternloop_log_context", default=None
)


def get_current_context() -> LogContext | None:
    """Return the active LogContext, if any."""
    return _current_context.get()


@contextmanager
def log_context(**fields: Any) -> Iterator[LogContext]:
    """Bind correlation fields for the duration of a block.

    Nested scopes inherit the outer scope's fields and override the ones
    passed explicitly.

    Args:
        **fields: Any LogContext attribute (task_id, agent_id, run_id, component).

    Yields:
        The LogContext that is active inside the block.
    """
    outer = _current_context.get()
    ctx = replace(outer, **fields) if outer is not None else LogContext(**fields)
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def is_sensitive_key(key: str) -> bool:
    """Whether a field name looks like it carries a secret."""
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in SENSITIVE_PATTERNS)


def redact_mapping(values: Mapping[str, Any]) -> dict[str, Any]:
    """Copy a mapping, replacing sensitive values with ``[REDACTED]``.

    Nested mappings are redacted recursively. Used both by the log
    processor and when observation parameters are recorded.
    """
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if is_sensitive_key(str(key)):
            redacted[key] = REDACTED
        elif isinstance(value, Mapping):
            redacted[key] = redact_mapping(value)
        else:
            redacted[key] = value
    return redacted


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields."""
    event = event_dict.pop("event", None)
    sanitized = redact_mapping(event_dict)
    if event is not None:
        sanitized["event"] = event
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
    """Structlog processor that merges LogContext fields.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class EngineLogger:
    """Component-bound logger wrapper around structlog.

    The underlying structlog logger is fetched lazily on every call so that
    loggers created at import time still honor a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    @property
    def component(self) -> str:
        return self._component

    def bind(self, **context: Any) -> EngineLogger:
        """Return a new logger with additional bound context."""
        new_logger = EngineLogger.__new__(EngineLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an exception with traceback; call from an except block."""
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
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 3,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure structured logging for the engine.

    Call once at startup, before the pipeline is created.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable output, "json" for structured lines.
        file_path: Optional rotating log file. Console output goes to stderr
            and JSON output to stdout when no file is given.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to add ISO8601 timestamps.
        include_context: Whether to merge active LogContext fields.
    """
    log_level = getattr(logging, level)

    handler: logging.Handler
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
    elif format == "json":
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=file_path is None)

    # cache_logger_on_first_use=False keeps import-time loggers configurable
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def configure_logging_from(config: LogConfig) -> None:
    """Configure logging from the ``logging`` section of an EngineConfig."""
    configure_logging(
        level=config.level,
        format=config.format,
        file_path=config.file_path,
        include_timestamps=config.include_timestamps,
    )


def get_logger(component: str, **initial_context: Any) -> EngineLogger:
    """Get a logger bound to a component name.

    Args:
        component: Component name (e.g. "pipeline", "store", "vectors").
        **initial_context: Additional fields bound to every entry.
    """
    return EngineLogger(component, **initial_context)


__all__ = [
    "REDACTED",
    "SENSITIVE_PATTERNS",
    "EngineLogger",
    "LogContext",
    "configure_logging",
    "configure_logging_from",
    "get_current_context",
    "get_logger",
    "is_sensitive_key",
    "log_context",
    "redact_mapping",
]
