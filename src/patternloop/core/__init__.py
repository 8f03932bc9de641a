"""Core infrastructure: configuration, errors and logging."""

from patternloop.core.config import EngineConfig
from patternloop.core.errors import (
    ExtractionError,
    NotFoundError,
    PatternLoopError,
    StorageError,
    ValidationError,
)
from patternloop.core.logging import configure_logging, get_logger

__all__ = [
    "EngineConfig",
    "ExtractionError",
    "NotFoundError",
    "PatternLoopError",
    "StorageError",
    "ValidationError",
    "configure_logging",
    "get_logger",
]
