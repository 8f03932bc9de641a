"""Pytest fixtures for patternloop tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from patternloop.learning.store import PatternStore


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Isolated database path for each test."""
    return tmp_path / "patterns.db"


@pytest.fixture
def store(db_path: Path) -> PatternStore:
    """Fresh PatternStore on a temporary database."""
    return PatternStore(db_path=db_path)
