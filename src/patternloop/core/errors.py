"""Exception hierarchy for patternloop.

All engine exceptions inherit from PatternLoopError, so callers can catch
broadly (PatternLoopError) or narrowly (e.g. NotFoundError).
"""

from __future__ import annotations


class PatternLoopError(Exception):
    """Base exception for all engine errors."""


class ValidationError(PatternLoopError):
    """Raised when a Pattern, Observation or embedding is malformed.

    Examples: missing id/type/name, confidence outside [0, 1], vector
    dimension mismatch. Malformed records are never persisted.
    """


class NotFoundError(PatternLoopError):
    """Raised when an explicitly requested record does not exist.

    Plain lookups return None instead; this is only raised where the
    caller required the row (e.g. tracking an outcome for a pattern id).
    """


class StorageError(PatternLoopError):
    """Raised when the backing SQLite store fails.

    Wraps the underlying sqlite3 error and always propagates to the caller
    of the triggering operation.
    """


class ExtractionError(PatternLoopError):
    """Raised for a single malformed observation inside an extraction batch.

    The extractor logs and skips the offending observation; the rest of
    the batch continues.
    """


__all__ = [
    "ExtractionError",
    "NotFoundError",
    "PatternLoopError",
    "StorageError",
    "ValidationError",
]
