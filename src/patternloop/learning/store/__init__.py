"""Pattern store composed from modular mixins.

- PatternMixin: store/merge-on-similarity, queries, row-locked updates
- ConsolidationMixin: merge, prune, decay and per-type cap eviction
- ThresholdMixin: adaptive threshold persistence
- EmbeddingMixin: embedding row persistence

The base class (PatternStoreBase) provides SQLite connection management,
schema creation and per-pattern row locks. It is listed LAST so the mixins
can rely on ``_get_connection()``, ``_locked()`` and ``_logger``.

Usage:
    from patternloop.learning.store import PatternStore

    store = PatternStore()  # ~/.patternloop/patterns.db
    store = PatternStore(db_path=Path("/custom/patterns.db"))
"""

from pathlib import Path

from patternloop.learning.store.base import PatternStoreBase, WhereBuilder
from patternloop.learning.store.consolidation import ConsolidationMixin
from patternloop.learning.store.embeddings import EmbeddingMixin, EmbeddingRow
from patternloop.learning.store.patterns import (
    PatternMixin,
    apply_usage,
    merge_patterns,
)
from patternloop.learning.store.thresholds import ThresholdMixin


class PatternStore(
    PatternMixin,
    ConsolidationMixin,
    ThresholdMixin,
    EmbeddingMixin,
    PatternStoreBase,
):
    """Durable keyed storage for patterns, embeddings and thresholds.

    Example:
        >>> store = PatternStore(db_path=Path("patterns.db"))
        >>> result = store.store(pattern)
        >>> store.search(min_confidence=0.7, limit=10)
        >>> store.consolidate()

    Attributes:
        db_path: Path to the SQLite database file.
        merge_similarity: Name similarity at which same-type patterns merge
            on ``store()``.
    """

    def __init__(self, db_path: Path | None = None, merge_similarity: float = 0.95) -> None:
        self.merge_similarity = merge_similarity
        super().__init__(db_path)


__all__ = [
    "EmbeddingRow",
    "PatternStore",
    "PatternStoreBase",
    "WhereBuilder",
    "apply_usage",
    "merge_patterns",
]
