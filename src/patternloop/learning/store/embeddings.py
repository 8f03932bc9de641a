"""Embedding persistence mixin for PatternStore.

Embeddings live in ``pattern_embeddings``, keyed by pattern id, and are
removed by foreign-key cascade when their pattern is deleted. Vectors are
stored as raw bytes; the vector index owns the encoding.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime

from patternloop.core.errors import NotFoundError
from patternloop.core.logging import EngineLogger
from patternloop.learning.store.base import WhereBuilder
from patternloop.utils.time import parse_timestamp, utc_now


@dataclass
class EmbeddingRow:
    """A stored, still-encoded embedding."""

    pattern_id: str
    model: str
    dims: int
    vector: bytes
    compressed: bool
    min_val: float | None
    max_val: float | None
    created_at: datetime


def _row_to_embedding(row: sqlite3.Row) -> EmbeddingRow:
    return EmbeddingRow(
        pattern_id=row["id"],
        model=row["model"],
        dims=row["dims"],
        vector=bytes(row["vector"]),
        compressed=bool(row["compressed"]),
        min_val=row["min_val"],
        max_val=row["max_val"],
        created_at=parse_timestamp(row["created_at"]) or utc_now(),
    )


class EmbeddingMixin:
    """Mixin providing embedding row storage.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    """

    _logger: EngineLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def put_embedding(self, row: EmbeddingRow) -> None:
        """Insert or update the embedding of a stored pattern.

        Re-storing keeps the row (and its rowid), so search tie order is
        the order embeddings were first stored.

        Raises:
            NotFoundError: If the pattern does not exist.
        """
        with self._get_connection() as conn:
            exists = conn.execute(
                "SELECT 1 FROM patterns WHERE id = ?", (row.pattern_id,)
            ).fetchone()
            if exists is None:
                raise NotFoundError(f"pattern {row.pattern_id} not found")
            conn.execute(
                """
                INSERT INTO pattern_embeddings (
                    id, model, dims, vector, compressed, min_val, max_val, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    model = excluded.model,
                    dims = excluded.dims,
                    vector = excluded.vector,
                    compressed = excluded.compressed,
                    min_val = excluded.min_val,
                    max_val = excluded.max_val,
                    created_at = excluded.created_at
                """,
                (
                    row.pattern_id,
                    row.model,
                    row.dims,
                    row.vector,
                    int(row.compressed),
                    row.min_val,
                    row.max_val,
                    row.created_at.isoformat(),
                ),
            )

    def get_embedding_row(self, pattern_id: str) -> EmbeddingRow | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM pattern_embeddings WHERE id = ?", (pattern_id,)
            ).fetchone()
        return _row_to_embedding(row) if row is not None else None

    def embedding_rows(self, model: str) -> list[EmbeddingRow]:
        """All embeddings for a model, in insertion order."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM pattern_embeddings WHERE model = ? ORDER BY rowid",
                (model,),
            ).fetchall()
        return [_row_to_embedding(row) for row in rows]

    def delete_embedding(self, pattern_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM pattern_embeddings WHERE id = ?", (pattern_id,)
            )
        return cursor.rowcount > 0

    def count_embeddings(self, model: str | None = None) -> int:
        wb = WhereBuilder()
        if model is not None:
            wb.add("model = ?", model)
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM pattern_embeddings WHERE {where_sql}", params
            ).fetchone()
        return int(row["n"])

    def model_dimensions(self, model: str) -> int | None:
        """Dimension recorded for a model, or None if it has no embeddings."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT dims FROM pattern_embeddings WHERE model = ? LIMIT 1", (model,)
            ).fetchone()
        return int(row["dims"]) if row is not None else None
