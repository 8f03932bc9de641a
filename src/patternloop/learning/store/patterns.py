"""Pattern CRUD and merge mixin for PatternStore.

Provides methods for storing, querying and updating patterns:
- store: Insert a pattern, or merge it into a near-duplicate of the same type
- get / require / search / count / get_stats: Queries
- update / update_confidence / record_usage / mutate: Row-locked writes
- find_similar / merge_into: Duplicate detection and merging
- delete: Remove a pattern and (by cascade) its embedding

Each pattern row keeps the full Pattern as gzip-compressed JSON in ``data``;
type, name, confidence, usage and timestamps are mirrored into columns for
querying.
"""

from __future__ import annotations

import gzip
import json
import sqlite3
import threading
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, TypeVar

from patternloop.core.errors import NotFoundError, ValidationError
from patternloop.core.logging import EngineLogger
from patternloop.learning.models import (
    OutcomeStatus,
    Pattern,
    PatternType,
    StoreResult,
)
from patternloop.learning.similarity import name_similarity
from patternloop.learning.store.base import WhereBuilder
from patternloop.utils.time import utc_now

T = TypeVar("T")


def encode_pattern(pattern: Pattern) -> bytes:
    return gzip.compress(json.dumps(pattern.to_dict()).encode("utf-8"))


def decode_pattern(data: bytes) -> Pattern:
    return Pattern.from_dict(json.loads(gzip.decompress(data).decode("utf-8")))


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None or b is None:
        return a or b
    return max(a, b)


def merge_patterns(target: Pattern, source: Pattern) -> Pattern:
    """Fold ``source`` into ``target`` and return the merged pattern.

    Outcome and usage counts are summed. Confidence is the usage-weighted
    mean of the two (plain mean when neither was used). Identity, name and
    actions come from ``target``.
    """
    total_usage = target.usage_count + source.usage_count
    if total_usage:
        confidence = (
            target.confidence * target.usage_count
            + source.confidence * source.usage_count
        ) / total_usage
    else:
        confidence = (target.confidence + source.confidence) / 2

    tm, sm = target.metrics, source.metrics
    t_runs = tm.success_count + tm.failure_count + tm.partial_count
    s_runs = sm.success_count + sm.failure_count + sm.partial_count
    if t_runs + s_runs:
        avg_duration = (
            tm.avg_duration_ms * t_runs + sm.avg_duration_ms * s_runs
        ) / (t_runs + s_runs)
    else:
        avg_duration = (tm.avg_duration_ms + sm.avg_duration_ms) / 2

    tm.success_count += sm.success_count
    tm.failure_count += sm.failure_count
    tm.partial_count += sm.partial_count
    tm.avg_duration_ms = avg_duration
    tm.avg_improvement = max(tm.avg_improvement, sm.avg_improvement)
    tm.last_success = _latest(tm.last_success, sm.last_success)
    tm.last_failure = _latest(tm.last_failure, sm.last_failure)

    target.confidence = max(0.0, min(1.0, confidence))
    target.usage_count = total_usage
    target.last_used = _latest(target.last_used, source.last_used)
    target.created_at = min(target.created_at, source.created_at)
    return target


def apply_usage(
    pattern: Pattern,
    status: OutcomeStatus,
    duration_ms: float,
    now: datetime | None = None,
) -> Pattern:
    """Count one application of a pattern.

    Increments usage, stamps last_used, bumps the outcome counter and keeps
    a running mean of application duration.
    """
    now = now or utc_now()
    pattern.usage_count += 1
    pattern.last_used = now
    metrics = pattern.metrics
    if status is OutcomeStatus.SUCCESS:
        metrics.success_count += 1
        metrics.last_success = now
    elif status is OutcomeStatus.PARTIAL:
        metrics.partial_count += 1
    else:
        metrics.failure_count += 1
        metrics.last_failure = now
    n = pattern.usage_count
    metrics.avg_duration_ms = (metrics.avg_duration_ms * (n - 1) + duration_ms) / n
    return pattern


class PatternMixin:
    """Mixin providing pattern storage, querying and merging.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    - _locked(*ids): Context manager holding per-pattern row locks
    - _write_lock: Store-level lock around find-similar + insert
    """

    _logger: EngineLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _locked: Callable[..., AbstractContextManager[None]]
    _drop_locks: Callable[..., None]
    _write_lock: threading.RLock
    merge_similarity: float

    # ─── Writes ───────────────────────────────────────────────────────

    def store(self, pattern: Pattern) -> StoreResult:
        """Persist a pattern, merging it into a near-duplicate if one exists.

        A stored pattern of the same type whose name similarity reaches
        ``merge_similarity`` absorbs the new one.

        Args:
            pattern: The pattern to store.

        Returns:
            The surviving pattern id and whether a merge happened.

        Raises:
            ValidationError: If the pattern is malformed; nothing is written.
            StorageError: If the database write fails.
        """
        pattern.validate()
        with self._write_lock:
            similar = self.find_similar(pattern, self.merge_similarity)
            if similar:
                target_id = similar[0].id
                self.merge_into(target_id, pattern)
                self._logger.debug(
                    "pattern_merged_on_store",
                    pattern_id=target_id,
                    incoming=pattern.name,
                )
                return StoreResult(pattern_id=target_id, merged=True)

            with self._locked(pattern.id), self._get_connection() as conn:
                self._upsert(conn, pattern)
        self._logger.debug(
            "pattern_stored",
            pattern_id=pattern.id,
            type=pattern.type.value,
            confidence=round(pattern.confidence, 4),
        )
        return StoreResult(pattern_id=pattern.id, merged=False)

    def update(self, pattern: Pattern) -> None:
        """Overwrite an existing pattern.

        Raises:
            ValidationError: If the pattern is malformed.
            NotFoundError: If no pattern with that id exists.
        """
        pattern.validate()
        with self._locked(pattern.id), self._get_connection() as conn:
            if not self._exists(conn, pattern.id):
                raise NotFoundError(f"pattern {pattern.id} not found")
            self._upsert(conn, pattern)

    def update_confidence(self, pattern_id: str, confidence: float) -> Pattern:
        """Set a pattern's confidence.

        Raises:
            ValidationError: If confidence is outside [0, 1].
            NotFoundError: If the pattern does not exist.
        """
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"confidence {confidence} outside [0, 1]")

        def _set(pattern: Pattern) -> Pattern:
            pattern.confidence = confidence
            return pattern

        return self.mutate(pattern_id, _set)

    def record_usage(
        self,
        pattern_id: str,
        status: OutcomeStatus,
        duration_ms: float = 0.0,
    ) -> Pattern:
        """Count one application of a pattern; see ``apply_usage``."""
        return self.mutate(pattern_id, lambda p: apply_usage(p, status, duration_ms))

    def mutate(self, pattern_id: str, mutator: Callable[[Pattern], T]) -> T:
        """Read-modify-write one pattern under its row lock.

        The mutator receives the current pattern and modifies it in place;
        the result is validated and written in the same transaction.

        Raises:
            NotFoundError: If the pattern does not exist.
            ValidationError: If the mutated pattern is invalid; nothing is written.
        """
        with self._locked(pattern_id), self._get_connection() as conn:
            pattern = self._load(conn, pattern_id)
            if pattern is None:
                raise NotFoundError(f"pattern {pattern_id} not found")
            result = mutator(pattern)
            pattern.validate()
            self._upsert(conn, pattern)
            return result

    def merge_into(self, target_id: str, source: Pattern) -> Pattern:
        """Merge ``source`` into the stored pattern ``target_id``.

        If ``source`` is itself stored (and is not the target), its row is
        deleted in the same transaction.

        Raises:
            NotFoundError: If the target does not exist.
        """
        with self._locked(target_id, source.id), self._get_connection() as conn:
            target = self._load(conn, target_id)
            if target is None:
                raise NotFoundError(f"pattern {target_id} not found")
            merged = merge_patterns(target, source)
            merged.validate()
            self._upsert(conn, merged)
            if source.id != target_id:
                conn.execute("DELETE FROM patterns WHERE id = ?", (source.id,))
        return merged

    def delete(self, pattern_id: str) -> bool:
        """Delete a pattern and its embedding. Returns whether it existed."""
        with self._locked(pattern_id), self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            self._drop_locks([pattern_id])
            self._logger.debug("pattern_deleted", pattern_id=pattern_id)
        return deleted

    # ─── Queries ──────────────────────────────────────────────────────

    def get(self, pattern_id: str) -> Pattern | None:
        """Return the pattern with this id, or None."""
        with self._get_connection() as conn:
            return self._load(conn, pattern_id)

    def require(self, pattern_id: str) -> Pattern:
        """Return the pattern with this id.

        Raises:
            NotFoundError: If it does not exist.
        """
        pattern = self.get(pattern_id)
        if pattern is None:
            raise NotFoundError(f"pattern {pattern_id} not found")
        return pattern

    def search(
        self,
        pattern_type: PatternType | None = None,
        min_confidence: float | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Pattern]:
        """Query patterns, highest confidence first, then most used.

        ``offset`` skips that many rows of the ordering, for paging.
        """
        wb = WhereBuilder()
        if pattern_type is not None:
            wb.add("type = ?", pattern_type.value)
        if min_confidence is not None:
            wb.add("confidence >= ?", min_confidence)
        where_sql, params = wb.build()

        sql = (
            f"SELECT data FROM patterns WHERE {where_sql} "
            "ORDER BY confidence DESC, usage_count DESC, rowid ASC"
        )
        if limit is not None or offset:
            # SQLite only accepts OFFSET after a LIMIT; -1 means unbounded
            sql += " LIMIT ? OFFSET ?"
            params = (*params, -1 if limit is None else limit, offset)

        with self._get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [decode_pattern(row["data"]) for row in rows]

    def find_similar(self, pattern: Pattern, threshold: float) -> list[Pattern]:
        """Same-type stored patterns whose name similarity reaches threshold.

        The pattern itself is excluded. Most similar first.
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT id, name FROM patterns WHERE type = ? AND id != ? ORDER BY rowid",
                (pattern.type.value, pattern.id),
            ).fetchall()
            scored = [
                (name_similarity(pattern.name, row["name"]), row["id"]) for row in rows
            ]
            matches: list[tuple[float, Pattern]] = []
            for similarity, pattern_id in scored:
                if similarity < threshold:
                    continue
                loaded = self._load(conn, pattern_id)
                if loaded is not None:
                    matches.append((similarity, loaded))
        matches.sort(key=lambda item: item[0], reverse=True)
        return [match for _, match in matches]

    def count(self, pattern_type: PatternType | None = None) -> int:
        wb = WhereBuilder()
        if pattern_type is not None:
            wb.add("type = ?", pattern_type.value)
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM patterns WHERE {where_sql}", params
            ).fetchone()
        return int(row["n"])

    def get_stats(self) -> dict[str, Any]:
        """Totals and averages across stored patterns."""
        with self._get_connection() as conn:
            totals = conn.execute(
                "SELECT COUNT(*) AS n, AVG(confidence) AS avg_conf, "
                "SUM(usage_count) AS usage FROM patterns"
            ).fetchone()
            by_type = conn.execute(
                "SELECT type, COUNT(*) AS n FROM patterns GROUP BY type"
            ).fetchall()
        return {
            "total_patterns": int(totals["n"]),
            "avg_confidence": float(totals["avg_conf"] or 0.0),
            "total_usage": int(totals["usage"] or 0),
            "by_type": {row["type"]: int(row["n"]) for row in by_type},
        }

    # ─── Row helpers ──────────────────────────────────────────────────

    @staticmethod
    def _exists(conn: sqlite3.Connection, pattern_id: str) -> bool:
        row = conn.execute("SELECT 1 FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
        return row is not None

    @staticmethod
    def _load(conn: sqlite3.Connection, pattern_id: str) -> Pattern | None:
        row = conn.execute(
            "SELECT data FROM patterns WHERE id = ?", (pattern_id,)
        ).fetchone()
        if row is None:
            return None
        return decode_pattern(row["data"])

    @staticmethod
    def _upsert(conn: sqlite3.Connection, pattern: Pattern) -> None:
        # Upsert keeps the row in place so embeddings are not cascaded away
        conn.execute(
            """
            INSERT INTO patterns (
                id, type, name, data, confidence, usage_count, created_at, last_used
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                type = excluded.type,
                name = excluded.name,
                data = excluded.data,
                confidence = excluded.confidence,
                usage_count = excluded.usage_count,
                created_at = excluded.created_at,
                last_used = excluded.last_used
            """,
            (
                pattern.id,
                pattern.type.value,
                pattern.name,
                encode_pattern(pattern),
                pattern.confidence,
                pattern.usage_count,
                pattern.created_at.isoformat(),
                pattern.last_used.isoformat() if pattern.last_used else None,
            ),
        )

