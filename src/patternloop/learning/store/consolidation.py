"""Consolidation mixin for PatternStore.

A consolidation pass runs four phases over a point-in-time snapshot of the
store:

1. merge   - same-type pairs with name similarity >= threshold are merged,
             the lower-ranked one is removed
2. prune   - low-confidence, rarely used, old patterns are deleted
3. decay   - patterns unused for a long interval lose a little confidence
4. evict   - types holding more than the cap lose their lowest-ranked patterns

Every individual decision re-reads the affected rows under their locks and
is applied in its own transaction, so writers never observe a half-merged
pair and concurrent inserts are simply left for the next pass.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime

from patternloop.core.config import ConsolidationConfig
from patternloop.core.logging import EngineLogger
from patternloop.learning.models import ConsolidationResult, Pattern
from patternloop.learning.similarity import name_similarity
from patternloop.learning.store.patterns import merge_patterns
from patternloop.utils.time import days_between, parse_timestamp, utc_now


class _Cancelled(Exception):
    pass


class ConsolidationMixin:
    """Mixin providing merge/prune/decay/evict consolidation.

    This mixin requires that the composed class provides:
    - _get_connection(), _locked(*ids), _drop_locks(ids)
    - _load(conn, id) and _upsert(conn, pattern) from PatternMixin
    """

    _logger: EngineLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _locked: Callable[..., AbstractContextManager[None]]
    _drop_locks: Callable[..., None]
    _load: Callable[[sqlite3.Connection, str], Pattern | None]
    _upsert: Callable[[sqlite3.Connection, Pattern], None]

    def consolidate(
        self,
        options: ConsolidationConfig | None = None,
        now: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> ConsolidationResult:
        """Run one consolidation pass.

        Args:
            options: Thresholds for each phase. Defaults to ConsolidationConfig().
            now: Reference time for age calculations. Defaults to utc_now().
            cancel: When set, the pass stops before its next decision.

        Returns:
            Counts per phase, removed ids, and whether the pass was interrupted.

        Raises:
            StorageError: If the database fails; decisions already applied
                stay applied.
        """
        options = options or ConsolidationConfig()
        now = now or utc_now()
        result = ConsolidationResult()
        started = time.monotonic()

        def checkpoint() -> None:
            if cancel is not None and cancel.is_set():
                raise _Cancelled

        try:
            self._merge_phase(options, result, checkpoint)
            self._prune_phase(options, now, result, checkpoint)
            self._decay_phase(options, now, result, checkpoint)
            self._evict_phase(options, result, checkpoint)
        except _Cancelled:
            result.interrupted = True
        finally:
            self._drop_locks(result.removed_ids)
            result.duration_ms = (time.monotonic() - started) * 1000

        self._logger.info(
            "consolidation_complete",
            merged=result.merged,
            pruned=result.pruned,
            decayed=result.decayed,
            evicted=result.evicted,
            interrupted=result.interrupted,
            duration_ms=round(result.duration_ms, 1),
        )
        return result

    def _snapshot(self) -> list[sqlite3.Row]:
        with self._get_connection() as conn:
            return conn.execute(
                "SELECT id, type, name, confidence, usage_count, created_at, last_used "
                "FROM patterns ORDER BY confidence DESC, usage_count DESC, rowid ASC"
            ).fetchall()

    # ─── Phases ───────────────────────────────────────────────────────

    def _merge_phase(
        self,
        options: ConsolidationConfig,
        result: ConsolidationResult,
        checkpoint: Callable[[], None],
    ) -> None:
        by_type: dict[str, list[sqlite3.Row]] = {}
        for row in self._snapshot():
            by_type.setdefault(row["type"], []).append(row)

        removed: set[str] = set()
        for rows in by_type.values():
            for i, keeper in enumerate(rows):
                if keeper["id"] in removed:
                    continue
                for other in rows[i + 1:]:
                    if other["id"] in removed:
                        continue
                    if name_similarity(keeper["name"], other["name"]) < options.merge_similarity:
                        continue
                    checkpoint()
                    if self._merge_pair(keeper["id"], other["id"], options.merge_similarity):
                        removed.add(other["id"])
                        result.merged += 1
                        result.removed_ids.append(other["id"])

    def _merge_pair(self, keeper_id: str, loser_id: str, threshold: float) -> bool:
        with self._locked(keeper_id, loser_id), self._get_connection() as conn:
            keeper = self._load(conn, keeper_id)
            loser = self._load(conn, loser_id)
            if keeper is None or loser is None or keeper.type != loser.type:
                return False
            if name_similarity(keeper.name, loser.name) < threshold:
                return False
            merged = merge_patterns(keeper, loser)
            self._upsert(conn, merged)
            conn.execute("DELETE FROM patterns WHERE id = ?", (loser_id,))
        self._logger.debug("patterns_merged", keeper=keeper_id, removed=loser_id)
        return True

    def _prune_phase(
        self,
        options: ConsolidationConfig,
        now: datetime,
        result: ConsolidationResult,
        checkpoint: Callable[[], None],
    ) -> None:
        for row in self._snapshot():
            if not self._prunable(
                row["confidence"], row["usage_count"], row["created_at"], options, now
            ):
                continue
            checkpoint()
            pattern_id = row["id"]
            with self._locked(pattern_id), self._get_connection() as conn:
                current = self._load(conn, pattern_id)
                if current is None or not self._prunable(
                    current.confidence,
                    current.usage_count,
                    current.created_at.isoformat(),
                    options,
                    now,
                ):
                    continue
                conn.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
            result.pruned += 1
            result.removed_ids.append(pattern_id)

    @staticmethod
    def _prunable(
        confidence: float,
        usage_count: int,
        created_at: str,
        options: ConsolidationConfig,
        now: datetime,
    ) -> bool:
        created = parse_timestamp(created_at)
        if created is None:
            return False
        return (
            confidence < options.prune_confidence_threshold
            and usage_count < options.prune_usage_threshold
            and days_between(created, now) > options.prune_age_days
        )

    def _decay_phase(
        self,
        options: ConsolidationConfig,
        now: datetime,
        result: ConsolidationResult,
        checkpoint: Callable[[], None],
    ) -> None:
        if options.decay_factor >= 1.0:
            return
        for row in self._snapshot():
            last_active = parse_timestamp(row["last_used"] or row["created_at"])
            if last_active is None or days_between(last_active, now) <= options.decay_after_days:
                continue
            checkpoint()
            pattern_id = row["id"]
            with self._locked(pattern_id), self._get_connection() as conn:
                current = self._load(conn, pattern_id)
                if current is None:
                    continue
                current_active = current.last_used or current.created_at
                if days_between(current_active, now) <= options.decay_after_days:
                    continue
                current.confidence = max(0.0, current.confidence * options.decay_factor)
                self._upsert(conn, current)
            result.decayed += 1

    def _evict_phase(
        self,
        options: ConsolidationConfig,
        result: ConsolidationResult,
        checkpoint: Callable[[], None],
    ) -> None:
        by_type: dict[str, list[str]] = {}
        for row in self._snapshot():
            by_type.setdefault(row["type"], []).append(row["id"])

        for pattern_type, ranked_ids in by_type.items():
            excess = ranked_ids[options.max_patterns_per_type:]
            for pattern_id in reversed(excess):
                checkpoint()
                with self._locked(pattern_id), self._get_connection() as conn:
                    cursor = conn.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
                    if cursor.rowcount == 0:
                        continue
                result.evicted += 1
                result.removed_ids.append(pattern_id)
            if excess:
                self._logger.info(
                    "patterns_evicted",
                    type=pattern_type,
                    cap=options.max_patterns_per_type,
                    evicted=len(excess),
                )
