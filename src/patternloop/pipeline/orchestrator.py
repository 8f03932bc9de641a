"""Learning pipeline: the public face of the engine.

Buffers observations, extracts and stores patterns when the buffer flushes,
serves the best pattern for a task, learns from reported outcomes and
periodically consolidates the store.

    async with LearningPipeline(config) as pipeline:
        result = await pipeline.observe("Read", {"path": "a.py"}, read_file)
        application = await pipeline.apply_best_pattern("read and grep logs")
        if application.applied:
            ...
            await pipeline.track_outcome(outcome)

State: IDLE -> BUFFERING (observations waiting) -> EXTRACTING (flush in
progress) -> IDLE. Consolidation runs independently of that cycle.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import numpy as np

from patternloop.core.config import EngineConfig
from patternloop.core.errors import ValidationError
from patternloop.core.logging import configure_logging_from, get_logger, log_context
from patternloop.learning.clusterer import PerformanceClusterer
from patternloop.learning.confidence import BayesianConfidenceUpdater
from patternloop.learning.extractor import PatternExtractor
from patternloop.learning.matching import capabilities_satisfied, is_relevant
from patternloop.learning.miner import SequenceMiner
from patternloop.learning.models import (
    ConfidenceUpdate,
    ConsolidationResult,
    ExecutionContext,
    LearningMetrics,
    Observation,
    Outcome,
    OutcomeStatus,
    Pattern,
    PatternApplication,
    StoreResult,
    VerificationOutcome,
)
from patternloop.learning.scorer import PatternQualityScorer
from patternloop.learning.store import PatternStore, apply_usage
from patternloop.learning.thresholds import AdaptiveThresholdManager
from patternloop.learning.vectors import VectorIndex, VectorLike, VectorSearchResult
from patternloop.learning.working_memory import WorkingMemory
from patternloop.pipeline.events import EventCallback, EventKind, ListenerRegistry
from patternloop.utils.time import days_between, utc_now

_logger = get_logger("pipeline")

T = TypeVar("T")

RECENCY_WINDOW_DAYS = 90.0
SUCCESS_RATE_ALPHA = 0.1

NO_SUITABLE_PATTERN = "no_suitable_pattern"
CONFIDENCE_TOO_LOW = "confidence_too_low"


class PipelineState(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    EXTRACTING = "extracting"
    STOPPED = "stopped"


def rank_pattern(pattern: Pattern, now: Any = None) -> float:
    """Application rank: 0.6 confidence + 0.2 usage + 0.2 recency.

    Usage saturates at 100 applications; recency falls linearly from 1 to 0
    over 90 days since last use and is 0 for never-used patterns.
    """
    now = now or utc_now()
    usage = min(1.0, pattern.usage_count / 100)
    recency = 0.0
    if pattern.last_used is not None:
        age_days = days_between(pattern.last_used, now)
        recency = max(0.0, 1.0 - age_days / RECENCY_WINDOW_DAYS)
    return 0.6 * pattern.confidence + 0.2 * usage + 0.2 * recency


class LearningPipeline:
    """Orchestrates observation, extraction, application and learning.

    Every collaborator can be injected; missing ones are built from
    ``config``. The pipeline owns its store and vector index for its
    lifetime.

    Args:
        config: Engine configuration.
        store: Pattern store. Defaults to one at ``config.store.db_path``.
        vector_index: Similarity index; None with ``config.vectors.enabled``
            false disables semantic fallback.
        working_memory: Per-pipeline working memory.
        extractor: Pattern extractor.
        updater: Confidence updater.
        thresholds: Adaptive threshold manager.
        listeners: Callbacks receiving PipelineEvents.
        working_directory: Recorded in observation contexts; defaults to cwd.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        store: PatternStore | None = None,
        vector_index: VectorIndex | None = None,
        working_memory: WorkingMemory | None = None,
        extractor: PatternExtractor | None = None,
        updater: BayesianConfidenceUpdater | None = None,
        thresholds: AdaptiveThresholdManager | None = None,
        listeners: Iterable[EventCallback] = (),
        working_directory: str | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        cfg = self.config
        self._store = store or PatternStore(cfg.store.db_path, cfg.store.merge_similarity)
        if vector_index is None and cfg.vectors.enabled:
            vector_index = VectorIndex(self._store, cfg.vectors)
        self._vectors = vector_index
        self._memory = working_memory or WorkingMemory()
        self._extractor = extractor or PatternExtractor(
            SequenceMiner(cfg.miner),
            PerformanceClusterer(cfg.clustering),
            PatternQualityScorer(cfg.scoring),
        )
        self._updater = updater or BayesianConfidenceUpdater(cfg.confidence)
        self._thresholds = thresholds or AdaptiveThresholdManager(self._store, cfg.thresholds)
        self.listeners = ListenerRegistry(listeners)
        self._working_directory = working_directory or os.getcwd()

        self._buffer: list[Observation] = []
        self._flush_lock = asyncio.Lock()
        self._flush_requested = False
        self._consolidation_lock = asyncio.Lock()
        self._consolidation_cancel = threading.Event()
        self._extraction_cancel = threading.Event()
        self._flush_task: asyncio.Task[None] | None = None
        self._consolidation_task: asyncio.Task[None] | None = None
        self._state = PipelineState.IDLE
        self._metrics = LearningMetrics()

    @classmethod
    def from_yaml(
        cls, path: Path, *, setup_logging: bool = True, **kwargs: Any
    ) -> LearningPipeline:
        """Build a pipeline from a YAML engine configuration.

        Args:
            path: YAML file holding an EngineConfig.
            setup_logging: Apply the file's ``logging`` section before
                the pipeline is created.
            **kwargs: Passed to the constructor.
        """
        config = EngineConfig.from_yaml(path)
        if setup_logging:
            configure_logging_from(config.logging)
        return cls(config, **kwargs)

    # ─── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the flush and consolidation timers."""
        self._ensure_open()
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(
                self._flush_loop(), name="patternloop-flush"
            )
        if self._consolidation_task is None:
            self._consolidation_task = asyncio.create_task(
                self._consolidation_loop(), name="patternloop-consolidation"
            )
        _logger.info(
            "pipeline.started",
            db_path=str(self._store.db_path),
            flush_interval=self.config.pipeline.observation_flush_interval,
            consolidation_interval=self.config.consolidation.effective_interval,
        )

    async def shutdown(self, final_flush: bool = True) -> None:
        """Stop timers, interrupt consolidation, flush, and release resources.

        Args:
            final_flush: Run one last extraction over buffered observations.
                When False, buffered observations are dropped and any running
                extraction stops at its next candidate.
        """
        if self._state is PipelineState.STOPPED:
            return
        for task in (self._flush_task, self._consolidation_task):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._flush_task = None
        self._consolidation_task = None

        self._consolidation_cancel.set()
        if not final_flush:
            self._extraction_cancel.set()
            self._buffer.clear()
        # Waits for an in-flight pass to reach its next cancellation point
        async with self._consolidation_lock:
            pass
        # A running flush completes before the final one starts
        async with self._flush_lock:
            await self._flush_locked()

        self._memory.clear()
        if self._vectors is not None:
            self._vectors.clear_cache()
        self._store.close()
        self._state = PipelineState.STOPPED
        _logger.info("pipeline.stopped", **self._metrics.to_dict())

    async def __aenter__(self) -> LearningPipeline:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def store(self) -> PatternStore:
        return self._store

    @property
    def vector_index(self) -> VectorIndex | None:
        return self._vectors

    @property
    def working_memory(self) -> WorkingMemory:
        return self._memory

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    # ─── Observation ──────────────────────────────────────────────────

    async def observe(
        self,
        action: str,
        params: dict[str, Any] | None,
        executor: Callable[[], T | Awaitable[T]],
        *,
        context: ExecutionContext | None = None,
        capabilities: Iterable[str] = (),
    ) -> T:
        """Run an action and record it as an observation.

        The observation is recorded whether the executor succeeds or raises;
        executor errors are re-raised unchanged after recording. A full
        buffer triggers a flush before this call returns.

        Args:
            action: Action (tool) name.
            params: Action parameters; sensitive keys are redacted.
            executor: Zero-argument callable, sync or async.
            context: Explicit context. Defaults to a working-memory snapshot.
            capabilities: Capability tags for the default context.

        Raises:
            ValidationError: If ``action`` is empty.
            StorageError: If a triggered flush fails to persist.
        """
        self._ensure_open()
        if not action:
            raise ValidationError("action name is required")
        if context is None:
            context = self._memory.context(
                agent_id=self.config.pipeline.agent_id,
                working_directory=self._working_directory,
                capabilities=frozenset(capabilities),
            )

        with log_context(task_id=context.task_id, agent_id=context.agent_id):
            started = time.monotonic()
            try:
                value = executor()
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                await self._record(action, params, context, started, success=False, error=str(e))
                raise
            await self._record(action, params, context, started, success=True, result=value)
            return value

    async def _record(
        self,
        action: str,
        params: dict[str, Any] | None,
        context: ExecutionContext,
        started: float,
        *,
        success: bool,
        result: Any = None,
        error: str | None = None,
    ) -> None:
        observation = Observation.record(
            action,
            params,
            success=success,
            duration_ms=(time.monotonic() - started) * 1000,
            context=context,
            result=result,
            error=error,
            max_result_chars=self.config.pipeline.max_result_chars,
        )
        self._buffer.append(observation)
        self._metrics.observations_collected += 1
        self._memory.record_step()
        if self._state is PipelineState.IDLE:
            self._state = PipelineState.BUFFERING
        _logger.debug(
            "observation_recorded",
            action=action,
            success=success,
            duration_ms=round(observation.duration_ms, 2),
            buffered=len(self._buffer),
        )
        await self.listeners.emit(
            EventKind.OBSERVATION_RECORDED,
            observation_id=observation.id,
            action=action,
            success=success,
        )
        if len(self._buffer) >= self.config.pipeline.observation_buffer_size:
            await self.flush()

    # ─── Flush / extraction ───────────────────────────────────────────

    async def flush(self) -> list[Pattern]:
        """Extract and store patterns from the buffered observations.

        Flushes never overlap: a request made while one is running is
        coalesced into a follow-up pass of the running flush.

        Returns:
            Patterns stored or merged by this call (empty when coalesced).

        Raises:
            StorageError: If persisting extracted patterns fails.
        """
        if self._flush_lock.locked():
            self._flush_requested = True
            return []
        async with self._flush_lock:
            return await self._flush_locked()

    async def _flush_locked(self) -> list[Pattern]:
        stored: list[Pattern] = []
        while True:
            self._flush_requested = False
            stored.extend(await self._flush_once())
            if not (self._flush_requested and self._buffer):
                break
        return stored

    async def _flush_once(self) -> list[Pattern]:
        batch, self._buffer = self._buffer, []
        pipeline_cfg = self.config.pipeline
        if not batch:
            self._state = PipelineState.IDLE
            return []
        if not pipeline_cfg.auto_learning or len(batch) < pipeline_cfg.extraction_batch_size:
            _logger.debug(
                "flush.batch_discarded",
                observations=len(batch),
                min_batch=pipeline_cfg.extraction_batch_size,
                auto_learning=pipeline_cfg.auto_learning,
            )
            self._state = PipelineState.BUFFERING if self._buffer else PipelineState.IDLE
            return []

        self._state = PipelineState.EXTRACTING
        try:
            results = await asyncio.to_thread(self._extract_and_store, batch)
        finally:
            self._state = PipelineState.BUFFERING if self._buffer else PipelineState.IDLE

        stored: list[Pattern] = []
        for pattern, outcome in results:
            stored.append(pattern)
            await self.listeners.emit(
                EventKind.PATTERN_STORED,
                pattern_id=outcome.pattern_id,
                merged=outcome.merged,
                confidence=pattern.confidence,
            )
        _logger.info(
            "flush.complete",
            observations=len(batch),
            patterns=len(stored),
            merged=sum(1 for _, outcome in results if outcome.merged),
        )
        return stored

    def _extract_and_store(
        self, batch: list[Observation]
    ) -> list[tuple[Pattern, StoreResult]]:
        patterns = self._extractor.extract_patterns(batch, cancel=self._extraction_cancel)
        self._metrics.patterns_extracted += len(patterns)

        results: list[tuple[Pattern, StoreResult]] = []
        for pattern in patterns:
            if self._extraction_cancel.is_set():
                break
            outcome = self._store.store(pattern)
            if outcome.merged:
                stored = self._store.get(outcome.pattern_id) or pattern
            else:
                stored = pattern
                self._metrics.patterns_stored += 1
                if self._vectors is not None:
                    self._vectors.store(stored.id, _embedding_text(stored))
            if stored.confidence >= self.config.pipeline.working_memory_cache_threshold:
                self._memory.cache_pattern(stored)
            results.append((stored, outcome))
        return results

    # ─── Application ──────────────────────────────────────────────────

    async def apply_best_pattern(
        self,
        task_description: str,
        context: ExecutionContext | None = None,
    ) -> PatternApplication:
        """Pick the best stored pattern for a task.

        Candidates must satisfy the context's capabilities and share a
        keyword with the task description. With no symbolic match, the
        vector index is searched for semantically close patterns.

        Returns:
            ``applied=True`` with the chosen pattern; otherwise a reason of
            ``no_suitable_pattern`` or ``confidence_too_low`` (with the best
            candidate's id).
        """
        self._ensure_open()
        if context is None:
            context = self._memory.context(
                agent_id=self.config.pipeline.agent_id,
                working_directory=self._working_directory,
            )

        candidates = self._symbolic_candidates(task_description, context)
        source = "symbolic"
        if not candidates and self._vectors is not None and task_description.strip():
            candidates = self._vector_candidates(task_description, context)
            source = "vector"

        if not candidates:
            _logger.debug("apply.no_candidates", task=task_description[:80])
            return PatternApplication(applied=False, reason=NO_SUITABLE_PATTERN)

        now = utc_now()
        best = max(candidates, key=lambda p: rank_pattern(p, now))
        if best.confidence < self.config.pipeline.min_confidence_threshold:
            _logger.debug(
                "apply.confidence_too_low",
                pattern_id=best.id,
                confidence=round(best.confidence, 4),
            )
            return PatternApplication(
                applied=False,
                pattern_id=best.id,
                pattern=best,
                confidence=best.confidence,
                reason=CONFIDENCE_TOO_LOW,
                source=source,
            )

        self._metrics.patterns_applied += 1
        self._memory.activate(best.id)
        _logger.info(
            "apply.pattern_applied",
            pattern_id=best.id,
            name=best.name,
            confidence=round(best.confidence, 4),
            source=source,
        )
        await self.listeners.emit(
            EventKind.PATTERN_APPLIED,
            pattern_id=best.id,
            task_description=task_description,
            confidence=best.confidence,
            source=source,
        )
        return PatternApplication(
            applied=True,
            pattern_id=best.id,
            pattern=best,
            confidence=best.confidence,
            source=source,
        )

    def _symbolic_candidates(
        self, task_description: str, context: ExecutionContext
    ) -> list[Pattern]:
        """Up to ``candidate_limit`` relevant patterns in store order.

        Pages through the store so irrelevant high-confidence patterns do
        not crowd out relevant ones.
        """
        limit = self.config.pipeline.candidate_limit
        candidates: list[Pattern] = []
        offset = 0
        while len(candidates) < limit:
            page = self._store.search(limit=limit, offset=offset)
            candidates.extend(
                pattern for pattern in page if is_relevant(pattern, task_description, context)
            )
            if len(page) < limit:
                break
            offset += limit
        return candidates[:limit]

    def _vector_candidates(
        self, task_description: str, context: ExecutionContext
    ) -> list[Pattern]:
        vectors = self._require_vectors()
        cfg = self.config.vectors
        query = vectors.embed(task_description)
        hits = vectors.similarity_search(
            query, k=cfg.fallback_k, min_similarity=cfg.fallback_min_similarity
        )
        patterns: list[Pattern] = []
        for hit in hits:
            pattern = self._store.get(hit.pattern_id)
            if pattern is not None and capabilities_satisfied(pattern, context):
                patterns.append(pattern)
        return patterns

    # ─── Feedback ─────────────────────────────────────────────────────

    async def track_outcome(self, outcome: Outcome) -> ConfidenceUpdate:
        """Learn from the result of applying a pattern.

        Revises the pattern's confidence and usage metrics in one
        row-locked write, then updates the success-rate average and the
        adaptive threshold for the outcome's agent/file type.

        Raises:
            NotFoundError: If the pattern does not exist.
            StorageError: If persisting the update fails.
        """
        self._ensure_open()

        def _apply(pattern: Pattern) -> ConfidenceUpdate:
            update = self._updater.update(pattern, outcome)
            pattern.confidence = update.new_confidence
            apply_usage(pattern, outcome.status, outcome.metrics.duration_ms, outcome.timestamp)
            if self._memory.get_cached(pattern.id) is not None:
                self._memory.cache_pattern(pattern)
            return update

        update = await asyncio.to_thread(self._store.mutate, outcome.pattern_id, _apply)

        observed = 1.0 if outcome.status is OutcomeStatus.SUCCESS else 0.0
        self._metrics.success_rate = (
            SUCCESS_RATE_ALPHA * observed
            + (1 - SUCCESS_RATE_ALPHA) * self._metrics.success_rate
        )

        required = outcome.required_threshold
        if required is None:
            required = self._thresholds.get_threshold(outcome.agent_type, outcome.file_type)
        self._thresholds.update(
            VerificationOutcome(
                agent_type=outcome.agent_type,
                file_type=outcome.file_type,
                passed=outcome.status is OutcomeStatus.SUCCESS,
                truth_score=(
                    outcome.truth_score
                    if outcome.truth_score is not None
                    else outcome.confidence
                ),
                threshold=required,
            )
        )

        _logger.info(
            "outcome_tracked",
            pattern_id=outcome.pattern_id,
            task_id=outcome.task_id,
            status=outcome.status.value,
            old_confidence=round(update.old_confidence, 4),
            new_confidence=round(update.new_confidence, 4),
        )
        await self.listeners.emit(
            EventKind.CONFIDENCE_UPDATED,
            pattern_id=update.pattern_id,
            old_confidence=update.old_confidence,
            new_confidence=update.new_confidence,
            status=outcome.status.value,
        )
        return update

    async def train(self, pattern: Pattern) -> StoreResult:
        """Store a hand-built pattern.

        Raises:
            ValidationError: If the pattern is malformed; nothing is stored.
        """
        self._ensure_open()
        pattern.validate()
        result = await asyncio.to_thread(self._store.store, pattern)
        if not result.merged:
            self._metrics.patterns_stored += 1
            if self._vectors is not None:
                self._vectors.store(pattern.id, _embedding_text(pattern))
        _logger.info("pattern_trained", pattern_id=result.pattern_id, merged=result.merged)
        await self.listeners.emit(
            EventKind.PATTERN_STORED,
            pattern_id=result.pattern_id,
            merged=result.merged,
            confidence=pattern.confidence,
        )
        return result

    # ─── Queries ──────────────────────────────────────────────────────

    def get_metrics(self) -> LearningMetrics:
        """Counters for this pipeline plus the store's mean confidence."""
        stats = self._store.get_stats()
        return LearningMetrics(
            observations_collected=self._metrics.observations_collected,
            patterns_extracted=self._metrics.patterns_extracted,
            patterns_stored=self._metrics.patterns_stored,
            patterns_applied=self._metrics.patterns_applied,
            avg_confidence=stats["avg_confidence"],
            success_rate=self._metrics.success_rate,
        )

    def get_adaptive_threshold(self, agent_type: str, file_type: str | None = None) -> float:
        return self._thresholds.get_threshold(agent_type, file_type)

    @property
    def thresholds(self) -> AdaptiveThresholdManager:
        return self._thresholds

    async def embed(self, text: str) -> np.ndarray:
        """Embed text with the vector index's generator."""
        return self._require_vectors().embed(text)

    async def similarity_search(
        self,
        vector: VectorLike,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[VectorSearchResult]:
        return await asyncio.to_thread(
            self._require_vectors().similarity_search, vector, k, min_similarity
        )

    # ─── Consolidation ────────────────────────────────────────────────

    async def consolidate_patterns(self) -> ConsolidationResult:
        """Run one consolidation pass in a worker thread.

        Passes never overlap; a second request waits for the first.
        """
        self._ensure_open()
        async with self._consolidation_lock:
            result = await asyncio.to_thread(
                self._store.consolidate,
                self.config.consolidation,
                None,
                self._consolidation_cancel,
            )
        if result.removed_ids:
            self._memory.forget(result.removed_ids)
            if self._vectors is not None:
                self._vectors.forget(result.removed_ids)
        await self.listeners.emit(EventKind.CONSOLIDATION_COMPLETE, **result.to_dict())
        return result

    # ─── Timers ───────────────────────────────────────────────────────

    async def _flush_loop(self) -> None:
        interval = self.config.pipeline.observation_flush_interval
        while True:
            try:
                await asyncio.sleep(interval)
                await self.flush()
            except asyncio.CancelledError:
                break
            except Exception:
                _logger.warning("pipeline.timer_flush_failed", exc_info=True)

    async def _consolidation_loop(self) -> None:
        interval = self.config.consolidation.effective_interval
        while True:
            try:
                await asyncio.sleep(interval)
                await self.consolidate_patterns()
                if self._vectors is not None:
                    self._vectors.clear_expired_cache()
            except asyncio.CancelledError:
                break
            except Exception:
                _logger.warning("pipeline.timer_consolidation_failed", exc_info=True)

    # ─── Helpers ──────────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._state is PipelineState.STOPPED:
            raise RuntimeError("LearningPipeline has been shut down")

    def _require_vectors(self) -> VectorIndex:
        if self._vectors is None:
            raise RuntimeError("vector index is disabled")
        return self._vectors


def _embedding_text(pattern: Pattern) -> str:
    return " ".join([pattern.name.replace("_", " "), pattern.description, *pattern.tools])


__all__ = [
    "CONFIDENCE_TOO_LOW",
    "NO_SUITABLE_PATTERN",
    "LearningPipeline",
    "PipelineState",
    "rank_pattern",
]
