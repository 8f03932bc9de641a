"""Pattern extraction from observation batches.

Runs the sequence miner and the performance clusterer over a batch, turns
their output into candidates, scores the candidates against the batch
baseline and converts the survivors into Patterns.
"""

from __future__ import annotations

import math
import re
import threading
from collections.abc import Iterable

from patternloop.core.config import ClusteringConfig, MinerConfig, ScoringConfig
from patternloop.core.errors import ExtractionError, ValidationError
from patternloop.core.logging import get_logger
from patternloop.learning.clusterer import PerformanceCluster, PerformanceClusterer
from patternloop.learning.miner import ActionSequence, SequenceMiner
from patternloop.learning.models import (
    CandidatePattern,
    Observation,
    Pattern,
    PatternAction,
    PatternInstance,
    PatternMetrics,
    PatternType,
    QualityScore,
    SuccessCriteria,
    new_pattern_id,
)
from patternloop.learning.scorer import PatternQualityScorer, compute_baseline
from patternloop.utils.time import utc_now

_logger = get_logger("learning.extractor")

_NAME_STRIP = re.compile(r"[^a-z0-9_]")

# Keyword fragments checked in order; the first match decides the type
_TYPE_KEYWORDS: list[tuple[PatternType, tuple[str, ...]]] = [
    (PatternType.COORDINATION, ("parallel", "spawn")),
    (PatternType.OPTIMIZATION, ("cache", "batch")),
    (PatternType.ERROR_HANDLING, ("retry", "rollback", "recover")),
    (PatternType.TESTING, ("test",)),
    (PatternType.REFACTORING, ("refactor", "rename", "edit")),
]


def infer_pattern_type(sequence: Iterable[str]) -> PatternType:
    """Infer a pattern type from its action names."""
    tools = [tool.lower() for tool in sequence]
    if len(tools) > 3:
        return PatternType.COORDINATION
    for pattern_type, fragments in _TYPE_KEYWORDS:
        if any(fragment in tool for tool in tools for fragment in fragments):
            return pattern_type
    return PatternType.DOMAIN_SPECIFIC


def pattern_name(sequence: Iterable[str]) -> str:
    """Lowercase ``_``-joined action names restricted to ``[a-z0-9_]``."""
    return _NAME_STRIP.sub("", "_".join(sequence).lower())


class PatternExtractor:
    """Turns observation batches into scored Patterns.

    Args:
        miner: Sequence miner; built from defaults when omitted.
        clusterer: Performance clusterer; built from defaults when omitted.
        scorer: Quality scorer; built from defaults when omitted.
    """

    def __init__(
        self,
        miner: SequenceMiner | None = None,
        clusterer: PerformanceClusterer | None = None,
        scorer: PatternQualityScorer | None = None,
    ) -> None:
        self.miner = miner or SequenceMiner(MinerConfig())
        self.clusterer = clusterer or PerformanceClusterer(ClusteringConfig())
        self.scorer = scorer or PatternQualityScorer(ScoringConfig())

    def extract_patterns(
        self,
        observations: list[Observation],
        cancel: threading.Event | None = None,
    ) -> list[Pattern]:
        """Extract patterns from a batch.

        Malformed observations are logged and skipped. Candidates mapping to
        the same (type, name) are collapsed, keeping the best-scored one.

        Args:
            observations: The batch to mine.
            cancel: When set, scoring stops before the next candidate and
                the patterns converted so far are returned.

        Returns:
            Patterns that cleared the quality cutoff, best score first.
        """
        valid = self._valid_observations(observations)
        if not valid:
            return []

        candidates = [self._from_sequence(seq) for seq in self.miner.mine(valid)]
        # A cluster of one action type is not a sequence
        candidates.extend(
            self._from_cluster(cluster)
            for cluster in self.clusterer.cluster(valid)
            if len(cluster.dominant_actions) >= self.miner.config.min_length
        )
        baseline = compute_baseline(valid)

        best: dict[tuple[PatternType, str], tuple[QualityScore, Pattern]] = {}
        rejected = 0
        for candidate in candidates:
            if cancel is not None and cancel.is_set():
                _logger.info("extraction_cancelled", remaining=len(candidates))
                break
            score = self.scorer.score(candidate, baseline)
            if not self.scorer.passes(score):
                rejected += 1
                continue
            pattern = self.candidate_to_pattern(candidate, score)
            slot = (pattern.type, pattern.name)
            current = best.get(slot)
            if current is None or score.overall > current[0].overall:
                best[slot] = (score, pattern)

        patterns = [pattern for _, pattern in sorted(
            best.values(), key=lambda item: item[0].overall, reverse=True
        )]
        _logger.info(
            "patterns_extracted",
            observations=len(valid),
            candidates=len(candidates),
            rejected=rejected,
            patterns=len(patterns),
        )
        return patterns

    def candidate_to_pattern(self, candidate: CandidatePattern, score: QualityScore) -> Pattern:
        """Convert a scored candidate into a storable Pattern."""
        avg = candidate.avg_performance
        durations = [instance.duration_ms for instance in candidate.instances]
        return Pattern(
            id=new_pattern_id(),
            type=infer_pattern_type(candidate.sequence),
            name=pattern_name(candidate.sequence),
            description=(
                f"Pattern: {' → '.join(candidate.sequence)} (support: {candidate.support})"
            ),
            conditions={
                "min_instances": candidate.support,
                "tool_sequence": list(candidate.sequence),
            },
            actions=[
                PatternAction(step=i + 1, tool=tool)
                for i, tool in enumerate(candidate.sequence)
            ],
            success_criteria=SuccessCriteria(
                min_completion_rate=avg * 0.9,
                max_error_rate=1.0 - avg,
            ),
            metrics=PatternMetrics(
                success_count=math.floor(avg * candidate.support),
                failure_count=math.floor((1.0 - avg) * candidate.support),
                avg_duration_ms=sum(durations) / len(durations) if durations else 0.0,
                avg_improvement=avg,
                last_success=utc_now(),
            ),
            confidence=score.overall,
            usage_count=0,
        )

    @staticmethod
    def _valid_observations(observations: list[Observation]) -> list[Observation]:
        valid: list[Observation] = []
        for obs in observations:
            try:
                _check_observation(obs)
            except ExtractionError as e:
                _logger.warning("observation_skipped", reason=str(e))
                continue
            valid.append(obs)
        return valid

    @staticmethod
    def _from_sequence(sequence: ActionSequence) -> CandidatePattern:
        return CandidatePattern(
            sequence=sequence.actions,
            instances=sequence.instances,
            support=sequence.support,
            avg_performance=sequence.success_rate,
            source="sequence",
        )

    @staticmethod
    def _from_cluster(cluster: PerformanceCluster) -> CandidatePattern:
        instances = [
            PatternInstance(
                observations=(obs,),
                performance=1.0 if obs.success else 0.0,
                duration_ms=obs.duration_ms,
                context=obs.context,
            )
            for obs in cluster.members
        ]
        return CandidatePattern(
            sequence=cluster.dominant_actions,
            instances=instances,
            support=cluster.member_count,
            avg_performance=cluster.success_rate,
            source="cluster",
        )


def _check_observation(obs: object) -> None:
    if not isinstance(obs, Observation):
        raise ExtractionError(f"not an observation: {type(obs).__name__}")
    try:
        obs.validate()
    except ValidationError as e:
        raise ExtractionError(f"observation {obs.id}: {e}") from e


__all__ = [
    "PatternExtractor",
    "infer_pattern_type",
    "pattern_name",
]
