"""Pattern quality scoring.

A candidate's quality combines four components, each in [0, 1]:

    consistency       = max(0, 1 - stddev(instance performances))
    impact            = clamp(0.5 + (candidate rate - baseline rate) / baseline rate)
    generalizability  = clamp(2 * (agents + directories) / (2 * instances))
    frequency         = step function of support (0.3 / 0.5 / 0.7 / 1.0)

    overall = 0.4 * consistency + 0.3 * impact
            + 0.2 * generalizability + 0.1 * frequency
"""

from __future__ import annotations

import statistics

from patternloop.core.config import ScoringConfig
from patternloop.learning.models import (
    BaselineMetrics,
    CandidatePattern,
    Observation,
    QualityScore,
)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def compute_baseline(observations: list[Observation]) -> BaselineMetrics:
    """Mean duration, mean success rate and duration stddev of a batch."""
    if not observations:
        return BaselineMetrics()
    durations = [obs.duration_ms for obs in observations]
    return BaselineMetrics(
        avg_duration_ms=statistics.fmean(durations),
        avg_success_rate=sum(1 for obs in observations if obs.success) / len(observations),
        duration_std=statistics.pstdev(durations),
    )


def frequency_score(support: int) -> float:
    if support < 3:
        return 0.3
    if support < 10:
        return 0.5
    if support < 50:
        return 0.7
    return 1.0


class PatternQualityScorer:
    """Scores candidate patterns against a batch baseline."""

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def score(self, candidate: CandidatePattern, baseline: BaselineMetrics) -> QualityScore:
        consistency = self._consistency(candidate)
        impact = self._impact(candidate, baseline)
        generalizability = self._generalizability(candidate)
        frequency = frequency_score(candidate.support)
        overall = (
            self.config.consistency_weight * consistency
            + self.config.impact_weight * impact
            + self.config.generalizability_weight * generalizability
            + self.config.frequency_weight * frequency
        )
        return QualityScore(
            consistency=consistency,
            impact=impact,
            generalizability=generalizability,
            frequency=frequency,
            overall=clamp01(overall),
        )

    def passes(self, score: QualityScore) -> bool:
        """Whether a score clears the minimum quality cutoff."""
        return score.overall >= self.config.min_quality

    @staticmethod
    def _consistency(candidate: CandidatePattern) -> float:
        if not candidate.instances:
            return 0.0
        performances = [instance.performance for instance in candidate.instances]
        return max(0.0, 1.0 - statistics.pstdev(performances))

    @staticmethod
    def _impact(candidate: CandidatePattern, baseline: BaselineMetrics) -> float:
        base = baseline.avg_success_rate
        if base == 0:
            # No successes in the batch: any success is an improvement
            return 1.0 if candidate.avg_performance > 0 else 0.5
        improvement = (candidate.avg_performance - base) / base
        return clamp01(improvement + 0.5)

    @staticmethod
    def _generalizability(candidate: CandidatePattern) -> float:
        contexts = candidate.contexts
        if not contexts:
            return 0.0
        agents = {ctx.agent_id for ctx in contexts}
        directories = {ctx.working_directory for ctx in contexts}
        return clamp01(2 * (len(agents) + len(directories)) / (2 * len(contexts)))
