"""Tests for patternloop.learning.scorer."""

import pytest

from patternloop.core.config import ScoringConfig
from patternloop.learning.models import BaselineMetrics, CandidatePattern, PatternInstance
from patternloop.learning.scorer import (
    PatternQualityScorer,
    clamp01,
    compute_baseline,
    frequency_score,
)
from tests.helpers import make_context, make_observation


def _candidate(
    performances: list[float],
    *,
    distinct_contexts: bool = True,
) -> CandidatePattern:
    instances = []
    for i, performance in enumerate(performances):
        suffix = i if distinct_contexts else 0
        ctx = make_context(
            task_id=f"task-{i}",
            agent_id=f"agent-{suffix}",
            working_directory=f"/work/{suffix}",
        )
        obs = make_observation("Read", context=ctx, success=performance > 0)
        instances.append(PatternInstance((obs,), performance, 100.0, ctx))
    return CandidatePattern(
        sequence=("Read", "Grep"),
        instances=instances,
        support=len(instances),
        avg_performance=sum(performances) / len(performances) if performances else 0.0,
    )


class TestHelpers:
    """Tests for module-level scoring helpers."""

    @pytest.mark.parametrize(
        ("support", "expected"),
        [(1, 0.3), (2, 0.3), (3, 0.5), (9, 0.5), (10, 0.7), (49, 0.7), (50, 1.0)],
    )
    def test_frequency_steps(self, support: int, expected: float) -> None:
        """Frequency is a step function of support."""
        assert frequency_score(support) == expected

    def test_clamp01(self) -> None:
        """Values are clamped into [0, 1]."""
        assert clamp01(-0.5) == 0.0
        assert clamp01(1.5) == 1.0
        assert clamp01(0.25) == 0.25

    def test_baseline_of_empty_batch(self) -> None:
        """An empty batch has an all-zero baseline."""
        assert compute_baseline([]) == BaselineMetrics()

    def test_baseline_statistics(self) -> None:
        """Mean duration, success rate and population stddev."""
        batch = [
            make_observation("Read", duration_ms=100.0),
            make_observation("Read", duration_ms=300.0, success=False),
        ]
        baseline = compute_baseline(batch)
        assert baseline.avg_duration_ms == 200.0
        assert baseline.avg_success_rate == 0.5
        assert baseline.duration_std == 100.0


class TestPatternQualityScorer:
    """Tests for PatternQualityScorer."""

    def test_perfect_candidate_against_perfect_baseline(self) -> None:
        """Ten consistent, fully general successes score 0.82."""
        scorer = PatternQualityScorer()
        score = scorer.score(_candidate([1.0] * 10), BaselineMetrics(avg_success_rate=1.0))

        assert score.consistency == 1.0
        assert score.impact == 0.5
        assert score.generalizability == 1.0
        assert score.frequency == 0.7
        assert score.overall == pytest.approx(0.82)
        assert scorer.passes(score)

    def test_inconsistent_candidate(self) -> None:
        """Alternating outcomes have stddev 0.5, so consistency 0.5."""
        score = PatternQualityScorer().score(
            _candidate([1.0, 0.0] * 5), BaselineMetrics(avg_success_rate=0.5)
        )
        assert score.consistency == pytest.approx(0.5)
        assert score.impact == pytest.approx(0.5)

    def test_impact_relative_to_baseline(self) -> None:
        """A candidate doing better than the batch gains impact."""
        score = PatternQualityScorer().score(
            _candidate([1.0] * 4), BaselineMetrics(avg_success_rate=0.8)
        )
        assert score.impact == pytest.approx(0.75)

    def test_zero_baseline_is_not_a_division_error(self) -> None:
        """With no successes in the batch, impact is 1.0 or neutral 0.5."""
        scorer = PatternQualityScorer()
        baseline = BaselineMetrics(avg_success_rate=0.0)

        assert scorer.score(_candidate([1.0, 0.0]), baseline).impact == 1.0
        assert scorer.score(_candidate([0.0, 0.0]), baseline).impact == 0.5

    def test_generalizability_drops_with_shared_context(self) -> None:
        """Every instance from one agent and directory generalizes poorly."""
        score = PatternQualityScorer().score(
            _candidate([1.0] * 10, distinct_contexts=False),
            BaselineMetrics(avg_success_rate=1.0),
        )
        assert score.generalizability == pytest.approx(0.2)

    def test_candidate_without_instances(self) -> None:
        """No instances: zero consistency and generalizability."""
        candidate = CandidatePattern(("Read",), [], support=0, avg_performance=0.0)
        score = PatternQualityScorer().score(candidate, BaselineMetrics(avg_success_rate=0.5))
        assert score.consistency == 0.0
        assert score.generalizability == 0.0

    def test_min_quality_cutoff(self) -> None:
        """passes() applies the configured cutoff."""
        strict = PatternQualityScorer(ScoringConfig(min_quality=0.9))
        score = strict.score(_candidate([1.0] * 10), BaselineMetrics(avg_success_rate=1.0))
        assert not strict.passes(score)

    def test_components_stay_in_unit_interval(self) -> None:
        """All components and the total stay in [0, 1]."""
        score = PatternQualityScorer().score(
            _candidate([1.0] * 60), BaselineMetrics(avg_success_rate=0.01)
        )
        for value in (
            score.consistency,
            score.impact,
            score.generalizability,
            score.frequency,
            score.overall,
        ):
            assert 0.0 <= value <= 1.0
