"""Tests for patternloop.learning.confidence."""

import pytest

from patternloop.core.config import ConfidenceConfig
from patternloop.learning.confidence import BayesianConfidenceUpdater, evidence_score
from patternloop.learning.models import Outcome, OutcomeStatus, PatternMetrics
from tests.helpers import make_pattern


def _outcome(status: OutcomeStatus, confidence: float = 0.9) -> Outcome:
    return Outcome(
        task_id="task-1",
        pattern_id="pattern-test",
        status=status,
        confidence=confidence,
    )


def _pattern(confidence: float = 0.8, usage: int = 10, successes: int = 8):
    return make_pattern(
        confidence=confidence,
        usage_count=usage,
        metrics=PatternMetrics(success_count=successes, failure_count=usage - successes),
    )


class TestEvidenceScore:
    """Tests for evidence_score."""

    def test_scores_by_status(self) -> None:
        """Success uses the outcome confidence, partial half of it, failure zero."""
        assert evidence_score(_outcome(OutcomeStatus.SUCCESS, 0.9)) == 0.9
        assert evidence_score(_outcome(OutcomeStatus.PARTIAL, 0.8)) == pytest.approx(0.4)
        assert evidence_score(_outcome(OutcomeStatus.FAILURE, 0.9)) == 0.0


class TestBayesianConfidenceUpdater:
    """Tests for BayesianConfidenceUpdater.update."""

    def test_success_raises_confidence(self) -> None:
        """A success on a reliable pattern moves confidence towards the posterior."""
        update = BayesianConfidenceUpdater().update(_pattern(), _outcome(OutcomeStatus.SUCCESS))

        assert update.likelihood == pytest.approx(0.8)
        assert update.posterior == pytest.approx(0.64 / 0.68)
        assert update.new_confidence == pytest.approx(0.8 + 0.1 * (0.64 / 0.68 - 0.8))
        assert update.new_confidence > update.old_confidence
        assert update.old_confidence == 0.8
        assert update.pattern_id == "pattern-test"

    def test_failure_lowers_confidence(self) -> None:
        """A failure uses the complement likelihood."""
        update = BayesianConfidenceUpdater().update(_pattern(), _outcome(OutcomeStatus.FAILURE))

        assert update.likelihood == pytest.approx(0.2)
        assert update.posterior == pytest.approx(0.5)
        assert update.new_confidence == pytest.approx(0.77)

    def test_partial_is_not_a_success(self) -> None:
        """Partial outcomes take the complement likelihood like failures."""
        update = BayesianConfidenceUpdater().update(_pattern(), _outcome(OutcomeStatus.PARTIAL))
        assert update.likelihood == pytest.approx(0.2)
        assert update.evidence_score == pytest.approx(0.45)

    def test_zero_denominator_is_guarded(self) -> None:
        """Certain prior with impossible evidence yields a finite update."""
        pattern = _pattern(confidence=1.0, usage=5, successes=5)
        update = BayesianConfidenceUpdater().update(pattern, _outcome(OutcomeStatus.FAILURE))

        assert update.posterior == 0.0
        assert update.new_confidence == pytest.approx(0.9)

    def test_unused_pattern(self) -> None:
        """With no usage history the ratio is zero rather than undefined."""
        pattern = _pattern(confidence=0.5, usage=0, successes=0)
        update = BayesianConfidenceUpdater().update(pattern, _outcome(OutcomeStatus.SUCCESS))

        assert update.likelihood == 0.0
        assert 0.0 <= update.new_confidence <= 1.0

    def test_inconsistent_counters_are_clamped(self) -> None:
        """More successes than uses still gives a likelihood of at most 1."""
        pattern = _pattern(confidence=0.6, usage=2, successes=2)
        pattern.metrics.success_count = 5
        update = BayesianConfidenceUpdater().update(pattern, _outcome(OutcomeStatus.SUCCESS))

        assert update.likelihood == 1.0
        assert update.new_confidence <= 1.0

    def test_learning_rate(self) -> None:
        """A learning rate of 1 jumps straight to the posterior."""
        updater = BayesianConfidenceUpdater(ConfidenceConfig(learning_rate=1.0))
        update = updater.update(_pattern(), _outcome(OutcomeStatus.FAILURE))
        assert update.new_confidence == pytest.approx(0.5)

    def test_deterministic(self) -> None:
        """Same pattern and outcome, same update."""
        updater = BayesianConfidenceUpdater()
        outcome = _outcome(OutcomeStatus.SUCCESS)
        assert updater.update(_pattern(), outcome) == updater.update(_pattern(), outcome)

    def test_update_does_not_mutate_pattern(self) -> None:
        """Persisting the result is the caller's job."""
        pattern = _pattern()
        BayesianConfidenceUpdater().update(pattern, _outcome(OutcomeStatus.SUCCESS))
        assert pattern.confidence == 0.8
        assert pattern.usage_count == 10
