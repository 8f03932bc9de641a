"""Bayesian-style confidence revision for patterns.

This is a heuristic, not exact Bayesian inference. The pattern's historical
success ratio acts as the likelihood of the observed outcome, a posterior is
formed from it, and confidence moves a fixed fraction of the way towards
that posterior:

    L         = clamp(successes / max(usage, 1))      (1 - L for non-success)
    posterior = L * prior / (L * prior + (1 - prior) * (1 - L))
    new       = clamp(prior + rate * (posterior - prior))

The evidence score of the outcome is reported alongside the update but does
not enter the posterior.
"""

from __future__ import annotations

from patternloop.core.config import ConfidenceConfig
from patternloop.learning.models import (
    ConfidenceUpdate,
    Outcome,
    OutcomeStatus,
    Pattern,
)
from patternloop.learning.scorer import clamp01


def evidence_score(outcome: Outcome) -> float:
    """Strength of the evidence an outcome provides, in [0, 1]."""
    if outcome.status is OutcomeStatus.SUCCESS:
        return clamp01(outcome.confidence)
    if outcome.status is OutcomeStatus.PARTIAL:
        return clamp01(outcome.confidence * 0.5)
    return 0.0


class BayesianConfidenceUpdater:
    """Pure, deterministic confidence updater.

    The same (pattern metrics, outcome) pair always yields the same update.
    The caller is responsible for persisting the result exactly once.
    """

    def __init__(self, config: ConfidenceConfig | None = None) -> None:
        self.config = config or ConfidenceConfig()

    def update(self, pattern: Pattern, outcome: Outcome) -> ConfidenceUpdate:
        prior = pattern.confidence
        evidence = evidence_score(outcome)

        ratio = clamp01(pattern.metrics.success_count / (pattern.usage_count or 1))
        likelihood = ratio if outcome.status is OutcomeStatus.SUCCESS else 1.0 - ratio

        numerator = likelihood * prior
        denominator = numerator + (1.0 - prior) * (1.0 - likelihood)
        posterior = numerator / (denominator or 1.0)

        new_confidence = clamp01(prior + self.config.learning_rate * (posterior - prior))
        return ConfidenceUpdate(
            pattern_id=pattern.id,
            old_confidence=prior,
            new_confidence=new_confidence,
            evidence_score=evidence,
            likelihood=likelihood,
            posterior=posterior,
            reason=(
                f"{outcome.status.value}: posterior {posterior:.3f}, "
                f"confidence {prior:.3f} -> {new_confidence:.3f}"
            ),
        )
