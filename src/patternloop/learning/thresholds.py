"""Adaptive verification thresholds per (agent type, file type).

Each verification outcome nudges the threshold for its key with an
exponential moving average:

    target   = truth score if the verification passed, else the threshold used
    adjusted = rate * target + (1 - rate) * adjusted
    margin   = 0.05 * (1 - min(1, samples / 100))
    interval = [adjusted - margin, adjusted + margin] clamped to [0, 1]

Until a key has ``min_sample_size`` samples the configured default is
served instead of the learned value.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any

from patternloop.core.config import ThresholdConfig
from patternloop.core.logging import get_logger
from patternloop.learning.models import AdaptiveThreshold, VerificationOutcome, threshold_key
from patternloop.learning.scorer import clamp01
from patternloop.learning.store import PatternStore
from patternloop.utils.time import utc_now

_logger = get_logger("learning.thresholds")


class AdaptiveThresholdManager:
    """Learns and serves verification thresholds, persisted in the store."""

    def __init__(self, store: PatternStore, config: ThresholdConfig | None = None) -> None:
        self.config = config or ThresholdConfig()
        self._store = store
        self._lock = threading.Lock()
        self._thresholds: dict[str, AdaptiveThreshold] = {
            t.key: t for t in store.load_thresholds()
        }
        _logger.debug("thresholds_loaded", count=len(self._thresholds))

    def get_threshold(self, agent_type: str, file_type: str | None = None) -> float:
        """Threshold to verify work of this agent/file type against."""
        if not self.config.enabled:
            return self.config.default_threshold
        with self._lock:
            threshold = self._thresholds.get(threshold_key(agent_type, file_type))
            if threshold is None or threshold.sample_size < self.config.min_sample_size:
                return self.config.default_threshold
            return threshold.adjusted_threshold

    def update(self, outcome: VerificationOutcome) -> AdaptiveThreshold:
        """Fold one verification outcome into its key's threshold and persist it."""
        key = threshold_key(outcome.agent_type, outcome.file_type)
        with self._lock:
            current = self._thresholds.get(key)
            if current is None:
                current = self._initial(outcome.agent_type, outcome.file_type)

            rate = self.config.learning_rate
            target = outcome.truth_score if outcome.passed else outcome.threshold
            samples = current.sample_size + 1
            adjusted = clamp01(rate * target + (1 - rate) * current.adjusted_threshold)
            margin = self.config.initial_margin * (1 - min(1.0, samples / 100))
            threshold = replace(
                current,
                sample_size=samples,
                adjusted_threshold=adjusted,
                confidence_low=clamp01(adjusted - margin),
                confidence_high=clamp01(adjusted + margin),
                last_updated=utc_now(),
            )

            # The cached value only advances once the row is written
            self._store.save_threshold(threshold)
            self._thresholds[key] = threshold

        _logger.debug(
            "threshold_updated",
            agent_type=outcome.agent_type,
            file_type=outcome.file_type,
            adjusted=round(threshold.adjusted_threshold, 4),
            samples=threshold.sample_size,
        )
        return threshold

    def get_all_thresholds(self) -> list[AdaptiveThreshold]:
        with self._lock:
            return list(self._thresholds.values())

    def get_stats(self) -> dict[str, Any]:
        """Number of learned thresholds and their mean drift from base."""
        with self._lock:
            thresholds = list(self._thresholds.values())
        if not thresholds:
            return {"total_thresholds": 0, "avg_adjustment": 0.0, "total_samples": 0}
        adjustments = [abs(t.adjusted_threshold - t.base_threshold) for t in thresholds]
        return {
            "total_thresholds": len(thresholds),
            "avg_adjustment": sum(adjustments) / len(adjustments),
            "total_samples": sum(t.sample_size for t in thresholds),
        }

    def _initial(self, agent_type: str, file_type: str | None) -> AdaptiveThreshold:
        base = self.config.default_threshold
        margin = self.config.initial_margin
        return AdaptiveThreshold(
            agent_type=agent_type,
            file_type=file_type,
            base_threshold=base,
            adjusted_threshold=base,
            confidence_low=clamp01(base - margin),
            confidence_high=clamp01(base + margin),
        )
