"""Adaptive threshold persistence mixin for PatternStore.

One row per (agent type, file type) key, loaded when the threshold manager
starts and rewritten after every update.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager

from patternloop.core.logging import EngineLogger
from patternloop.learning.models import AdaptiveThreshold
from patternloop.utils.time import parse_timestamp, utc_now


class ThresholdMixin:
    """Mixin providing adaptive threshold load/save.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    """

    _logger: EngineLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def load_thresholds(self) -> list[AdaptiveThreshold]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM adaptive_thresholds ORDER BY agent_type, file_type"
            ).fetchall()
        return [
            AdaptiveThreshold(
                agent_type=row["agent_type"],
                file_type=row["file_type"],
                base_threshold=row["base_threshold"],
                adjusted_threshold=row["adjusted_threshold"],
                confidence_low=row["confidence_min"],
                confidence_high=row["confidence_max"],
                sample_size=row["sample_size"],
                last_updated=parse_timestamp(row["last_updated"]) or utc_now(),
            )
            for row in rows
        ]

    def save_threshold(self, threshold: AdaptiveThreshold) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO adaptive_thresholds (
                    id, agent_type, file_type, base_threshold, adjusted_threshold,
                    confidence_min, confidence_max, sample_size, last_updated
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    base_threshold = excluded.base_threshold,
                    adjusted_threshold = excluded.adjusted_threshold,
                    confidence_min = excluded.confidence_min,
                    confidence_max = excluded.confidence_max,
                    sample_size = excluded.sample_size,
                    last_updated = excluded.last_updated
                """,
                (
                    threshold.key,
                    threshold.agent_type,
                    threshold.file_type,
                    threshold.base_threshold,
                    threshold.adjusted_threshold,
                    threshold.confidence_low,
                    threshold.confidence_high,
                    threshold.sample_size,
                    threshold.last_updated.isoformat(),
                ),
            )
