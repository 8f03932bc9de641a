"""Performance clustering of observations.

Each observation is mapped onto a 4-d feature vector and grouped with
k-means. Clusters whose members mostly succeeded describe a set of actions
that performs well together and become pattern candidates.

Feature vector:
    duration     min-max normalized over [0, max_duration_ms], clamped
    success      1.0 or 0.0
    complexity   min(1, parameter count / 10)
    parallelism  active pattern count / 10
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from patternloop.core.config import ClusteringConfig
from patternloop.core.logging import get_logger
from patternloop.learning.models import Observation

_logger = get_logger("learning.clusterer")

FEATURE_DIMS = 4


@dataclass
class PerformanceCluster:
    """A retained k-means cluster."""

    centroid: np.ndarray
    members: list[Observation] = field(default_factory=list)
    success_rate: float = 0.0
    avg_duration_ms: float = 0.0

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def dominant_actions(self) -> tuple[str, ...]:
        """Distinct member action names in order of first appearance."""
        return tuple(dict.fromkeys(obs.action for obs in self.members))


class PerformanceClusterer:
    """k-means clusterer over observation performance features.

    Args:
        config: Cluster count, iteration cap and retention threshold.
        rng: numpy random generator for centroid seeding. Defaults to
            ``np.random.default_rng(config.seed)``.
    """

    def __init__(
        self,
        config: ClusteringConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.config = config or ClusteringConfig()
        self._rng = rng or np.random.default_rng(self.config.seed)

    def features(self, obs: Observation) -> np.ndarray:
        """Project an observation onto the clustering feature space."""
        return np.array(
            [
                np.clip(obs.duration_ms / self.config.max_duration_ms, 0.0, 1.0),
                1.0 if obs.success else 0.0,
                min(1.0, len(obs.parameters) / 10),
                len(obs.context.active_patterns) / 10,
            ],
            dtype=np.float64,
        )

    def feature_matrix(self, observations: list[Observation]) -> np.ndarray:
        """Stack observation features into an ``(n, 4)`` matrix."""
        if not observations:
            return np.empty((0, FEATURE_DIMS), dtype=np.float64)
        return np.vstack([self.features(obs) for obs in observations])

    def cluster(self, observations: list[Observation]) -> list[PerformanceCluster]:
        """Cluster observations and keep the high-performing clusters.

        Returns an empty list when there are fewer observations than
        clusters. Retained clusters are sorted by descending success rate.
        """
        k = self.config.num_clusters
        if len(observations) < k:
            return []

        points = self.feature_matrix(observations)
        assignments = self._kmeans(points, k)

        clusters: list[PerformanceCluster] = []
        for index in range(k):
            mask = assignments == index
            if not mask.any():
                continue
            members = [obs for obs, member in zip(observations, mask, strict=True) if member]
            success_rate = sum(1 for obs in members if obs.success) / len(members)
            if success_rate <= self.config.min_success_rate:
                continue
            clusters.append(
                PerformanceCluster(
                    centroid=points[mask].mean(axis=0),
                    members=members,
                    success_rate=success_rate,
                    avg_duration_ms=float(np.mean([obs.duration_ms for obs in members])),
                )
            )

        clusters.sort(key=lambda c: c.success_rate, reverse=True)
        _logger.debug(
            "observations_clustered",
            observations=len(observations),
            k=k,
            retained=len(clusters),
        )
        return clusters

    def _kmeans(self, points: np.ndarray, k: int) -> np.ndarray:
        """Lloyd iterations; returns the cluster index of each point.

        Stops when no point changes cluster or after ``max_iterations``.
        An emptied cluster is reseeded onto a random point.
        """
        n = len(points)
        centroids = points[self._rng.choice(n, size=k, replace=False)].copy()
        assignments = np.full(n, -1, dtype=np.intp)

        for _ in range(self.config.max_iterations):
            distances = np.linalg.norm(points[:, np.newaxis, :] - centroids[np.newaxis, :, :], axis=2)
            nearest = distances.argmin(axis=1)
            if np.array_equal(nearest, assignments):
                break
            assignments = nearest

            for c in range(k):
                mask = assignments == c
                if mask.any():
                    centroids[c] = points[mask].mean(axis=0)
                else:
                    centroids[c] = points[self._rng.integers(n)]

        return assignments
