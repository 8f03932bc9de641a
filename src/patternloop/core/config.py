"""Engine configuration models.

Every tunable of the learning engine lives here as a pydantic model, grouped
by component. ``EngineConfig`` is the root and can be loaded from YAML:

    config = EngineConfig.from_yaml(Path("patternloop.yaml"))
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_DB_PATH = Path.home() / ".patternloop" / "patterns.db"

CONSOLIDATION_INTERVALS: dict[str, float] = {
    "hourly": 3600.0,
    "daily": 86400.0,
    "weekly": 604800.0,
}


class MinerConfig(BaseModel):
    """Sequence miner thresholds."""

    min_support: int = Field(
        default=3,
        ge=1,
        description="Minimum number of occurrences for a sequence to be reported.",
    )
    min_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum fraction of successful occurrences.",
    )
    min_length: int = Field(default=2, ge=2, description="Shortest n-gram mined.")
    max_length: int = Field(default=4, ge=2, description="Longest n-gram mined.")

    @model_validator(mode="after")
    def _validate_lengths(self) -> MinerConfig:
        if self.min_length > self.max_length:
            raise ValueError(
                f"min_length ({self.min_length}) must not exceed "
                f"max_length ({self.max_length})"
            )
        return self


class ClusteringConfig(BaseModel):
    """k-means performance clustering settings."""

    num_clusters: int = Field(default=5, ge=1, description="Number of clusters (k).")
    max_iterations: int = Field(default=100, ge=1)
    min_success_rate: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Clusters must exceed this success rate to be retained.",
    )
    max_duration_ms: float = Field(
        default=10000.0,
        gt=0.0,
        description="Upper bound of the duration normalization range.",
    )
    seed: int | None = Field(
        default=None,
        description="Seed for centroid initialization. None draws fresh randomness.",
    )


class ScoringConfig(BaseModel):
    """Pattern quality scoring weights and cutoff."""

    min_quality: float = Field(default=0.6, ge=0.0, le=1.0)
    consistency_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    impact_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    generalizability_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    frequency_weight: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_weights(self) -> ScoringConfig:
        total = (
            self.consistency_weight
            + self.impact_weight
            + self.generalizability_weight
            + self.frequency_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0, got {total:.3f}")
        return self


class StoreConfig(BaseModel):
    """Pattern store location and merge behavior."""

    db_path: Path = Field(default=DEFAULT_DB_PATH)
    merge_similarity: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Name similarity at or above which same-type patterns merge.",
    )


class ConsolidationConfig(BaseModel):
    """Periodic consolidation: merge, prune, decay and per-type caps."""

    schedule: Literal["hourly", "daily", "weekly"] = "daily"
    interval_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Explicit interval overriding the named schedule.",
    )
    merge_similarity: float = Field(default=0.95, ge=0.0, le=1.0)
    prune_confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    prune_usage_threshold: int = Field(default=10, ge=0)
    prune_age_days: float = Field(default=30.0, ge=0.0)
    decay_after_days: float = Field(
        default=30.0,
        ge=0.0,
        description="Patterns unused for this long lose confidence each pass.",
    )
    decay_factor: float = Field(default=0.95, ge=0.0, le=1.0)
    max_patterns_per_type: int = Field(default=200, ge=1)

    @property
    def effective_interval(self) -> float:
        """Seconds between consolidation passes."""
        if self.interval_seconds is not None:
            return self.interval_seconds
        return CONSOLIDATION_INTERVALS[self.schedule]


class ConfidenceConfig(BaseModel):
    """Bayesian confidence updater settings."""

    learning_rate: float = Field(default=0.1, gt=0.0, le=1.0)


class ThresholdConfig(BaseModel):
    """Adaptive verification threshold settings."""

    enabled: bool = True
    default_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    min_sample_size: int = Field(
        default=10,
        ge=0,
        description="Below this many samples the default threshold is returned.",
    )
    learning_rate: float = Field(default=0.1, gt=0.0, le=1.0)
    initial_margin: float = Field(default=0.05, ge=0.0, le=0.5)


class VectorConfig(BaseModel):
    """Vector similarity index settings."""

    enabled: bool = True
    model: str = "hash-embedding"
    dimensions: int = Field(default=384, ge=1)
    compression_enabled: bool = True
    cache_capacity: int = Field(default=1000, ge=1)
    cache_ttl_seconds: float = Field(default=3600.0, gt=0.0)
    fallback_k: int = Field(default=5, ge=1)
    fallback_min_similarity: float = Field(default=0.5, ge=-1.0, le=1.0)


class PipelineConfig(BaseModel):
    """Observation buffering, extraction and application settings."""

    observation_buffer_size: int = Field(default=100, ge=1)
    observation_flush_interval: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds between timer-driven buffer flushes.",
    )
    extraction_batch_size: int = Field(
        default=50,
        ge=1,
        description="Minimum buffered observations for a flush to run extraction.",
    )
    min_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    auto_learning: bool = True
    candidate_limit: int = Field(default=50, ge=1)
    working_memory_cache_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_result_chars: int = Field(default=10000, ge=1)
    agent_id: str = "default"


class LogConfig(BaseModel):
    """Logging output settings, applied by configure_logging_from()."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console"] = "console"
    file_path: Path | None = None
    include_timestamps: bool = True


class EngineConfig(BaseModel):
    """Root configuration for the pattern learning engine."""

    miner: MinerConfig = Field(default_factory=MinerConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    confidence: ConfidenceConfig = Field(default_factory=ConfidenceConfig)
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    vectors: VectorConfig = Field(default_factory=VectorConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> EngineConfig:
        """Load engine configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> EngineConfig:
        """Load engine configuration from a YAML string."""
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data or {})


__all__ = [
    "CONSOLIDATION_INTERVALS",
    "DEFAULT_DB_PATH",
    "ClusteringConfig",
    "ConfidenceConfig",
    "ConsolidationConfig",
    "EngineConfig",
    "LogConfig",
    "MinerConfig",
    "PipelineConfig",
    "ScoringConfig",
    "StoreConfig",
    "ThresholdConfig",
    "VectorConfig",
]
