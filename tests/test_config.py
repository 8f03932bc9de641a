"""Tests for patternloop.core.config."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from patternloop.core.config import (
    ConsolidationConfig,
    EngineConfig,
    MinerConfig,
    ScoringConfig,
)


class TestDefaults:
    """Default values of the engine configuration."""

    def test_engine_defaults(self) -> None:
        """Defaults match the documented tunables."""
        config = EngineConfig()

        assert config.miner.min_support == 3
        assert config.miner.min_confidence == 0.7
        assert config.clustering.num_clusters == 5
        assert config.scoring.min_quality == 0.6
        assert config.pipeline.observation_buffer_size == 100
        assert config.pipeline.extraction_batch_size == 50
        assert config.pipeline.min_confidence_threshold == 0.7
        assert config.consolidation.prune_usage_threshold == 10
        assert config.thresholds.default_threshold == 0.95
        assert config.vectors.dimensions == 384

    def test_consolidation_interval(self) -> None:
        """Named schedules map to seconds; an explicit interval wins."""
        assert ConsolidationConfig().effective_interval == 86400.0
        assert ConsolidationConfig(schedule="hourly").effective_interval == 3600.0
        assert ConsolidationConfig(interval_seconds=5.0).effective_interval == 5.0


class TestValidation:
    """Invalid configurations are rejected."""

    def test_weights_must_sum_to_one(self) -> None:
        """Scoring weights have to add up to 1."""
        with pytest.raises(ValidationError):
            ScoringConfig(consistency_weight=0.9)

    def test_miner_lengths(self) -> None:
        """min_length may not exceed max_length."""
        with pytest.raises(ValidationError):
            MinerConfig(min_length=4, max_length=3)

    def test_out_of_range(self) -> None:
        """Bounded fields enforce their ranges."""
        with pytest.raises(ValidationError):
            ConsolidationConfig(decay_factor=1.5)
        with pytest.raises(ValidationError):
            ConsolidationConfig(schedule="monthly")


class TestYamlLoading:
    """Tests for from_yaml / from_yaml_string."""

    def test_from_yaml_string(self) -> None:
        """Sections override only what they name."""
        config = EngineConfig.from_yaml_string(
            """
            pipeline:
              observation_buffer_size: 10
              auto_learning: false
            consolidation:
              schedule: weekly
            logging:
              level: DEBUG
              format: json
            """
        )
        assert config.pipeline.observation_buffer_size == 10
        assert config.pipeline.auto_learning is False
        assert config.pipeline.extraction_batch_size == 50
        assert config.consolidation.effective_interval == 604800.0
        assert config.logging.format == "json"

    def test_empty_yaml(self) -> None:
        """An empty document gives the defaults."""
        assert EngineConfig.from_yaml_string("") == EngineConfig()

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        """Files load the same way."""
        path = tmp_path / "patternloop.yaml"
        path.write_text(f"store:\n  db_path: {tmp_path / 'p.db'}\n")

        config = EngineConfig.from_yaml(path)

        assert config.store.db_path == tmp_path / "p.db"

    def test_invalid_yaml_values(self) -> None:
        """Bad values in YAML raise pydantic's ValidationError."""
        with pytest.raises(ValidationError):
            EngineConfig.from_yaml_string("thresholds:\n  default_threshold: 2.0\n")
