"""Tests for patternloop.learning.models."""

import pytest

from patternloop.core.errors import ValidationError
from patternloop.core.logging import REDACTED
from patternloop.learning.models import ExecutionContext, Observation, Pattern, PatternType
from tests.helpers import days_ago, make_context, make_pattern


class TestObservation:
    """Tests for Observation.record."""

    def test_sensitive_parameters_redacted(self) -> None:
        """Secret-looking parameter keys never reach the observation."""
        obs = Observation.record(
            "Fetch",
            {"url": "https://x", "api_key": "sk-1", "auth": {"token": "t"}},
            success=True,
            duration_ms=5.0,
            context=make_context(),
        )
        assert obs.parameters == {"url": "https://x", "api_key": REDACTED, "auth": REDACTED}
        assert obs.id.startswith("obs-")

    def test_long_results_truncated(self) -> None:
        """String results are capped at max_result_chars."""
        obs = Observation.record(
            "Read", None, success=True, duration_ms=1.0, context=make_context(),
            result="x" * 50, max_result_chars=10,
        )
        assert obs.result == "x" * 10
        assert obs.parameters == {}

    @pytest.mark.parametrize(
        ("action", "duration", "context"),
        [
            ("", 1.0, ExecutionContext(task_id="t")),
            ("Read", -1.0, ExecutionContext(task_id="t")),
            ("Read", 1.0, ExecutionContext(task_id="")),
        ],
    )
    def test_invalid_observation(self, action: str, duration: float, context) -> None:
        """Empty actions, negative durations and missing task ids are rejected."""
        with pytest.raises(ValidationError):
            Observation.record(action, None, success=True, duration_ms=duration, context=context)


class TestPattern:
    """Tests for Pattern validation and serialization."""

    def test_tools_follow_step_order(self) -> None:
        """tools lists the action tools by step."""
        pattern = make_pattern(tools=("Read", "Grep", "Edit"))
        pattern.actions.reverse()
        assert pattern.tools == ["Read", "Grep", "Edit"]

    def test_dict_round_trip(self) -> None:
        """to_dict/from_dict preserve timestamps and metrics."""
        pattern = make_pattern(usage_count=3, last_used=days_ago(2))
        pattern.metrics.success_count = 2

        restored = Pattern.from_dict(pattern.to_dict())

        assert restored == pattern

    def test_unknown_type_rejected(self) -> None:
        """A type outside the enum raises ValidationError."""
        data = make_pattern().to_dict()
        data["type"] = "telepathy"
        with pytest.raises(ValidationError):
            Pattern.from_dict(data)

    @pytest.mark.parametrize(
        "changes",
        [{"id": ""}, {"name": ""}, {"confidence": 1.2}, {"confidence": -0.1}, {"usage_count": -1}],
    )
    def test_validate(self, changes: dict) -> None:
        """Malformed patterns fail validation."""
        pattern = make_pattern()
        for key, value in changes.items():
            setattr(pattern, key, value)
        with pytest.raises(ValidationError):
            pattern.validate()

    def test_valid_pattern_passes(self) -> None:
        """A well-formed pattern validates."""
        make_pattern(pattern_type=PatternType.TESTING).validate()
