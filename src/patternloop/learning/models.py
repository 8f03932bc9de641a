"""Data models for the pattern learning engine.

Dataclasses and enums shared by the miner, clusterer, scorer, store,
confidence updater and pipeline. Persisted records provide ``to_dict()`` /
``from_dict()`` for JSON storage.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from patternloop.core.errors import ValidationError
from patternloop.core.logging import redact_mapping
from patternloop.utils.time import parse_timestamp, utc_now

MAX_RESULT_CHARS = 10000


class PatternType(str, Enum):
    """Kind of behavior a pattern captures."""

    COORDINATION = "coordination"
    OPTIMIZATION = "optimization"
    ERROR_HANDLING = "error-handling"
    DOMAIN_SPECIFIC = "domain-specific"
    REFACTORING = "refactoring"
    TESTING = "testing"


class OutcomeStatus(str, Enum):
    """Result of applying a pattern to a task."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


def new_pattern_id() -> str:
    return f"pattern-{uuid.uuid4().hex[:16]}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# ─── Observations ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExecutionContext:
    """Where and by whom an action was executed.

    Attributes:
        task_id: Task the action belongs to; observations are grouped by it.
        agent_id: Agent that executed the action.
        working_directory: Directory the agent worked in.
        active_patterns: Pattern ids active while the action ran.
        step_count: Number of steps already taken in the task.
        capabilities: Capability tags such as ``tool:Read`` or ``lang:python``.
    """

    task_id: str
    agent_id: str = "default"
    working_directory: str = ""
    active_patterns: tuple[str, ...] = ()
    step_count: int = 0
    capabilities: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "working_directory": self.working_directory,
            "active_patterns": list(self.active_patterns),
            "step_count": self.step_count,
            "capabilities": sorted(self.capabilities),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionContext:
        return cls(
            task_id=data["task_id"],
            agent_id=data.get("agent_id", "default"),
            working_directory=data.get("working_directory", ""),
            active_patterns=tuple(data.get("active_patterns", ())),
            step_count=data.get("step_count", 0),
            capabilities=frozenset(data.get("capabilities", ())),
        )


@dataclass(frozen=True)
class Observation:
    """One recorded action execution.

    Observations are immutable once recorded and are discarded after the
    extraction pass that consumes them.
    """

    id: str
    action: str
    parameters: dict[str, Any]
    success: bool
    duration_ms: float
    context: ExecutionContext
    result: Any = None
    error: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def record(
        cls,
        action: str,
        parameters: dict[str, Any] | None,
        *,
        success: bool,
        duration_ms: float,
        context: ExecutionContext,
        result: Any = None,
        error: str | None = None,
        max_result_chars: int = MAX_RESULT_CHARS,
    ) -> Observation:
        """Build a validated observation with redacted parameters.

        String results longer than ``max_result_chars`` are truncated.

        Raises:
            ValidationError: If the action name, duration or context is invalid.
        """
        if isinstance(result, str) and len(result) > max_result_chars:
            result = result[:max_result_chars]
        observation = cls(
            id=f"obs-{uuid.uuid4().hex[:16]}",
            action=action,
            parameters=redact_mapping(parameters or {}),
            success=success,
            duration_ms=duration_ms,
            context=context,
            result=result,
            error=error,
        )
        observation.validate()
        return observation

    def validate(self) -> None:
        """Raise ValidationError if this observation is malformed."""
        if not isinstance(self.action, str) or not self.action:
            raise ValidationError("observation action must be a non-empty string")
        if not isinstance(self.duration_ms, int | float) or self.duration_ms < 0:
            raise ValidationError(
                f"observation duration must be non-negative, got {self.duration_ms!r}"
            )
        if not isinstance(self.context, ExecutionContext) or not self.context.task_id:
            raise ValidationError("observation requires a context with a task_id")
        if not isinstance(self.parameters, dict):
            raise ValidationError("observation parameters must be a mapping")


# ─── Patterns ─────────────────────────────────────────────────────────


@dataclass
class PatternAction:
    """One step of a pattern's action sequence."""

    step: int
    tool: str
    type: str = "tool_execution"
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "type": self.type,
            "tool": self.tool,
            "parameters": self.parameters,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatternAction:
        return cls(
            step=data["step"],
            tool=data["tool"],
            type=data.get("type", "tool_execution"),
            parameters=data.get("parameters", {}),
        )


@dataclass
class SuccessCriteria:
    """Thresholds an application of the pattern is expected to meet."""

    min_completion_rate: float = 0.0
    max_error_rate: float = 1.0
    max_duration_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_completion_rate": self.min_completion_rate,
            "max_error_rate": self.max_error_rate,
            "max_duration_ms": self.max_duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SuccessCriteria:
        return cls(
            min_completion_rate=data.get("min_completion_rate", 0.0),
            max_error_rate=data.get("max_error_rate", 1.0),
            max_duration_ms=data.get("max_duration_ms"),
        )


@dataclass
class PatternMetrics:
    """Outcome counters accumulated for a pattern."""

    success_count: int = 0
    failure_count: int = 0
    partial_count: int = 0
    avg_duration_ms: float = 0.0
    avg_improvement: float = 0.0
    last_success: datetime | None = None
    last_failure: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "partial_count": self.partial_count,
            "avg_duration_ms": self.avg_duration_ms,
            "avg_improvement": self.avg_improvement,
            "last_success": _iso(self.last_success),
            "last_failure": _iso(self.last_failure),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatternMetrics:
        return cls(
            success_count=data.get("success_count", 0),
            failure_count=data.get("failure_count", 0),
            partial_count=data.get("partial_count", 0),
            avg_duration_ms=data.get("avg_duration_ms", 0.0),
            avg_improvement=data.get("avg_improvement", 0.0),
            last_success=parse_timestamp(data.get("last_success")),
            last_failure=parse_timestamp(data.get("last_failure")),
        )


@dataclass
class Pattern:
    """A reusable, scored behavior mined from observations."""

    id: str
    type: PatternType
    name: str
    description: str = ""
    conditions: dict[str, Any] = field(default_factory=dict)
    actions: list[PatternAction] = field(default_factory=list)
    success_criteria: SuccessCriteria = field(default_factory=SuccessCriteria)
    metrics: PatternMetrics = field(default_factory=PatternMetrics)
    confidence: float = 0.5
    usage_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    last_used: datetime | None = None

    @property
    def tools(self) -> list[str]:
        """Tool names of the action sequence, in step order."""
        return [action.tool for action in sorted(self.actions, key=lambda a: a.step)]

    def validate(self) -> None:
        """Raise ValidationError if this pattern cannot be stored.

        Raises:
            ValidationError: On missing id/type/name, confidence outside
                [0, 1] or negative counters.
        """
        if not self.id:
            raise ValidationError("pattern id is required")
        if not isinstance(self.type, PatternType):
            raise ValidationError(f"pattern {self.id}: invalid type {self.type!r}")
        if not self.name:
            raise ValidationError(f"pattern {self.id}: name is required")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(
                f"pattern {self.id}: confidence {self.confidence} outside [0, 1]"
            )
        if self.usage_count < 0:
            raise ValidationError(f"pattern {self.id}: usage_count is negative")
        m = self.metrics
        if min(m.success_count, m.failure_count, m.partial_count) < 0:
            raise ValidationError(f"pattern {self.id}: outcome counts are negative")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "description": self.description,
            "conditions": self.conditions,
            "actions": [a.to_dict() for a in self.actions],
            "success_criteria": self.success_criteria.to_dict(),
            "metrics": self.metrics.to_dict(),
            "confidence": self.confidence,
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
            "last_used": _iso(self.last_used),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pattern:
        """Deserialize from dictionary.

        Raises:
            ValidationError: If the type is not a known PatternType.
        """
        try:
            pattern_type = PatternType(data["type"])
        except (KeyError, ValueError) as e:
            raise ValidationError(f"invalid pattern type: {data.get('type')!r}") from e
        return cls(
            id=data.get("id", ""),
            type=pattern_type,
            name=data.get("name", ""),
            description=data.get("description", ""),
            conditions=data.get("conditions", {}),
            actions=[PatternAction.from_dict(a) for a in data.get("actions", [])],
            success_criteria=SuccessCriteria.from_dict(data.get("success_criteria", {})),
            metrics=PatternMetrics.from_dict(data.get("metrics", {})),
            confidence=data.get("confidence", 0.5),
            usage_count=data.get("usage_count", 0),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            last_used=parse_timestamp(data.get("last_used")),
        )


# ─── Extraction intermediates ─────────────────────────────────────────


@dataclass
class PatternInstance:
    """One concrete occurrence supporting a candidate pattern."""

    observations: tuple[Observation, ...]
    performance: float
    duration_ms: float
    context: ExecutionContext


@dataclass
class CandidatePattern:
    """A not-yet-scored pattern proposed by the miner or clusterer."""

    sequence: tuple[str, ...]
    instances: list[PatternInstance]
    support: int
    avg_performance: float
    source: str = "sequence"

    @property
    def contexts(self) -> list[ExecutionContext]:
        return [instance.context for instance in self.instances]


@dataclass
class QualityScore:
    """Composite quality of a candidate; every component is in [0, 1]."""

    consistency: float
    impact: float
    generalizability: float
    frequency: float
    overall: float


@dataclass
class BaselineMetrics:
    """Population statistics over one extraction batch."""

    avg_duration_ms: float = 0.0
    avg_success_rate: float = 0.0
    duration_std: float = 0.0


# ─── Feedback ─────────────────────────────────────────────────────────


@dataclass
class OutcomeMetrics:
    duration_ms: float = 0.0
    error_count: int = 0
    improvement_vs_baseline: float = 0.0
    resource_usage: dict[str, float] | None = None


@dataclass
class Outcome:
    """Reported result of applying a pattern.

    Attributes:
        task_id: Task the pattern was applied to.
        pattern_id: Applied pattern.
        status: success, partial or failure.
        confidence: Performance score of the application in [0, 1].
        metrics: Measured duration, errors and improvement.
        judge_reasons: Free-form explanations from whoever judged the result.
        agent_type: Agent type used to key the adaptive threshold.
        file_type: Optional file type used to key the adaptive threshold.
        truth_score: Verification score; defaults to ``confidence``.
        required_threshold: Threshold the result was judged against;
            defaults to the current adaptive threshold.
    """

    task_id: str
    pattern_id: str
    status: OutcomeStatus
    confidence: float
    metrics: OutcomeMetrics = field(default_factory=OutcomeMetrics)
    judge_reasons: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    agent_type: str = "default"
    file_type: str | None = None
    truth_score: float | None = None
    required_threshold: float | None = None


@dataclass
class ConfidenceUpdate:
    """Result of one Bayesian confidence revision."""

    pattern_id: str
    old_confidence: float
    new_confidence: float
    evidence_score: float
    likelihood: float
    posterior: float
    reason: str


@dataclass
class PatternApplication:
    """Answer to a best-pattern request."""

    applied: bool
    pattern_id: str | None = None
    pattern: Pattern | None = None
    confidence: float = 0.0
    reason: str | None = None
    source: str | None = None


@dataclass
class LearningMetrics:
    observations_collected: int = 0
    patterns_extracted: int = 0
    patterns_stored: int = 0
    patterns_applied: int = 0
    avg_confidence: float = 0.0
    success_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "observations_collected": self.observations_collected,
            "patterns_extracted": self.patterns_extracted,
            "patterns_stored": self.patterns_stored,
            "patterns_applied": self.patterns_applied,
            "avg_confidence": self.avg_confidence,
            "success_rate": self.success_rate,
        }


# ─── Thresholds ───────────────────────────────────────────────────────


@dataclass
class VerificationOutcome:
    """Input to the adaptive threshold manager."""

    agent_type: str
    passed: bool
    truth_score: float
    threshold: float
    file_type: str | None = None


@dataclass
class AdaptiveThreshold:
    """Learned verification threshold for an (agent type, file type) pair."""

    agent_type: str
    file_type: str | None
    base_threshold: float
    adjusted_threshold: float
    confidence_low: float
    confidence_high: float
    sample_size: int = 0
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return threshold_key(self.agent_type, self.file_type)


def threshold_key(agent_type: str, file_type: str | None) -> str:
    return f"{agent_type}:{file_type or 'any'}"


# ─── Store results ────────────────────────────────────────────────────


@dataclass
class StoreResult:
    """Where a stored pattern ended up."""

    pattern_id: str
    merged: bool = False


@dataclass
class ConsolidationResult:
    """Summary of one consolidation pass."""

    merged: int = 0
    pruned: int = 0
    decayed: int = 0
    evicted: int = 0
    removed_ids: list[str] = field(default_factory=list)
    duration_ms: float = 0.0
    interrupted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "merged": self.merged,
            "pruned": self.pruned,
            "decayed": self.decayed,
            "evicted": self.evicted,
            "removed_ids": list(self.removed_ids),
            "duration_ms": self.duration_ms,
            "interrupted": self.interrupted,
        }
