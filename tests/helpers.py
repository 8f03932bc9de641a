"""Shared builders for patternloop tests."""

from datetime import datetime, timedelta
from typing import Any

from patternloop.learning.models import (
    ExecutionContext,
    Observation,
    Pattern,
    PatternAction,
    PatternType,
)
from patternloop.utils.time import utc_now


def make_context(
    task_id: str = "task-1",
    agent_id: str = "agent-1",
    working_directory: str = "/work/a",
    **kwargs: Any,
) -> ExecutionContext:
    """Build an ExecutionContext with test defaults."""
    return ExecutionContext(
        task_id=task_id,
        agent_id=agent_id,
        working_directory=working_directory,
        **kwargs,
    )


def make_observation(
    action: str,
    *,
    success: bool = True,
    duration_ms: float = 100.0,
    context: ExecutionContext | None = None,
    parameters: dict[str, Any] | None = None,
) -> Observation:
    """Build a validated Observation with test defaults."""
    return Observation.record(
        action,
        parameters if parameters is not None else {"path": "src/app.py"},
        success=success,
        duration_ms=duration_ms,
        context=context or make_context(),
    )


def read_grep_batch(tasks: int = 10) -> list[Observation]:
    """[Read, Grep] run once per task, each task on its own agent and directory."""
    observations: list[Observation] = []
    for i in range(tasks):
        ctx = make_context(
            task_id=f"task-{i}",
            agent_id=f"agent-{i}",
            working_directory=f"/work/{i}",
        )
        observations.append(make_observation("Read", context=ctx))
        observations.append(
            make_observation(
                "Grep", context=ctx, parameters={"pattern": "TODO", "path": "src/app.py"}
            )
        )
    return observations


def make_pattern(
    pattern_id: str = "pattern-test",
    name: str = "read_grep",
    *,
    pattern_type: PatternType = PatternType.DOMAIN_SPECIFIC,
    confidence: float = 0.8,
    usage_count: int = 0,
    tools: tuple[str, ...] = ("Read", "Grep"),
    created_at: datetime | None = None,
    last_used: datetime | None = None,
    **kwargs: Any,
) -> Pattern:
    """Build a Pattern with test defaults."""
    return Pattern(
        id=pattern_id,
        type=pattern_type,
        name=name,
        description=f"Pattern: {' → '.join(tools)}",
        actions=[PatternAction(step=i + 1, tool=tool) for i, tool in enumerate(tools)],
        confidence=confidence,
        usage_count=usage_count,
        created_at=created_at or utc_now(),
        last_used=last_used,
        **kwargs,
    )


def days_ago(days: float) -> datetime:
    return utc_now() - timedelta(days=days)
