"""Learning pipeline orchestration and events."""

from patternloop.pipeline.events import EventKind, ListenerRegistry, PipelineEvent
from patternloop.pipeline.orchestrator import (
    CONFIDENCE_TOO_LOW,
    NO_SUITABLE_PATTERN,
    LearningPipeline,
    PipelineState,
    rank_pattern,
)

__all__ = [
    "CONFIDENCE_TOO_LOW",
    "NO_SUITABLE_PATTERN",
    "EventKind",
    "LearningPipeline",
    "ListenerRegistry",
    "PipelineEvent",
    "PipelineState",
    "rank_pattern",
]
