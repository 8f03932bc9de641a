"""Pattern learning components.

- miner: frequent action sequences
- clusterer: k-means performance clusters
- scorer: candidate quality scoring
- extractor: observation batch -> Patterns
- confidence: Bayesian-style confidence revision
- thresholds: adaptive verification thresholds
- vectors: quantized embedding similarity index
- store: SQLite pattern store with consolidation
"""

from patternloop.learning.clusterer import PerformanceCluster, PerformanceClusterer
from patternloop.learning.confidence import BayesianConfidenceUpdater
from patternloop.learning.extractor import PatternExtractor
from patternloop.learning.miner import ActionSequence, SequenceMiner
from patternloop.learning.models import (
    ExecutionContext,
    Observation,
    Outcome,
    OutcomeMetrics,
    OutcomeStatus,
    Pattern,
    PatternAction,
    PatternType,
)
from patternloop.learning.scorer import PatternQualityScorer, compute_baseline
from patternloop.learning.store import PatternStore
from patternloop.learning.thresholds import AdaptiveThresholdManager
from patternloop.learning.vectors import HashEmbeddingGenerator, VectorIndex
from patternloop.learning.working_memory import WorkingMemory

__all__ = [
    "ActionSequence",
    "AdaptiveThresholdManager",
    "BayesianConfidenceUpdater",
    "ExecutionContext",
    "HashEmbeddingGenerator",
    "Observation",
    "Outcome",
    "OutcomeMetrics",
    "OutcomeStatus",
    "Pattern",
    "PatternAction",
    "PatternExtractor",
    "PatternQualityScorer",
    "PatternStore",
    "PatternType",
    "PerformanceCluster",
    "PerformanceClusterer",
    "SequenceMiner",
    "VectorIndex",
    "WorkingMemory",
    "compute_baseline",
]
