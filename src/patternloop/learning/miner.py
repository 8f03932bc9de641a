"""Frequent action-sequence mining.

Observations are grouped by task, and every contiguous run of 2..4 action
names within a task counts as one occurrence of that n-gram. Sequences that
recur often enough and succeed often enough are reported, most frequent
first.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from patternloop.core.config import MinerConfig
from patternloop.core.logging import get_logger
from patternloop.learning.models import Observation, PatternInstance

_logger = get_logger("learning.miner")

SEQUENCE_SEPARATOR = "→"


@dataclass
class ActionSequence:
    """A frequent ordered action n-gram.

    Attributes:
        actions: Action names in order.
        support: Number of occurrences across all tasks.
        success_rate: Fraction of occurrences whose every action succeeded.
        avg_duration_ms: Mean summed duration of an occurrence.
        instances: One sample per occurrence.
    """

    actions: tuple[str, ...]
    support: int
    success_rate: float
    avg_duration_ms: float
    instances: list[PatternInstance] = field(default_factory=list)

    @property
    def key(self) -> str:
        return SEQUENCE_SEPARATOR.join(self.actions)


@dataclass
class _Tally:
    actions: tuple[str, ...]
    occurrences: int = 0
    successes: int = 0
    total_duration: float = 0.0
    instances: list[PatternInstance] = field(default_factory=list)


def group_by_task(observations: Iterable[Observation]) -> dict[str, list[Observation]]:
    """Group observations by task id, keeping arrival order within each task."""
    groups: dict[str, list[Observation]] = {}
    for obs in observations:
        groups.setdefault(obs.context.task_id, []).append(obs)
    return groups


class SequenceMiner:
    """Mines frequent, reliable action sequences from observations."""

    def __init__(self, config: MinerConfig | None = None) -> None:
        self.config = config or MinerConfig()

    def mine(self, observations: list[Observation]) -> list[ActionSequence]:
        """Return qualifying sequences sorted by descending support.

        Ties keep the order in which sequences were first discovered.
        """
        if not observations:
            return []

        tallies: dict[tuple[str, ...], _Tally] = {}
        for task_obs in group_by_task(observations).values():
            self._count_task(task_obs, tallies)

        results: list[ActionSequence] = []
        for tally in tallies.values():
            if tally.occurrences < self.config.min_support:
                continue
            success_rate = tally.successes / tally.occurrences
            if success_rate < self.config.min_confidence:
                continue
            results.append(
                ActionSequence(
                    actions=tally.actions,
                    support=tally.occurrences,
                    success_rate=success_rate,
                    avg_duration_ms=tally.total_duration / tally.occurrences,
                    instances=tally.instances,
                )
            )

        results.sort(key=lambda seq: seq.support, reverse=True)
        _logger.debug(
            "sequences_mined",
            observations=len(observations),
            distinct=len(tallies),
            qualifying=len(results),
        )
        return results

    def _count_task(
        self,
        task_obs: list[Observation],
        tallies: dict[tuple[str, ...], _Tally],
    ) -> None:
        if len(task_obs) < self.config.min_length:
            return
        longest = min(self.config.max_length, len(task_obs))
        for n in range(self.config.min_length, longest + 1):
            for start in range(len(task_obs) - n + 1):
                window = tuple(task_obs[start:start + n])
                actions = tuple(obs.action for obs in window)
                tally = tallies.get(actions)
                if tally is None:
                    tally = tallies[actions] = _Tally(actions=actions)

                succeeded = all(obs.success for obs in window)
                duration = sum(obs.duration_ms for obs in window)
                tally.occurrences += 1
                tally.successes += int(succeeded)
                tally.total_duration += duration
                tally.instances.append(
                    PatternInstance(
                        observations=window,
                        performance=1.0 if succeeded else 0.0,
                        duration_ms=duration,
                        context=window[0].context,
                    )
                )
