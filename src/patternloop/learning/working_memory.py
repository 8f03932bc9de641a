"""Per-pipeline working memory.

Holds the current task id, the patterns active for it, the step count, and
a bounded cache of recently stored high-confidence patterns. One instance is
owned by a pipeline and passed in at construction.
"""

from __future__ import annotations

import threading
from collections import OrderedDict

from patternloop.learning.models import ExecutionContext, Pattern


class WorkingMemory:
    """Mutable execution state shared by one pipeline's operations."""

    def __init__(self, cache_capacity: int = 100) -> None:
        self._lock = threading.Lock()
        self._cache_capacity = cache_capacity
        self._patterns: OrderedDict[str, Pattern] = OrderedDict()
        self.current_task_id: str | None = None
        self.active_patterns: list[str] = []
        self.step_count = 0

    def begin_task(self, task_id: str) -> None:
        """Switch to a new task, resetting steps and active patterns."""
        with self._lock:
            if task_id != self.current_task_id:
                self.current_task_id = task_id
                self.active_patterns = []
                self.step_count = 0

    def record_step(self) -> int:
        with self._lock:
            self.step_count += 1
            return self.step_count

    def activate(self, pattern_id: str) -> None:
        with self._lock:
            if pattern_id not in self.active_patterns:
                self.active_patterns.append(pattern_id)

    def context(
        self,
        agent_id: str,
        working_directory: str,
        capabilities: frozenset[str] = frozenset(),
    ) -> ExecutionContext:
        """Snapshot the current state as an ExecutionContext."""
        with self._lock:
            return ExecutionContext(
                task_id=self.current_task_id or "default",
                agent_id=agent_id,
                working_directory=working_directory,
                active_patterns=tuple(self.active_patterns),
                step_count=self.step_count,
                capabilities=capabilities,
            )

    def cache_pattern(self, pattern: Pattern) -> None:
        with self._lock:
            self._patterns[pattern.id] = pattern
            self._patterns.move_to_end(pattern.id)
            while len(self._patterns) > self._cache_capacity:
                self._patterns.popitem(last=False)

    def get_cached(self, pattern_id: str) -> Pattern | None:
        with self._lock:
            return self._patterns.get(pattern_id)

    def forget(self, pattern_ids: list[str]) -> None:
        with self._lock:
            for pattern_id in pattern_ids:
                self._patterns.pop(pattern_id, None)
                if pattern_id in self.active_patterns:
                    self.active_patterns.remove(pattern_id)

    @property
    def cached_patterns(self) -> list[Pattern]:
        with self._lock:
            return list(self._patterns.values())

    def clear(self) -> None:
        with self._lock:
            self._patterns.clear()
            self.current_task_id = None
            self.active_patterns = []
            self.step_count = 0
