"""Tests for patternloop.learning.working_memory."""

from patternloop.learning.working_memory import WorkingMemory
from tests.helpers import make_pattern


class TestWorkingMemory:
    """Tests for WorkingMemory."""

    def test_context_snapshot(self) -> None:
        """context() reflects task, steps and active patterns."""
        memory = WorkingMemory()
        memory.begin_task("task-9")
        memory.record_step()
        memory.record_step()
        memory.activate("pattern-a")
        memory.activate("pattern-a")

        ctx = memory.context("coder", "/repo", frozenset({"lang:python"}))

        assert ctx.task_id == "task-9"
        assert ctx.agent_id == "coder"
        assert ctx.working_directory == "/repo"
        assert ctx.step_count == 2
        assert ctx.active_patterns == ("pattern-a",)
        assert ctx.capabilities == frozenset({"lang:python"})

    def test_default_task_id(self) -> None:
        """Without a task the context uses the default task id."""
        assert WorkingMemory().context("a", "/").task_id == "default"

    def test_begin_task_resets_state(self) -> None:
        """A new task resets steps and active patterns; the same task does not."""
        memory = WorkingMemory()
        memory.begin_task("t1")
        memory.record_step()
        memory.activate("p")

        memory.begin_task("t1")
        assert memory.step_count == 1

        memory.begin_task("t2")
        assert memory.step_count == 0
        assert memory.active_patterns == []

    def test_cache_is_lru_bounded(self) -> None:
        """The least recently cached pattern is evicted first."""
        memory = WorkingMemory(cache_capacity=2)
        memory.cache_pattern(make_pattern("p1"))
        memory.cache_pattern(make_pattern("p2"))
        memory.cache_pattern(make_pattern("p1"))
        memory.cache_pattern(make_pattern("p3"))

        assert memory.get_cached("p2") is None
        assert [p.id for p in memory.cached_patterns] == ["p1", "p3"]

    def test_forget_removes_cache_and_activation(self) -> None:
        """Forgotten ids disappear from both the cache and active patterns."""
        memory = WorkingMemory()
        memory.cache_pattern(make_pattern("p1"))
        memory.activate("p1")

        memory.forget(["p1", "unknown"])

        assert memory.get_cached("p1") is None
        assert memory.active_patterns == []

    def test_clear(self) -> None:
        """clear() empties everything."""
        memory = WorkingMemory()
        memory.begin_task("t")
        memory.cache_pattern(make_pattern("p1"))
        memory.clear()

        assert memory.current_task_id is None
        assert memory.cached_patterns == []
