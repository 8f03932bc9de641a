"""Tests for PatternStore.consolidate (merge, prune, decay, evict)."""

from __future__ import annotations

import itertools
import threading

import pytest

from patternloop.core.config import ConsolidationConfig
from patternloop.learning.models import OutcomeStatus, PatternType
from patternloop.learning.similarity import name_similarity
from patternloop.learning.store import EmbeddingRow, PatternStore
from patternloop.utils.time import utc_now
from tests.helpers import days_ago, make_pattern


class TestPrune:
    """Tests for the prune phase."""

    def test_old_unused_low_confidence_is_pruned(self, store: PatternStore) -> None:
        """conf 0.2, usage 6, 60 days old: gone after one pass."""
        store.store(make_pattern("stale", confidence=0.2, usage_count=6, created_at=days_ago(60)))

        result = store.consolidate()

        assert result.pruned == 1
        assert result.removed_ids == ["stale"]
        assert store.get("stale") is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"confidence": 0.3},
            {"usage_count": 10},
            {"created_at": days_ago(20)},
        ],
    )
    def test_any_unmet_condition_keeps_pattern(
        self, store: PatternStore, overrides: dict
    ) -> None:
        """All three prune conditions must hold."""
        fields = {"confidence": 0.2, "usage_count": 6, "created_at": days_ago(60)}
        fields.update(overrides)
        store.store(make_pattern("kept", **fields))

        result = store.consolidate(ConsolidationConfig(decay_factor=1.0))

        assert result.pruned == 0
        assert store.get("kept") is not None

    def test_pruned_embedding_is_removed(self, store: PatternStore) -> None:
        """Prune cascades to the pattern's embedding."""
        store.store(make_pattern("stale", confidence=0.1, created_at=days_ago(90)))
        store.put_embedding(
            EmbeddingRow("stale", "m", 2, bytes(2), True, 0.0, 1.0, utc_now())
        )

        store.consolidate()

        assert store.count_embeddings() == 0


class TestMerge:
    """Tests for the merge phase."""

    def test_similar_names_merge_into_higher_ranked(self, store: PatternStore) -> None:
        """The lower-confidence near-duplicate is folded into the better one."""
        store.store(make_pattern("best", "read_grep_edit", confidence=0.9, usage_count=10))
        store.store(make_pattern("dupe", "read_grep_edits", confidence=0.5, usage_count=10))

        result = store.consolidate(ConsolidationConfig(merge_similarity=0.9))

        assert result.merged == 1
        assert result.removed_ids == ["dupe"]
        survivor = store.require("best")
        assert survivor.usage_count == 20
        assert survivor.confidence == pytest.approx(0.7)

    def test_different_types_never_merge(self, store: PatternStore) -> None:
        """Identical names of different types survive."""
        store.store(make_pattern("a", "read_grep"))
        store.store(make_pattern("b", "read_grep", pattern_type=PatternType.TESTING))

        assert store.consolidate().merged == 0
        assert store.count() == 2

    def test_no_similar_pair_survives(self, store: PatternStore) -> None:
        """After a pass no same-type pair is at or above the threshold."""
        names = [
            "read_grep", "read_grepx", "read_grepxy", "edit_file",
            "edit_files", "run_tests", "run_test", "bash_retry",
        ]
        for i, name in enumerate(names):
            store.store(make_pattern(f"p{i}", name, confidence=0.5 + i * 0.05))

        options = ConsolidationConfig(merge_similarity=0.85)
        store.consolidate(options)

        remaining = store.search()
        for a, b in itertools.combinations(remaining, 2):
            if a.type == b.type:
                assert name_similarity(a.name, b.name) < options.merge_similarity


class TestDecay:
    """Tests for the decay phase."""

    def test_unused_patterns_decay(self, store: PatternStore) -> None:
        """Patterns unused past the interval lose 5% confidence."""
        store.store(make_pattern("old", confidence=0.8, usage_count=20, last_used=days_ago(40)))
        store.store(make_pattern(
            "fresh", "edit_file", confidence=0.8, usage_count=20, last_used=days_ago(1),
        ))

        result = store.consolidate()

        assert result.decayed == 1
        assert store.require("old").confidence == pytest.approx(0.76)
        assert store.require("fresh").confidence == 0.8

    def test_decay_factor_of_one_disables(self, store: PatternStore) -> None:
        """A factor of 1.0 skips the phase."""
        store.store(make_pattern("old", confidence=0.8, usage_count=20, last_used=days_ago(40)))
        assert store.consolidate(ConsolidationConfig(decay_factor=1.0)).decayed == 0


class TestEvict:
    """Tests for the per-type cap."""

    def test_lowest_ranked_are_evicted(self, store: PatternStore) -> None:
        """Only the best max_patterns_per_type per type remain."""
        for i, name in enumerate(["alpha", "bravo", "charlie", "delta"]):
            store.store(make_pattern(f"p{i}", name, confidence=0.5 + i * 0.1))
        store.store(make_pattern("t0", "alpha", pattern_type=PatternType.TESTING, confidence=0.1))

        result = store.consolidate(ConsolidationConfig(max_patterns_per_type=2))

        assert result.evicted == 2
        assert {p.id for p in store.search(pattern_type=PatternType.DOMAIN_SPECIFIC)} == {"p2", "p3"}
        assert store.get("t0") is not None


class TestConsolidationRun:
    """Pass-level behavior."""

    def test_empty_store(self, store: PatternStore) -> None:
        """Consolidating nothing is a no-op."""
        result = store.consolidate()
        assert result.to_dict()["removed_ids"] == []
        assert result.interrupted is False

    def test_cancelled_pass_is_marked_interrupted(self, store: PatternStore) -> None:
        """A set cancel event stops the pass before its first decision."""
        store.store(make_pattern("stale", confidence=0.1, created_at=days_ago(90)))
        cancel = threading.Event()
        cancel.set()

        result = store.consolidate(cancel=cancel)

        assert result.interrupted is True
        assert store.get("stale") is not None

    def test_concurrent_writes_during_consolidation(self, store: PatternStore) -> None:
        """Writers and a consolidation pass can interleave without errors."""
        for i in range(20):
            store.store(make_pattern(f"p{i}", f"pattern_{i:02d}_name", confidence=0.5))
        errors: list[Exception] = []

        def writer() -> None:
            try:
                for i in range(20):
                    store.record_usage(f"p{i}", OutcomeStatus.SUCCESS)
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        thread = threading.Thread(target=writer)
        thread.start()
        store.consolidate(ConsolidationConfig(merge_similarity=0.99))
        thread.join()

        assert errors == []
        assert store.count() == 20
