"""Tests for pattern relevance matching and name similarity."""

import pytest

from patternloop.learning.matching import (
    REQUIRED_CAPABILITIES,
    Capability,
    capabilities_satisfied,
    is_relevant,
    keywords,
    pattern_vocabulary,
)
from patternloop.learning.similarity import levenshtein, name_similarity
from tests.helpers import make_context, make_pattern

# =============================================================================
# Name similarity
# =============================================================================


class TestSimilarity:
    """Tests for levenshtein and name_similarity."""

    @pytest.mark.parametrize(
        ("a", "b", "distance"),
        [("", "", 0), ("abc", "", 3), ("kitten", "sitting", 3), ("read", "reed", 1)],
    )
    def test_levenshtein(self, a: str, b: str, distance: int) -> None:
        """Classic edit distances."""
        assert levenshtein(a, b) == distance
        assert levenshtein(b, a) == distance

    def test_identical_names(self) -> None:
        """Equal names are fully similar, including empty names."""
        assert name_similarity("read_grep", "read_grep") == 1.0
        assert name_similarity("", "") == 1.0

    def test_partial_similarity(self) -> None:
        """One edit in ten characters is 0.9 similar."""
        assert name_similarity("read_grep1", "read_grep2") == pytest.approx(0.9)

    def test_disjoint_names(self) -> None:
        """Completely different names score 0."""
        assert name_similarity("abc", "xyz") == 0.0


# =============================================================================
# Capabilities and keywords
# =============================================================================


class TestCapabilities:
    """Tests for capability parsing and satisfaction."""

    def test_parse_tagged_and_untagged(self) -> None:
        """kind:value is split; bare values are tags; case is folded."""
        assert Capability.parse("tool:Read") == Capability("tool", "read")
        assert Capability.parse("Python") == Capability("tag", "python")

    def test_pattern_without_requirements(self) -> None:
        """No required capabilities: always satisfied."""
        assert capabilities_satisfied(make_pattern(), make_context())

    def test_required_subset(self) -> None:
        """Context must offer every required capability."""
        pattern = make_pattern(conditions={REQUIRED_CAPABILITIES: ["tool:Read", "lang:python"]})

        full = make_context(capabilities=frozenset({"tool:read", "lang:Python", "agent:coder"}))
        partial = make_context(capabilities=frozenset({"tool:Read"}))

        assert capabilities_satisfied(pattern, full)
        assert not capabilities_satisfied(pattern, partial)

    def test_keywords_drop_stopwords(self) -> None:
        """Keywords are lowercase alphanumeric tokens without stopwords."""
        assert keywords("Read the config and grep for TODOs") == {
            "read",
            "config",
            "grep",
            "todos",
        }

    def test_pattern_vocabulary(self) -> None:
        """Vocabulary covers name, description, tools and type."""
        vocab = pattern_vocabulary(make_pattern())
        assert {"read", "grep", "pattern", "domain", "specific"} <= vocab


class TestIsRelevant:
    """Tests for is_relevant."""

    def test_keyword_overlap(self) -> None:
        """A shared keyword makes a pattern relevant."""
        assert is_relevant(make_pattern(), "grep the logs", make_context())

    def test_no_overlap(self) -> None:
        """No shared keyword: not relevant."""
        assert not is_relevant(make_pattern(), "deploy kubernetes cluster", make_context())

    def test_empty_description_matches_on_capabilities(self) -> None:
        """A description with no keywords only checks capabilities."""
        assert is_relevant(make_pattern(), "the and of", make_context())

    def test_missing_capability_blocks_relevance(self) -> None:
        """Keyword overlap does not override a missing capability."""
        pattern = make_pattern(conditions={REQUIRED_CAPABILITIES: ["tool:Bash"]})
        assert not is_relevant(pattern, "read and grep", make_context())
