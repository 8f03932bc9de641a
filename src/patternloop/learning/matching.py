"""Relevance of stored patterns to a task.

A pattern is relevant to a task when the task context carries every
capability the pattern requires and, when the task description has
keywords, at least one of them appears in the pattern's vocabulary.

Capabilities are tagged values written ``kind:value`` (``tool:Read``,
``agent:coder``, ``lang:python``). An untagged string is a ``tag``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from patternloop.learning.models import ExecutionContext, Pattern

REQUIRED_CAPABILITIES = "required_capabilities"

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({
    "a", "an", "and", "the", "to", "of", "in", "on", "for", "with", "then",
    "is", "it", "at", "by", "from", "or", "this", "that", "all",
})


@dataclass(frozen=True)
class Capability:
    kind: str
    value: str

    @classmethod
    def parse(cls, raw: str) -> Capability:
        kind, sep, value = raw.partition(":")
        if not sep:
            return cls("tag", raw.strip().lower())
        return cls(kind.strip().lower(), value.strip().lower())


def capability_set(raw: Iterable[str]) -> frozenset[Capability]:
    return frozenset(Capability.parse(item) for item in raw if item)


def keywords(text: str) -> set[str]:
    """Lowercase alphanumeric tokens of text, minus stopwords."""
    return {word for word in _WORD.findall(text.lower()) if word not in _STOPWORDS}


def pattern_vocabulary(pattern: Pattern) -> set[str]:
    vocab = keywords(pattern.name.replace("_", " "))
    vocab |= keywords(pattern.description)
    for tool in pattern.tools:
        vocab |= keywords(tool)
    vocab |= keywords(pattern.type.value)
    return vocab


def capabilities_satisfied(pattern: Pattern, context: ExecutionContext) -> bool:
    """Whether the context offers every capability the pattern requires."""
    required = capability_set(pattern.conditions.get(REQUIRED_CAPABILITIES, ()))
    if not required:
        return True
    return required <= capability_set(context.capabilities)


def is_relevant(pattern: Pattern, task_description: str, context: ExecutionContext) -> bool:
    if not capabilities_satisfied(pattern, context):
        return False
    task_words = keywords(task_description)
    if not task_words:
        return True
    return bool(task_words & pattern_vocabulary(pattern))
