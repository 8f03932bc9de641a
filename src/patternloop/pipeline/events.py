"""Pipeline events and the listener registry.

Listeners are plain callables (sync or async) registered on one pipeline.
A listener that keeps failing is disabled rather than allowed to break the
pipeline.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from patternloop.core.logging import get_logger
from patternloop.utils.time import utc_now

_logger = get_logger("pipeline.events")

_MAX_CONSECUTIVE_FAILURES = 10


class EventKind(str, Enum):
    OBSERVATION_RECORDED = "observation_recorded"
    PATTERN_STORED = "pattern_stored"
    PATTERN_APPLIED = "pattern_applied"
    CONFIDENCE_UPDATED = "confidence_updated"
    CONSOLIDATION_COMPLETE = "consolidation_complete"


@dataclass
class PipelineEvent:
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


EventCallback = Callable[[PipelineEvent], Any]


@dataclass
class _Listener:
    callback: EventCallback
    kinds: frozenset[EventKind] | None
    consecutive_failures: int = 0


class ListenerRegistry:
    """Ordered set of event listeners for one pipeline."""

    def __init__(self, callbacks: Iterable[EventCallback] = ()) -> None:
        self._listeners: dict[str, _Listener] = {}
        for callback in callbacks:
            self.add(callback)

    def add(
        self,
        callback: EventCallback,
        kinds: Iterable[EventKind] | None = None,
    ) -> str:
        """Register a listener, optionally limited to some event kinds.

        Returns:
            Listener id for ``remove()``.
        """
        listener_id = str(uuid.uuid4())
        self._listeners[listener_id] = _Listener(
            callback=callback,
            kinds=frozenset(kinds) if kinds is not None else None,
        )
        return listener_id

    def remove(self, listener_id: str) -> bool:
        return self._listeners.pop(listener_id, None) is not None

    def __len__(self) -> int:
        return len(self._listeners)

    async def emit(self, kind: EventKind, **payload: Any) -> None:
        """Deliver an event to every interested, still-enabled listener."""
        event = PipelineEvent(kind=kind, payload=payload)
        for listener_id, listener in list(self._listeners.items()):
            if listener.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                continue
            if listener.kinds is not None and kind not in listener.kinds:
                continue
            try:
                result = listener.callback(event)
                if asyncio.iscoroutine(result):
                    await result
                listener.consecutive_failures = 0
            except Exception:
                listener.consecutive_failures += 1
                _logger.warning(
                    "listener_error",
                    listener_id=listener_id,
                    event_kind=kind.value,
                    consecutive_failures=listener.consecutive_failures,
                    exc_info=True,
                )
                if listener.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                    _logger.error(
                        "listener_disabled",
                        listener_id=listener_id,
                        reason=f"{_MAX_CONSECUTIVE_FAILURES} consecutive failures",
                    )
