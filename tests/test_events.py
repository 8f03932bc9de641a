"""Tests for patternloop.pipeline.events."""

from __future__ import annotations

import pytest

from patternloop.pipeline.events import EventKind, ListenerRegistry, PipelineEvent


class TestListenerRegistry:
    """Tests for ListenerRegistry."""

    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self):
        """Both plain and coroutine callbacks receive events."""
        received: list[tuple[str, PipelineEvent]] = []

        def sync_cb(event: PipelineEvent) -> None:
            received.append(("sync", event))

        async def async_cb(event: PipelineEvent) -> None:
            received.append(("async", event))

        registry = ListenerRegistry([sync_cb, async_cb])
        await registry.emit(EventKind.PATTERN_STORED, pattern_id="p1")

        assert [tag for tag, _ in received] == ["sync", "async"]
        assert received[0][1].kind == EventKind.PATTERN_STORED
        assert received[0][1].payload == {"pattern_id": "p1"}

    @pytest.mark.asyncio
    async def test_kind_filter(self):
        """A listener limited to some kinds ignores others."""
        received: list[EventKind] = []
        registry = ListenerRegistry()
        registry.add(lambda e: received.append(e.kind), kinds=[EventKind.PATTERN_APPLIED])

        await registry.emit(EventKind.PATTERN_STORED)
        await registry.emit(EventKind.PATTERN_APPLIED)

        assert received == [EventKind.PATTERN_APPLIED]

    @pytest.mark.asyncio
    async def test_remove(self):
        """Removed listeners receive nothing."""
        received: list[PipelineEvent] = []
        registry = ListenerRegistry()
        listener_id = registry.add(received.append)

        assert registry.remove(listener_id) is True
        assert registry.remove(listener_id) is False
        await registry.emit(EventKind.PATTERN_STORED)

        assert received == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others(self):
        """An exception in one listener is contained."""
        received: list[PipelineEvent] = []

        def broken(event: PipelineEvent) -> None:
            raise RuntimeError("boom")

        registry = ListenerRegistry([broken, received.append])
        await registry.emit(EventKind.CONFIDENCE_UPDATED)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_listener_disabled_after_repeated_failures(self):
        """Ten consecutive failures disable a listener."""
        calls = 0

        def broken(event: PipelineEvent) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        registry = ListenerRegistry([broken])
        for _ in range(15):
            await registry.emit(EventKind.OBSERVATION_RECORDED)

        assert calls == 10
