"""
Tests for status notifications.
"""

import asyncio
from typing import List
from unittest.mock import AsyncMock

import pytest

from nebula_forward.core.domain.events import Event, EventPriority, TunnelEvents
from nebula_forward.core.domain.tunnels import StatusUpdate, TunnelStatus
from nebula_forward.core.services.event_bus import EventBus
from nebula_forward.core.services.status_notifier import StatusNotifier


class ClosableCaller:
    def __init__(self) -> None:
        self.closed = False
        self.updates: List[StatusUpdate] = []

    def is_closed(self) -> bool:
        return self.closed

    def __call__(self, update: StatusUpdate) -> None:
        self.updates.append(update)


class TestStatusNotifier:
    """Test cases for StatusNotifier."""

    @pytest.mark.asyncio
    async def test_queue_caller_receives_updates_in_order(self) -> None:
        notifier = StatusNotifier()
        queue: asyncio.Queue = asyncio.Queue()

        await notifier.notify("t1", TunnelStatus.CONNECTING, queue)
        await notifier.notify("t1", TunnelStatus.ACTIVE, queue)
        await notifier.notify("t1", TunnelStatus.ERROR, queue, error="boom")

        updates = [queue.get_nowait() for _ in range(3)]
        assert [u.status for u in updates] == [TunnelStatus.CONNECTING, TunnelStatus.ACTIVE, TunnelStatus.ERROR]
        assert updates[2].error == "boom"
        assert updates[2].to_dict() == {"tunnelId": "t1", "status": "error", "error": "boom"}

    @pytest.mark.asyncio
    async def test_sync_callable_is_called_immediately(self) -> None:
        notifier = StatusNotifier()
        received: List[StatusUpdate] = []

        update = await notifier.notify("t1", TunnelStatus.ACTIVE, received.append)

        assert received == [update]

    @pytest.mark.asyncio
    async def test_async_callables_run_in_order(self) -> None:
        notifier = StatusNotifier()
        received: List[str] = []

        async def caller(update: StatusUpdate) -> None:
            # The first update sleeps longest; order must still hold
            await asyncio.sleep(0.05 if update.status is TunnelStatus.CONNECTING else 0)
            received.append(update.status.value)

        await notifier.notify("t1", TunnelStatus.CONNECTING, caller)
        await notifier.notify("t1", TunnelStatus.ACTIVE, caller)
        await notifier.notify("t1", TunnelStatus.INACTIVE, caller)
        await notifier.drain()

        assert received == ["connecting", "active", "inactive"]

    @pytest.mark.asyncio
    async def test_closed_caller_is_skipped(self) -> None:
        notifier = StatusNotifier()
        caller = ClosableCaller()

        await notifier.notify("t1", TunnelStatus.CONNECTING, caller)
        caller.closed = True
        await notifier.notify("t1", TunnelStatus.ACTIVE, caller)

        assert [u.status for u in caller.updates] == [TunnelStatus.CONNECTING]

    @pytest.mark.asyncio
    async def test_failing_caller_does_not_raise(self) -> None:
        notifier = StatusNotifier()

        def broken(update: StatusUpdate) -> None:
            raise RuntimeError("window gone")

        update = await notifier.notify("t1", TunnelStatus.ACTIVE, broken)
        assert update.status is TunnelStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_full_queue_does_not_raise(self) -> None:
        notifier = StatusNotifier()
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)

        await notifier.notify("t1", TunnelStatus.CONNECTING, queue)
        await notifier.notify("t1", TunnelStatus.ACTIVE, queue)

        assert queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_publishes_status_events(self) -> None:
        bus = EventBus()
        await bus.start()
        events: List[Event] = []
        await bus.subscribe(TunnelEvents.STATUS, events.append)
        notifier = StatusNotifier(bus)

        await notifier.notify("t1", TunnelStatus.CONNECTING)
        await notifier.notify("t1", TunnelStatus.INACTIVE)
        await bus.stop()

        assert [e.data for e in events] == [
            {"tunnelId": "t1", "status": "connecting"},
            {"tunnelId": "t1", "status": "inactive"},
        ]
        assert all(e.priority is EventPriority.NORMAL for e in events)

    @pytest.mark.asyncio
    async def test_stopped_bus_is_tolerated(self) -> None:
        bus = AsyncMock()
        bus.publish.side_effect = RuntimeError("Event bus is not running")
        notifier = StatusNotifier(bus)
        received: List[StatusUpdate] = []

        await notifier.notify("t1", TunnelStatus.INACTIVE, received.append)

        assert len(received) == 1
        bus.publish.assert_awaited_once()
