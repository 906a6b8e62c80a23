"""
Status notifications for tunnel lifecycles.

Every status change is delivered to the caller that started the tunnel and
published on the event bus for global observers. Delivery to a caller is
synchronous with the state change, so a caller always sees one tunnel's
transitions in the order they happened.
"""

import asyncio
import logging
from typing import Any, Optional

from ..domain.events import Event, EventPriority, TunnelEvents
from ..domain.tunnels import StatusUpdate, TunnelStatus
from ..interfaces.messaging import IEventBus

logger = logging.getLogger(__name__)


class StatusNotifier:
    """
    Emits ``connecting``/``active``/``error``/``inactive`` per tunnel.

    A caller is either an ``asyncio.Queue`` or a callable taking a
    ``StatusUpdate``. Coroutines returned by async callables are scheduled
    as tasks chained one after another so they still run in order. A caller
    exposing ``is_closed()`` returning True is skipped, mirroring a
    destroyed UI window that can no longer receive messages.
    """

    def __init__(self, event_bus: Optional[IEventBus] = None):
        self._event_bus = event_bus
        self._pending: "dict[int, asyncio.Task[None]]" = {}

    async def notify(self, tunnel_id: str, status: TunnelStatus,
                     caller: Any = None, error: Optional[str] = None) -> StatusUpdate:
        update = StatusUpdate(tunnel_id=tunnel_id, status=status, error=error)

        if error:
            logger.debug(f"Tunnel {tunnel_id} -> {status.value}: {error}")
        else:
            logger.debug(f"Tunnel {tunnel_id} -> {status.value}")

        if caller is not None:
            self._deliver(caller, update)

        if self._event_bus is not None:
            # One priority for every status keeps a tunnel's transitions in order
            try:
                await self._event_bus.publish(Event(
                    name=TunnelEvents.STATUS,
                    data=update.to_dict(),
                    priority=EventPriority.NORMAL,
                    source="tunnel-manager"
                ))
            except RuntimeError as e:
                logger.warning(f"Status event for tunnel {tunnel_id} not published: {e}")

        return update

    def _deliver(self, caller: Any, update: StatusUpdate) -> None:
        is_closed = getattr(caller, "is_closed", None)
        if callable(is_closed) and is_closed():
            return

        try:
            if isinstance(caller, asyncio.Queue):
                caller.put_nowait(update)
                return

            result = caller(update)
            if asyncio.iscoroutine(result):
                self._chain(caller, result)
        except Exception as e:
            logger.warning(f"Failed to deliver status for tunnel {update.tunnel_id}: {e}")

    def _chain(self, caller: Any, coro: Any) -> None:
        key = id(caller)
        previous = self._pending.get(key)

        async def run_after() -> None:
            if previous is not None:
                await asyncio.gather(previous, return_exceptions=True)
            try:
                await coro
            except Exception as e:
                logger.warning(f"Status callback failed: {e}")

        task = asyncio.create_task(run_after())
        self._pending[key] = task

        def forget(done: "asyncio.Task[None]") -> None:
            if self._pending.get(key) is done:
                del self._pending[key]

        task.add_done_callback(forget)

    async def drain(self) -> None:
        """Wait for every scheduled async callback to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending.values()), return_exceptions=True)
