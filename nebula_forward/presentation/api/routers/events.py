"""
WebSocket status stream.

Clients connected to ``/ws/status`` receive a snapshot of the active
tunnels followed by every tunnel status change published on the event
bus, in publication order.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from ....core.domain.events import Event, TunnelEvents
from ..dependencies import get_services

router = APIRouter()
logger = logging.getLogger(__name__)

# Events buffered per client before the slowest ones are dropped
CLIENT_QUEUE_SIZE = 1000


class ConnectionManager:
    """Tracks connected status stream clients."""

    def __init__(self) -> None:
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"Status stream client connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"Status stream client disconnected. Total connections: {len(self.active_connections)}")

    def get_connection_count(self) -> int:
        return len(self.active_connections)


connection_manager = ConnectionManager()


def _event_message(event: Event) -> Dict[str, Any]:
    return {
        "event": event.name,
        "data": event.data,
        "timestamp": event.timestamp,
    }


async def _send_events(websocket: WebSocket, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@router.websocket("/status")
async def status_stream(
    websocket: WebSocket,
    events: str = Query("status", pattern="^(status|all)$")
) -> None:
    """
    Stream tunnel events.

    ``events=status`` (default) streams status changes only; ``events=all``
    adds per-connection events.
    """
    try:
        services = get_services(websocket)
    except HTTPException as e:
        await websocket.close(code=1011, reason=str(e.detail))
        return

    event_bus = services.event_bus
    pattern = TunnelEvents.STATUS if events == "status" else "tunnel.*"
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)

    def enqueue(event: Event) -> None:
        try:
            queue.put_nowait(_event_message(event))
        except asyncio.QueueFull:
            logger.warning(f"Status stream client too slow, dropping {event.name}")

    await connection_manager.connect(websocket)
    subscription_id: Optional[str] = None
    sender: Optional["asyncio.Task[None]"] = None

    try:
        await websocket.send_json({
            "event": "snapshot",
            "data": [summary.to_dict() for summary in services.tunnel_manager.list_tunnels()],
        })
        subscription_id = await event_bus.subscribe(pattern, enqueue)
        sender = asyncio.create_task(_send_events(websocket, queue))

        # Incoming messages are ignored; receiving detects the disconnect
        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        pass
    finally:
        if sender is not None:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
        if subscription_id is not None:
            await event_bus.unsubscribe(subscription_id)
        connection_manager.disconnect(websocket)
