"""
Event domain models for the event-driven architecture.

Events carry tunnel lifecycle and connection notifications from the
forwarding layer to any interested observer (API stream, CLI output).
"""

import itertools
import time
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional

_sequence = itertools.count()


class EventPriority(IntEnum):
    """Event priority levels for processing order."""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


@dataclass(frozen=True)
class Event:
    """
    Immutable event representing something that happened in the system.

    Events of equal priority are delivered in publication order.
    """

    name: str
    """Event name/type identifier."""

    data: Any = None
    """Event payload data."""

    priority: EventPriority = EventPriority.NORMAL
    """Event processing priority."""

    timestamp: float = field(default_factory=time.time)
    """Unix timestamp when event was created."""

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Unique event identifier."""

    source: Optional[str] = None
    """Component that generated the event."""

    sequence: int = field(default_factory=lambda: next(_sequence))
    """Monotonic publication counter, breaks ties between equal priorities."""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Event name cannot be empty")

        if not isinstance(self.priority, EventPriority):
            raise ValueError("Priority must be an EventPriority enum value")

    def __lt__(self, other: 'Event') -> bool:
        """Higher priority first, then publication order."""
        if not isinstance(other, Event):
            return NotImplemented

        if self.priority.value != other.priority.value:
            return self.priority.value > other.priority.value

        return self.sequence < other.sequence

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'data': self.data,
            'priority': self.priority.name,
            'timestamp': self.timestamp,
            'event_id': self.event_id,
            'source': self.source,
        }


class TunnelEvents:
    """Event names published by the tunnel layer."""

    STATUS = "tunnel.status"
    CONNECTION_OPENED = "tunnel.connection.opened"
    CONNECTION_CLOSED = "tunnel.connection.closed"
    CONNECTION_FAILED = "tunnel.connection.failed"
    ALL_STOPPED = "tunnel.all.stopped"
