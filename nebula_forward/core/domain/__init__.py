"""
Domain models for tunnels and the events they emit.

Pure data structures without I/O; the infrastructure layer drives them.
"""

from .events import Event, EventPriority, TunnelEvents
from .tunnels import (
    ForwardingType, TunnelStatus, TunnelSpec, TunnelRecord, StatusUpdate,
    StartResult, StopResult, StatusResult, TunnelSummary
)

__all__ = [
    "Event",
    "EventPriority",
    "TunnelEvents",
    "ForwardingType",
    "TunnelStatus",
    "TunnelSpec",
    "TunnelRecord",
    "StatusUpdate",
    "StartResult",
    "StopResult",
    "StatusResult",
    "TunnelSummary",
]
