"""
Core module containing domain models, interfaces and in-process services.

Nothing in this package performs network I/O; the infrastructure layer
implements the interfaces defined here.
"""

from .interfaces.lifecycle import IStartable, IStoppable, IHealthCheckable
from .interfaces.messaging import IEventBus
from .interfaces.forwarding import ITransport, IForwarder, ITunnelManager
from .domain.events import Event, EventPriority, TunnelEvents
from .domain.tunnels import ForwardingType, TunnelStatus, TunnelSpec, StatusUpdate

__all__ = [
    "IStartable",
    "IStoppable",
    "IHealthCheckable",
    "IEventBus",
    "ITransport",
    "IForwarder",
    "ITunnelManager",
    "Event",
    "EventPriority",
    "TunnelEvents",
    "ForwardingType",
    "TunnelStatus",
    "TunnelSpec",
    "StatusUpdate",
]
