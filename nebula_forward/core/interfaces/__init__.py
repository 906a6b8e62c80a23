"""
Core interfaces defining the contracts between tunnel components.
"""

from .lifecycle import IStartable, IStoppable, IHealthCheckable, IConfigurable, IComponent
from .messaging import IEventBus
from .forwarding import (
    ITransport, IForwardListener, IForwarder, ITunnelManager,
    TransportFactory, StreamPair
)

__all__ = [
    "IStartable",
    "IStoppable",
    "IHealthCheckable",
    "IConfigurable",
    "IComponent",
    "IEventBus",
    "ITransport",
    "IForwardListener",
    "IForwarder",
    "ITunnelManager",
    "TransportFactory",
    "StreamPair",
]
