"""
Nebula Forward - SSH tunnel manager.

This package runs local, remote and dynamic (SOCKS5) port forwarding over
asyncssh transports, keeps a registry of live tunnels and reports their
status to callers and to an event bus.
"""

__version__ = "0.1.0"

# Public API exports
from .core.domain.tunnels import ForwardingType, TunnelSpec, TunnelStatus, StatusUpdate
from .core.exceptions import (
    TunnelError, AuthenticationFailure, BindFailure, UnknownForwardingType,
    InvalidTunnelSpec, TunnelNotFound, DuplicateTunnel
)
from .core.interfaces.forwarding import ITransport, ITunnelManager
from .infrastructure.services.forwarding.manager import TunnelManager

__all__ = [
    "ForwardingType",
    "TunnelSpec",
    "TunnelStatus",
    "StatusUpdate",
    "TunnelError",
    "AuthenticationFailure",
    "BindFailure",
    "UnknownForwardingType",
    "InvalidTunnelSpec",
    "TunnelNotFound",
    "DuplicateTunnel",
    "ITransport",
    "ITunnelManager",
    "TunnelManager",
]
