"""
Forwarding strategies, the SOCKS5 proxy and the tunnel registry.
"""

from .local import LocalForwarder
from .remote import RemoteForwarder
from .socks import DynamicForwarder, Socks5Session, ReplyCode, build_reply
from .manager import TunnelManager

__all__ = [
    "LocalForwarder",
    "RemoteForwarder",
    "DynamicForwarder",
    "Socks5Session",
    "ReplyCode",
    "build_reply",
    "TunnelManager",
]
