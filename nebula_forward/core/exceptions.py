"""
Exception hierarchy for tunnel management.

Tunnel-level errors (authentication, bind, validation) are fatal to a single
tunnel and surface through a rejected start call. Per-connection errors
(channel open, SOCKS negotiation) are raised and caught inside the
connection task that owns them and never reach the tunnel registry.
"""

from typing import Optional


class TunnelError(Exception):
    """Base class for all tunnel errors."""

    def __init__(self, message: str, tunnel_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tunnel_id = tunnel_id

    def __str__(self) -> str:
        return self.message


class AuthenticationFailure(TunnelError):
    """The SSH transport could not be established."""
    pass


class BindFailure(TunnelError):
    """A local listener or remote bind could not be established."""
    pass


class UnknownForwardingType(TunnelError):
    """The requested forwarding type is not local, remote or dynamic."""

    def __init__(self, forwarding_type: object, tunnel_id: Optional[str] = None):
        super().__init__(f"Unknown forwarding type: {forwarding_type}", tunnel_id)
        self.forwarding_type = forwarding_type


class InvalidTunnelSpec(TunnelError):
    """A tunnel specification is missing fields or carries bad values."""
    pass


class TunnelNotFound(TunnelError):
    """No live tunnel is registered under the given id."""

    def __init__(self, tunnel_id: str):
        super().__init__("Tunnel not found", tunnel_id)


class DuplicateTunnel(TunnelError):
    """A tunnel with the same id is already live or starting."""

    def __init__(self, tunnel_id: str):
        super().__init__(f"Tunnel already exists: {tunnel_id}", tunnel_id)


class ChannelOpenFailure(TunnelError):
    """The transport refused to open a forwarded channel."""

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(f"Channel open to {host}:{port} failed: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class SocksProtocolError(TunnelError):
    """
    A SOCKS client sent something the proxy cannot serve.

    ``reply_code`` is the SOCKS reply byte to send before closing, or None
    when the connection must be closed without any reply.
    """

    def __init__(self, message: str, reply_code: Optional[int] = None):
        super().__init__(message)
        self.reply_code = reply_code
