"""
Remote port forwarding.

Asks the SSH server to listen on ``bind_address:local_port``; every
connection it accepts arrives as a channel and is connected by the
transport to the fixed local ``remote_host:remote_port``.
"""

from ....core.interfaces.forwarding import IForwardListener
from .base import PortForwarder


class RemoteForwarder(PortForwarder):
    """Remote bind delivering inbound connections to a local service."""

    async def _bind(self) -> IForwardListener:
        spec = self._spec
        remote_host, remote_port = spec.target()
        return await self._transport.forward_remote(
            spec.bind_address, spec.local_port, remote_host, remote_port)

    def _describe(self) -> str:
        spec = self._spec
        return f"remote {spec.bind_address}:{self.bound_port} -> local {spec.destination}"
