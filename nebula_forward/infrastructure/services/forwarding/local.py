"""
Local port forwarding.

Listens on ``bind_address:local_port``; each accepted client is carried
through a forwarded channel to the fixed ``remote_host:remote_port``.
The transport runs the listener and relays the connections.
"""

from ....core.interfaces.forwarding import IForwardListener
from .base import PortForwarder


class LocalForwarder(PortForwarder):
    """Local listener proxying every client to one remote destination."""

    async def _bind(self) -> IForwardListener:
        spec = self._spec
        remote_host, remote_port = spec.target()
        return await self._transport.forward_local(
            spec.bind_address, spec.local_port, remote_host, remote_port)
