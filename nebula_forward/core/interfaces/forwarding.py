"""
Forwarding service interfaces.

Defines the contracts between the tunnel registry, the SSH transport and
the three forwarding strategies (local, remote, dynamic). Streams passed
across these interfaces follow the asyncio stream API: readers provide
``read(n)`` / ``readexactly(n)``, writers provide ``write``, ``drain``,
``write_eof``, ``can_write_eof`` and ``close``.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple

from ..domain.tunnels import (
    StartResult, StatusResult, StopResult, TunnelSpec, TunnelSummary
)
from .lifecycle import IHealthCheckable, IStartable, IStoppable

StreamPair = Tuple[Any, Any]
CloseCallback = Callable[[Optional[Exception]], None]


class IForwardListener(ABC):
    """A port forward set up on a transport, local or remote."""

    @abstractmethod
    def get_port(self) -> int:
        """Port actually listening, useful when port 0 was requested."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop listening and close the connections forwarded through it."""
        pass

    @abstractmethod
    async def wait_closed(self) -> None:
        pass


class ITransport(ABC):
    """
    One authenticated, multiplexed SSH connection.

    A transport is connected once, carries any number of forwarded
    channels, and signals its loss exactly once to every registered close
    callback (with the causing exception, or None for an orderly close).
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish and authenticate the connection.

        Raises:
            AuthenticationFailure: If the connection cannot be established
        """
        pass

    @abstractmethod
    async def open_channel(self, host: str, port: int,
                           orig_host: str = "", orig_port: int = 0) -> StreamPair:
        """
        Open a forwarded channel to host:port on the far side.

        Raises:
            ChannelOpenFailure: If the remote side refuses the channel
        """
        pass

    @abstractmethod
    async def forward_local(self, listen_host: str, listen_port: int,
                            dest_host: str, dest_port: int) -> IForwardListener:
        """
        Listen on listen_host:listen_port locally and carry every accepted
        connection through a channel to dest_host:dest_port.

        Raises:
            BindFailure: If the local listener cannot be bound
        """
        pass

    @abstractmethod
    async def forward_remote(self, listen_host: str, listen_port: int,
                             dest_host: str, dest_port: int) -> IForwardListener:
        """
        Ask the remote host to listen on listen_host:listen_port and connect
        every inbound connection to the local dest_host:dest_port.

        Raises:
            BindFailure: If the remote host refuses the bind
        """
        pass

    @abstractmethod
    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a callback invoked once when the connection is lost."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        pass

    @abstractmethod
    async def wait_closed(self) -> None:
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass


TransportFactory = Callable[[TunnelSpec], ITransport]


class IForwarder(ABC):
    """A forwarding strategy bound to one transport."""

    @abstractmethod
    async def open(self) -> None:
        """
        Bind the listener (local/dynamic) or request the remote bind.

        Raises:
            BindFailure: If binding fails
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop listening and tear down every in-flight connection."""
        pass

    @property
    @abstractmethod
    def bound_port(self) -> Optional[int]:
        """Port actually bound, or None before ``open`` succeeds."""
        pass

    @property
    @abstractmethod
    def active_connections(self) -> Optional[int]:
        """Connections in flight, or None when the transport relays them itself."""
        pass


class ITunnelManager(IStartable, IStoppable, IHealthCheckable):
    """
    Registry and lifecycle owner for all tunnels.

    ``start`` / ``stop`` from the lifecycle interfaces refer to the
    manager component itself; tunnels are driven through the
    ``*_tunnel`` operations.
    """

    @abstractmethod
    async def start_tunnel(self, spec: TunnelSpec, caller: Any = None) -> StartResult:
        """
        Start a tunnel and wait until it is active.

        Args:
            spec: Tunnel specification
            caller: Status target (callable or asyncio.Queue) receiving
                this tunnel's status updates

        Raises:
            TunnelError: If the tunnel cannot be brought up
        """
        pass

    @abstractmethod
    async def stop_tunnel(self, tunnel_id: str) -> StopResult:
        """Stop a tunnel. Never raises for unknown ids."""
        pass

    @abstractmethod
    def get_status(self, tunnel_id: str) -> StatusResult:
        pass

    @abstractmethod
    def list_tunnels(self) -> List[TunnelSummary]:
        pass

    @abstractmethod
    async def stop_all(self) -> None:
        """Stop every tunnel, tolerating individual close failures."""
        pass
