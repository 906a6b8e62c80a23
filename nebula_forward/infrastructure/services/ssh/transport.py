"""
SSH transport built on asyncssh.

One ``SSHTransport`` wraps one authenticated asyncssh client connection.
Local and remote port forwards are set up with asyncssh's own forwarders
(``forward_local_port`` / ``forward_remote_port``), which relay every
forwarded connection themselves. ``open_channel`` opens single
``direct-tcpip`` channels for the SOCKS5 proxy. The loss of the
connection is reported to subscribers exactly once.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import asyncssh

from ....core.domain.tunnels import TunnelSpec
from ....core.exceptions import AuthenticationFailure, BindFailure, ChannelOpenFailure
from ....core.interfaces.forwarding import (
    CloseCallback, IForwardListener, ITransport, StreamPair
)
from ...config.models import SSHConfig

logger = logging.getLogger(__name__)


class _TransportClient(asyncssh.SSHClient):
    """asyncssh client callbacks relayed to the owning transport."""

    def __init__(self, transport: "SSHTransport"):
        self._transport = transport

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._transport._on_connection_lost(exc)


class SSHForwardListener(IForwardListener):
    """A local or remote port forward owned by an asyncssh connection."""

    def __init__(self, listener: asyncssh.SSHListener):
        self._listener = listener

    def get_port(self) -> int:
        return self._listener.get_port()

    def close(self) -> None:
        self._listener.close()

    async def wait_closed(self) -> None:
        await self._listener.wait_closed()


class SSHTransport(ITransport):
    """
    Authenticated, multiplexed SSH connection for one tunnel.

    Credentials come from the tunnel spec; connection tuning (timeouts,
    keepalive, host key checking) comes from ``SSHConfig``. An in-memory
    private key takes precedence over a password when both are given.
    """

    def __init__(self, spec: TunnelSpec, config: Optional[SSHConfig] = None):
        self._spec = spec
        self._config = config or SSHConfig()
        self._connection: Optional[asyncssh.SSHClientConnection] = None
        self._connect_task: Optional["asyncio.Future[asyncssh.SSHClientConnection]"] = None
        self._close_callbacks: List[CloseCallback] = []
        self._closing = False
        self._lost = False
        self._closed_event = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._lost

    def _connect_kwargs(self) -> Dict[str, Any]:
        spec = self._spec
        kwargs = self._config.to_asyncssh_kwargs()
        kwargs.update({
            'host': spec.hostname,
            'port': spec.port,
            'username': spec.username,
            'client_factory': lambda: _TransportClient(self),
            'agent_path': None,
        })

        if spec.private_key:
            try:
                key = asyncssh.import_private_key(spec.private_key, spec.passphrase)
            except (asyncssh.KeyImportError, ValueError) as e:
                raise AuthenticationFailure(f"Invalid private key: {e}", spec.tunnel_id) from e
            kwargs['client_keys'] = [key]
            kwargs['password'] = None
        else:
            kwargs['client_keys'] = None
            kwargs['password'] = spec.password

        return kwargs

    async def connect(self) -> None:
        """
        Connect and authenticate, raising AuthenticationFailure on any failure.

        The handshake runs as a task so that ``close()`` can abandon it.
        """
        if self._connection is not None:
            return

        spec = self._spec
        if self._closing:
            raise AuthenticationFailure(
                f"SSH connection to {spec.hostname}:{spec.port} closed before connecting",
                spec.tunnel_id)

        kwargs = self._connect_kwargs()

        logger.debug(f"Connecting SSH transport for tunnel {spec.tunnel_id} "
                     f"to {spec.username}@{spec.hostname}:{spec.port}")
        self._connect_task = asyncio.ensure_future(asyncssh.connect(**kwargs))
        try:
            connection = await self._connect_task
        except asyncio.CancelledError:
            if not self._closing:
                raise
            raise AuthenticationFailure(
                f"SSH connection to {spec.hostname}:{spec.port} closed while connecting",
                spec.tunnel_id) from None
        except asyncssh.PermissionDenied as e:
            raise AuthenticationFailure(
                f"Authentication failed for {spec.username}@{spec.hostname}: {e.reason}",
                spec.tunnel_id) from e
        except asyncssh.Error as e:
            raise AuthenticationFailure(
                f"SSH connection to {spec.hostname}:{spec.port} failed: {e.reason}",
                spec.tunnel_id) from e
        except asyncio.TimeoutError as e:
            raise AuthenticationFailure(
                f"Timed out connecting to {spec.hostname}:{spec.port}", spec.tunnel_id) from e
        except OSError as e:
            raise AuthenticationFailure(
                f"Cannot reach {spec.hostname}:{spec.port}: {e.strerror or e}",
                spec.tunnel_id) from e
        finally:
            self._connect_task = None

        if self._closing:
            # close() ran after the handshake finished but before we resumed
            connection.close()
            self._closed_event.set()
            raise AuthenticationFailure(
                f"SSH connection to {spec.hostname}:{spec.port} closed while connecting",
                spec.tunnel_id)

        self._connection = connection
        logger.info(f"SSH connection ready for tunnel {spec.tunnel_id}")

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._connection is None or self._lost:
            raise ConnectionError("SSH transport is not connected")
        return self._connection

    async def open_channel(self, host: str, port: int,
                           orig_host: str = "", orig_port: int = 0) -> StreamPair:
        try:
            connection = self._require_connection()
            reader, writer = await connection.open_connection(
                host, port, orig_host=orig_host, orig_port=orig_port)
        except asyncssh.ChannelOpenError as e:
            raise ChannelOpenFailure(host, port, e.reason) from e
        except (asyncssh.Error, OSError) as e:
            raise ChannelOpenFailure(host, port, str(e)) from e

        return reader, writer

    async def forward_local(self, listen_host: str, listen_port: int,
                            dest_host: str, dest_port: int) -> IForwardListener:
        try:
            connection = self._require_connection()
            listener = await connection.forward_local_port(
                listen_host, listen_port, dest_host, dest_port)
        except OSError as e:
            raise BindFailure(
                f"Cannot listen on {listen_host}:{listen_port}: {e.strerror or e}",
                self._spec.tunnel_id) from e

        logger.debug(f"Local forward {listen_host}:{listener.get_port()} -> "
                     f"{dest_host}:{dest_port} opened for tunnel {self._spec.tunnel_id}")
        return SSHForwardListener(listener)

    async def forward_remote(self, listen_host: str, listen_port: int,
                             dest_host: str, dest_port: int) -> IForwardListener:
        try:
            connection = self._require_connection()
            listener = await connection.forward_remote_port(
                listen_host, listen_port, dest_host, dest_port)
        except (asyncssh.ChannelListenError, asyncssh.Error, OSError) as e:
            raise BindFailure(
                f"Remote bind on {listen_host}:{listen_port} refused: {e}",
                self._spec.tunnel_id) from e

        logger.debug(f"Remote forward {listen_host}:{listener.get_port()} -> "
                     f"local {dest_host}:{dest_port} opened for tunnel {self._spec.tunnel_id}")
        return SSHForwardListener(listener)

    def add_close_callback(self, callback: CloseCallback) -> None:
        if self._lost:
            callback(None)
            return
        self._close_callbacks.append(callback)

    def close(self) -> None:
        self._closing = True
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()

        if self._connection is not None and not self._lost:
            self._connection.close()
        elif self._connection is None:
            self._closed_event.set()

    async def wait_closed(self) -> None:
        if self._connection is not None:
            await self._connection.wait_closed()
        await self._closed_event.wait()

    def _on_connection_lost(self, exc: Optional[Exception]) -> None:
        if self._lost:
            return
        self._lost = True
        self._closed_event.set()

        if exc is not None:
            logger.warning(f"SSH connection for tunnel {self._spec.tunnel_id} lost: {exc}")
        else:
            logger.info(f"SSH connection closed for tunnel {self._spec.tunnel_id}")

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(exc)
            except Exception as e:
                logger.error(f"Close callback failed for tunnel {self._spec.tunnel_id}: {e}")
