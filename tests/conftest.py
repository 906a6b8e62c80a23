"""
Shared fixtures for the tunnel tests.

``FakeTransport`` stands in for an SSH connection: channels are plain
loopback TCP connections, and local and remote port forwards are loopback
listeners relaying to their destination, so the forwarding code runs
against real sockets without an SSH server.
"""

import asyncio
import contextlib
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Set, Tuple

import pytest

from nebula_forward.core.domain.tunnels import StatusUpdate, TunnelSpec
from nebula_forward.core.exceptions import (
    AuthenticationFailure, BindFailure, ChannelOpenFailure
)
from nebula_forward.core.interfaces.forwarding import (
    CloseCallback, IForwardListener, ITransport, StreamPair
)
from nebula_forward.infrastructure.services.forwarding.splice import splice


class FakeForwardListener(IForwardListener):
    """A port forward served by a loopback asyncio server."""

    def __init__(self, dest_host: str, dest_port: int, refuse: Callable[[], bool]):
        self.dest_host = dest_host
        self.dest_port = dest_port
        self.server: Optional[asyncio.AbstractServer] = None
        self._refuse = refuse
        self._relays: Set["asyncio.Task[Any]"] = set()

    async def listen(self, host: str, port: int) -> "FakeForwardListener":
        self.server = await asyncio.start_server(self._relay, host, port)
        return self

    async def _relay(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        assert task is not None
        self._relays.add(task)
        try:
            if self._refuse():
                writer.close()
                return
            try:
                dest_reader, dest_writer = await asyncio.open_connection(self.dest_host, self.dest_port)
            except OSError:
                writer.close()
                return
            await splice(reader, writer, dest_reader, dest_writer, linger=0.2)
        finally:
            self._relays.discard(task)

    def get_port(self) -> int:
        assert self.server is not None
        return self.server.sockets[0].getsockname()[1]

    def close(self) -> None:
        assert self.server is not None
        self.server.close()
        for task in list(self._relays):
            task.cancel()

    async def wait_closed(self) -> None:
        assert self.server is not None
        await self.server.wait_closed()


class FakeTransport(ITransport):
    """In-process transport opening loopback connections instead of SSH channels."""

    def __init__(
        self,
        spec: TunnelSpec,
        connect_error: Optional[BaseException] = None,
        connect_gate: Optional[asyncio.Event] = None,
        refuse_channels: bool = False,
        refuse_bind: bool = False,
        close_error: Optional[BaseException] = None
    ):
        self.spec = spec
        self.connect_error = connect_error
        self.connect_gate = connect_gate
        self.refuse_channels = refuse_channels
        self.refuse_bind = refuse_bind
        self.close_error = close_error

        self.connected = False
        self.closed = False
        self.connect_abandoned = False
        self.channel_requests: List[Tuple[str, int, str, int]] = []
        self.forwards: List[Tuple[str, str, int, str, int]] = []
        self.listeners: List[FakeForwardListener] = []
        self._callbacks: List[CloseCallback] = []
        self._closing = asyncio.Event()
        self._lost = False

    @property
    def is_connected(self) -> bool:
        return self.connected and not self._lost

    async def connect(self) -> None:
        if self.connect_gate is not None:
            opened = asyncio.ensure_future(self.connect_gate.wait())
            closing = asyncio.ensure_future(self._closing.wait())
            try:
                await asyncio.wait({opened, closing}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                opened.cancel()
                closing.cancel()
        if self._closing.is_set():
            self.connect_abandoned = True
            raise AuthenticationFailure("SSH connection closed while connecting", self.spec.tunnel_id)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def open_channel(self, host: str, port: int,
                           orig_host: str = "", orig_port: int = 0) -> StreamPair:
        self.channel_requests.append((host, port, orig_host, orig_port))
        if self.refuse_channels:
            raise ChannelOpenFailure(host, port, "Connection refused")
        try:
            return await asyncio.open_connection(host, port)
        except OSError as e:
            raise ChannelOpenFailure(host, port, str(e)) from e

    async def _forward(self, kind: str, listen_host: str, listen_port: int,
                       dest_host: str, dest_port: int) -> IForwardListener:
        self.forwards.append((kind, listen_host, listen_port, dest_host, dest_port))
        listener = FakeForwardListener(dest_host, dest_port, lambda: self.refuse_channels)
        try:
            await listener.listen(listen_host, listen_port)
        except OSError as e:
            raise BindFailure(f"Cannot listen on {listen_host}:{listen_port}: {e}",
                              self.spec.tunnel_id) from e
        self.listeners.append(listener)
        return listener

    async def forward_local(self, listen_host: str, listen_port: int,
                            dest_host: str, dest_port: int) -> IForwardListener:
        return await self._forward("local", listen_host, listen_port, dest_host, dest_port)

    async def forward_remote(self, listen_host: str, listen_port: int,
                             dest_host: str, dest_port: int) -> IForwardListener:
        if self.refuse_bind:
            raise BindFailure(f"Remote bind on {listen_host}:{listen_port} refused", self.spec.tunnel_id)
        return await self._forward("remote", listen_host, listen_port, dest_host, dest_port)

    def add_close_callback(self, callback: CloseCallback) -> None:
        if self._lost:
            callback(None)
            return
        self._callbacks.append(callback)

    def close(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.closed = True
        self._closing.set()
        self.drop(None)

    async def wait_closed(self) -> None:
        pass

    def drop(self, exc: Optional[Exception]) -> None:
        """Simulate the SSH connection going away."""
        if self._lost:
            return
        self._lost = True
        for listener in self.listeners:
            listener.close()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(exc)


class FakeTransportFactory:
    """Transport factory handing out FakeTransports configured per tunnel id."""

    def __init__(self) -> None:
        self.transports: Dict[str, FakeTransport] = {}
        self._options: Dict[str, Dict[str, Any]] = {}

    def configure(self, tunnel_id: str, **options: Any) -> None:
        self._options[tunnel_id] = options

    def __call__(self, spec: TunnelSpec) -> FakeTransport:
        transport = FakeTransport(spec, **self._options.get(spec.tunnel_id, {}))
        self.transports[spec.tunnel_id] = transport
        return transport


class StatusRecorder:
    """Status caller collecting every update it receives."""

    def __init__(self) -> None:
        self.updates: List[StatusUpdate] = []

    def __call__(self, update: StatusUpdate) -> None:
        self.updates.append(update)

    def statuses(self, tunnel_id: Optional[str] = None) -> List[str]:
        return [u.status.value for u in self.updates
                if tunnel_id is None or u.tunnel_id == tunnel_id]


async def wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``condition`` holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


async def read_until_closed(reader: asyncio.StreamReader, timeout: float = 2.0) -> bytes:
    """Read everything the peer sends before closing; a reset ends the read."""
    data = b""
    try:
        while True:
            chunk = await asyncio.wait_for(reader.read(65536), timeout)
            if not chunk:
                break
            data += chunk
    except ConnectionResetError:
        pass
    return data


async def exchange(host: str, port: int, payload: bytes) -> bytes:
    """Send ``payload`` to host:port and read the same number of bytes back."""
    reader, writer = await asyncio.open_connection(host, port)
    try:
        writer.write(payload)
        await writer.drain()
        return await asyncio.wait_for(reader.readexactly(len(payload)), 2.0)
    finally:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()


class EchoServer:
    """Loopback TCP server echoing everything back until the client half-closes."""

    def __init__(self) -> None:
        self.server: Optional[asyncio.AbstractServer] = None
        self.host = "127.0.0.1"
        self.port = 0
        self.connections = 0
        self._writers: Set[asyncio.StreamWriter] = set()

    async def start(self) -> "EchoServer":
        self.server = await asyncio.start_server(self._handle, self.host, 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            self._writers.discard(writer)
            writer.close()

    async def stop(self) -> None:
        assert self.server is not None
        self.server.close()
        for writer in list(self._writers):
            writer.close()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.server.wait_closed(), 1.0)


@pytest.fixture
async def echo_server() -> AsyncGenerator[EchoServer, None]:
    server = await EchoServer().start()
    yield server
    await server.stop()


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def status_recorder() -> StatusRecorder:
    return StatusRecorder()
