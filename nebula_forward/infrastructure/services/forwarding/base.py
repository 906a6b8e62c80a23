"""
Shared machinery for forwarding strategies.

Local and remote forwards are ``PortForwarder``s: the transport owns the
listener and relays every connection itself, so closing the forwarder
just closes that listener. The SOCKS5 proxy is a ``ListeningForwarder``:
every accepted connection runs in its own task owned by the forwarder,
the task holds both endpoints and closes them together, and closing the
forwarder cancels all of its tasks.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Coroutine, Dict, Optional, Set

from ....core.domain.events import TunnelEvents
from ....core.domain.tunnels import TunnelSpec
from ....core.exceptions import BindFailure
from ....core.interfaces.forwarding import IForwarder, IForwardListener, ITransport
from ....core.interfaces.messaging import IEventBus
from .splice import DEFAULT_BUFFER_SIZE

logger = logging.getLogger(__name__)

# Upper bound for a listener to report itself closed
LISTENER_CLOSE_TIMEOUT = 5.0


class BaseForwarder(IForwarder):
    """State common to all forwarding strategies."""

    def __init__(
        self,
        spec: TunnelSpec,
        transport: ITransport,
        event_bus: Optional[IEventBus] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE
    ):
        self._spec = spec
        self._transport = transport
        self._event_bus = event_bus
        self._buffer_size = buffer_size
        self._closed = False

    @property
    def tunnel_id(self) -> str:
        return self._spec.tunnel_id

    @property
    def stats(self) -> Dict[str, int]:
        return {}


class PortForwarder(BaseForwarder):
    """A port forward whose listener and connections belong to the transport."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._listener: Optional[IForwardListener] = None

    @property
    def bound_port(self) -> Optional[int]:
        if self._listener is None:
            return None
        return self._listener.get_port()

    @property
    def active_connections(self) -> Optional[int]:
        return None

    async def _bind(self) -> IForwardListener:
        raise NotImplementedError

    async def open(self) -> None:
        self._listener = await self._bind()
        logger.info(f"Tunnel {self.tunnel_id} forwarding active: {self._describe()}")

    def _describe(self) -> str:
        spec = self._spec
        return f"{spec.bind_address}:{self.bound_port} -> {spec.destination}"

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        listener, self._listener = self._listener, None
        if listener is None:
            return

        try:
            listener.close()
            await asyncio.wait_for(listener.wait_closed(), timeout=LISTENER_CLOSE_TIMEOUT)
        except (asyncio.TimeoutError, OSError) as e:
            logger.debug(f"Listener for tunnel {self.tunnel_id} did not close cleanly: {e!r}")


class ListeningForwarder(BaseForwarder):
    """A forwarder that accepts TCP clients itself and tracks one task per client."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set["asyncio.Task[None]"] = set()
        self._stats: Dict[str, int] = {
            'connections_total': 0,
            'connections_failed': 0,
        }

    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    @property
    def stats(self) -> Dict[str, int]:
        return {**self._stats, 'connections_active': self.active_connections}

    async def _listen(self) -> None:
        spec = self._spec
        try:
            self._server = await asyncio.start_server(
                self._on_client, spec.bind_address, spec.local_port)
        except OSError as e:
            raise BindFailure(
                f"Cannot listen on {spec.bind_address}:{spec.local_port}: {e.strerror or e}",
                spec.tunnel_id) from e

    def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._closed:
            writer.close()
            return
        peer = writer.get_extra_info("peername")
        label = f"{peer[0]}:{peer[1]}" if peer else "unknown"
        self._spawn(self._handle_client(reader, writer, label), label, abort=writer.close)

    async def _handle_client(self, reader: asyncio.StreamReader,
                             writer: asyncio.StreamWriter, label: str) -> None:
        raise NotImplementedError

    def _spawn(self, coro: Coroutine[Any, Any, None], label: str,
               abort: Optional[Callable[[], None]] = None) -> "asyncio.Task[None]":
        """
        Run one connection handler as a task tracked by this forwarder.

        ``abort`` releases the connection's endpoints if the task is
        cancelled before the handler got to run.
        """
        task: "asyncio.Task[None]" = asyncio.ensure_future(self._run_connection(coro, label))
        self._connections.add(task)

        def finished(done: "asyncio.Task[None]") -> None:
            self._connections.discard(done)
            if inspect.getcoroutinestate(coro) == inspect.CORO_CREATED:
                coro.close()
                if abort is not None:
                    abort()

        task.add_done_callback(finished)
        return task

    async def _run_connection(self, coro: Coroutine[Any, Any, None], label: str) -> None:
        self._stats['connections_total'] += 1
        await self._publish(TunnelEvents.CONNECTION_OPENED, label)
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Per-connection failures never escalate to the tunnel
            self._stats['connections_failed'] += 1
            logger.warning(f"Tunnel {self.tunnel_id} connection {label} failed: {e}")
            await self._publish(TunnelEvents.CONNECTION_FAILED, label, error=str(e))
        else:
            await self._publish(TunnelEvents.CONNECTION_CLOSED, label)

    async def _publish(self, name: str, label: str, **extra: Any) -> None:
        if self._event_bus is None:
            return
        try:
            await self._event_bus.publish(name, {
                "tunnelId": self.tunnel_id,
                "connection": label,
                **extra
            })
        except RuntimeError as e:
            logger.debug(f"Connection event {name} dropped: {e}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.close()

        tasks = list(self._connections)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._connections.clear()

        if self._server is not None:
            await self._server.wait_closed()
            self._server = None
