"""
Tunnel manager for the Nebula Forward application.

Owns the registry of live tunnels. Starting a tunnel creates its SSH
transport, waits for it to authenticate, opens exactly one forwarding
strategy on it and only then registers the tunnel as active. Stopping,
transport loss and shutdown all funnel into the same release path, which
closes the listener before the transport.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Set, Type, Union

from ....core.domain.events import TunnelEvents
from ....core.domain.tunnels import (
    ForwardingType, StartResult, StatusResult, StopResult, TunnelRecord,
    TunnelSpec, TunnelStatus, TunnelSummary
)
from ....core.exceptions import (
    AuthenticationFailure, BindFailure, DuplicateTunnel, TunnelError
)
from ....core.interfaces.forwarding import ITransport, ITunnelManager, TransportFactory
from ....core.interfaces.lifecycle import IComponent
from ....core.interfaces.messaging import IEventBus
from ....core.services.status_notifier import StatusNotifier
from ...config.models import SSHConfig
from ..ssh.transport import SSHTransport
from .base import BaseForwarder
from .local import LocalForwarder
from .remote import RemoteForwarder
from .socks import DynamicForwarder
from .splice import DEFAULT_BUFFER_SIZE

logger = logging.getLogger(__name__)

FORWARDERS: Dict[ForwardingType, Type[BaseForwarder]] = {
    ForwardingType.LOCAL: LocalForwarder,
    ForwardingType.REMOTE: RemoteForwarder,
    ForwardingType.DYNAMIC: DynamicForwarder,
}

# Upper bound for one tunnel's listener/transport teardown
CLOSE_TIMEOUT = 10.0


class _PendingStart:
    """Book-keeping for a tunnel between the start request and activation."""

    def __init__(self, record: TunnelRecord):
        self.record = record
        self.cancelled = False
        self.transport_lost: Optional[str] = None
        self.finished = asyncio.Event()


class TunnelManager(ITunnelManager, IComponent):
    """
    Registry and lifecycle owner for local, remote and dynamic tunnels.

    The registry only holds active tunnels. A tunnel id that is active or
    still starting cannot be started again until it has been stopped.
    """

    def __init__(
        self,
        event_bus: Optional[IEventBus] = None,
        notifier: Optional[StatusNotifier] = None,
        transport_factory: Optional[TransportFactory] = None,
        ssh_config: Optional[SSHConfig] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        default_bind_address: str = "127.0.0.1"
    ):
        """
        Initialize the tunnel manager.

        Args:
            event_bus: Event bus for status and connection events
            notifier: Status notifier (created on the event bus if omitted)
            transport_factory: Builds the transport for a tunnel spec;
                defaults to an asyncssh transport
            ssh_config: Connection settings for the default transport
            buffer_size: Splice buffer size per read
            default_bind_address: Bind address for specs that omit one
        """
        self._event_bus = event_bus
        self._notifier = notifier or StatusNotifier(event_bus)
        self._ssh_config = ssh_config or SSHConfig()
        self._transport_factory = transport_factory or self._create_ssh_transport
        self._buffer_size = buffer_size
        self._default_bind_address = default_bind_address

        self._tunnels: Dict[str, TunnelRecord] = {}
        self._pending: Dict[str, _PendingStart] = {}
        self._lock = asyncio.Lock()
        self._background: Set["asyncio.Task[None]"] = set()
        self._running = False
        self._started_at: Optional[float] = None

    @property
    def name(self) -> str:
        return "TunnelManager"

    @property
    def notifier(self) -> StatusNotifier:
        return self._notifier

    def _create_ssh_transport(self, spec: TunnelSpec) -> ITransport:
        return SSHTransport(spec, self._ssh_config)

    async def start(self) -> None:
        """Start the tunnel manager component."""
        if self._running:
            return
        self._running = True
        self._started_at = time.time()
        logger.info("Tunnel manager started")

    async def stop(self) -> None:
        """Stop the component, tearing down every tunnel."""
        await self.stop_all()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._notifier.drain()
        self._running = False
        logger.info("Tunnel manager stopped")

    async def configure(self, config: Dict[str, Any]) -> None:
        """
        Apply forwarding settings; they affect tunnels started afterwards.

        Raises:
            ValueError: If buffer_size is below 1024
        """
        buffer_size = config.get('buffer_size', self._buffer_size)
        if buffer_size < 1024:
            raise ValueError("buffer_size must be at least 1024")
        self._buffer_size = buffer_size
        self._default_bind_address = config.get('default_bind_address', self._default_bind_address)

    async def check_health(self) -> Dict[str, Any]:
        tunnels = {}
        for tunnel_id, record in self._tunnels.items():
            forwarder = record.forwarder
            tunnels[tunnel_id] = {
                "type": record.type.value,
                "status": record.status.value,
                "destination": record.spec.destination,
                "bound_port": forwarder.bound_port if forwarder else None,
                "uptime": time.time() - record.activated_at if record.activated_at else 0,
                **(forwarder.stats if isinstance(forwarder, BaseForwarder) else {}),
            }

        return {
            "healthy": self._running,
            "status": "running" if self._running else "stopped",
            "details": {
                "tunnels_active": len(self._tunnels),
                "tunnels_starting": len(self._pending),
                "buffer_size": self._buffer_size,
                "default_bind_address": self._default_bind_address,
                "tunnels": tunnels,
            }
        }

    def _coerce_spec(self, spec: Union[TunnelSpec, Mapping[str, Any]]) -> TunnelSpec:
        if isinstance(spec, TunnelSpec):
            return spec
        data = dict(spec)
        if not data.get("bindAddress") and not data.get("bind_address"):
            data["bind_address"] = self._default_bind_address
        return TunnelSpec.from_dict(data)

    async def start_tunnel(self, spec: Union[TunnelSpec, Mapping[str, Any]],
                           caller: Any = None) -> StartResult:
        """
        Start a tunnel and return once it is active.

        Raises:
            UnknownForwardingType: Before any resource is created
            InvalidTunnelSpec: Before any resource is created
            DuplicateTunnel: The id is active or still starting
            AuthenticationFailure: The SSH transport could not be established
            BindFailure: The listener or remote bind could not be established
        """
        spec = self._coerce_spec(spec)
        tunnel_id = spec.tunnel_id
        forwarder_class = FORWARDERS[spec.type]

        record = TunnelRecord(spec=spec, caller=caller)
        pending = _PendingStart(record)

        async with self._lock:
            if tunnel_id in self._tunnels or tunnel_id in self._pending:
                raise DuplicateTunnel(tunnel_id)
            self._pending[tunnel_id] = pending

        logger.info(f"Starting tunnel {tunnel_id}: {spec.describe()} "
                    f"via {spec.username}@{spec.hostname}:{spec.port}")
        await self._notifier.notify(tunnel_id, TunnelStatus.CONNECTING, caller)

        try:
            transport = self._transport_factory(spec)
            record.transport = transport
            self._check_pending(pending)
            await self._connect(spec, transport)
            transport.add_close_callback(
                lambda exc: self._schedule(self._on_transport_lost(record, exc)))
            self._check_pending(pending)

            forwarder = forwarder_class(spec, transport, self._event_bus, self._buffer_size)
            record.forwarder = forwarder
            await forwarder.open()
            self._check_pending(pending)

            async with self._lock:
                self._check_pending(pending)
                del self._pending[tunnel_id]
                record.status = TunnelStatus.ACTIVE
                record.activated_at = time.time()
                self._tunnels[tunnel_id] = record
                await self._notifier.notify(tunnel_id, TunnelStatus.ACTIVE, caller)

        except BaseException as e:
            if pending.cancelled and not isinstance(e, asyncio.CancelledError):
                stopped = TunnelError("Tunnel stopped before it became active", tunnel_id)
                await self._abort_start(pending, stopped)
                raise stopped from e
            await self._abort_start(pending, e)
            raise
        finally:
            pending.finished.set()

        return StartResult(tunnel_id=tunnel_id, success=True, bound_port=forwarder.bound_port)

    async def _connect(self, spec: TunnelSpec, transport: ITransport) -> None:
        try:
            await transport.connect()
        except TunnelError:
            raise
        except Exception as e:
            raise AuthenticationFailure(
                f"SSH connection to {spec.hostname}:{spec.port} failed: {e}",
                spec.tunnel_id) from e

    def _check_pending(self, pending: _PendingStart) -> None:
        tunnel_id = pending.record.tunnel_id
        if pending.cancelled:
            raise TunnelError("Tunnel stopped before it became active", tunnel_id)
        if pending.transport_lost is not None:
            raise AuthenticationFailure(
                f"SSH connection closed during setup: {pending.transport_lost}", tunnel_id)

    async def _abort_start(self, pending: _PendingStart, error: BaseException) -> None:
        record = pending.record
        tunnel_id = record.tunnel_id

        async with self._lock:
            if self._pending.get(tunnel_id) is pending:
                del self._pending[tunnel_id]

        await self._release(record)

        if isinstance(error, asyncio.CancelledError):
            message = "Tunnel start cancelled"
        else:
            message = str(error) or error.__class__.__name__
        record.status = TunnelStatus.ERROR
        record.last_error = message

        if isinstance(error, BindFailure):
            logger.error(f"Tunnel {tunnel_id} bind failed: {message}")
        else:
            logger.error(f"Tunnel {tunnel_id} failed to start: {message}")

        await self._notifier.notify(tunnel_id, TunnelStatus.ERROR, record.caller, error=message)

    async def stop_tunnel(self, tunnel_id: str) -> StopResult:
        """Stop a tunnel; unknown ids yield ``success=False`` instead of raising."""
        async with self._lock:
            record = self._tunnels.pop(tunnel_id, None)
            pending = self._pending.get(tunnel_id)

        if record is None:
            if pending is not None:
                # The start call fails and reports the error status itself
                pending.cancelled = True
                transport = pending.record.transport
                if transport is not None:
                    try:
                        transport.close()
                    except Exception as e:
                        logger.warning(f"Failed to close transport of starting tunnel {tunnel_id}: {e}")
                logger.info(f"Cancelled start of tunnel {tunnel_id}")
                return StopResult(tunnel_id=tunnel_id, success=True)
            return StopResult(tunnel_id=tunnel_id, success=False, error="Tunnel not found")

        try:
            await self._release(record, raise_errors=True)
        except Exception as e:
            logger.warning(f"Error while stopping tunnel {tunnel_id}: {e}")
            await self._mark_inactive(record)
            return StopResult(tunnel_id=tunnel_id, success=False, error=str(e))

        await self._mark_inactive(record)
        logger.info(f"Stopped tunnel {tunnel_id}")
        return StopResult(tunnel_id=tunnel_id, success=True)

    def get_status(self, tunnel_id: str) -> StatusResult:
        record = self._tunnels.get(tunnel_id)
        if record is None:
            return StatusResult(tunnel_id=tunnel_id, status=TunnelStatus.INACTIVE)
        return StatusResult(tunnel_id=tunnel_id, status=record.status, type=record.type)

    def get_tunnel(self, tunnel_id: str) -> Optional[TunnelRecord]:
        return self._tunnels.get(tunnel_id)

    def list_tunnels(self) -> List[TunnelSummary]:
        return [record.summary() for record in self._tunnels.values()]

    async def stop_all(self) -> None:
        """Stop every tunnel; one failing close never blocks the others."""
        async with self._lock:
            records = list(self._tunnels.values())
            self._tunnels.clear()
            pending_starts = list(self._pending.values())

        for pending in pending_starts:
            pending.cancelled = True
            transport = pending.record.transport
            if transport is not None:
                try:
                    transport.close()
                except Exception as e:
                    logger.warning(f"Failed to close transport of starting tunnel "
                                   f"{pending.record.tunnel_id}: {e}")

        if pending_starts:
            await self._wait_for_starts(pending_starts)

        if not records and not pending_starts:
            return

        logger.info(f"Stopping all {len(records)} active tunnels...")
        outcomes = await asyncio.gather(
            *(self._stop_quietly(record) for record in records))
        failed = outcomes.count(False)

        if failed:
            logger.warning(f"All tunnels stopped ({failed} did not close cleanly)")
        else:
            logger.info("All tunnels stopped")

        if self._event_bus is not None:
            try:
                await self._event_bus.publish(TunnelEvents.ALL_STOPPED, {
                    "stopped": len(records),
                    "failed": failed,
                })
            except RuntimeError as e:
                logger.debug(f"Stop-all event dropped: {e}")

    async def _wait_for_starts(self, pending_starts: List[_PendingStart]) -> None:
        """Wait until every cancelled start has released its resources."""
        waiters = [pending.finished.wait() for pending in pending_starts]
        try:
            await asyncio.wait_for(asyncio.gather(*waiters), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            unfinished = [p.record.tunnel_id for p in pending_starts if not p.finished.is_set()]
            logger.warning(f"Starting tunnels still winding down: {', '.join(unfinished)}")

    async def _stop_quietly(self, record: TunnelRecord) -> bool:
        try:
            await self._release(record, raise_errors=True)
            logger.info(f"Stopped tunnel {record.tunnel_id}")
            return True
        except Exception as e:
            logger.warning(f"Failed to stop tunnel {record.tunnel_id}: {e}")
            return False
        finally:
            await self._mark_inactive(record)

    async def _release(self, record: TunnelRecord, raise_errors: bool = False) -> None:
        """Close the listener, then the transport. Both are attempted."""
        first_error: Optional[BaseException] = None

        forwarder, record.forwarder = record.forwarder, None
        transport, record.transport = record.transport, None

        if forwarder is not None:
            try:
                await asyncio.wait_for(forwarder.close(), timeout=CLOSE_TIMEOUT)
            except Exception as e:
                logger.warning(f"Closing listener of tunnel {record.tunnel_id} failed: {e!r}")
                first_error = first_error or e

        if transport is not None:
            try:
                transport.close()
                await asyncio.wait_for(transport.wait_closed(), timeout=CLOSE_TIMEOUT)
            except Exception as e:
                logger.warning(f"Closing transport of tunnel {record.tunnel_id} failed: {e!r}")
                first_error = first_error or e

        if raise_errors and first_error is not None:
            raise first_error

    async def _mark_inactive(self, record: TunnelRecord, error: Optional[str] = None) -> None:
        record.status = TunnelStatus.INACTIVE
        await self._notifier.notify(record.tunnel_id, TunnelStatus.INACTIVE, record.caller, error=error)

    def _schedule(self, coro: Any) -> None:
        task: "asyncio.Task[None]" = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _on_transport_lost(self, record: TunnelRecord, exc: Optional[Exception]) -> None:
        """Clean up after the SSH connection went away without a stop request."""
        tunnel_id = record.tunnel_id
        reason = str(exc) if exc is not None else None

        async with self._lock:
            if self._tunnels.get(tunnel_id) is not record:
                pending = self._pending.get(tunnel_id)
                if pending is not None and pending.record is record:
                    pending.transport_lost = reason or "connection closed"
                return
            del self._tunnels[tunnel_id]

        logger.info(f"SSH connection closed for tunnel {tunnel_id}, releasing listener")
        await self._release(record)
        await self._mark_inactive(record, error=reason)
