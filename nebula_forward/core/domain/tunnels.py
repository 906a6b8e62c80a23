"""
Tunnel domain models.

Defines the tunnel specification accepted by ``start``, the registry entry
kept for every live tunnel, and the result shapes returned to callers.
Result objects render to the camelCase dictionaries the calling layer
expects through ``to_dict()``.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from ..exceptions import InvalidTunnelSpec, UnknownForwardingType

if TYPE_CHECKING:
    from ..interfaces.forwarding import IForwarder, ITransport


DEFAULT_BIND_ADDRESS = "127.0.0.1"
DEFAULT_SSH_PORT = 22
DEFAULT_USERNAME = "root"


class ForwardingType(Enum):
    """Kinds of forwarding a tunnel can perform."""
    LOCAL = "local"
    REMOTE = "remote"
    DYNAMIC = "dynamic"

    @classmethod
    def parse(cls, value: Any, tunnel_id: Optional[str] = None) -> "ForwardingType":
        """Convert a raw value into a forwarding type or raise UnknownForwardingType."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownForwardingType(value, tunnel_id) from None


class TunnelStatus(Enum):
    """Lifecycle states reported for a tunnel."""
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERROR = "error"
    INACTIVE = "inactive"

    @property
    def is_terminal(self) -> bool:
        return self in (TunnelStatus.ERROR, TunnelStatus.INACTIVE)


# camelCase keys used by the calling layer -> dataclass field names
_SPEC_ALIASES = {
    "tunnelId": "tunnel_id",
    "localPort": "local_port",
    "bindAddress": "bind_address",
    "remoteHost": "remote_host",
    "remotePort": "remote_port",
    "privateKey": "private_key",
}


def _check_port(name: str, value: Any, tunnel_id: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise InvalidTunnelSpec(f"{name} must be an integer, got {value!r}", tunnel_id) from None
    if not 0 <= value <= 65535:
        raise InvalidTunnelSpec(f"{name} must be between 0 and 65535, got {value}", tunnel_id)
    return value


@dataclass
class TunnelSpec:
    """
    Everything needed to start one tunnel.

    ``remote_host``/``remote_port`` are required for local and remote
    forwarding and ignored for dynamic forwarding, whose destination is
    chosen per connection by the SOCKS client.
    """

    tunnel_id: str
    type: ForwardingType
    local_port: int
    hostname: str
    username: str = DEFAULT_USERNAME
    bind_address: str = DEFAULT_BIND_ADDRESS
    remote_host: Optional[str] = None
    remote_port: Optional[int] = None
    port: int = DEFAULT_SSH_PORT
    password: Optional[str] = None
    private_key: Optional[str] = None
    passphrase: Optional[str] = None

    def __post_init__(self) -> None:
        # Type is checked first so an unknown type is reported as such
        # regardless of any other problem with the spec.
        self.type = ForwardingType.parse(self.type, self.tunnel_id)

        if not self.tunnel_id:
            raise InvalidTunnelSpec("tunnelId is required")
        if not self.hostname:
            raise InvalidTunnelSpec("hostname is required", self.tunnel_id)

        self.username = self.username or DEFAULT_USERNAME
        self.bind_address = self.bind_address or DEFAULT_BIND_ADDRESS
        self.local_port = _check_port("localPort", self.local_port, self.tunnel_id)
        self.port = _check_port("port", self.port, self.tunnel_id)

        if self.type is ForwardingType.DYNAMIC:
            return

        if self.remote_port is None:
            raise InvalidTunnelSpec(
                f"remotePort is required for {self.type.value} forwarding", self.tunnel_id)
        self.remote_port = _check_port("remotePort", self.remote_port, self.tunnel_id)

        if self.type is ForwardingType.LOCAL and not self.remote_host:
            raise InvalidTunnelSpec("remoteHost is required for local forwarding", self.tunnel_id)
        if self.type is ForwardingType.REMOTE and not self.remote_host:
            # Remote forwarding delivers to the local machine by default
            self.remote_host = DEFAULT_BIND_ADDRESS

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TunnelSpec":
        """Build a spec from camelCase or snake_case keys, ignoring unknown keys."""
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _SPEC_ALIASES.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                kwargs[name] = value

        tunnel_id = kwargs.get("tunnel_id")
        if "type" not in kwargs:
            raise UnknownForwardingType(None, tunnel_id)
        # Reject the type before complaining about anything else
        kwargs["type"] = ForwardingType.parse(kwargs["type"], tunnel_id)

        missing = [name for name in ("tunnel_id", "local_port", "hostname") if name not in kwargs]
        if missing:
            raise InvalidTunnelSpec(f"Missing required fields: {', '.join(missing)}", tunnel_id)

        return cls(**kwargs)

    @property
    def destination(self) -> str:
        if self.type is ForwardingType.DYNAMIC:
            return "dynamic"
        return f"{self.remote_host}:{self.remote_port}"

    def target(self) -> Tuple[str, int]:
        """
        Fixed destination of a local or remote tunnel.

        Raises:
            InvalidTunnelSpec: For dynamic tunnels, which have none
        """
        if self.remote_host is None or self.remote_port is None:
            raise InvalidTunnelSpec(
                f"{self.type.value} forwarding has no fixed destination", self.tunnel_id)
        return self.remote_host, self.remote_port

    def describe(self) -> str:
        """Human readable one-line description used in log messages."""
        if self.type is ForwardingType.LOCAL:
            return f"local {self.bind_address}:{self.local_port} -> {self.destination}"
        if self.type is ForwardingType.REMOTE:
            return f"remote {self.bind_address}:{self.local_port} -> local {self.destination}"
        return f"SOCKS5 proxy on {self.bind_address}:{self.local_port}"


@dataclass
class StatusUpdate:
    """One lifecycle notification for a tunnel."""
    tunnel_id: str
    status: TunnelStatus
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"tunnelId": self.tunnel_id, "status": self.status.value}
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class TunnelRecord:
    """Registry entry owning the live resources of one tunnel."""
    spec: TunnelSpec
    status: TunnelStatus = TunnelStatus.CONNECTING
    transport: Optional["ITransport"] = None
    forwarder: Optional["IForwarder"] = None
    caller: Any = None
    created_at: float = field(default_factory=time.time)
    activated_at: Optional[float] = None
    last_error: Optional[str] = None

    @property
    def tunnel_id(self) -> str:
        return self.spec.tunnel_id

    @property
    def type(self) -> ForwardingType:
        return self.spec.type

    def summary(self) -> "TunnelSummary":
        return TunnelSummary(self.tunnel_id, self.type, self.status)


@dataclass
class StartResult:
    tunnel_id: str
    success: bool = True
    bound_port: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"tunnelId": self.tunnel_id, "success": self.success}
        if self.bound_port is not None:
            result["boundPort"] = self.bound_port
        return result


@dataclass
class StopResult:
    tunnel_id: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"tunnelId": self.tunnel_id, "success": self.success}
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class StatusResult:
    tunnel_id: str
    status: TunnelStatus
    type: Optional[ForwardingType] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"tunnelId": self.tunnel_id, "status": self.status.value}
        if self.type is not None:
            result["type"] = self.type.value
        return result


@dataclass
class TunnelSummary:
    tunnel_id: str
    type: ForwardingType
    status: TunnelStatus

    def to_dict(self) -> Dict[str, Any]:
        return {"tunnelId": self.tunnel_id, "type": self.type.value, "status": self.status.value}
