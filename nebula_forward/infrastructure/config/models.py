"""
Configuration models and data structures.

This module defines the configuration models used throughout the application,
providing type safety and validation for configuration values.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path


@dataclass
class SSHConfig:
    """Settings applied to every SSH transport a tunnel opens."""
    connect_timeout: float = 30.0
    login_timeout: float = 30.0
    keepalive_interval: float = 10.0
    keepalive_count_max: int = 3
    known_hosts: Optional[str] = None
    client_version: str = "Nebula_Forward_1.0"
    compression: bool = False

    def to_asyncssh_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncssh connection kwargs (credentials excluded)."""
        kwargs: Dict[str, Any] = {
            'client_version': self.client_version,
            'connect_timeout': self.connect_timeout,
            'login_timeout': self.login_timeout,
            'keepalive_interval': self.keepalive_interval,
            'keepalive_count_max': self.keepalive_count_max,
            # None disables host key verification
            'known_hosts': self.known_hosts,
        }

        if self.compression:
            kwargs['compression_algs'] = ['zlib@openssh.com', 'zlib']

        return kwargs


@dataclass
class ForwardingConfig:
    """Tunnel manager settings."""
    default_bind_address: str = "127.0.0.1"
    buffer_size: int = 65536
    tunnels: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class APIConfig:
    """HTTP/WebSocket control API settings."""
    host: str = "127.0.0.1"
    port: int = 8765
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = True
    asyncssh_level: str = "WARNING"


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    name: str = "Nebula Forward"
    version: str = "0.1.0"
    debug: bool = False
    environment: str = "production"

    ssh: SSHConfig = field(default_factory=SSHConfig)
    forwarding: ForwardingConfig = field(default_factory=ForwardingConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    config_file_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_ports()
        self._validate_timeouts()
        self._validate_logging()

        if self.forwarding.buffer_size < 1024:
            raise ValueError(
                f"Forwarding buffer size must be at least 1024, got {self.forwarding.buffer_size}")

    def _validate_ports(self) -> None:
        if not (1 <= self.api.port <= 65535):
            raise ValueError(f"API port must be between 1 and 65535, got {self.api.port}")

    def _validate_timeouts(self) -> None:
        timeouts = [
            ("SSH connect timeout", self.ssh.connect_timeout),
            ("SSH login timeout", self.ssh.login_timeout),
        ]

        for name, timeout in timeouts:
            if timeout <= 0:
                raise ValueError(f"{name} must be positive, got {timeout}")

        if self.ssh.keepalive_interval < 0:
            raise ValueError(
                f"SSH keepalive interval cannot be negative, got {self.ssh.keepalive_interval}")

    def _validate_logging(self) -> None:
        levels = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")
        for name, level in (("Log level", self.logging.level),
                            ("asyncssh log level", self.logging.asyncssh_level)):
            if level.upper() not in levels:
                raise ValueError(f"{name} must be one of {', '.join(levels)}, got {level}")

    def ensure_directories(self) -> None:
        """Create the log directory when file logging is enabled."""
        if self.logging.file_enabled:
            path = Path(self.logging.log_directory)
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValueError(f"Cannot create directory {path}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary."""
        return cls(
            name=data.get('name', 'Nebula Forward'),
            version=data.get('version', '0.1.0'),
            debug=data.get('debug', False),
            environment=data.get('environment', 'production'),
            ssh=SSHConfig(**data.get('ssh', {})),
            forwarding=ForwardingConfig(**data.get('forwarding', {})),
            api=APIConfig(**data.get('api', {})),
            logging=LoggingConfig(**data.get('logging', {})),
            config_file_path=data.get('config_file_path'),
        )
