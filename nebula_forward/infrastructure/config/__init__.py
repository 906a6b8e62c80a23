"""
Configuration management infrastructure.

Dataclass models with validation plus a loader for YAML/JSON files and
environment overrides.
"""

from .models import ApplicationConfig, SSHConfig, ForwardingConfig, APIConfig, LoggingConfig
from .loader import ConfigLoader

__all__ = [
    "ApplicationConfig",
    "SSHConfig",
    "ForwardingConfig",
    "APIConfig",
    "LoggingConfig",
    "ConfigLoader",
]
