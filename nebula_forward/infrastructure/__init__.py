"""
Infrastructure layer containing external dependencies and I/O operations.

This layer handles configuration, logging, the SSH transport and the
forwarding services built on top of it.
"""

from .config.loader import ConfigLoader
from .config.models import ApplicationConfig
from .logging.setup import setup_logging

__all__ = [
    "ConfigLoader",
    "ApplicationConfig",
    "setup_logging",
]
