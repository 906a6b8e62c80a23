"""
Logging infrastructure: loguru sinks fed by standard library loggers.
"""

from .setup import setup_logging, InterceptHandler

__all__ = [
    "setup_logging",
    "InterceptHandler",
]
