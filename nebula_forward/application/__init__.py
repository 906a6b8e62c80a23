"""
Application layer containing startup logic.

This layer wires the core services to the infrastructure and manages the
application lifecycle.
"""

from .startup import ApplicationServices, ApplicationStartup

__all__ = [
    "ApplicationServices",
    "ApplicationStartup",
]
