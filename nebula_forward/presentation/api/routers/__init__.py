"""
API router modules for different endpoints.

This module contains all the API route handlers organized by functionality.
"""

from . import events, health, tunnels

__all__ = [
    "events",
    "health",
    "tunnels",
]
