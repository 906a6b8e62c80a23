"""
SSH services for the Nebula Forward application.

This module provides the asyncssh-backed transport used by every tunnel.
"""

from .transport import SSHTransport, SSHForwardListener

__all__ = [
    "SSHTransport",
    "SSHForwardListener",
]
