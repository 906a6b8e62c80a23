"""
In-process core services: the event bus and the tunnel status notifier.
"""

from .event_bus import EventBus
from .status_notifier import StatusNotifier

__all__ = [
    "EventBus",
    "StatusNotifier",
]
