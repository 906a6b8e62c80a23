"""
Lifecycle management interfaces for components that need startup/shutdown behavior.

The application startup sequence starts components in order and stops them
in reverse, so every long-lived service (event bus, tunnel manager) exposes
the same small lifecycle surface.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class IStartable(ABC):
    """Interface for components that can be started."""

    @abstractmethod
    async def start(self) -> None:
        """
        Start the component.

        Raises:
            Exception: If the component fails to start.
        """
        pass


class IStoppable(ABC):
    """Interface for components that can be stopped."""

    @abstractmethod
    async def stop(self) -> None:
        """
        Stop the component and release every resource it owns.

        Implementations must not raise for resources that fail to close;
        they log the failure and keep releasing the rest.
        """
        pass


class IHealthCheckable(ABC):
    """Interface for components that can report their health status."""

    @abstractmethod
    async def check_health(self) -> Dict[str, Any]:
        """
        Check the health status of the component.

        Returns:
            Dict with at least:
            - 'healthy': bool
            - 'status': str describing current status
            - 'details': Dict with component specific details
        """
        pass


class IConfigurable(ABC):
    """Interface for components that can be reconfigured at runtime."""

    @abstractmethod
    async def configure(self, config: Dict[str, Any]) -> None:
        """
        Apply configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        pass


class IComponent(IStartable, IStoppable, IHealthCheckable, IConfigurable):
    """Base interface for all major system components."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the component name."""
        pass
