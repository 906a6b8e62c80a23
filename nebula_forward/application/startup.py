"""
Application startup and shutdown logic.

This module builds the application components from configuration, starts
them in dependency order, brings up the tunnels listed in the
configuration and tears everything down again in reverse order.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..core.interfaces.forwarding import TransportFactory
from ..core.interfaces.lifecycle import IComponent, IStartable, IStoppable
from ..core.services.event_bus import EventBus
from ..core.services.status_notifier import StatusNotifier
from ..core.exceptions import TunnelError
from ..infrastructure.config.models import ApplicationConfig
from ..infrastructure.services.forwarding.manager import TunnelManager

logger = logging.getLogger(__name__)


@dataclass
class ApplicationServices:
    """The wired application components shared by the API and the CLI."""

    config: ApplicationConfig
    event_bus: EventBus
    notifier: StatusNotifier
    tunnel_manager: TunnelManager

    def components(self) -> List[IComponent]:
        """Components in startup order."""
        return [self.event_bus, self.tunnel_manager]

    def component_settings(self) -> List[Tuple[IComponent, Dict[str, Any]]]:
        """Runtime settings applied through ``configure`` before startup."""
        forwarding = self.config.forwarding
        return [
            (self.tunnel_manager, {
                "buffer_size": forwarding.buffer_size,
                "default_bind_address": forwarding.default_bind_address,
            }),
        ]


class ApplicationStartup:
    """
    Manages application startup and service wiring.

    Components are started in order and stopped in reverse; if one fails to
    start, the ones already running are stopped before the error propagates.
    """

    def __init__(self, config: ApplicationConfig,
                 transport_factory: Optional[TransportFactory] = None) -> None:
        self._config = config
        self._transport_factory = transport_factory
        self._services: Optional[ApplicationServices] = None
        self._started_components: List[IComponent] = []
        self._boot_results: Dict[str, Any] = {}

    @property
    def services(self) -> ApplicationServices:
        if self._services is None:
            raise RuntimeError("Application services are not configured")
        return self._services

    @property
    def boot_results(self) -> Dict[str, Any]:
        """Outcome of each configured tunnel started at boot."""
        return dict(self._boot_results)

    def configure_services(self) -> ApplicationServices:
        """Create and wire all application services."""
        if self._services is not None:
            return self._services

        logger.info("Configuring application services...")
        config = self._config

        event_bus = EventBus()
        notifier = StatusNotifier(event_bus)
        tunnel_manager = TunnelManager(
            event_bus=event_bus,
            notifier=notifier,
            transport_factory=self._transport_factory,
            ssh_config=config.ssh,
        )

        self._services = ApplicationServices(
            config=config,
            event_bus=event_bus,
            notifier=notifier,
            tunnel_manager=tunnel_manager,
        )
        logger.info("Service configuration completed")
        return self._services

    async def start_application(self, start_tunnels: bool = True) -> None:
        """
        Start all application components in order.

        Args:
            start_tunnels: Also start the tunnels listed under
                ``forwarding.tunnels``; a tunnel that fails is logged and
                skipped
        """
        services = self.configure_services()

        for component, settings in services.component_settings():
            logger.debug(f"Configuring component: {component.name}")
            await component.configure(settings)

        logger.info("Starting application components...")

        for component in services.components():
            try:
                if isinstance(component, IStartable):
                    logger.debug(f"Starting component: {component.name}")
                    await component.start()
                    self._started_components.append(component)
                    logger.info(f"Started component: {component.name}")
            except Exception as e:
                logger.error(f"Failed to start component {component.name}: {e}")
                await self._stop_started_components()
                raise

        if start_tunnels:
            await self._start_configured_tunnels()

        logger.info("Application startup completed successfully")

    async def _start_configured_tunnels(self) -> None:
        manager = self.services.tunnel_manager

        for entry in self._config.forwarding.tunnels:
            tunnel_id = entry.get("tunnelId") or entry.get("tunnel_id") or "<unnamed>"
            try:
                result = await manager.start_tunnel(entry)
                self._boot_results[tunnel_id] = result.to_dict()
            except TunnelError as e:
                logger.error(f"Configured tunnel {tunnel_id} failed to start: {e}")
                self._boot_results[tunnel_id] = {"success": False, "error": str(e)}

    async def stop_application(self) -> None:
        """Stop all components in reverse order."""
        if not self._started_components:
            return

        logger.info("Stopping application components...")
        await self._stop_started_components()
        logger.info("Application shutdown completed")

    async def _stop_started_components(self) -> None:
        for component in reversed(self._started_components):
            try:
                if isinstance(component, IStoppable):
                    logger.debug(f"Stopping component: {component.name}")
                    await component.stop()
                    logger.info(f"Stopped component: {component.name}")
            except Exception as e:
                # Continue stopping other components
                logger.error(f"Error stopping component {component.name}: {e}")

        self._started_components.clear()
