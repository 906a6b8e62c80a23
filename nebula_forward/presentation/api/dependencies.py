"""
FastAPI dependency injection utilities.

This module provides dependency functions for FastAPI routes to access
the application services stored on the app state.
"""

from fastapi import Depends, HTTPException, Request, WebSocket, status
from starlette.requests import HTTPConnection

from ...application.startup import ApplicationServices
from ...core.services.event_bus import EventBus
from ...infrastructure.config.models import ApplicationConfig
from ...infrastructure.services.forwarding.manager import TunnelManager


def get_services(connection: HTTPConnection) -> ApplicationServices:
    """
    Get the wired application services from the request or WebSocket.

    Raises:
        HTTPException: If the services are not available
    """
    services = getattr(connection.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application services not available"
        )
    return services


def get_config(request: Request) -> ApplicationConfig:
    """Get the application configuration from the request."""
    if not hasattr(request.app.state, "config"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application configuration not available"
        )

    return request.app.state.config


def get_tunnel_manager(services: ApplicationServices = Depends(get_services)) -> TunnelManager:
    return services.tunnel_manager


def get_event_bus(services: ApplicationServices = Depends(get_services)) -> EventBus:
    return services.event_bus


def get_ws_event_bus(websocket: WebSocket) -> EventBus:
    return get_services(websocket).event_bus
