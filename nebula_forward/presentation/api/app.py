"""
FastAPI application factory and configuration.

This module creates and configures the FastAPI application with
middleware, tunnel error mapping and route registration. The application
lifespan starts and stops the wired services, so whichever server runs
the app owns the event loop the tunnels live on.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Type

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ...application.startup import ApplicationStartup
from ...core.exceptions import (
    AuthenticationFailure, BindFailure, DuplicateTunnel, InvalidTunnelSpec,
    TunnelError, TunnelNotFound, UnknownForwardingType
)
from ...infrastructure.config.models import ApplicationConfig
from .middleware import ErrorHandlerMiddleware, RequestTimingMiddleware
from .routers import events, health, tunnels

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: Dict[Type[TunnelError], int] = {
    UnknownForwardingType: status.HTTP_400_BAD_REQUEST,
    InvalidTunnelSpec: status.HTTP_400_BAD_REQUEST,
    TunnelNotFound: status.HTTP_404_NOT_FOUND,
    DuplicateTunnel: status.HTTP_409_CONFLICT,
    BindFailure: status.HTTP_409_CONFLICT,
    AuthenticationFailure: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(error: TunnelError) -> int:
    """HTTP status for a tunnel error, resolved along its class hierarchy."""
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def tunnel_error_handler(request: Request, exc: TunnelError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")

    content = {
        "success": False,
        "error": exc.message,
        "errorType": type(exc).__name__,
    }
    if exc.tunnel_id is not None:
        content["tunnelId"] = exc.tunnel_id
    return JSONResponse(status_code=status_code, content=content)


def create_app(config: ApplicationConfig, startup: Optional[ApplicationStartup] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application configuration
        startup: Application startup manager; one is built from ``config``
            when omitted

    Returns:
        Configured FastAPI application
    """
    startup = startup or ApplicationStartup(config)
    services = startup.configure_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Application starting up...")
        await startup.start_application()
        try:
            yield
        finally:
            logger.info("Application shutting down...")
            await startup.stop_application()

    app = FastAPI(
        title=config.name,
        version=config.version,
        description="SSH tunnel manager with local, remote and dynamic (SOCKS5) forwarding",
        debug=config.debug,
        lifespan=lifespan
    )

    app.state.config = config
    app.state.startup = startup
    app.state.services = services

    _configure_middleware(app, config)
    app.add_exception_handler(TunnelError, tunnel_error_handler)
    _register_routes(app)

    logger.info(f"FastAPI application created: {config.name} v{config.version}")
    return app


def _configure_middleware(app: FastAPI, config: ApplicationConfig) -> None:
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.debug("Middleware configured")


def _register_routes(app: FastAPI) -> None:
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(tunnels.router)
    app.include_router(events.router, prefix="/ws", tags=["websocket"])

    @app.get("/", tags=["root"])
    async def root() -> Dict[str, str]:
        """Root endpoint with basic application information."""
        return {
            "name": app.title,
            "version": app.version,
            "status": "running",
            "docs_url": "/docs",
            "health_url": "/health"
        }

    logger.debug("Routes registered")
