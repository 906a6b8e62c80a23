"""
Health check API endpoints.

This module provides health check endpoints for monitoring
application and component status.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ....application.startup import ApplicationServices
from ....infrastructure.config.models import ApplicationConfig
from ..dependencies import get_config, get_services

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("")
async def health_check(
    services: ApplicationServices = Depends(get_services),
    config: ApplicationConfig = Depends(get_config)
) -> Dict[str, Any]:
    """
    Health check with component status.

    The application is reported ``degraded`` when any component is unhealthy.
    """
    components_health = {}
    overall_healthy = True

    for component in services.components():
        try:
            health_info = await component.check_health()
        except Exception as e:
            health_info = {
                "healthy": False,
                "status": "error",
                "details": {"error": str(e)}
            }
        components_health[component.name] = health_info

        if not health_info.get("healthy", True):
            overall_healthy = False

    return {
        "status": "healthy" if overall_healthy else "degraded",
        "timestamp": _now(),
        "application": {
            "name": config.name,
            "version": config.version,
            "environment": config.environment
        },
        "tunnels": len(services.tunnel_manager.list_tunnels()),
        "components": components_health
    }


@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    """Simple endpoint to indicate the application is running."""
    return {
        "alive": True,
        "timestamp": _now()
    }
