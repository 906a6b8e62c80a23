"""
Tunnel management API router for the Nebula Forward application.

This module exposes start, stop, status, list and stop-all over HTTP.
Tunnel errors raised by the manager are turned into HTTP responses by the
exception handlers registered in ``app.py``.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from ....core.exceptions import TunnelNotFound
from ....infrastructure.services.forwarding.manager import TunnelManager
from ..dependencies import get_tunnel_manager

logger = logging.getLogger(__name__)


class TunnelStartRequest(BaseModel):
    """Tunnel start request; accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    tunnel_id: str = Field(..., alias="tunnelId", min_length=1, description="Caller chosen tunnel id")
    type: str = Field(..., description="Forwarding type: local, remote or dynamic")
    local_port: int = Field(..., alias="localPort", description="Listen port (0 picks a free port)")
    bind_address: Optional[str] = Field(None, alias="bindAddress", description="Listen address")
    remote_host: Optional[str] = Field(None, alias="remoteHost", description="Destination host")
    remote_port: Optional[int] = Field(None, alias="remotePort", description="Destination port")
    hostname: str = Field(..., min_length=1, description="SSH server hostname or IP")
    port: int = Field(default=22, description="SSH server port")
    username: Optional[str] = Field(None, description="SSH username (defaults to root)")
    password: Optional[str] = Field(None, description="Password for authentication")
    private_key: Optional[str] = Field(None, alias="privateKey", description="Private key text")
    passphrase: Optional[str] = Field(None, description="Private key passphrase")


class TunnelDetails(BaseModel):
    """Live details of an active tunnel."""
    tunnelId: str
    type: str
    status: str
    bindAddress: str
    boundPort: Optional[int] = None
    destination: str
    sshHost: str
    activeConnections: Optional[int] = None
    uptime: float = 0.0


router = APIRouter(
    prefix="/api/tunnels",
    tags=["tunnels"],
    responses={
        status.HTTP_400_BAD_REQUEST: {"description": "Invalid tunnel specification"},
        status.HTTP_409_CONFLICT: {"description": "Duplicate tunnel id or bind failure"},
        status.HTTP_502_BAD_GATEWAY: {"description": "SSH connection failed"},
    }
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_tunnel(
    request: TunnelStartRequest,
    manager: TunnelManager = Depends(get_tunnel_manager)
) -> Dict[str, Any]:
    """Start a tunnel and return once it is active."""
    spec = request.model_dump(exclude_none=True)
    result = await manager.start_tunnel(spec)
    return result.to_dict()


@router.get("")
async def list_tunnels(manager: TunnelManager = Depends(get_tunnel_manager)) -> List[Dict[str, Any]]:
    """List every active tunnel."""
    return [summary.to_dict() for summary in manager.list_tunnels()]


@router.post("/stop-all")
async def stop_all_tunnels(manager: TunnelManager = Depends(get_tunnel_manager)) -> Dict[str, Any]:
    """Stop every tunnel."""
    count = len(manager.list_tunnels())
    await manager.stop_all()
    logger.info(f"Stop-all requested through the API ({count} active)")
    return {"success": True, "stopped": count}


@router.get("/{tunnel_id}")
async def get_tunnel_status(
    tunnel_id: str,
    manager: TunnelManager = Depends(get_tunnel_manager)
) -> Dict[str, Any]:
    """Report whether a tunnel is active; unknown ids are reported inactive."""
    return manager.get_status(tunnel_id).to_dict()


@router.get("/{tunnel_id}/details", response_model=TunnelDetails)
async def get_tunnel_details(
    tunnel_id: str,
    manager: TunnelManager = Depends(get_tunnel_manager)
) -> TunnelDetails:
    record = manager.get_tunnel(tunnel_id)
    if record is None:
        raise TunnelNotFound(tunnel_id)

    spec = record.spec
    forwarder = record.forwarder
    return TunnelDetails(
        tunnelId=tunnel_id,
        type=spec.type.value,
        status=record.status.value,
        bindAddress=spec.bind_address,
        boundPort=forwarder.bound_port if forwarder else None,
        destination=spec.destination,
        sshHost=f"{spec.username}@{spec.hostname}:{spec.port}",
        activeConnections=forwarder.active_connections if forwarder else None,
        uptime=time.time() - record.activated_at if record.activated_at else 0.0,
    )


@router.delete("/{tunnel_id}")
async def stop_tunnel(
    tunnel_id: str,
    manager: TunnelManager = Depends(get_tunnel_manager)
) -> Dict[str, Any]:
    """Stop a tunnel; an unknown id yields ``success: false`` with status 200."""
    result = await manager.stop_tunnel(tunnel_id)
    return result.to_dict()
