"""REST API for operators.

  GET  /api/agents                 — all agents
  GET  /api/agents/{id}[/config]   — one agent's name and reported config
  GET  /api/devices                — all devices
  GET  /api/devices/{id}[/config]  — one device's name and config
  POST /api/devices/config         — push a config to a device
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from fleetd.delivery import ConfigDelivery
from fleetd.errors import ConfigPushError
from fleetd.registry import FleetRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["fleet"])

_PUSH_ERROR_STATUS = {
    "DeviceNotFound": 404,
    "SupervisorNotFound": 404,
    "DeviceUnreachable": 409,
    "SupervisorUnreachable": 409,
    "InvalidIdentity": 400,
    "DeliveryFailed": 502,
}


def get_registry(request: Request) -> FleetRegistry:
    return request.app.state.registry


def get_delivery(request: Request) -> ConfigDelivery:
    return request.app.state.delivery


class PushConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field("", alias="deviceId")
    # Older dashboards sent the target as ``agentId``.
    agent_id: str = Field("", alias="agentId")
    config: str = ""


# ── Agents ────────────────────────────────────────────────────────


@router.get("/agents")
def list_agents(registry: FleetRegistry = Depends(get_registry)):
    return {"agents": [a.to_dict() for a in registry.list_agents()]}


@router.get("/agents/{agent_id}")
@router.get("/agents/{agent_id}/config")
def get_agent(agent_id: str, registry: FleetRegistry = Depends(get_registry)):
    agent = registry.get_agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return {"id": agent.identity, "name": agent.display_name, "config": agent.reported_config}


# ── Devices ───────────────────────────────────────────────────────


@router.get("/devices")
def list_devices(registry: FleetRegistry = Depends(get_registry)):
    return {"devices": [d.to_dict() for d in registry.list_devices()]}


@router.post("/devices/config")
async def push_config(
    req: PushConfigRequest,
    delivery: ConfigDelivery = Depends(get_delivery),
):
    device_id = req.device_id or req.agent_id
    if not device_id:
        raise HTTPException(status_code=400, detail="deviceId is required")

    try:
        await delivery.push_config(device_id, req.config)
    except ConfigPushError as e:
        logger.warning("Config push to %s rejected: %s", device_id, e)
        return JSONResponse(
            status_code=_PUSH_ERROR_STATUS.get(e.kind, 500),
            content={"error": e.message, "kind": e.kind},
        )

    return {"success": True, "message": "Configuration pushed successfully to device"}


@router.get("/devices/{device_id}")
@router.get("/devices/{device_id}/config")
def get_device(device_id: str, registry: FleetRegistry = Depends(get_registry)):
    device = registry.get_device(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return {"id": device.identity, "name": device.display_name, "config": device.config}
