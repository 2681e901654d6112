"""Config delivery: push a configuration document to a device.

A device is only reachable through its supervisor, so a push walks the
chain device → supervisor → transport session before anything is sent:

  1. the device exists                      (DeviceNotFound)
  2. the device is connected                (DeviceUnreachable)
  3. its supervisor is a known agent        (SupervisorNotFound)
  4. the supervisor is connected            (SupervisorUnreachable)
  5. the addressed identity is a valid uid  (InvalidIdentity)

The device's config is overwritten as soon as the chain passes, before the
send.  A failed send raises :class:`DeliveryFailed` and leaves that write in
place.
"""

from __future__ import annotations

import asyncio
import logging

from fleetd.errors import (
    DeliveryFailed,
    DeviceNotFound,
    DeviceUnreachable,
    SupervisorNotFound,
    SupervisorUnreachable,
)
from fleetd.identity import identity_to_uid
from fleetd.models import DEFAULT_CONTENT_TYPE, Agent, ConfigFile, Device, ServerToAgent
from fleetd.registry import FleetRegistry

logger = logging.getLogger(__name__)


def validate_push_chain(device_id: str, device: Device | None, supervisor: Agent | None) -> None:
    """Raise the first failing check of the push chain."""
    if device is None:
        raise DeviceNotFound(device_id)
    if not device.connected:
        raise DeviceUnreachable(device_id)
    if supervisor is None:
        raise SupervisorNotFound(device.supervising_agent_id, device_id)
    if not supervisor.connected or supervisor.active_connection is None:
        raise SupervisorUnreachable(supervisor.identity)
    identity_to_uid(supervisor.identity)


def build_remote_config(
    supervisor_id: str, device_id: str, config: str, content_type: str = DEFAULT_CONTENT_TYPE
) -> ServerToAgent:
    """Remote-config message for *supervisor_id*, keyed by the target device."""
    return ServerToAgent(
        instance_uid=identity_to_uid(supervisor_id),
        remote_config={
            device_id: ConfigFile(body=config.encode("utf-8"), content_type=content_type),
        },
    )


class ConfigDelivery:
    """Validated, targeted config pushes through the registry."""

    def __init__(self, registry: FleetRegistry, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        self.registry = registry
        self.content_type = content_type

    async def push_config(self, device_id: str, config: str) -> None:
        """Push *config* to *device_id* via its supervisor.

        Raises a :class:`~fleetd.errors.ConfigPushError` subclass on failure.
        """
        loop = asyncio.get_running_loop()
        target = await loop.run_in_executor(
            None, self.registry.stage_config_push, device_id, config, validate_push_chain
        )
        message = build_remote_config(
            target.supervisor_id, device_id, config, self.content_type
        )

        try:
            await target.connection.send(message)
        except Exception as e:
            logger.error(
                "Failed to send config to device %s via supervisor %s: %s",
                device_id, target.supervisor_id, e,
            )
            raise DeliveryFailed(device_id, target.supervisor_id, e) from e

        logger.info(
            "Successfully pushed config to device %s via supervisor %s",
            device_id, target.supervisor_id,
        )
