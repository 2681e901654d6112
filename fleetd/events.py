"""Connection event adapter.

The transport calls these three entry points; they translate connection
events and decoded status reports into registry operations.
"""

from __future__ import annotations

import logging
from typing import Any

from fleetd.errors import InvalidIdentity
from fleetd.identity import uid_to_identity
from fleetd.models import ServerToAgent, StatusReport
from fleetd.registry import FleetRegistry

logger = logging.getLogger(__name__)

# Effective-config key an agent uses for its own running config.
SELF_CONFIG_KEY = ""


class ConnectionEventAdapter:
    """Transport callbacks bound to one registry."""

    def __init__(self, registry: FleetRegistry) -> None:
        self.registry = registry

    def on_connected(self, session: Any) -> None:
        logger.info("New connection established: %s", session)

    def on_report_received(self, session: Any, report: StatusReport) -> ServerToAgent:
        """Apply a status report and return the acknowledgement."""
        ack = ServerToAgent(instance_uid=report.instance_uid)

        if report.instance_uid is None:
            logger.warning("Report without instance uid from %s, not registered", session)
            return ack
        try:
            agent_id = uid_to_identity(report.instance_uid)
        except InvalidIdentity as e:
            logger.warning("Report with unusable instance uid from %s: %s", session, e)
            return ack

        logger.debug("Received message from agent: %s", agent_id)

        agent = self.registry.register_or_update(
            agent_id,
            report.agent_name,
            report.is_supervisor,
            session,
        )

        if report.effective_config:
            self.registry.apply_effective_config(report.effective_config)
            if not agent.is_supervisor:
                own = report.effective_config.get(SELF_CONFIG_KEY) or report.effective_config.get(agent_id)
                if own is not None:
                    self.registry.set_reported_config(agent_id, own.text())

        if agent.is_supervisor and report.device_ids is not None:
            if report.device_count is not None and report.device_count != len(report.device_ids):
                logger.warning(
                    "Supervisor %s reports device.count=%d but lists %d devices",
                    agent_id, report.device_count, len(report.device_ids),
                )
            result = self.registry.reconcile_supervised_devices(agent_id, report.device_ids)
            logger.info(
                "Supervisor %s reports %d devices: %s (new=%d, disconnected=%d)",
                agent_id, len(report.device_ids), report.device_ids,
                len(result.registered), len(result.disconnected),
            )

        return ack

    def on_connection_closed(self, session: Any) -> None:
        logger.info("Connection closed: %s", session)
        self.registry.mark_disconnected(session)
