"""Fleet registry: the authoritative in-memory store of agents and devices.

All state lives in one :class:`FleetRegistry`.  Mutations take the
exclusive side of a reader/writer lock covering both maps, reads take the
shared side and hand out value snapshots.  Nothing is ever removed: an
agent or device that goes away is marked ``DISCONNECTED``.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from fleetd.catalog import DefaultConfigCatalog
from fleetd.models import (
    SUPERVISOR_NAME,
    UNKNOWN_AGENT_NAME,
    Agent,
    ConfigFile,
    ConnectionState,
    Device,
)

logger = logging.getLogger(__name__)

PushValidator = Callable[[str, "Device | None", "Agent | None"], None]


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class ReconcileResult:
    """What a supervisor report changed, by device identity."""

    registered: list[str] = field(default_factory=list)
    reconnected: list[str] = field(default_factory=list)
    disconnected: list[str] = field(default_factory=list)


@dataclass
class PushTarget:
    """Where a staged config push must be sent."""

    device_id: str
    supervisor_id: str
    connection: Any


class FleetRegistry:
    """Agents, devices and the supervisor relationship between them."""

    def __init__(self, catalog: DefaultConfigCatalog | None = None) -> None:
        self._catalog = catalog if catalog is not None else DefaultConfigCatalog()
        self._agents: dict[str, Agent] = {}
        self._devices: dict[str, Device] = {}
        self._lock = ReadWriteLock()

    # ── Agents ─────────────────────────────────────────────────────

    def register_or_update(
        self,
        identity: str,
        reported_name: str | None,
        is_supervisor_hint: bool | None = None,
        connection: Any = None,
    ) -> Agent:
        """Create the agent on first sight, otherwise refresh its connection.

        ``display_name`` and ``is_supervisor`` are fixed at first sight, the
        latter by the reported name alone.  A disagreeing
        *is_supervisor_hint* is logged and ignored.
        """
        with self._lock.write():
            agent = self._agents.get(identity)
            if agent is None:
                name = reported_name or UNKNOWN_AGENT_NAME
                is_supervisor = name == SUPERVISOR_NAME
                if is_supervisor_hint is not None and is_supervisor_hint != is_supervisor:
                    logger.warning(
                        "Agent %s named %r: ignoring supervisor hint %s",
                        identity, name, is_supervisor_hint,
                    )
                agent = Agent(
                    identity=identity,
                    display_name=name,
                    is_supervisor=is_supervisor,
                    connection_state=ConnectionState.CONNECTED,
                    active_connection=connection,
                )
                self._agents[identity] = agent
                logger.info(
                    "Registered new agent: %s (%s), supervisor=%s",
                    identity, name, agent.is_supervisor,
                )
            else:
                if not agent.connected:
                    logger.info("Agent reconnected: %s", identity)
                agent.connection_state = ConnectionState.CONNECTED
                agent.active_connection = connection
            return agent.snapshot()

    def set_reported_config(self, identity: str, config: str) -> bool:
        """Record the config an agent says it is running."""
        with self._lock.write():
            agent = self._agents.get(identity)
            if agent is None:
                return False
            agent.reported_config = config
            return True

    def mark_disconnected(self, connection: Any) -> str | None:
        """Disconnect the agent bound to *connection*; return its identity.

        Devices owned by that agent keep their state until the next
        reconciling report.
        """
        with self._lock.write():
            for identity, agent in self._agents.items():
                if agent.active_connection is not None and agent.active_connection is connection:
                    agent.connection_state = ConnectionState.DISCONNECTED
                    agent.active_connection = None
                    logger.info("Agent %s disconnected", identity)
                    return identity
        return None

    # ── Devices ────────────────────────────────────────────────────

    def apply_effective_config(
        self, entries: Mapping[str, ConfigFile | bytes | str]
    ) -> list[str]:
        """Overwrite the config of every known device named in *entries*.

        Entries for devices no supervisor has introduced yet are ignored.
        Returns the identities that were updated.
        """
        updated: list[str] = []
        with self._lock.write():
            for device_id, body in entries.items():
                device = self._devices.get(device_id)
                if device is None:
                    continue
                device.config = _as_text(body)
                updated.append(device_id)
                logger.info(
                    "Updated effective config for device %s (%d bytes)",
                    device_id, len(device.config),
                )
        return updated

    def reconcile_supervised_devices(
        self, supervisor_id: str, reported_device_ids: list[str]
    ) -> ReconcileResult:
        """Bring device ownership and connectivity in line with a supervisor report."""
        result = ReconcileResult()
        reported = list(reported_device_ids)
        with self._lock.write():
            supervisor = self._agents.get(supervisor_id)
            if supervisor is None or not supervisor.is_supervisor:
                logger.warning(
                    "Ignoring device list from %s: not a registered supervisor",
                    supervisor_id,
                )
                return result

            for device_id in reported:
                device = self._devices.get(device_id)
                if device is None:
                    self._devices[device_id] = Device(
                        identity=device_id,
                        display_name=device_id,
                        supervising_agent_id=supervisor_id,
                        config=self._catalog.lookup(device_id),
                        connection_state=ConnectionState.CONNECTED,
                    )
                    result.registered.append(device_id)
                    logger.info(
                        "Registered new device: %s via supervisor %s with default config",
                        device_id, supervisor_id,
                    )
                    continue
                if not device.connected or device.supervising_agent_id != supervisor_id:
                    result.reconnected.append(device_id)
                if device.supervising_agent_id != supervisor_id:
                    logger.info(
                        "Device %s moved from supervisor %s to %s",
                        device_id, device.supervising_agent_id, supervisor_id,
                    )
                device.connection_state = ConnectionState.CONNECTED
                device.supervising_agent_id = supervisor_id

            present = set(reported)
            for device_id, device in self._devices.items():
                if device.supervising_agent_id != supervisor_id or device_id in present:
                    continue
                if device.connected:
                    device.connection_state = ConnectionState.DISCONNECTED
                    result.disconnected.append(device_id)
                    logger.info(
                        "Device %s disconnected from supervisor %s", device_id, supervisor_id
                    )

            supervisor.managed_device_ids = reported
        return result

    def stage_config_push(
        self, device_id: str, config: str, validate: PushValidator
    ) -> PushTarget:
        """Validate and optimistically record a config push in one step.

        *validate* receives ``(device_id, device, supervisor)`` and raises to
        abort; on success the device's config is overwritten before this
        returns, and the caller performs the send outside the lock.
        """
        with self._lock.write():
            device = self._devices.get(device_id)
            supervisor = self._agents.get(device.supervising_agent_id) if device else None
            validate(device_id, device, supervisor)
            device.config = config
            return PushTarget(
                device_id=device_id,
                supervisor_id=supervisor.identity,
                connection=supervisor.active_connection,
            )

    # ── Reads ──────────────────────────────────────────────────────

    def list_agents(self) -> list[Agent]:
        with self._lock.read():
            return [a.snapshot() for a in self._agents.values()]

    def list_devices(self) -> list[Device]:
        with self._lock.read():
            return [d.snapshot() for d in self._devices.values()]

    def get_agent(self, identity: str) -> Agent | None:
        with self._lock.read():
            agent = self._agents.get(identity)
            return agent.snapshot() if agent else None

    def get_device(self, identity: str) -> Device | None:
        with self._lock.read():
            device = self._devices.get(identity)
            return device.snapshot() if device else None

    def counts(self) -> dict[str, int]:
        """Totals for health reporting."""
        with self._lock.read():
            return {
                "agents": len(self._agents),
                "agents_connected": sum(1 for a in self._agents.values() if a.connected),
                "devices": len(self._devices),
                "devices_connected": sum(1 for d in self._devices.values() if d.connected),
            }


def _as_text(body: ConfigFile | bytes | str) -> str:
    if isinstance(body, ConfigFile):
        return body.text()
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body
