"""Fleet data model.

Registry entities (:class:`Agent`, :class:`Device`), the typed inbound
:class:`StatusReport` produced by the transport's decoding step, and the
outbound :class:`ServerToAgent` message handed back to the transport.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any

UNKNOWN_AGENT_NAME = "Unknown"
SUPERVISOR_NAME = "supervisor"
DEFAULT_CONTENT_TYPE = "text/yaml"


class ConnectionState(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


# ── Registry entities ─────────────────────────────────────────────


@dataclass
class Agent:
    """A controller process known to the registry."""

    identity: str
    display_name: str = UNKNOWN_AGENT_NAME
    is_supervisor: bool = False
    connection_state: ConnectionState = ConnectionState.CONNECTED
    active_connection: Any = None
    reported_config: str = ""
    managed_device_ids: list[str] = field(default_factory=list)

    @property
    def connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    def snapshot(self) -> Agent:
        """Value copy safe to hand to readers (no transport handle)."""
        return replace(
            self,
            active_connection=None,
            managed_device_ids=list(self.managed_device_ids),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.identity,
            "name": self.display_name,
            "connected": self.connected,
            "config": self.reported_config,
            "is_supervisor": self.is_supervisor,
            "devices": list(self.managed_device_ids),
        }


@dataclass
class Device:
    """A leaf unit reached through its current supervising agent."""

    identity: str
    display_name: str
    supervising_agent_id: str
    config: str
    connection_state: ConnectionState = ConnectionState.CONNECTED

    @property
    def connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    def snapshot(self) -> Device:
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "id": self.identity,
            "name": self.display_name,
            "connected": self.connected,
            "config": self.config,
            "supervisor_id": self.supervising_agent_id,
        }


# ── Messages ──────────────────────────────────────────────────────


@dataclass
class ConfigFile:
    """A configuration document as carried on the wire."""

    body: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass
class StatusReport:
    """Typed view of an inbound agent status report.

    ``device_ids`` is ``None`` when the report carried no device
    enumeration at all, and an empty list when it carried one naming no
    devices.
    """

    instance_uid: bytes | None = None
    agent_name: str | None = None
    device_ids: list[str] | None = None
    device_count: int | None = None
    effective_config: dict[str, ConfigFile] | None = None

    @property
    def is_supervisor(self) -> bool:
        return self.agent_name == SUPERVISOR_NAME


@dataclass
class ServerToAgent:
    """Outbound message: an acknowledgement, optionally with remote config."""

    instance_uid: bytes | None = None
    remote_config: dict[str, ConfigFile] | None = None
