"""WebSocket client for agents and supervisors.

Handles the agent side of the channel:
  Agent → Server: AGENT_TO_SERVER status reports
  Server → Agent: SERVER_TO_AGENT acknowledgements and remote config, ERROR

Usage::

    client = FleetAgentClient("ws://localhost:4321/v1/opamp", name="supervisor")
    client.set_devices(["device-1", "device-2"])
    client.on_remote_config(apply_config)
    await client.connect()
    await client.listen()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

import websockets
from websockets.asyncio.client import ClientConnection

from fleetd.identity import new_instance_uid, uid_to_identity
from fleetd.models import DEFAULT_CONTENT_TYPE, ConfigFile
from fleetd.transport.protocol import (
    ERROR,
    SERVER_TO_AGENT,
    ProtocolError,
    decode_message,
    encode_report,
)

logger = logging.getLogger(__name__)

RemoteConfigHandler = Callable[[str, ConfigFile], Awaitable[None]]


class FleetAgentClient:
    """Connects one agent (or supervisor) to a Fleetd server."""

    def __init__(
        self,
        server_url: str,
        name: str | None = None,
        instance_uid: bytes | None = None,
    ):
        self.server_url = server_url
        self.name = name
        self.instance_uid = instance_uid or new_instance_uid()

        self._ws: Optional[ClientConnection] = None
        self._devices: list[str] | None = None
        self._effective_config: dict[str, ConfigFile] = {}
        self._handler: RemoteConfigHandler | None = None
        self._connected = False
        self._reconnect_delay = 2
        self._max_reconnect_delay = 60

    @property
    def identity(self) -> str:
        return uid_to_identity(self.instance_uid)

    def on_remote_config(self, handler: RemoteConfigHandler) -> None:
        """Register the coroutine called as ``handler(device_id, config_file)``."""
        self._handler = handler

    def set_devices(self, device_ids: list[str] | None) -> None:
        """Devices reported in the next status report (supervisors only)."""
        self._devices = list(device_ids) if device_ids is not None else None

    def set_effective_config(self, key: str, body: str, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        self._effective_config[key] = ConfigFile(body=body.encode("utf-8"), content_type=content_type)

    def build_report(self) -> dict:
        return encode_report(
            self.instance_uid,
            agent_name=self.name,
            device_ids=self._devices,
            effective_config=self._effective_config or None,
        )

    async def connect(self) -> bool:
        """Connect and send an initial status report."""
        try:
            self._ws = await websockets.connect(
                self.server_url,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            )
            await self.send_report()
            self._connected = True
            self._reconnect_delay = 2
            logger.info("Connected to %s as %s", self.server_url, self.identity)
            return True
        except Exception:
            logger.exception("Failed to connect to %s", self.server_url)
            return False

    async def send_report(self) -> None:
        if self._ws:
            await self._ws.send(json.dumps(self.build_report()))

    async def listen(self) -> None:
        """Dispatch server messages until the connection closes."""
        if not self._ws:
            return
        try:
            async for raw in self._ws:
                await self._dispatch(json.loads(raw))
        except websockets.ConnectionClosed:
            logger.info("Server connection closed")
        except Exception:
            logger.exception("WebSocket listen error")
        finally:
            self._connected = False

    async def _dispatch(self, msg: dict) -> None:
        msg_type = msg.get("type", "")
        if msg_type == ERROR:
            logger.warning("Server rejected frame: %s", msg.get("detail"))
            return
        if msg_type != SERVER_TO_AGENT:
            logger.debug("Unhandled message type: %s", msg_type)
            return
        try:
            message = decode_message(msg)
        except ProtocolError as e:
            logger.warning("Undecodable server message: %s", e)
            return
        if not message.remote_config:
            return
        for device_id, config in message.remote_config.items():
            logger.info("Remote config for %s (%d bytes)", device_id, len(config.body))
            self._effective_config[device_id] = config
            if self._handler:
                try:
                    await self._handler(device_id, config)
                except Exception:
                    logger.exception("Remote config handler failed for %s", device_id)
        # Report the new effective config back.
        await self.send_report()

    async def disconnect(self) -> None:
        if self._ws:
            await self._ws.close()
            self._ws = None
        self._connected = False

    async def reconnect_loop(self) -> None:
        """Keep trying to reconnect with exponential backoff."""
        while True:
            if not self._connected:
                logger.info("Reconnecting in %ds...", self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)
                success = await self.connect()
                if not success:
                    self._reconnect_delay = min(
                        self._reconnect_delay * 2, self._max_reconnect_delay
                    )
            else:
                await asyncio.sleep(5)

    @property
    def connected(self) -> bool:
        return self._connected
