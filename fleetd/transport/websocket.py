"""WebSocket endpoint for the agent channel.

Each accepted socket becomes an :class:`AgentSession`, the opaque handle the
registry stores as an agent's active connection.  Frames are decoded here and
handed to the :class:`~fleetd.events.ConnectionEventAdapter`; the returned
acknowledgement is written back on the same socket.

Report handling takes the registry's ``threading`` lock, so it runs in the
default executor.  Disconnect bookkeeping stays inline in the ``finally``
block so it completes even when the handler task is cancelled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid

from fastapi import WebSocket, WebSocketDisconnect

from fleetd.events import ConnectionEventAdapter
from fleetd.models import ServerToAgent
from fleetd.transport.protocol import ProtocolError, decode_report, encode_message, error_frame

logger = logging.getLogger(__name__)


class AgentSession:
    """One physical agent connection."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.session_id = f"sess-{uuid.uuid4().hex[:8]}"
        self.connected_at = time.time()
        self.last_report = 0.0
        self._send_lock = asyncio.Lock()

    async def send(self, message: ServerToAgent) -> None:
        """Encode and send a message; raises if the socket is gone."""
        await self.send_json(encode_message(message))

    async def send_json(self, frame: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(frame)

    def __repr__(self) -> str:
        client = self.websocket.client
        peer = f"{client.host}:{client.port}" if client else "?"
        return f"<AgentSession {self.session_id} {peer}>"


class AgentWebSocketEndpoint:
    """Serves the agent channel for one adapter.

    Mount it in FastAPI via::

        app.add_api_websocket_route("/v1/opamp", endpoint.handle)
    """

    def __init__(self, adapter: ConnectionEventAdapter, report_timeout: float | None = None) -> None:
        self.adapter = adapter
        self.report_timeout = report_timeout
        self._sessions: dict[str, AgentSession] = {}

    def get_sessions(self) -> dict[str, AgentSession]:
        """Return all currently open sessions."""
        return self._sessions.copy()

    async def handle(self, websocket: WebSocket) -> None:
        await websocket.accept()
        session = AgentSession(websocket)
        self._sessions[session.session_id] = session
        self.adapter.on_connected(session)

        try:
            while True:
                text = await self._receive(websocket)
                await self._handle_frame(session, text)

        except WebSocketDisconnect:
            logger.info("Agent session %s disconnected", session.session_id)
        except asyncio.TimeoutError:
            logger.warning(
                "Agent session %s idle for %.0fs, closing",
                session.session_id, self.report_timeout,
            )
            await websocket.close()
        except Exception:
            logger.exception("Error in agent WebSocket session %s", session.session_id)
        finally:
            self._sessions.pop(session.session_id, None)
            self.adapter.on_connection_closed(session)

    async def _receive(self, websocket: WebSocket) -> str:
        if self.report_timeout:
            return await asyncio.wait_for(websocket.receive_text(), timeout=self.report_timeout)
        return await websocket.receive_text()

    async def _handle_frame(self, session: AgentSession, text: str) -> None:
        try:
            raw = json.loads(text)
            report = decode_report(raw)
        except (json.JSONDecodeError, ProtocolError) as e:
            logger.warning("Bad frame from %s: %s", session.session_id, e)
            await session.send_json(error_frame(str(e)))
            return

        session.last_report = time.time()
        loop = asyncio.get_running_loop()
        ack = await loop.run_in_executor(None, self.adapter.on_report_received, session, report)
        await session.send(ack)
