"""Agent channel transport.

  - protocol: JSON frame codec (AGENT_TO_SERVER / SERVER_TO_AGENT)
  - websocket: FastAPI WebSocket endpoint and per-connection sessions
"""

from __future__ import annotations

from fleetd.transport.protocol import ProtocolError, decode_report, encode_message
from fleetd.transport.websocket import AgentSession, AgentWebSocketEndpoint
