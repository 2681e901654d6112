"""JSON wire format for the agent channel.

Agent → Server:
  AGENT_TO_SERVER   status report (instance uid, description, effective config)

Server → Agent:
  SERVER_TO_AGENT   acknowledgement, optionally carrying remote config
  ERROR             frame could not be decoded

Binary fields (instance uid, config bodies) travel base64-encoded.  This
module is the only place that knows attribute keys; everything past it works
on :class:`~fleetd.models.StatusReport`.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from fleetd.models import DEFAULT_CONTENT_TYPE, ConfigFile, ServerToAgent, StatusReport

logger = logging.getLogger(__name__)

AGENT_TO_SERVER = "AGENT_TO_SERVER"
SERVER_TO_AGENT = "SERVER_TO_AGENT"
ERROR = "ERROR"

SERVICE_NAME_KEY = "service.name"
DEVICE_COUNT_KEY = "device.count"
DEVICE_KEY_PREFIX = "device."


class ProtocolError(Exception):
    """Raised when a frame is not a decodable message."""


def _b64decode(value: Any, field_name: str) -> bytes:
    if not isinstance(value, str):
        raise ProtocolError(f"{field_name} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"{field_name} is not valid base64: {e}") from e


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _attributes(raw: Any) -> list[tuple[str, Any]]:
    """Normalise an attribute list to ``(key, value)`` pairs, dropping junk."""
    if not isinstance(raw, list):
        return []
    pairs: list[tuple[str, Any]] = []
    for attr in raw:
        if isinstance(attr, dict) and isinstance(attr.get("key"), str):
            pairs.append((attr["key"], attr.get("value")))
    return pairs


def decode_report(raw: dict) -> StatusReport:
    """Decode an ``AGENT_TO_SERVER`` frame into a typed report.

    Unknown or wrongly typed attributes are skipped; only a frame that is
    not an agent report at all raises :class:`ProtocolError`.
    """
    if not isinstance(raw, dict) or raw.get("type") != AGENT_TO_SERVER:
        raise ProtocolError(f"Expected {AGENT_TO_SERVER}")

    report = StatusReport()

    if raw.get("instance_uid") is not None:
        try:
            report.instance_uid = _b64decode(raw["instance_uid"], "instance_uid")
        except ProtocolError as e:
            logger.warning("Ignoring instance uid: %s", e)

    description = raw.get("agent_description")
    if isinstance(description, dict):
        for key, value in _attributes(description.get("identifying_attributes")):
            if key == SERVICE_NAME_KEY:
                if isinstance(value, str):
                    report.agent_name = value
                break

        if description.get("non_identifying_attributes") is not None:
            report.device_ids = []
            for key, value in _attributes(description["non_identifying_attributes"]):
                if key == DEVICE_COUNT_KEY:
                    if isinstance(value, int) and not isinstance(value, bool):
                        report.device_count = value
                    else:
                        logger.warning("Ignoring non-integer %s: %r", key, value)
                elif key.startswith(DEVICE_KEY_PREFIX) and len(key) > len(DEVICE_KEY_PREFIX):
                    if not isinstance(value, str) or not value:
                        logger.warning("Ignoring device attribute %s with value %r", key, value)
                    elif value not in report.device_ids:
                        report.device_ids.append(value)

    effective = raw.get("effective_config")
    if isinstance(effective, dict):
        config_map = effective.get("config_map")
        if isinstance(config_map, dict):
            report.effective_config = {}
            for name, file in config_map.items():
                if not isinstance(file, dict):
                    continue
                try:
                    body = _b64decode(file.get("body", ""), f"effective_config[{name}].body")
                except ProtocolError as e:
                    logger.warning("Skipping effective config entry: %s", e)
                    continue
                report.effective_config[name] = ConfigFile(
                    body=body,
                    content_type=file.get("content_type") or DEFAULT_CONTENT_TYPE,
                )

    return report


def encode_report(
    instance_uid: bytes,
    agent_name: str | None = None,
    device_ids: list[str] | None = None,
    effective_config: dict[str, ConfigFile] | None = None,
) -> dict:
    """Build an ``AGENT_TO_SERVER`` frame (the agent side of the codec)."""
    msg: dict[str, Any] = {
        "type": AGENT_TO_SERVER,
        "instance_uid": _b64encode(instance_uid),
    }
    description: dict[str, Any] = {}
    if agent_name is not None:
        description["identifying_attributes"] = [
            {"key": SERVICE_NAME_KEY, "value": agent_name},
        ]
    if device_ids is not None:
        attrs: list[dict[str, Any]] = [{"key": DEVICE_COUNT_KEY, "value": len(device_ids)}]
        attrs.extend(
            {"key": f"{DEVICE_KEY_PREFIX}{i}", "value": device_id}
            for i, device_id in enumerate(device_ids)
        )
        description["non_identifying_attributes"] = attrs
    if description:
        msg["agent_description"] = description
    if effective_config is not None:
        msg["effective_config"] = {
            "config_map": {
                name: {"body": _b64encode(f.body), "content_type": f.content_type}
                for name, f in effective_config.items()
            },
        }
    return msg


def encode_message(message: ServerToAgent) -> dict:
    """Encode a :class:`ServerToAgent` as a ``SERVER_TO_AGENT`` frame."""
    msg: dict[str, Any] = {"type": SERVER_TO_AGENT}
    if message.instance_uid is not None:
        msg["instance_uid"] = _b64encode(message.instance_uid)
    if message.remote_config is not None:
        msg["remote_config"] = {
            "config": {
                "config_map": {
                    name: {"body": _b64encode(f.body), "content_type": f.content_type}
                    for name, f in message.remote_config.items()
                },
            },
        }
    return msg


def decode_message(raw: dict) -> ServerToAgent:
    """Decode a ``SERVER_TO_AGENT`` frame (the agent side of the codec)."""
    if not isinstance(raw, dict) or raw.get("type") != SERVER_TO_AGENT:
        raise ProtocolError(f"Expected {SERVER_TO_AGENT}")
    message = ServerToAgent()
    if raw.get("instance_uid") is not None:
        message.instance_uid = _b64decode(raw["instance_uid"], "instance_uid")
    remote = raw.get("remote_config")
    if isinstance(remote, dict):
        config_map = (remote.get("config") or {}).get("config_map") or {}
        message.remote_config = {
            name: ConfigFile(
                body=_b64decode(f.get("body", ""), f"remote_config[{name}].body"),
                content_type=f.get("content_type") or DEFAULT_CONTENT_TYPE,
            )
            for name, f in config_map.items()
            if isinstance(f, dict)
        }
    return message


def error_frame(detail: str) -> dict:
    return {"type": ERROR, "detail": detail}
