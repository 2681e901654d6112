"""Server configuration, read from ``FLEETD_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return None


@dataclass
class ServerSettings:
    """Fleetd server settings."""

    host: str = "0.0.0.0"
    port: int = 4321
    ws_path: str = "/v1/opamp"
    log_level: str = "INFO"
    default_config_dir: str | None = None
    report_timeout: float | None = None  # seconds; None waits forever

    @classmethod
    def from_env(cls) -> ServerSettings:
        return cls(
            host=os.environ.get("FLEETD_HOST", cls.host),
            port=int(os.environ.get("FLEETD_PORT", str(cls.port))),
            ws_path=os.environ.get("FLEETD_WS_PATH", cls.ws_path),
            log_level=os.environ.get("FLEETD_LOG_LEVEL", cls.log_level).upper(),
            default_config_dir=os.environ.get("FLEETD_DEFAULT_CONFIG_DIR") or None,
            report_timeout=_env_float("FLEETD_REPORT_TIMEOUT"),
        )
