"""Baseline configuration catalog for first-seen devices.

The built-in entries match the collector ConfigMaps deployed alongside the
reference supervisors.  A directory of ``<device-id>.yaml`` files can overlay
them (``FLEETD_DEFAULT_CONFIG_DIR``).
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

NO_DEFAULT_CONFIG = "# No default configuration available"

_PIPELINE_TEMPLATE = """receivers:
  otlp:
    protocols:
      grpc:
        endpoint: 0.0.0.0:4317
      http:
        endpoint: 0.0.0.0:4318
processors:
  batch:
    timeout: 1s
    send_batch_size: 1024
exporters:
  debug:
    verbosity: detailed
service:
  pipelines:
    {signal}:
      receivers: [otlp]
      processors: [batch]
      exporters: [debug]
  telemetry:
    logs:
      level: info"""

BUILTIN_CONFIGS: dict[str, str] = {
    "device-1": _PIPELINE_TEMPLATE.format(signal="logs"),
    "device-2": _PIPELINE_TEMPLATE.format(signal="metrics"),
    "device-3": _PIPELINE_TEMPLATE.format(signal="traces"),
}


class DefaultConfigCatalog:
    """Static lookup from device identity to a baseline config document."""

    def __init__(self, configs: dict[str, str] | None = None) -> None:
        self._configs: dict[str, str] = dict(BUILTIN_CONFIGS if configs is None else configs)

    @classmethod
    def from_directory(cls, path: str | Path | None) -> DefaultConfigCatalog:
        """Built-in catalog overlaid with ``*.yaml`` / ``*.yml`` files in *path*."""
        catalog = cls()
        if not path:
            return catalog
        path = Path(path)
        if not path.is_dir():
            logger.warning("Default config directory not found at %s, using built-ins", path)
            return catalog
        for file in sorted(path.iterdir()):
            if file.suffix not in (".yaml", ".yml") or not file.is_file():
                continue
            catalog._configs[file.stem] = file.read_text()
            logger.info("Loaded default config for %s from %s", file.stem, file)
        return catalog

    def lookup(self, device_id: str) -> str:
        """Return the baseline config, or the sentinel document on a miss."""
        return self._configs.get(device_id, NO_DEFAULT_CONFIG)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._configs

    def __len__(self) -> int:
        return len(self._configs)
