"""Fleetd — control-plane server.

Exposes:
  WS   /v1/opamp                   — agent channel (status reports in, acks/config out)
  GET  /api/...                    — operator REST API (see :mod:`fleetd.api`)
  GET  /health                     — liveness check with fleet counts

Start with::

    python -m fleetd.server
    # or
    uvicorn fleetd.server:app --host 0.0.0.0 --port 4321
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request

from fleetd import __version__
from fleetd.api import router as api_router
from fleetd.catalog import DefaultConfigCatalog
from fleetd.config import ServerSettings
from fleetd.delivery import ConfigDelivery
from fleetd.events import ConnectionEventAdapter
from fleetd.registry import FleetRegistry
from fleetd.transport.websocket import AgentWebSocketEndpoint

logger = logging.getLogger(__name__)


def create_app(
    settings: ServerSettings | None = None,
    registry: FleetRegistry | None = None,
) -> FastAPI:
    """Build the FastAPI app with its own registry, delivery and agent endpoint."""
    settings = settings or ServerSettings.from_env()
    if registry is None:
        catalog = DefaultConfigCatalog.from_directory(settings.default_config_dir)
        registry = FleetRegistry(catalog)

    app = FastAPI(title="Fleetd", version=__version__)
    app.state.settings = settings
    app.state.registry = registry
    app.state.delivery = ConfigDelivery(registry)
    app.state.agent_endpoint = AgentWebSocketEndpoint(
        ConnectionEventAdapter(registry),
        report_timeout=settings.report_timeout,
    )

    app.include_router(api_router)
    app.add_api_websocket_route(settings.ws_path, app.state.agent_endpoint.handle)

    @app.get("/health")
    def health(request: Request):
        counts = request.app.state.registry.counts()
        sessions = len(request.app.state.agent_endpoint.get_sessions())
        return {"status": "ok", "sessions": sessions, **counts}

    return app


app = create_app()


def main():
    import uvicorn

    settings = ServerSettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Fleetd on %s:%d (agents on %s)", settings.host, settings.port, settings.ws_path)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
