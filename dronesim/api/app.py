"""FastAPI application factory.

The app holds no globals: the service it serves is passed in and kept on
``app.state.service``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI

from dronesim.api.monitoring import router as monitoring_router
from dronesim.api.ws import router as ws_router

if TYPE_CHECKING:
    from dronesim.core.service import DroneService


def create_app(service: DroneService) -> FastAPI:
    app = FastAPI(
        title="dronesim",
        description="Drone fleet simulation and command server",
        version="0.1.0",
    )
    app.state.service = service
    app.include_router(ws_router)
    app.include_router(monitoring_router)
    return app
