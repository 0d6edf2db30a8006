"""Health check and monitoring endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health(request: Request) -> dict:
    """Basic health check."""
    service = request.app.state.service
    return {
        "status": "ok",
        "version": "0.1.0",
        "uptime_seconds": service.stats.uptime(),
        "sessions": service.session_count,
        "drones": len(service.fleet),
        "timers_running": service.timers_running,
    }


@router.get("/stats")
async def stats(request: Request) -> dict:
    """Server counters: frames, rejections, broadcasts, ticks and sessions."""
    return request.app.state.service.stats.snapshot()


@router.get("/state")
async def state(request: Request) -> dict:
    """Current base position, tunables and drones.

    Same content as the init heartbeat, for clients that only speak HTTP.
    """
    service = request.app.state.service
    target = service.base_target
    return {
        "basePosition": service.base_position.to_dict(),
        "baseTarget": target.to_dict() if target else None,
        "config": service.settings.to_dict(),
        "drones": service.fleet.to_list(),
    }
