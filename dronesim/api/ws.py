"""WebSocket endpoint — the observer/command transport.

Thin adapter: accepts the connection, registers a session, pumps queued
outbound frames, and hands inbound frames to the service.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketState

if TYPE_CHECKING:
    from dronesim.core.service import DroneService
    from dronesim.core.session import Session

router = APIRouter()

log = structlog.get_logger()


async def _pump(service: DroneService, session: Session, websocket: WebSocket) -> None:
    try:
        await session.pump(websocket.send_text)
    except Exception:
        # Socket fault on send: drop only this session.
        log.warning("session_send_failed", session=session.id, exc_info=True)
        service.disconnect(session)
        return

    # Session closed by the server (shutdown); wakes the reader.
    if (websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED):
        await websocket.close()


@router.websocket("/")
@router.websocket("/ws")
async def observer_socket(websocket: WebSocket) -> None:
    service: DroneService = websocket.app.state.service

    await websocket.accept()
    peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else ""
    session = service.connect(peer)
    writer = asyncio.create_task(_pump(service, session, websocket))

    try:
        while not session.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            service.handle_frame(session, raw)
    except Exception:
        log.warning("session_receive_failed", session=session.id, exc_info=True)
    finally:
        service.disconnect(session)
        if not writer.done():
            writer.cancel()
