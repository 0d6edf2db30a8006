"""Process-boundary lifecycle: listener, uvicorn, and the simulation timers.

``DroneServer`` is constructed and owned by its caller; there is no
module-level instance.
"""

from __future__ import annotations

import asyncio
import socket
from typing import Any, Callable

import structlog
import uvicorn

from dronesim.api.app import create_app
from dronesim.config import AppConfig
from dronesim.core.service import DroneService
from dronesim.errors import TransportError

log = structlog.get_logger()

STARTUP_POLL_SECONDS = 0.01


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


class DroneServer:
    """WebSocket server around a DroneService.

    ``start()`` returns once the listener is bound and both timers run;
    ``stop()`` is idempotent and returns once everything is released.
    """

    def __init__(self, config: AppConfig | None = None, service: DroneService | None = None) -> None:
        self.config = config or AppConfig()
        sim = self.config.simulation
        if service is None:
            service = DroneService(sim.base_position, sim.to_settings())
            if sim.initial_drone_count:
                service.fleet.set_count(sim.initial_drone_count)
        self.service = service
        self.app = create_app(service)

        self._uvicorn: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._socket: socket.socket | None = None

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None

    @property
    def port(self) -> int:
        """Bound port (resolves a configured port of 0), or the configured one."""
        if self._socket is not None:
            return self._socket.getsockname()[1]
        return self.config.server.port

    @property
    def client_count(self) -> int:
        return self.service.session_count

    def subscribe(self, observer: Callable[[str, Any], None]) -> None:
        self.service.subscribe(observer)

    def unsubscribe(self, observer: Callable[[str, Any], None]) -> None:
        self.service.unsubscribe(observer)

    async def start(self) -> None:
        if self._serve_task is not None:
            raise RuntimeError("Server is already running")

        host, port = self.config.server.host, self.config.server.port
        try:
            sock = _bind_socket(host, port)
        except OSError as e:
            log.error("server_bind_failed", host=host, port=port, error=str(e))
            self.service.emit("error", e)
            raise TransportError(f"cannot listen on {host}:{port}: {e}") from e

        server = uvicorn.Server(uvicorn.Config(
            self.app,
            log_config=None,
            lifespan="off",
            timeout_graceful_shutdown=5,
        ))
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                exc = None if task.cancelled() else task.exception()
                log.error("server_start_failed", host=host, port=port, error=str(exc))
                self.service.emit("error", exc)
                raise TransportError(f"server exited during startup on {host}:{port}") from exc
            await asyncio.sleep(STARTUP_POLL_SECONDS)

        self._uvicorn, self._serve_task, self._socket = server, task, sock
        self.service.start_timers()

        log.info("server_started", host=host, port=self.port,
                 url=f"ws://{host}:{self.port}/")
        self.service.emit("started")

    async def stop(self) -> None:
        self.service.shutdown()
        if self._serve_task is None:
            return

        server, task, sock = self._uvicorn, self._serve_task, self._socket
        self._uvicorn = self._serve_task = None

        server.should_exit = True
        try:
            await task
        finally:
            sock.close()
            self._socket = None

        log.info("server_stopped")
        self.service.emit("stopped")

    async def serve_forever(self) -> None:
        """Start if needed and wait until the server exits (e.g. on SIGINT)."""
        if self._serve_task is None:
            await self.start()
        try:
            await asyncio.shield(self._serve_task)
        finally:
            await self.stop()
