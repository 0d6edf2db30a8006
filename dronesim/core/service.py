"""Simulation service — the single owner of fleet, settings and sessions.

Every public method is a synchronous critical section on the event loop
that owns the service: a mutation and the broadcast reflecting it happen
without an intervening ``await``, so command handling, heartbeats and
simulation ticks never interleave. The only awaits live in the periodic
loops (between ticks) and in each session's pump.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import structlog

from dronesim.core.commands import CommandDispatcher, now_ms
from dronesim.core.fleet import FleetStore
from dronesim.core.models import DroneStatus, Position, SimulationSettings
from dronesim.core.session import Session, SessionRegistry
from dronesim.core.stats import ServerStats
from dronesim.errors import ProtocolError

log = structlog.get_logger()

Observer = Callable[[str, Any], None]


def parse_frame(raw: str | bytes) -> tuple[str, Any]:
    """Decode an inbound frame into ``(type, payload)``."""
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        message = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"invalid frame: {e}") from e

    if not isinstance(message, dict):
        raise ProtocolError("frame is not a JSON object")
    message_type = message.get("type")
    if not isinstance(message_type, str):
        raise ProtocolError("frame has no string 'type'")
    return message_type, message.get("payload")


class DroneService:
    """Holds all simulation state and drives it from two periodic timers."""

    def __init__(
        self,
        base_position: Position,
        settings: SimulationSettings | None = None,
        stats: ServerStats | None = None,
    ) -> None:
        self.fleet = FleetStore(base_position)
        self.settings = settings or SimulationSettings()
        self.stats = stats or ServerStats()
        self.sessions = SessionRegistry()
        self._dispatcher = CommandDispatcher(self)
        self._observers: list[Observer] = []

        self._heartbeat_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._base_move: asyncio.TimerHandle | None = None
        self._base_target: Position | None = None

    # -- read accessors -------------------------------------------------

    @property
    def base_position(self) -> Position:
        return self.fleet.base_position

    @property
    def base_target(self) -> Position | None:
        """Destination of the pending base relocation, if any."""
        return self._base_target

    @property
    def session_count(self) -> int:
        return len(self.sessions)

    @property
    def timers_running(self) -> bool:
        return self._heartbeat_task is not None or self._tick_task is not None

    def snapshot(self) -> dict:
        """Full-state heartbeat payload sent to a newly registered session."""
        return {
            "init": True,
            "timestamp": now_ms(),
            "basePosition": self.base_position.to_dict(),
            "drones": self.fleet.to_list(),
            "config": self.settings.to_dict(),
        }

    # -- host observers -------------------------------------------------

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: str, payload: object = None) -> None:
        for observer in list(self._observers):
            try:
                observer(event, payload)
            except Exception:
                log.error("observer_failed", event_name=event, exc_info=True)

    # -- sessions -------------------------------------------------------

    def connect(self, peer: str = "") -> Session:
        session = Session(peer)
        self.sessions.add(session)
        self.stats.record_connect()
        session.send("heartbeat", self.snapshot())
        log.info("client_connected", session=session.id, peer=peer, clients=self.session_count)
        self.emit("clientConnected", self.session_count)
        return session

    def disconnect(self, session: Session) -> None:
        session.close()
        if not self.sessions.remove(session):
            return
        self.stats.record_disconnect()
        log.info("client_disconnected", session=session.id, clients=self.session_count)
        self.emit("clientDisconnected", self.session_count)

    def close_sessions(self) -> None:
        for session in self.sessions:
            self.disconnect(session)

    def broadcast(self, message_type: str, payload: object = None) -> None:
        self.sessions.broadcast(message_type, payload)
        self.stats.record_broadcast()

    # -- inbound --------------------------------------------------------

    def handle_frame(self, session: Session, raw: str | bytes) -> bool:
        """Decode and apply one inbound frame. Never raises for bad input."""
        try:
            message_type, payload = parse_frame(raw)
        except ProtocolError as e:
            self.stats.record_malformed()
            log.warning("malformed_frame", session=session.id, error=str(e))
            return False

        self.stats.record_frame(message_type)
        log.debug("message_received", session=session.id, type=message_type)
        try:
            accepted = self._dispatcher.dispatch(session, message_type, payload)
        except Exception:
            log.error("command_failed", session=session.id, type=message_type, exc_info=True)
            accepted = False
        if not accepted:
            self.stats.record_rejected()
        return accepted

    # -- host-side mutation ---------------------------------------------

    def set_drone_status(self, drone_id: str, status: DroneStatus | str) -> None:
        """Inject a status (e.g. ``mia``) from outside and publish it."""
        drone = self.fleet.set_status(drone_id, DroneStatus(status))
        self.broadcast("drone:updated", {"drone": drone.to_dict()})

    # -- base relocation ------------------------------------------------

    def relocate_base(self, target: Position) -> None:
        """Start moving the base. A newer request replaces a pending one."""
        self.cancel_base_move()
        duration = self.settings.base_move_duration
        log.info("base_relocation_scheduled", lat=target.lat, lng=target.lng, duration=duration)
        self.broadcast("basePosition:moving", {"target": target.to_dict(), "duration": duration})

        loop = asyncio.get_running_loop()
        self._base_target = target
        self._base_move = loop.call_later(duration / 1000, self._commit_base, target)

    def _commit_base(self, target: Position) -> None:
        self._base_move = None
        self._base_target = None
        self.fleet.set_base_position(target)
        log.info("base_position_updated", lat=target.lat, lng=target.lng)
        self.broadcast("basePosition:updated", target.to_dict())

    def cancel_base_move(self) -> None:
        if self._base_move is not None:
            self._base_move.cancel()
            log.debug("base_relocation_replaced")
        self._base_move = None
        self._base_target = None

    # -- periodic work --------------------------------------------------

    def heartbeat(self) -> None:
        self.broadcast("heartbeat", {
            "timestamp": now_ms(),
            "basePosition": self.base_position.to_dict(),
            "config": self.settings.to_dict(),
        })
        self.stats.record_heartbeat()

    def tick(self) -> None:
        """One simulation step plus state broadcast. Idle with an empty fleet."""
        if not len(self.fleet):
            return
        s = self.settings
        self.fleet.step(
            s.drone_update_interval / 1000,
            s.drone_vertical_speed,
            s.drone_fly_speed,
            s.base_altitude,
        )
        self.broadcast("drones:update", {"drones": self.fleet.to_list()})
        self.stats.record_tick()

    async def _every(self, interval_ms: Callable[[], float], fn: Callable[[], None], name: str) -> None:
        log.debug("timer_started", timer=name, interval=interval_ms())
        while True:
            await asyncio.sleep(interval_ms() / 1000)
            try:
                fn()
            except Exception:
                log.error("timer_callback_failed", timer=name, exc_info=True)

    def start_heartbeat(self) -> None:
        self._heartbeat_task = asyncio.create_task(
            self._every(lambda: self.settings.heartbeat_interval, self.heartbeat, "heartbeat"))

    def stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    def restart_heartbeat(self) -> None:
        # Only restart a timer that is running; a stopped server stays stopped.
        if self._heartbeat_task is not None:
            self.stop_heartbeat()
            self.start_heartbeat()

    def start_ticks(self) -> None:
        self._tick_task = asyncio.create_task(
            self._every(lambda: self.settings.drone_update_interval, self.tick, "simulation"))

    def stop_ticks(self) -> None:
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

    def restart_ticks(self) -> None:
        if self._tick_task is not None:
            self.stop_ticks()
            self.start_ticks()

    def start_timers(self) -> None:
        if self.timers_running:
            return
        self.start_heartbeat()
        self.start_ticks()

    def stop_timers(self) -> None:
        self.stop_heartbeat()
        self.stop_ticks()

    def shutdown(self) -> None:
        """Stop timers, drop the pending relocation, and close every session."""
        self.stop_timers()
        self.cancel_base_move()
        self.close_sessions()
