"""Command dispatch — validates inbound messages and applies them.

Every handler either mutates state and broadcasts the result to all
sessions, or raises a CommandError that ``dispatch`` turns into an
``*:error`` reply to the requesting session only.
"""

from __future__ import annotations

import math
import time
from typing import TYPE_CHECKING, Any, Callable, Protocol

import structlog

from dronesim.core.fleet import DRONE_ERROR
from dronesim.core.models import Position
from dronesim.errors import CommandError, ValidationError

if TYPE_CHECKING:
    from dronesim.core.fleet import FleetStore
    from dronesim.core.models import SimulationSettings
    from dronesim.core.session import Session

log = structlog.get_logger()


class CommandContext(Protocol):
    """What handlers need from the service that owns the state."""

    fleet: FleetStore
    settings: SimulationSettings

    def broadcast(self, message_type: str, payload: object = None) -> None: ...

    def relocate_base(self, target: Position) -> None: ...

    def restart_heartbeat(self) -> None: ...

    def restart_ticks(self) -> None: ...

    def emit(self, event: str, payload: object = None) -> None: ...


def now_ms() -> int:
    return int(time.time() * 1000)


def _is_number(value: Any) -> bool:
    # json.loads turns NaN and Infinity into floats
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _number(payload: Any, key: str) -> float | None:
    if isinstance(payload, dict) and _is_number(payload.get(key)):
        return payload[key]
    return None


def _drone_id(payload: Any) -> str:
    drone_id = payload.get("droneId") if isinstance(payload, dict) else None
    if not isinstance(drone_id, str) or not drone_id:
        raise ValidationError(DRONE_ERROR, "droneId is required")
    return drone_id


def _parse_waypoints(raw: Any) -> list[Position]:
    if not isinstance(raw, list):
        raise ValidationError(DRONE_ERROR, "waypoints must be a list")
    waypoints = []
    for item in raw:
        lat, lng = _number(item, "lat"), _number(item, "lng")
        if lat is None or lng is None:
            raise ValidationError(DRONE_ERROR, "Invalid waypoint lat/lng values")
        waypoints.append(Position(lat=lat, lng=lng))
    return waypoints


class CommandDispatcher:
    """Routes inbound envelopes by ``type`` to a handler."""

    def __init__(self, context: CommandContext) -> None:
        self._ctx = context
        self._handlers: dict[str, Callable[[Session, Any], None]] = {
            "health": self._health,
            "basePosition:update": self._base_position,
            "baseMoveDuration:update": self._base_move_duration,
            "baseAltitude:update": self._base_altitude,
            "heartbeatInterval:update": self._heartbeat_interval,
            "droneCount:update": self._drone_count,
            "droneUpdateInterval:update": self._drone_update_interval,
            "droneVerticalSpeed:update": self._drone_vertical_speed,
            "droneFlySpeed:update": self._drone_fly_speed,
            "drone:takeoff": self._drone_takeoff,
            "drone:start": self._drone_takeoff,
            "drone:move": self._drone_move,
            "drone:land": self._drone_land,
            "drone:returnToBase": self._drone_return_to_base,
            "drone:allTakeoff": self._all_takeoff,
            "drone:allReturnToBase": self._all_return_to_base,
            "drone:allRandomMove": self._all_random_move,
            "config:update": self._config_update,
        }

    def dispatch(self, session: Session, message_type: str, payload: Any = None) -> bool:
        """Apply one command. Returns False if it was rejected.

        Unknown types are handed to host observers, not rejected.
        """
        handler = self._handlers.get(message_type)
        if handler is None:
            log.debug("unknown_message_type", type=message_type, session=session.id)
            self._ctx.emit("message", {"type": message_type, "payload": payload})
            return True

        try:
            handler(session, payload)
        except CommandError as e:
            log.info("command_rejected", type=message_type, session=session.id,
                     error=e.message, kind=type(e).__name__)
            session.send(e.error_type, {"error": e.message})
            return False
        return True

    # -- base -----------------------------------------------------------

    def _health(self, session: Session, payload: Any) -> None:
        session.send("health", {"status": "ok", "timestamp": now_ms()})

    def _base_position(self, session: Session, payload: Any) -> None:
        lat, lng = _number(payload, "lat"), _number(payload, "lng")
        if lat is None or lng is None:
            raise ValidationError("basePosition:error", "Invalid lat/lng values")
        self._ctx.relocate_base(Position(lat=lat, lng=lng))

    def _base_move_duration(self, session: Session, payload: Any) -> None:
        duration = _number(payload, "duration")
        if duration is None or duration < 0:
            raise ValidationError("baseMoveDuration:error", "Invalid duration value")
        self._ctx.settings.base_move_duration = duration
        log.info("base_move_duration_updated", duration=duration)
        self._ctx.broadcast("baseMoveDuration:updated", {"duration": duration})

    def _base_altitude(self, session: Session, payload: Any) -> None:
        altitude = _number(payload, "altitude")
        if altitude is None or altitude <= 0:
            raise ValidationError("baseAltitude:error", "Invalid altitude value (must be > 0)")
        self._ctx.settings.base_altitude = altitude
        log.info("base_altitude_updated", altitude=altitude)
        self._ctx.broadcast("baseAltitude:updated", {"altitude": altitude})

    # -- config ---------------------------------------------------------

    def _heartbeat_interval(self, session: Session, payload: Any) -> None:
        interval = _number(payload, "interval")
        if interval is None or interval < 1000:
            raise ValidationError("heartbeatInterval:error",
                                  "Invalid interval value (minimum 1000ms)")
        self._ctx.settings.heartbeat_interval = interval
        log.info("heartbeat_interval_updated", interval=interval)
        self._ctx.restart_heartbeat()
        self._ctx.broadcast("heartbeatInterval:updated", {"interval": interval})

    def _drone_count(self, session: Session, payload: Any) -> None:
        count = _number(payload, "count")
        if count is None or count < 0:
            raise ValidationError("droneCount:error", "Invalid count value (minimum 0)")
        fleet = self._ctx.fleet
        # a fractional count rounds up
        fleet.set_count(math.ceil(count))
        self._ctx.broadcast("droneCount:updated", {"count": fleet.count, "drones": fleet.to_list()})

    def _drone_update_interval(self, session: Session, payload: Any) -> None:
        interval = _number(payload, "interval")
        if interval is None or interval < 100:
            raise ValidationError("droneUpdateInterval:error",
                                  "Invalid interval value (minimum 100ms)")
        self._ctx.settings.drone_update_interval = interval
        log.info("drone_update_interval_updated", interval=interval)
        self._ctx.restart_ticks()
        self._ctx.broadcast("droneUpdateInterval:updated", {"interval": interval})

    def _drone_vertical_speed(self, session: Session, payload: Any) -> None:
        speed = _number(payload, "speed")
        if speed is None or speed <= 0:
            raise ValidationError("droneVerticalSpeed:error", "Invalid speed value (must be > 0)")
        self._ctx.settings.drone_vertical_speed = speed
        log.info("drone_vertical_speed_updated", speed=speed)
        self._ctx.broadcast("droneVerticalSpeed:updated", {"speed": speed})

    def _drone_fly_speed(self, session: Session, payload: Any) -> None:
        speed = _number(payload, "speed")
        if speed is None or speed <= 0:
            raise ValidationError("droneFlySpeed:error", "Invalid speed value (must be > 0)")
        self._ctx.settings.drone_fly_speed = speed
        log.info("drone_fly_speed_updated", speed=speed)
        self._ctx.broadcast("droneFlySpeed:updated", {"speed": speed})

    def _config_update(self, session: Session, payload: Any) -> None:
        self._ctx.emit("configUpdate", payload)
        self._ctx.broadcast("config:updated", payload)

    # -- single drone ---------------------------------------------------

    def _drone_takeoff(self, session: Session, payload: Any) -> None:
        drone = self._ctx.fleet.takeoff(_drone_id(payload))
        self._ctx.broadcast("drone:updated", {"drone": drone.to_dict()})

    def _drone_move(self, session: Session, payload: Any) -> None:
        drone_id = _drone_id(payload)
        waypoints = _parse_waypoints(payload.get("waypoints"))
        append = payload.get("append") is True
        drone = self._ctx.fleet.move(drone_id, waypoints, append=append)
        self._ctx.broadcast("drone:updated", {"drone": drone.to_dict()})

    def _drone_land(self, session: Session, payload: Any) -> None:
        drone = self._ctx.fleet.land(_drone_id(payload))
        self._ctx.broadcast("drone:updated", {"drone": drone.to_dict()})

    def _drone_return_to_base(self, session: Session, payload: Any) -> None:
        drone = self._ctx.fleet.return_to_base(_drone_id(payload))
        self._ctx.broadcast("drone:updated", {"drone": drone.to_dict()})

    # -- whole fleet ----------------------------------------------------

    def _all_takeoff(self, session: Session, payload: Any) -> None:
        self._ctx.fleet.takeoff_all()
        self._ctx.broadcast("drones:update", {"drones": self._ctx.fleet.to_list()})

    def _all_return_to_base(self, session: Session, payload: Any) -> None:
        self._ctx.fleet.return_all_to_base()
        self._ctx.broadcast("drones:update", {"drones": self._ctx.fleet.to_list()})

    def _all_random_move(self, session: Session, payload: Any) -> None:
        self._ctx.fleet.random_move_all()
        self._ctx.broadcast("drones:update", {"drones": self._ctx.fleet.to_list()})
