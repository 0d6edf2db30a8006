"""dronesim — core internal data models.

These are plain dataclasses with no framework dependencies.
They are converted to/from JSON-ready dicts at the wire boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DEFAULT_BASE_MOVE_DURATION = 1000  # ms
DEFAULT_HEARTBEAT_INTERVAL = 3000  # ms
DEFAULT_DRONE_UPDATE_INTERVAL = 200  # ms
DEFAULT_DRONE_VERTICAL_SPEED = 5.0  # m/s
DEFAULT_DRONE_FLY_SPEED = 10.0  # m/s
DEFAULT_BASE_ALTITUDE = 50.0  # m


class DroneStatus(str, Enum):
    IDLE = "idle"
    ASCENDING = "ascending"
    HOVERING = "hovering"
    MOVING = "moving"
    MIA = "mia"
    RETURNING = "returning"
    LANDING = "landing"
    RETURNING_AUTO = "returning_auto"
    LANDING_AUTO = "landing_auto"


# Statuses that accept move / land / return-to-base commands.
AIRBORNE_STATUSES = frozenset({
    DroneStatus.HOVERING,
    DroneStatus.MOVING,
    DroneStatus.RETURNING,
    DroneStatus.RETURNING_AUTO,
})

RETURNING_STATUSES = frozenset({DroneStatus.RETURNING, DroneStatus.RETURNING_AUTO})


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


@dataclass
class Drone:
    id: str
    name: str
    position: Position
    altitude: float = 0.0
    status: DroneStatus = DroneStatus.IDLE
    battery: int = 100
    waypoints: list[Position] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "position": self.position.to_dict(),
            "altitude": self.altitude,
            "status": self.status.value,
            "battery": self.battery,
            "waypoints": [wp.to_dict() for wp in self.waypoints],
        }


@dataclass
class SimulationSettings:
    """Runtime-tunable simulation parameters. Mutated in place by commands."""
    base_move_duration: float = DEFAULT_BASE_MOVE_DURATION
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    drone_update_interval: float = DEFAULT_DRONE_UPDATE_INTERVAL
    drone_vertical_speed: float = DEFAULT_DRONE_VERTICAL_SPEED
    drone_fly_speed: float = DEFAULT_DRONE_FLY_SPEED
    base_altitude: float = DEFAULT_BASE_ALTITUDE

    def to_dict(self) -> dict:
        return {
            "baseMoveDuration": self.base_move_duration,
            "heartbeatInterval": self.heartbeat_interval,
            "droneUpdateInterval": self.drone_update_interval,
            "droneVerticalSpeed": self.drone_vertical_speed,
            "droneFlySpeed": self.drone_fly_speed,
            "baseAltitude": self.base_altitude,
        }
