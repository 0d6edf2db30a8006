"""Fleet store — owns every drone, the base position, and the physics step.

No framework dependencies. Callers are expected to run all methods on a
single serialized executor (see DroneService).
"""

from __future__ import annotations

from typing import Iterator

import structlog

from dronesim.core import geo
from dronesim.core.models import (
    AIRBORNE_STATUSES,
    RETURNING_STATUSES,
    Drone,
    DroneStatus,
    Position,
)
from dronesim.errors import StateConflictError

log = structlog.get_logger()

DRONE_ERROR = "drone:error"


class FleetStore:
    """Insertion-ordered set of drones plus the shared base position."""

    def __init__(self, base_position: Position) -> None:
        self._drones: dict[str, Drone] = {}
        self._id_counter = 0
        self._base_position = base_position

    # -- lookup ---------------------------------------------------------

    def __len__(self) -> int:
        return len(self._drones)

    def __iter__(self) -> Iterator[Drone]:
        return iter(self._drones.values())

    def __contains__(self, drone_id: object) -> bool:
        return drone_id in self._drones

    @property
    def count(self) -> int:
        return len(self._drones)

    def get(self, drone_id: str) -> Drone | None:
        return self._drones.get(drone_id)

    def drones(self) -> list[Drone]:
        return list(self._drones.values())

    def to_list(self) -> list[dict]:
        return [drone.to_dict() for drone in self._drones.values()]

    @property
    def base_position(self) -> Position:
        return self._base_position

    def set_base_position(self, position: Position) -> None:
        self._base_position = position

    # -- lifecycle ------------------------------------------------------

    def _create_drone(self) -> Drone:
        self._id_counter += 1
        return Drone(
            id=f"drone-{self._id_counter}",
            name=f"Drone {self._id_counter}",
            position=self._base_position,
        )

    def set_count(self, target: int) -> None:
        """Grow or shrink the fleet to exactly ``target`` drones.

        Shrinking evicts the most recently created drones, whatever they
        are doing at the time.
        """
        if target < 0:
            raise ValueError(f"drone count must be >= 0, got {target}")

        diff = target - len(self._drones)
        if diff > 0:
            for _ in range(diff):
                drone = self._create_drone()
                self._drones[drone.id] = drone
        elif diff < 0:
            for drone_id in list(self._drones)[diff:]:
                del self._drones[drone_id]

        log.info("drone_count_updated", count=len(self._drones))

    def set_status(self, drone_id: str, status: DroneStatus) -> Drone:
        """Force a drone into ``status``. Used by hosts to inject mia/auto states."""
        drone = self._drones[drone_id]
        drone.status = DroneStatus(status)
        log.info("drone_status_injected", drone=drone_id, status=drone.status.value)
        return drone

    # -- single-drone commands -----------------------------------------

    def takeoff(self, drone_id: str) -> Drone:
        drone = self._drones.get(drone_id)
        if drone is None or drone.status is not DroneStatus.IDLE:
            raise StateConflictError(DRONE_ERROR, "Drone not found or not in idle state")
        drone.status = DroneStatus.ASCENDING
        log.info("drone_taking_off", drone=drone.id)
        return drone

    def move(self, drone_id: str, waypoints: list[Position], append: bool = False) -> Drone:
        drone = self._drones.get(drone_id)
        if drone is None or drone.status not in AIRBORNE_STATUSES:
            raise StateConflictError(DRONE_ERROR, "Drone not found or not in movable state")

        # A drone heading home always gets its route replaced.
        if append and drone.status not in RETURNING_STATUSES:
            drone.waypoints.extend(waypoints)
        else:
            drone.waypoints = list(waypoints)
        drone.status = DroneStatus.MOVING
        log.info("drone_moving", drone=drone.id, waypoints=len(drone.waypoints), append=append)
        return drone

    def land(self, drone_id: str) -> Drone:
        drone = self._drones.get(drone_id)
        if drone is None or drone.status not in AIRBORNE_STATUSES:
            raise StateConflictError(DRONE_ERROR, "Drone not found or not in airborne state")
        drone.status = DroneStatus.LANDING
        drone.waypoints = []
        log.info("drone_landing", drone=drone.id)
        return drone

    def return_to_base(self, drone_id: str) -> Drone:
        drone = self._drones.get(drone_id)
        if drone is None or drone.status not in AIRBORNE_STATUSES:
            raise StateConflictError(DRONE_ERROR, "Drone not found or not in airborne state")
        drone.status = DroneStatus.RETURNING
        drone.waypoints = [self._base_position]
        log.info("drone_returning", drone=drone.id)
        return drone

    # -- bulk commands --------------------------------------------------

    def takeoff_all(self) -> int:
        count = 0
        for drone in self._drones.values():
            if drone.status is DroneStatus.IDLE:
                drone.status = DroneStatus.ASCENDING
                count += 1
        log.info("all_takeoff", count=count)
        return count

    def return_all_to_base(self) -> int:
        count = 0
        for drone in self._drones.values():
            if drone.status in AIRBORNE_STATUSES:
                drone.status = DroneStatus.RETURNING
                drone.waypoints = [self._base_position]
                count += 1
        log.info("all_return_to_base", count=count)
        return count

    def random_move_all(self) -> int:
        count = 0
        for drone in self._drones.values():
            if drone.status in AIRBORNE_STATUSES:
                drone.status = DroneStatus.MOVING
                drone.waypoints = [geo.random_point_near(self._base_position)]
                count += 1
        log.info("all_random_move", count=count)
        return count

    # -- physics --------------------------------------------------------

    def step(
        self,
        dt: float,
        vertical_speed: float,
        fly_speed: float,
        base_altitude: float,
    ) -> None:
        """Advance every drone by ``dt`` seconds."""
        for drone in self._drones.values():
            self.integrate(drone, dt, vertical_speed, fly_speed, base_altitude)

    def integrate(
        self,
        drone: Drone,
        dt: float,
        vertical_speed: float,
        fly_speed: float,
        base_altitude: float,
    ) -> None:
        status = drone.status
        if status is DroneStatus.ASCENDING:
            drone.altitude += vertical_speed * dt
            if drone.altitude >= base_altitude:
                drone.altitude = base_altitude
                drone.status = DroneStatus.HOVERING
                log.info("drone_reached_altitude", drone=drone.id, altitude=base_altitude)

        elif status in (DroneStatus.MOVING, DroneStatus.RETURNING, DroneStatus.RETURNING_AUTO):
            self._follow_waypoints(drone, dt, fly_speed)

        elif status in (DroneStatus.LANDING, DroneStatus.LANDING_AUTO):
            drone.altitude -= vertical_speed * dt
            if drone.altitude <= 0:
                drone.altitude = 0.0
                drone.waypoints = []
                drone.status = DroneStatus.IDLE
                log.info("drone_landed", drone=drone.id)

    def _follow_waypoints(self, drone: Drone, dt: float, fly_speed: float) -> None:
        if not drone.waypoints:
            drone.status = DroneStatus.HOVERING
            log.info("drone_no_waypoints", drone=drone.id)
            return

        target = drone.waypoints[0]
        remaining = geo.distance(drone.position, target)
        step = fly_speed * dt

        if step < remaining:
            drone.position = geo.interpolate(drone.position, target, step / remaining)
            return

        drone.position = target
        drone.waypoints.pop(0)
        if drone.waypoints:
            log.debug("drone_reached_waypoint", drone=drone.id, remaining=len(drone.waypoints))
        elif drone.status in RETURNING_STATUSES:
            drone.status = DroneStatus.LANDING
            log.info("drone_reached_base", drone=drone.id)
        else:
            drone.status = DroneStatus.HOVERING
            log.info("drone_reached_final_waypoint", drone=drone.id)
