"""Great-circle distance and short-range projection helpers.

Pure functions. Positions are degrees, distances are metres.
"""

from __future__ import annotations

import math
import random

from dronesim.core.models import Position

EARTH_RADIUS_M = 6_371_000

RANDOM_POINT_MIN_DISTANCE_M = 5_000
RANDOM_POINT_MAX_DISTANCE_M = 10_000


def distance(a: Position, b: Position) -> float:
    """Haversine distance between two positions, in metres."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def random_point_near(
    base: Position,
    min_distance: float = RANDOM_POINT_MIN_DISTANCE_M,
    max_distance: float = RANDOM_POINT_MAX_DISTANCE_M,
    rng: random.Random | None = None,
) -> Position:
    """Pick a point between ``min_distance`` and ``max_distance`` metres from base.

    Uses the flat-earth approximation, which is close enough at this range
    but not geodesically exact.
    """
    rng = rng or random
    dist = rng.uniform(min_distance, max_distance)
    bearing = math.radians(rng.uniform(0, 360))

    lat_offset = dist * math.cos(bearing) / EARTH_RADIUS_M
    lng_offset = dist * math.sin(bearing) / (EARTH_RADIUS_M * math.cos(math.radians(base.lat)))

    return Position(
        lat=base.lat + math.degrees(lat_offset),
        lng=base.lng + math.degrees(lng_offset),
    )


def interpolate(start: Position, end: Position, ratio: float) -> Position:
    """Straight-line interpolation in lat/lng space."""
    return Position(
        lat=start.lat + (end.lat - start.lat) * ratio,
        lng=start.lng + (end.lng - start.lng) * ratio,
    )
