from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import Protocol

# Mean earth radius used by the routing engine's own distance estimates.
EARTH_RADIUS_M = 6_371_007.2


class HasCoordinates(Protocol):
    lat: float
    lon: float


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance in meters."""
    if lat1 == lat2 and lon1 == lon2:
        return 0.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def node_distance_m(a: HasCoordinates, b: HasCoordinates) -> float:
    # Canonical argument order keeps the result bit-identical both ways.
    if (a.lat, a.lon) > (b.lat, b.lon):
        a, b = b, a
    return distance_m(a.lat, a.lon, b.lat, b.lon)


def path_distance_m(points: Sequence[tuple[float, float]]) -> float:
    """Walked distance along a (lat, lon) sequence."""
    total = 0.0
    for idx in range(1, len(points)):
        lat1, lon1 = points[idx - 1]
        lat2, lon2 = points[idx]
        total += distance_m(lat1, lon1, lat2, lon2)
    return total


def ascent_m(elevations: Iterable[float]) -> float:
    """Cumulative positive elevation gain; descents are ignored."""
    total = 0.0
    previous: float | None = None
    for value in elevations:
        current = float(value)
        if previous is not None and current > previous:
            total += current - previous
        previous = current
    return total
