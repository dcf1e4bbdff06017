"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

from ..models.domain import LatLng

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: LatLng, b: LatLng) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def path_distance_km(points: Sequence[LatLng]) -> float:
    """Sum of haversine hops along the points, in order."""

    return sum(distance_km(points[i], points[i + 1]) for i in range(len(points) - 1))


def travel_seconds(distance: float, speed_kmh: float) -> float:
    """Convert a distance in km to seconds at a constant speed."""

    if speed_kmh <= 0:
        raise ValueError("Speed must be positive.")
    return distance / speed_kmh * 3600.0
